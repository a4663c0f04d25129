"""
Planning of contiguous block ranges to scan.
"""

from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class ScanRange:
    """
    Inclusive block window.
    """

    from_block: int
    to_block: int

    def __len__(self) -> int:
        return self.to_block - self.from_block + 1

    def __str__(self) -> str:
        return f"[{self.from_block}, {self.to_block}]"


def plan_ranges(
    checkpoint: int,
    chain_head: int,
    batch_size: int,
    max_batches: Optional[int] = None,
) -> Iterator[ScanRange]:
    """
    Yield successive inclusive windows from the block after the checkpoint
    up to the chain head.
    Yields nothing if the checkpoint is already at or past the head.

    :param checkpoint: The highest block fully processed.
    :param chain_head: The latest block reported by the node.
    :param batch_size: Maximum number of blocks per window.
    :param max_batches: Optional bound on the number of windows.
    :return: The iterator of windows in increasing block order.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    from_block = checkpoint + 1
    n_batches = 0
    while from_block <= chain_head:
        if max_batches is not None and n_batches >= max_batches:
            return
        to_block = min(from_block + batch_size - 1, chain_head)
        yield ScanRange(from_block, to_block)
        n_batches += 1
        from_block = to_block + 1


def split_range(scan_range: ScanRange, chunk_size: int) -> Iterator[ScanRange]:
    """
    Split a window into sub-windows of at most chunk_size blocks.

    :param scan_range: The window to split.
    :param chunk_size: Maximum number of blocks per sub-window.
    :return: The iterator of sub-windows in increasing block order.
    """
    return plan_ranges(scan_range.from_block - 1, scan_range.to_block, chunk_size)
