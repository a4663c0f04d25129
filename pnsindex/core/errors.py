"""
Exceptions raised by the indexing pipeline.
Every error carries enough context (block range, event kind, tx hash)
to replay the failed range with a manual resync.
"""

from typing import Optional


class IndexerError(Exception):
    """Base class for indexer errors."""


class LogFetchError(IndexerError):
    """Log fetching for a contract failed after exhausting retries."""

    def __init__(self, contract: str, from_block: int, to_block: int, cause: Exception):
        super().__init__(
            f"Failed to fetch logs for {contract} in blocks [{from_block}, {to_block}]: {cause}"
        )
        self.contract = contract
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause


class CheckpointError(IndexerError):
    """The checkpoint could not be persisted."""

    def __init__(self, block: int, cause: Exception):
        super().__init__(f"Failed to persist checkpoint at block {block}: {cause}")
        self.block = block
        self.cause = cause


class ProjectionWriteError(IndexerError):
    """A projection or audit write failed for a single event."""

    def __init__(
        self,
        event_name: str,
        transaction_hash: str,
        log_index: int,
        block_number: int,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            f"Failed to apply {event_name} at block {block_number} "
            f"(tx {transaction_hash}, log {log_index}): {cause}"
        )
        self.event_name = event_name
        self.transaction_hash = transaction_hash
        self.log_index = log_index
        self.block_number = block_number
        self.cause = cause


class IndexerRunningError(IndexerError):
    """An operation that requires a stopped indexer was called while running."""


class IndexingStaleError(IndexerError):
    """The projection heartbeat is missing or older than the allowed threshold."""
