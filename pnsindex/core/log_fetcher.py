"""
Rate-limited fetching of raw contract logs.
Fetches are sequential across the monitored contracts with a fixed delay between
contracts, and each batch window is split into chunks that respect the provider's
block range ceiling.
"""

import logging
import time
from typing import List, Optional, Tuple

from web3 import Web3
from web3.middleware import geth_poa_middleware

from pnsindex.core.abi_utils import get_event_topics
from pnsindex.core.config import MonitoredContract
from pnsindex.core.errors import IndexerError, LogFetchError
from pnsindex.core.range_planner import ScanRange, split_range
from pnsindex.utils.log import get_default_logger
from pnsindex.utils.retries import with_retries


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Provider error fragments indicating the result set or block range is too large.
_RANGE_TOO_LARGE_MARKERS = (
    "query returned more than",
    "block range",
    "limit exceeded",
    "response size",
    "range is too large",
)


class RangeTooLargeError(IndexerError):
    """The provider rejected a getLogs call because the window was too large."""


def _is_range_too_large(e: Exception) -> bool:
    message = str(e).lower()
    return any(marker in message for marker in _RANGE_TOO_LARGE_MARKERS)


# pylint: disable=too-many-instance-attributes
class ContractLogFetcher:
    """
    Fetches raw logs for the monitored contracts over block windows.
    """

    # pylint: disable-msg=too-many-arguments
    def __init__(
        self,
        w3: Web3,
        log_chunk_size: int = 2000,
        min_log_chunk_size: int = 100,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        inter_contract_delay: float = 0.25,
        inter_chunk_delay: float = 0.1,
    ):
        """
        Initialize the fetcher.

        :param w3: The Web3 object connected to the node.
        :param log_chunk_size: Maximum blocks per eth_getLogs call.
        :param min_log_chunk_size: Floor for chunk halving on provider size errors.
        :param max_retries: Retries after the first failed attempt of a call.
        :param retry_delay: Initial retry delay in seconds.
        :param inter_contract_delay: Pause between per-contract fetches.
        :param inter_chunk_delay: Pause between consecutive chunks of one contract.
        """
        self.w3 = w3
        self.log_chunk_size = log_chunk_size
        self.min_log_chunk_size = min(min_log_chunk_size, log_chunk_size)
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.inter_contract_delay = inter_contract_delay
        self.inter_chunk_delay = inter_chunk_delay

    def get_latest_block_number(self) -> int:
        """
        Query the chain head with retries.

        :return: The latest block number.
        """
        return with_retries(
            lambda: int(self.w3.eth.block_number),
            _LOG,
            max_attempts=self.max_retries + 1,
            delay=self.retry_delay,
        )

    def _get_logs(self, address: str, topics: List[str], chunk: ScanRange) -> list:
        try:
            logs = self.w3.eth.get_logs(
                {
                    "address": Web3.to_checksum_address(address),
                    # A single topic0 position matching any of the events.
                    "topics": [topics],
                    "fromBlock": chunk.from_block,
                    "toBlock": chunk.to_block,
                }
            )
        except Exception as e:  # pylint: disable=broad-except
            if _is_range_too_large(e):
                raise RangeTooLargeError(str(e)) from e
            raise
        _LOG.debug(
            "Fetched %s logs for %s in blocks %s", len(logs), address, chunk
        )
        return list(logs)

    def _fetch_chunk(self, address: str, topics: List[str], chunk: ScanRange) -> list:
        try:
            return with_retries(
                lambda: self._get_logs(address, topics, chunk),
                _LOG,
                max_attempts=self.max_retries + 1,
                delay=self.retry_delay,
                fatal=(RangeTooLargeError,),
            )
        except RangeTooLargeError as e:
            if len(chunk) <= self.min_log_chunk_size:
                raise
            half = max(self.min_log_chunk_size, (len(chunk) + 1) // 2)
            _LOG.warning(
                "Provider rejected blocks %s for %s, retrying in chunks of %s: %s",
                chunk,
                address,
                half,
                e,
            )
            logs = []
            for sub_chunk in split_range(chunk, half):
                # Every sub-chunk follows a request the provider refused or served.
                if self.inter_chunk_delay > 0:
                    time.sleep(self.inter_chunk_delay)
                logs += self._fetch_chunk(address, topics, sub_chunk)
            return logs

    def fetch_logs(
        self, address: str, topics: List[str], scan_range: ScanRange
    ) -> list:
        """
        Fetch the logs of one contract over a window,
        splitting the window into chunks of at most log_chunk_size blocks.

        :param address: The contract address.
        :param topics: The topic0 hashes of the events of interest.
        :param scan_range: The inclusive block window.
        :return: The raw logs in provider order.
        """
        logs = []
        for i, chunk in enumerate(split_range(scan_range, self.log_chunk_size)):
            if i > 0 and self.inter_chunk_delay > 0:
                time.sleep(self.inter_chunk_delay)
            try:
                logs += self._fetch_chunk(address, topics, chunk)
            except Exception as e:  # pylint: disable=broad-except
                _LOG.error(
                    "Error fetching logs for %s in blocks %s after %s retries: %s",
                    address,
                    chunk,
                    self.max_retries,
                    e,
                )
                raise LogFetchError(address, chunk.from_block, chunk.to_block, e) from e
        return logs

    def fetch_batch(
        self,
        contracts: List[MonitoredContract],
        scan_range: ScanRange,
        topics_by_contract: Optional[dict] = None,
    ) -> List[Tuple[MonitoredContract, list]]:
        """
        Fetch logs of all monitored contracts over a window.
        Contracts are fetched one at a time in priority order,
        never in parallel, pausing between contracts to respect shared rate limits.

        :param contracts: The monitored contracts.
        :param scan_range: The inclusive block window.
        :param topics_by_contract: Optional topic filters keyed by contract role.
            Defaults to every event in the contract ABI.
        :return: The list of (contract, raw logs) pairs in fetch order.
        """
        results = []
        ordered = sorted(contracts, key=lambda c: c.priority)
        for i, contract in enumerate(ordered):
            if i > 0 and self.inter_contract_delay > 0:
                time.sleep(self.inter_contract_delay)
            if topics_by_contract is not None and contract.role in topics_by_contract:
                topics = list(topics_by_contract[contract.role])
            else:
                topics = list(get_event_topics(contract.abi_file_name).keys())
            logs = self.fetch_logs(contract.address, topics, scan_range)
            results.append((contract, logs))
        return results


# Settings for the connection retry for Web3.HTTPProvider.
# Maximum number of retries.
_W3_CONNECTION_MAX_RETRIES = 5
# Linear backoff in seconds.
_W3_CONNECTION_BACKOFF = 1


def create_web3(node_rpc_url: str, inject_geth_poa_middleware: bool = False) -> Web3:
    """
    Connect to a node with retries and linear backoff.

    :param node_rpc_url: Node RPC URL.
    :param inject_geth_poa_middleware: True if geth_poa_middleware W3 option
        is required to connect to the network.
        This option is required for Polygon PoS, BNB, and other chains.
    :return: The connected Web3 object.
    """
    w3 = Web3(Web3.HTTPProvider(node_rpc_url))
    backoff = 0
    for retry_count in range(_W3_CONNECTION_MAX_RETRIES):
        if w3.is_connected():
            break
        _LOG.warning(
            "create_web3(): %s is not reachable, attempt %s/%s",
            node_rpc_url,
            retry_count + 1,
            _W3_CONNECTION_MAX_RETRIES,
        )
        backoff += _W3_CONNECTION_BACKOFF
        time.sleep(backoff)
    else:
        raise ConnectionError(
            f"Failed to connect to {node_rpc_url} after {_W3_CONNECTION_MAX_RETRIES} retries"
        )

    if inject_geth_poa_middleware:
        w3.middleware_onion.inject(geth_poa_middleware, layer=0)
    return w3
