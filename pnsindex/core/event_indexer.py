"""
The event indexer drives the pipeline on a periodic schedule:
range planning, sequential per-contract log fetching, decoding,
merging into on-chain order, projection updates, and checkpoint advance.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlmodel import create_engine
from web3 import Web3

from pnsindex.core.checkpoint_store import CheckpointStore, SQLCheckpointStore
from pnsindex.core.config import IndexerConfig, MonitoredContract
from pnsindex.core.domain_cache import DomainCache, LocalDomainCache, RedisDomainCache
from pnsindex.core.errors import IndexerRunningError
from pnsindex.core.event_decoder import EventDecoder
from pnsindex.core.event_merger import merge_events
from pnsindex.core.log_fetcher import ContractLogFetcher, create_web3
from pnsindex.core.outbox import DomainOutboxPublisher
from pnsindex.core.projection_applier import ProjectionApplier
from pnsindex.core.projection_store import SQLProjectionStore
from pnsindex.core.range_planner import ScanRange, plan_ranges
from pnsindex.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


@dataclass(frozen=True)
class IndexerStatus:
    """
    Point-in-time copy of the indexer state.
    """

    last_processed_block: int
    is_running: bool
    total_events_processed: int
    ticks_skipped: int = 0
    last_tick_error: Optional[str] = None


# pylint: disable=too-many-instance-attributes
class EventIndexer:
    """
    Scheduler of the indexing pipeline.
    States are Stopped and Running. Ticks never overlap:
    a scheduled tick that fires while another one is in progress is skipped.
    """

    # pylint: disable-msg=too-many-arguments
    def __init__(
        self,
        fetcher: ContractLogFetcher,
        decoder: EventDecoder,
        applier: ProjectionApplier,
        checkpoint_store: CheckpointStore,
        contracts: List[MonitoredContract],
        batch_size: int = 5,
        scan_interval_seconds: float = 30.0,
        max_batches_per_tick: Optional[int] = None,
    ):
        self.fetcher = fetcher
        self.decoder = decoder
        self.applier = applier
        self.checkpoint_store = checkpoint_store
        self.contracts = sorted(contracts, key=lambda c: c.priority)
        self.batch_size = batch_size
        self.scan_interval_seconds = scan_interval_seconds
        self.max_batches_per_tick = max_batches_per_tick

        # Indexer state. Guarded by _state_lock.
        self._last_processed_block: Optional[int] = None
        self._is_running = False
        self._total_events_processed = 0
        self._ticks_skipped = 0
        self._last_tick_error: Optional[str] = None
        self._state_lock = threading.Lock()

        # Held for the duration of a scan.
        self._tick_lock = threading.Lock()
        # Replaced on every start(), so a timer armed by an earlier run
        # keeps the event that stop() set for it.
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

    @staticmethod
    def create_instance_from_config(
        config: IndexerConfig,
        w3: Optional[Web3] = None,
        cache: Optional[DomainCache] = None,
        create_tables: bool = True,
    ) -> "EventIndexer":
        """
        Create an indexer and its collaborators from a configuration.

        :param config: The indexer configuration.
        :param w3: An existing Web3 object, if any.
            If omitted, connects to config.node_rpc_url.
        :param cache: The domain cache, if any.
            If omitted, uses Redis when config.redis_url is set.
        :param create_tables: If True, create missing projection tables.
        :return: The indexer.
        """
        if w3 is None:
            w3 = create_web3(config.node_rpc_url, config.inject_geth_poa_middleware)
        if cache is None:
            if config.redis_url:
                cache = RedisDomainCache.create_instance_from_url(config.redis_url)
            else:
                cache = LocalDomainCache()

        db_engine = create_engine(config.database_url)
        store = SQLProjectionStore(db_engine, config.enforce_monotonic_writes)
        if create_tables:
            store.create_tables()

        contracts = config.monitored_contracts()
        return EventIndexer(
            fetcher=ContractLogFetcher(
                w3,
                log_chunk_size=config.log_chunk_size,
                min_log_chunk_size=config.min_log_chunk_size,
                max_retries=config.max_retries,
                retry_delay=config.retry_delay,
                inter_contract_delay=config.inter_contract_delay,
                inter_chunk_delay=config.inter_chunk_delay,
            ),
            decoder=EventDecoder(contracts, w3),
            applier=ProjectionApplier(store, cache, DomainOutboxPublisher(db_engine)),
            checkpoint_store=SQLCheckpointStore(db_engine, config.deployment_block),
            contracts=contracts,
            batch_size=config.batch_size,
            scan_interval_seconds=config.scan_interval_seconds,
            max_batches_per_tick=config.max_batches_per_tick,
        )

    @staticmethod
    def create_instance_from_env(dotenv_path: Union[str, None] = None) -> "EventIndexer":
        """
        Creates an instance initialized from environment variables.

        :param dotenv_path: Path to the .env file.
            If path is not specified, does not load the .env file.
        :return: The indexer.
        """
        return EventIndexer.create_instance_from_config(
            IndexerConfig.create_instance_from_env(dotenv_path)
        )

    def initialize(self):
        """
        Load the checkpoint from the checkpoint store.
        """
        block = self.checkpoint_store.get()
        with self._state_lock:
            self._last_processed_block = block
        _LOG.info("Event indexer initialized at block %s", block)

    def get_status(self) -> IndexerStatus:
        """
        Return a point-in-time copy of the indexer state.

        :return: The indexer status.
        """
        with self._state_lock:
            last_block = self._last_processed_block
        if last_block is None:
            # Not initialized yet. The store read happens outside the state lock.
            last_block = self.checkpoint_store.get()
        with self._state_lock:
            if self._last_processed_block is not None:
                last_block = self._last_processed_block
            return IndexerStatus(
                last_processed_block=last_block,
                is_running=self._is_running,
                total_events_processed=self._total_events_processed,
                ticks_skipped=self._ticks_skipped,
                last_tick_error=self._last_tick_error,
            )

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._is_running

    def start(self):
        """
        Start the indexer: scan immediately, then arm the periodic timer.
        Calling start() on a running indexer is a no-op.
        If a tick from an earlier run is still in flight,
        the initial scan waits for it to finish.
        """
        stop_event = threading.Event()
        with self._state_lock:
            if self._is_running:
                _LOG.warning("Indexer is already running")
                return
            self._is_running = True
            self._stop_event = stop_event
        if self._last_processed_block is None:
            self.initialize()

        _LOG.info("Starting event indexer...")
        self._tick(blocking=True)

        timer_thread = threading.Thread(
            target=self._run_timer,
            args=(stop_event,),
            name="pns-indexer-timer",
            daemon=True,
        )
        with self._state_lock:
            # stop() may have been called during the initial scan.
            if stop_event.is_set():
                return
            self._timer_thread = timer_thread
        timer_thread.start()
        _LOG.info(
            "Event indexer started, scanning every %s seconds", self.scan_interval_seconds
        )

    def stop(self):
        """
        Stop the indexer. Future ticks are suppressed.
        A tick already in flight runs to completion.
        """
        with self._state_lock:
            if not self._is_running:
                return
            self._is_running = False
            self._stop_event.set()
            self._timer_thread = None
        _LOG.info("Event indexer stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the indexer is stopped or the timeout expires.

        :param timeout: Timeout in seconds. None waits indefinitely.
        :return: True if the indexer was stopped.
        """
        return self._stop_event.wait(timeout)

    def resync_from_block(self, from_block: int) -> int:
        """
        Rewrite the checkpoint to from_block - 1 and scan synchronously to the chain head.
        Only valid while the indexer is stopped.
        Waits for a tick still in flight after stop() to finish.

        :param from_block: The first block to rescan.
        :return: The number of events applied.
        """
        if from_block < 0:
            raise ValueError("from_block must not be negative")
        if self.is_running:
            raise IndexerRunningError("Cannot resync while indexer is running")

        _LOG.info("Starting manual resync from block %s", from_block)
        with self._tick_lock:
            self.checkpoint_store.set(from_block - 1)
            with self._state_lock:
                self._last_processed_block = from_block - 1
            n_events = self._scan_to_head()
        _LOG.info("Manual resync completed, %s events applied", n_events)
        return n_events

    def scan_events(self) -> int:
        """
        Scan synchronously from the checkpoint to the chain head.
        Errors propagate; the checkpoint is only advanced past fully applied batches.

        :return: The number of events applied.
        """
        with self._tick_lock:
            return self._scan_to_head()

    def process_batch(self, scan_range: ScanRange) -> int:
        """
        Fetch, decode, merge and apply all events of a block window.
        Does not advance the checkpoint.

        :param scan_range: The inclusive block window.
        :return: The number of events applied.
        """
        try:
            fetched = self.fetcher.fetch_batch(self.contracts, scan_range)
            events = merge_events(self.decoder.decode_logs(logs) for _, logs in fetched)
            _LOG.debug(
                "Processing %s events in blocks %s",
                len(events),
                scan_range,
            )
            return self.applier.apply_all(events)
        except Exception as e:  # pylint: disable=broad-except
            _LOG.error("Error processing blocks %s: %s", scan_range, e)
            raise

    def _scan_to_head(self) -> int:
        if self._last_processed_block is None:
            self.initialize()
        checkpoint = self._last_processed_block
        chain_head = self.fetcher.get_latest_block_number()
        if checkpoint + 1 > chain_head:
            _LOG.debug("No new blocks to process")
            self.checkpoint_store.heartbeat()
            return 0

        _LOG.info(
            "Scanning blocks [%s, %s], %s blocks to process",
            checkpoint + 1,
            chain_head,
            chain_head - checkpoint,
        )
        n_events = 0
        for scan_range in plan_ranges(
            checkpoint, chain_head, self.batch_size, self.max_batches_per_tick
        ):
            n_batch_events = self.process_batch(scan_range)
            # The checkpoint only advances after the batch is fully applied.
            self.checkpoint_store.set(scan_range.to_block)
            with self._state_lock:
                self._last_processed_block = scan_range.to_block
                self._total_events_processed += n_batch_events
            n_events += n_batch_events

        self.checkpoint_store.heartbeat()
        status = self.get_status()
        _LOG.info(
            "Event scan completed at block %s, %s events processed in total",
            status.last_processed_block,
            status.total_events_processed,
        )
        return n_events

    def _tick(self, blocking: bool = False) -> bool:
        """
        Run one scheduled scan. Errors are logged and never escape,
        so a failed batch does not kill the timer.

        :param blocking: If True, wait for a scan in progress instead of skipping.
        :return: True if the scan completed.
        """
        if not self._tick_lock.acquire(blocking=blocking):
            with self._state_lock:
                self._ticks_skipped += 1
            _LOG.warning("Previous tick still in progress, skipping this tick")
            return False
        try:
            self._scan_to_head()
            with self._state_lock:
                self._last_tick_error = None
            return True
        except Exception as e:  # pylint: disable=broad-except
            with self._state_lock:
                self._last_tick_error = str(e)
                last_block = self._last_processed_block
            _LOG.error(
                "Tick failed after block %s, the range will be retried: %s",
                last_block,
                e,
            )
            return False
        finally:
            self._tick_lock.release()

    def _run_timer(self, stop_event: threading.Event):
        while not stop_event.wait(self.scan_interval_seconds):
            self._tick()
