"""pnsindex

An event indexer that projects the PNS name registry contracts into SQL tables
"""

from pnsindex.core.checkpoint_store import (
    CheckpointStore,
    InMemoryCheckpointStore,
    SQLCheckpointStore,
)
from pnsindex.core.config import IndexerConfig, MonitoredContract
from pnsindex.core.domain_cache import DomainCache, LocalDomainCache, RedisDomainCache
from pnsindex.core.errors import (
    CheckpointError,
    IndexerError,
    IndexerRunningError,
    IndexingStaleError,
    LogFetchError,
    ProjectionWriteError,
)
from pnsindex.core.event_decoder import EventDecoder
from pnsindex.core.event_indexer import EventIndexer, IndexerStatus
from pnsindex.core.event_merger import merge_events
from pnsindex.core.log_fetcher import ContractLogFetcher, create_web3
from pnsindex.core.outbox import DomainOutboxPublisher
from pnsindex.core.projection_applier import ProjectionApplier
from pnsindex.core.projection_store import SQLProjectionStore
from pnsindex.core.range_planner import ScanRange, plan_ranges
from pnsindex.core.sql_query_service import SQLDomainQueryService
from pnsindex.utils.crypto_utils import namehash
from pnsindex.utils.log import get_default_logger

__all__ = [
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLCheckpointStore",
    "IndexerConfig",
    "MonitoredContract",
    "DomainCache",
    "LocalDomainCache",
    "RedisDomainCache",
    "CheckpointError",
    "IndexerError",
    "IndexerRunningError",
    "IndexingStaleError",
    "LogFetchError",
    "ProjectionWriteError",
    "EventDecoder",
    "EventIndexer",
    "IndexerStatus",
    "merge_events",
    "ContractLogFetcher",
    "create_web3",
    "DomainOutboxPublisher",
    "ProjectionApplier",
    "SQLProjectionStore",
    "ScanRange",
    "plan_ranges",
    "SQLDomainQueryService",
    "namehash",
    "get_default_logger",
]
