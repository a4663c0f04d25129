"""
Indexer configuration.
Settings are usually loaded from environment variables or a .env file.
"""

import logging
import os
import pprint
from dataclasses import dataclass
from typing import List, Optional, Union

from dotenv import load_dotenv

from pnsindex.utils.error_utils import check_for_missing_env_vars, get_bool_env_value
from pnsindex.utils.log import get_default_logger
from pnsindex.utils.mongo_utils import MongoUtils


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Contract roles, listed in fetch priority order.
# The registry carries the authoritative plaintext registration event
# and is fetched first; resolver record updates are fetched last.
REGISTRY = "registry"
DOMAIN_NFT = "domain_nft"
RESOLVER = "resolver"

_ABI_FILE_NAMES = {
    REGISTRY: "PNSRegistry.json",
    DOMAIN_NFT: "DomainNFT.json",
    RESOLVER: "PNSResolver.json",
}

_FETCH_PRIORITY = {
    REGISTRY: 0,
    DOMAIN_NFT: 1,
    RESOLVER: 2,
}

# Deployment record names of the contracts, used for MongoDB address resolution.
_DEPLOYMENT_NAMES = {
    "registry_address": "PNSRegistry",
    "resolver_address": "PNSResolver",
    "domain_nft_address": "DomainNFT",
}


@dataclass(frozen=True)
class MonitoredContract:
    """
    A contract whose events feed the projection.
    """

    role: str
    address: str
    abi_file_name: str
    priority: int


# pylint: disable=too-many-instance-attributes
@dataclass
class IndexerConfig:
    """
    Configuration of the event indexer.

    Attributes:
        node_rpc_url: Node RPC URL.
        database_url: SQLAlchemy URL of the projection database.
        registry_address: Registry contract address.
        resolver_address: Public resolver contract address.
        domain_nft_address: Domain ownership token contract address.
        redis_url: Optional Redis URL for the shared domain cache.
        scan_interval_seconds: Delay between scheduled ticks.
        batch_size: Blocks per batch. A checkpoint is written after every batch.
        log_chunk_size: Maximum blocks per eth_getLogs call.
        min_log_chunk_size: Floor for chunk halving on provider size errors.
        max_retries: Retries after the first failed RPC attempt.
        retry_delay: Initial retry delay in seconds, doubled on every retry.
        inter_contract_delay: Pause between per-contract fetches in seconds.
        inter_chunk_delay: Pause between consecutive chunk fetches in seconds.
        deployment_block: Checkpoint used when none has been stored.
        max_batches_per_tick: Optional bound on batches per tick.
            None scans until the chain head.
        enforce_monotonic_writes: Ignore projection writes older than the stored row.
        inject_geth_poa_middleware: Required by Polygon PoS and other PoA chains.
    """

    node_rpc_url: str
    database_url: str
    registry_address: str
    resolver_address: str
    domain_nft_address: str
    redis_url: Optional[str] = None
    scan_interval_seconds: float = 30.0
    batch_size: int = 5
    log_chunk_size: int = 2000
    min_log_chunk_size: int = 100
    max_retries: int = 3
    retry_delay: float = 1.0
    inter_contract_delay: float = 0.25
    inter_chunk_delay: float = 0.1
    deployment_block: int = 0
    max_batches_per_tick: Optional[int] = None
    enforce_monotonic_writes: bool = True
    inject_geth_poa_middleware: bool = False

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be positive")
        if self.log_chunk_size < 1:
            raise ValueError("log_chunk_size must be positive")
        if self.min_log_chunk_size < 1 or self.min_log_chunk_size > self.log_chunk_size:
            raise ValueError("min_log_chunk_size must be in [1, log_chunk_size]")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.deployment_block < 0:
            raise ValueError("deployment_block must not be negative")

    def monitored_contracts(self) -> List[MonitoredContract]:
        """
        Return the monitored contracts in fetch priority order.

        :return: The list of monitored contracts.
        """
        addresses = {
            REGISTRY: self.registry_address,
            DOMAIN_NFT: self.domain_nft_address,
            RESOLVER: self.resolver_address,
        }
        contracts = [
            MonitoredContract(
                role=role,
                address=address,
                abi_file_name=_ABI_FILE_NAMES[role],
                priority=_FETCH_PRIORITY[role],
            )
            for role, address in addresses.items()
        ]
        return sorted(contracts, key=lambda c: c.priority)

    @staticmethod
    def get_init_args_from_env(dotenv_path: Union[str, None] = None) -> dict:
        """
        Worker function to load the environment variables.

        :param dotenv_path: The .env file path, if any.
        :return: The dictionary of construction arguments.
        """
        # Load .env file if it exists.
        if dotenv_path:
            load_dotenv(dotenv_path, verbose=True, override=True)
        required_args = {
            "node_rpc_url": os.getenv("PNS_NODE_RPC_URL"),
            "database_url": os.getenv("PNS_DATABASE_URL"),
            "registry_address": os.getenv("PNS_REGISTRY_ADDRESS"),
            "resolver_address": os.getenv("PNS_RESOLVER_ADDRESS"),
            "domain_nft_address": os.getenv("PNS_DOMAIN_NFT_ADDRESS"),
        }
        # Unset contract addresses may be resolved from the deployment records.
        network = os.getenv("PNS_ADDRESS_NETWORK")
        missing_addresses = [k for k in _DEPLOYMENT_NAMES if not required_args[k]]
        if network and missing_addresses:
            addresses = MongoUtils(dotenv_path).get_contract_addresses(
                network, [_DEPLOYMENT_NAMES[k] for k in missing_addresses]
            )
            for k in missing_addresses:
                required_args[k] = addresses[_DEPLOYMENT_NAMES[k]]
        # Check for missing environment variables since these are unrecoverable.
        check_for_missing_env_vars(required_args)

        init_args = dict(required_args)
        init_args["redis_url"] = os.getenv("PNS_REDIS_URL") or None
        numeric_vars = {
            "scan_interval_seconds": ("PNS_INDEXER_SCAN_INTERVAL_SECONDS", float),
            "batch_size": ("PNS_INDEXER_BATCH_SIZE", int),
            "log_chunk_size": ("PNS_INDEXER_LOG_CHUNK_SIZE", int),
            "min_log_chunk_size": ("PNS_INDEXER_MIN_LOG_CHUNK_SIZE", int),
            "max_retries": ("PNS_INDEXER_MAX_RETRIES", int),
            "retry_delay": ("PNS_INDEXER_RETRY_DELAY", float),
            "inter_contract_delay": ("PNS_INDEXER_INTER_CONTRACT_DELAY", float),
            "inter_chunk_delay": ("PNS_INDEXER_INTER_CHUNK_DELAY", float),
            "deployment_block": ("PNS_DEPLOYMENT_BLOCK", int),
            "max_batches_per_tick": ("PNS_INDEXER_MAX_BATCHES_PER_TICK", int),
        }
        for arg_name, (var_name, convert) in numeric_vars.items():
            val = os.getenv(var_name)
            if val is not None and val.strip() != "":
                init_args[arg_name] = convert(val)
        init_args["enforce_monotonic_writes"] = get_bool_env_value(
            os.getenv("PNS_INDEXER_ENFORCE_MONOTONIC_WRITES"), default=True
        )
        init_args["inject_geth_poa_middleware"] = get_bool_env_value(
            os.getenv("PNS_INJECT_GETH_POA_MIDDLEWARE"), default=False
        )
        _LOG.debug(
            "IndexerConfig.get_init_args_from_env(): init_args =\n%s",
            pprint.pformat(
                {k: v for k, v in init_args.items() if k not in ("database_url", "redis_url")}
            ),
        )
        return init_args

    @staticmethod
    def create_instance_from_env(dotenv_path: Union[str, None] = None) -> "IndexerConfig":
        """
        Creates an instance initialized from environment variables.

        :param dotenv_path: Path to the .env file.
            If path is not specified, does not load the .env file.
        :return: The configuration object.
        """
        return IndexerConfig(**IndexerConfig.get_init_args_from_env(dotenv_path))
