"""
Test utils: in-memory databases, synthetic ABI-encoded logs and a fake chain
"""

from typing import List, Optional

from eth_abi import encode
from hexbytes import HexBytes
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine
from web3 import Web3

from pnsindex.core.abi_utils import event_topic, get_event_abis
from pnsindex.core.config import IndexerConfig, MonitoredContract
from pnsindex.core.events import (
    AddressChanged,
    NameRegistered,
    NameRenewed,
    OwnershipTransferred,
    ResolverUpdated,
    TextChanged,
    Transfer,
)
from pnsindex.core.projection_store import SQLProjectionStore
from pnsindex.utils.crypto_utils import ZERO_ADDRESS, namehash, uint256_to_hash

REGISTRY_ADDRESS = "0x" + "11" * 20
DOMAIN_NFT_ADDRESS = "0x" + "22" * 20
RESOLVER_ADDRESS = "0x" + "33" * 20

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c0" * 20
RESOLVER_2 = "0x" + "44" * 20

ALICE_NAME = "alice.poly"
ALICE_HASH = namehash(ALICE_NAME)


def create_test_engine():
    """
    Create an in-memory SQLite engine with all tables.
    StaticPool shares the single connection across threads and sessions.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLProjectionStore(engine).create_tables()
    return engine


def create_test_config(**kwargs) -> IndexerConfig:
    args = {
        "node_rpc_url": "http://127.0.0.1:8545/",
        "database_url": "sqlite://",
        "registry_address": REGISTRY_ADDRESS,
        "resolver_address": RESOLVER_ADDRESS,
        "domain_nft_address": DOMAIN_NFT_ADDRESS,
    }
    args.update(kwargs)
    return IndexerConfig(**args)


def create_test_contracts() -> List[MonitoredContract]:
    return create_test_config().monitored_contracts()


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def _encode_topic(arg_type: str, value) -> HexBytes:
    if arg_type == "string":
        return HexBytes(Web3.keccak(text=value))
    return HexBytes(encode([arg_type], [value]))


# pylint: disable-msg=too-many-arguments
def make_log(
    address: str,
    abi_file_name: str,
    event_name: str,
    args: dict,
    block_number: int,
    transaction_index: int = 0,
    log_index: int = 0,
    transaction_hash: Optional[str] = None,
) -> dict:
    """
    Build a raw log as returned by eth_getLogs for an event of a packaged ABI.

    :param args: Event arguments keyed by ABI input name.
        Indexed strings are hashed into their topic.
    """
    event_abi = [e for e in get_event_abis(abi_file_name) if e["name"] == event_name][0]
    topics = [HexBytes(event_topic(event_abi))]
    data_types = []
    data_values = []
    for arg in event_abi["inputs"]:
        if arg["indexed"]:
            topics.append(_encode_topic(arg["type"], args[arg["name"]]))
        else:
            data_types.append(arg["type"])
            data_values.append(args[arg["name"]])
    if transaction_hash is None:
        transaction_hash = tx_hash(block_number * 1000 + transaction_index * 10 + log_index)
    return {
        "address": Web3.to_checksum_address(address),
        "topics": topics,
        "data": HexBytes(encode(data_types, data_values)),
        "blockNumber": block_number,
        "blockHash": HexBytes(tx_hash(block_number)),
        "transactionHash": HexBytes(transaction_hash),
        "transactionIndex": transaction_index,
        "logIndex": log_index,
        "removed": False,
    }


def registered_log(name, owner, block_number, expiration=2000000000, **kwargs) -> dict:
    return make_log(
        REGISTRY_ADDRESS,
        "PNSRegistry.json",
        "NameRegistered",
        {
            "nameHash": HexBytes(namehash(name)),
            "name": name,
            "owner": owner,
            "resolver": RESOLVER_ADDRESS,
            "expiration": expiration,
        },
        block_number,
        **kwargs,
    )


def transfer_log(from_address, to_address, name, block_number, **kwargs) -> dict:
    return make_log(
        DOMAIN_NFT_ADDRESS,
        "DomainNFT.json",
        "Transfer",
        {
            "from": from_address,
            "to": to_address,
            "tokenId": int(namehash(name), 16),
        },
        block_number,
        **kwargs,
    )


def text_changed_log(name, key, value, block_number, **kwargs) -> dict:
    return make_log(
        RESOLVER_ADDRESS,
        "PNSResolver.json",
        "TextChanged",
        {
            "node": HexBytes(namehash(name)),
            "indexedKey": key,
            "key": key,
            "value": value,
        },
        block_number,
        **kwargs,
    )


class FakeChain:
    """
    Serves eth_getLogs from a fixed list of raw logs.
    """

    def __init__(self, logs: List[dict], head: int):
        self.logs = logs
        self.head = head
        self.calls = []

    def get_logs(self, filter_params: dict) -> list:
        self.calls.append(filter_params)
        address = filter_params["address"].lower()
        topics = {t.lower() for t in filter_params["topics"][0]}
        return [
            log
            for log in self.logs
            if log["address"].lower() == address
            and filter_params["fromBlock"] <= log["blockNumber"] <= filter_params["toBlock"]
            and Web3.to_hex(log["topics"][0]).lower() in topics
        ]


def _position(block_number, transaction_index, log_index) -> dict:
    return {
        "block_number": block_number,
        "transaction_index": transaction_index,
        "log_index": log_index,
        "transaction_hash": tx_hash(block_number * 1000 + transaction_index * 10 + log_index),
    }


def name_registered(
    name=ALICE_NAME, owner=ALICE, block_number=100, transaction_index=0, log_index=0
) -> NameRegistered:
    return NameRegistered(
        name_hash=namehash(name),
        contract_address=REGISTRY_ADDRESS,
        name=name,
        owner=owner,
        resolver=RESOLVER_ADDRESS,
        expiration=2000000000,
        **_position(block_number, transaction_index, log_index),
    )


def name_renewed(expiration, block_number, name_hash=ALICE_HASH, log_index=0) -> NameRenewed:
    return NameRenewed(
        name_hash=name_hash,
        contract_address=REGISTRY_ADDRESS,
        expiration=expiration,
        **_position(block_number, 0, log_index),
    )


def ownership_transferred(
    previous_owner, new_owner, block_number, name_hash=ALICE_HASH, log_index=0
) -> OwnershipTransferred:
    return OwnershipTransferred(
        name_hash=name_hash,
        contract_address=REGISTRY_ADDRESS,
        previous_owner=previous_owner,
        new_owner=new_owner,
        **_position(block_number, 0, log_index),
    )


def resolver_updated(resolver, block_number, name_hash=ALICE_HASH, log_index=0) -> ResolverUpdated:
    return ResolverUpdated(
        name_hash=name_hash,
        contract_address=REGISTRY_ADDRESS,
        resolver=resolver,
        **_position(block_number, 0, log_index),
    )


def transfer(
    from_address, to_address, block_number, name_hash=ALICE_HASH, transaction_index=0, log_index=0
) -> Transfer:
    token_id = int(name_hash, 16)
    return Transfer(
        name_hash=uint256_to_hash(token_id),
        contract_address=DOMAIN_NFT_ADDRESS,
        from_address=from_address,
        to_address=to_address,
        token_id=token_id,
        is_mint=from_address == ZERO_ADDRESS,
        is_burn=to_address == ZERO_ADDRESS,
        **_position(block_number, transaction_index, log_index),
    )


def text_changed(key, value, block_number, name_hash=ALICE_HASH, log_index=0) -> TextChanged:
    return TextChanged(
        name_hash=name_hash,
        contract_address=RESOLVER_ADDRESS,
        key=key,
        value=value,
        **_position(block_number, 0, log_index),
    )


def address_changed(coin_type, address, block_number, name_hash=ALICE_HASH, log_index=0) -> AddressChanged:
    return AddressChanged(
        name_hash=name_hash,
        contract_address=RESOLVER_ADDRESS,
        coin_type=coin_type,
        address=address,
        **_position(block_number, 0, log_index),
    )
