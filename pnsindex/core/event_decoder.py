"""
Decoding of raw contract logs into canonical domain events.
"""

import logging
from typing import Callable, Dict, List, Optional

from beeprint import pp
from hexbytes import HexBytes
from web3 import Web3

from pnsindex.core.abi_utils import get_event_topics, load_contract_abi
from pnsindex.core.config import DOMAIN_NFT, REGISTRY, RESOLVER, MonitoredContract
from pnsindex.core.events import (
    AddressChanged,
    DomainEvent,
    NameRegistered,
    NameRenewed,
    OwnershipTransferred,
    ResolverUpdated,
    TextChanged,
    Transfer,
)
from pnsindex.utils.crypto_utils import (
    bytes_to_hex_str,
    is_zero_address,
    normalize_address,
    uint256_to_hash,
)
from pnsindex.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


# Coin types are stored as signed 64-bit integers.
_MAX_COIN_TYPE = 2**63 - 1


def _to_jsonable(value):
    """
    Convert decoded event arguments to JSON-serializable values.
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes_to_hex_str(value)
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def _normalize_log(log) -> dict:
    """
    Coerce topics and data to bytes, as some providers return hex strings.
    """
    normalized = dict(log)
    normalized["topics"] = [HexBytes(t) for t in log["topics"]]
    normalized["data"] = HexBytes(log.get("data") or b"")
    return normalized


def _common_fields(log, args: dict, name_hash: str) -> dict:
    return {
        "name_hash": name_hash,
        "contract_address": normalize_address(log["address"]),
        "block_number": int(log["blockNumber"]),
        "transaction_hash": bytes_to_hex_str(log["transactionHash"]),
        "transaction_index": int(log.get("transactionIndex") or 0),
        "log_index": int(log["logIndex"]),
        "raw_args": _to_jsonable(dict(args)),
    }


def _build_name_registered(log, args) -> NameRegistered:
    return NameRegistered(
        **_common_fields(log, args, bytes_to_hex_str(args["nameHash"])),
        name=args["name"],
        owner=normalize_address(args["owner"]),
        resolver=normalize_address(args["resolver"]),
        expiration=int(args["expiration"]),
    )


def _build_name_renewed(log, args) -> NameRenewed:
    return NameRenewed(
        **_common_fields(log, args, bytes_to_hex_str(args["nameHash"])),
        expiration=int(args["newExpiration"]),
    )


def _build_ownership_transferred(log, args) -> OwnershipTransferred:
    return OwnershipTransferred(
        **_common_fields(log, args, bytes_to_hex_str(args["nameHash"])),
        previous_owner=normalize_address(args["previousOwner"]),
        new_owner=normalize_address(args["newOwner"]),
    )


def _build_resolver_updated(log, args) -> ResolverUpdated:
    return ResolverUpdated(
        **_common_fields(log, args, bytes_to_hex_str(args["nameHash"])),
        resolver=normalize_address(args["newResolver"]),
    )


def _build_transfer(log, args) -> Transfer:
    from_address = normalize_address(args["from"])
    to_address = normalize_address(args["to"])
    # Token ids are name hashes interpreted as uint256.
    token_id = int(args["tokenId"])
    return Transfer(
        **_common_fields(log, args, uint256_to_hash(token_id)),
        from_address=from_address,
        to_address=to_address,
        token_id=token_id,
        is_mint=is_zero_address(from_address),
        is_burn=is_zero_address(to_address),
    )


def _build_text_changed(log, args) -> TextChanged:
    return TextChanged(
        **_common_fields(log, args, bytes_to_hex_str(args["node"])),
        key=args["key"],
        value=args["value"],
    )


def _build_address_changed(log, args) -> AddressChanged:
    coin_type = int(args["coinType"])
    if coin_type > _MAX_COIN_TYPE:
        raise ValueError(f"Unsupported coin type {coin_type}")
    return AddressChanged(
        **_common_fields(log, args, bytes_to_hex_str(args["node"])),
        coin_type=coin_type,
        address=bytes_to_hex_str(args["newAddress"]),
    )


# Event builders keyed by contract role and event name.
_BUILDERS: Dict[str, Dict[str, Callable]] = {
    REGISTRY: {
        "NameRegistered": _build_name_registered,
        "NameRenewed": _build_name_renewed,
        "OwnershipTransferred": _build_ownership_transferred,
        "ResolverUpdated": _build_resolver_updated,
    },
    DOMAIN_NFT: {
        "Transfer": _build_transfer,
    },
    RESOLVER: {
        "TextChanged": _build_text_changed,
        "AddressChanged": _build_address_changed,
    },
}


class EventDecoder:
    """
    Maps a raw log and its source contract to a canonical domain event.
    Logs from unknown addresses or with unknown topics are dropped.
    """

    def __init__(self, contracts: List[MonitoredContract], w3: Optional[Web3] = None):
        """
        Initialize the decoder.

        :param contracts: The monitored contracts.
        :param w3: The Web3 object whose codec decodes logs.
            Decoding does not require a node connection.
        """
        self.w3 = w3 if w3 is not None else Web3()
        self.contracts = {normalize_address(c.address): c for c in contracts}
        self._topics = {}
        self._event_contracts = {}
        for address, c in self.contracts.items():
            self._topics[address] = get_event_topics(c.abi_file_name)
            self._event_contracts[address] = self.w3.eth.contract(
                abi=list(load_contract_abi(c.abi_file_name))
            )

    def decode(self, log) -> Optional[DomainEvent]:
        """
        Decode a single raw log.

        :param log: The raw log returned by eth_getLogs.
        :return: The domain event, or None if the log is unknown or malformed.
        """
        address = normalize_address(log.get("address"))
        contract = self.contracts.get(address)
        topics = log.get("topics") or []
        if contract is None or len(topics) == 0:
            _LOG.debug(
                "Dropping log from unmonitored address %s in tx %s",
                address,
                log.get("transactionHash"),
            )
            return None

        topic0 = bytes_to_hex_str(topics[0])
        event_name = self._topics[address].get(topic0)
        builder = _BUILDERS.get(contract.role, {}).get(event_name)
        if builder is None:
            _LOG.debug(
                "Dropping log with unknown topic %s from %s %s",
                topic0,
                contract.role,
                address,
            )
            return None

        try:
            event_data = getattr(
                self._event_contracts[address].events, event_name
            )().process_log(_normalize_log(log))
            return builder(log, event_data["args"])
        except Exception as e:  # pylint: disable=broad-except
            # A malformed log must never block the rest of the batch.
            _LOG.warning(
                "Skipping malformed %s log at block %s (tx %s, log %s): %s",
                event_name,
                log.get("blockNumber"),
                log.get("transactionHash"),
                log.get("logIndex"),
                e,
            )
            _LOG.debug(pp(dict(log), output=False))
            return None

    def decode_logs(self, logs) -> List[DomainEvent]:
        """
        Decode a sequence of raw logs, dropping unknown and malformed ones.

        :param logs: The raw logs.
        :return: The decoded events in input order.
        """
        events = []
        for log in logs:
            event = self.decode(log)
            if event is not None:
                events.append(event)
        return events
