"""
Loading of monitored contract event ABIs.
"""

import json
import os
from functools import lru_cache
from typing import Dict, List

from web3 import Web3

_ABI_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "abi")


@lru_cache(maxsize=None)
def load_contract_abi(abi_file_name: str) -> tuple:
    """
    Load a contract ABI shipped with the package.
    Accepts both a bare ABI array and a build artifact with an "abi" key.

    :param abi_file_name: The ABI file name in the package abi directory.
    :return: The ABI entries.
    """
    with open(os.path.join(_ABI_DIR, abi_file_name), encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]
    if not isinstance(data, list):
        raise ValueError(f"Invalid ABI format in {abi_file_name}")
    # Cached values must not be mutated by callers.
    return tuple(data)


def event_signature(event_abi: dict) -> str:
    """
    Canonical event signature, such as "NameRenewed(bytes32,uint64)".

    :param event_abi: The event ABI entry.
    :return: The signature string.
    """
    arg_types = ",".join(arg["type"] for arg in event_abi["inputs"])
    return f"{event_abi['name']}({arg_types})"


def event_topic(event_abi: dict) -> str:
    """
    The topic0 hash identifying logs of an event.

    :param event_abi: The event ABI entry.
    :return: The 0x-prefixed lower-case topic hash.
    """
    return Web3.to_hex(Web3.keccak(text=event_signature(event_abi))).lower()


def get_event_abis(abi_file_name: str) -> List[dict]:
    """
    Return the event entries of a contract ABI.

    :param abi_file_name: The ABI file name in the package abi directory.
    :return: The list of event ABI entries.
    """
    return [e for e in load_contract_abi(abi_file_name) if e.get("type") == "event"]


def get_event_topics(abi_file_name: str) -> Dict[str, str]:
    """
    Map topic0 hashes to event names for a contract.

    :param abi_file_name: The ABI file name in the package abi directory.
    :return: The dictionary of topic hash to event name.
    """
    return {event_topic(e): e["name"] for e in get_event_abis(abi_file_name)}
