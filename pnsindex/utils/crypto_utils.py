"""
Common hashing and hex utility functions for name registry data
"""

from typing import Union

from eth_utils import add_0x_prefix
from hexbytes import HexBytes
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "00" * 32

# Top-level domain appended to bare labels.
POLY_TLD = ".poly"


def bytes_to_hex_str(byte_arr: Union[bytes, str]) -> str:
    """
    Convert a byte array to a lower-case 0x-prefixed hex string.
    Some APIs may return byte arrays as bytes, HexBytes, or a string,
    depending on the nodes and paths they use.

    :param byte_arr: The byte array to convert.
    :return: The resulting hex string.
    """
    if isinstance(byte_arr, (bytes, bytearray)):
        # HexBytes.hex() may or may not carry the 0x prefix
        # depending on the hexbytes version.
        hex_str = bytes(byte_arr).hex()
    else:
        hex_str = str(byte_arr)
    return add_0x_prefix(hex_str).lower()


def uint256_to_hash(n: int) -> str:
    """
    Render a uint256 as a 32-byte hash string.
    NFT token ids are name hashes interpreted as uint256.

    :param n: The integer.
    :return: The 0x-prefixed 64 digit hex string.
    """
    return "0x" + f"{n:064x}"


def normalize_address(address: Union[str, bytes, None]) -> Union[str, None]:
    """
    Normalize an address to the lower-case form stored in the database.

    :param address: The address, as returned by web3.
    :return: The lower-case address or None.
    """
    if address is None:
        return None
    if isinstance(address, (bytes, bytearray)):
        return bytes_to_hex_str(address)
    return str(address).lower()


def is_zero_address(address: Union[str, None]) -> bool:
    """
    Check for the zero-address sentinel used for mints and burns.

    :param address: The address to check.
    :return: True if the address is the zero address.
    """
    return address is not None and int(address, 16) == 0


def normalize_name(name: str) -> str:
    """
    Normalize a domain name before hashing.

    :param name: The raw name.
    :return: The normalized name.
    """
    return name.strip().lower()


def labelhash(label: str) -> str:
    """
    Calculate the keccak256 hash of a single label.

    :param label: The label.
    :return: The label hash.
    """
    return bytes_to_hex_str(Web3.keccak(text=label))


def namehash(name: str) -> str:
    """
    Calculate the recursive name hash of a dotted domain name.

    :param name: The domain name, such as "alice.poly".
    :return: The name hash used as primary key for all per-domain rows.
    """
    if not name or name == ".":
        return ZERO_HASH

    node = HexBytes(ZERO_HASH)
    for label in reversed(normalize_name(name).split(".")):
        node = Web3.keccak(node + HexBytes(labelhash(label)))
    return bytes_to_hex_str(node)


def get_full_domain_name(name: str) -> str:
    """
    Append the registry TLD to a bare label.

    :param name: The label or full name.
    :return: The full domain name.
    """
    normalized = normalize_name(name)
    if normalized.endswith(POLY_TLD):
        return normalized
    return f"{normalized}{POLY_TLD}"
