"""
Timestamp helpers.
Ethereum and Web3 use UTC as the time zone.
"""

from typing import Optional

import pandas as pd


def now_ms() -> int:
    """
    Current UTC time in milliseconds since epoch.
    """
    return int(pd.Timestamp.now(tz="UTC").value // 1_000_000)


def ms_to_timestamp(ms: int) -> pd.Timestamp:
    """
    Convert milliseconds since epoch to a UTC pandas timestamp.
    """
    return pd.Timestamp(int(ms), unit="ms", tz="UTC")


def convert_timestamp_chain_to_str(ts: Optional[int]) -> Optional[str]:
    """
    Convert a chain timestamp in seconds, such as a name expiration,
    to the string representation of a pandas timestamp.

    :param ts: The chain timestamp.
    :return: The timestamp string or None.
    """
    if ts is None:
        return None
    return str(pd.Timestamp(int(ts), unit="s", tz="UTC"))
