"""
Merging of per-contract event streams into a single causal order.
"""

from itertools import chain
from typing import Iterable, List

from pnsindex.core.events import DomainEvent


def event_sort_key(event: DomainEvent):
    """
    On-chain order key: block number, then transaction index, then log index.
    """
    return event.position


def merge_events(event_streams: Iterable[Iterable[DomainEvent]]) -> List[DomainEvent]:
    """
    Concatenate decoded events from all contracts of a batch and sort them
    into on-chain order. The applied order depends only on this sort,
    never on the order in which contracts were fetched.

    :param event_streams: The per-contract decoded event sequences.
    :return: The merged events.
    """
    return sorted(chain.from_iterable(event_streams), key=event_sort_key)
