"""
Canonical domain events produced by the event decoder.
Each event kind carries only the fields relevant to it,
so projection handlers never re-validate optional payload fields.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Optional, Tuple


@dataclass(frozen=True)
class DomainEvent:
    """
    Fields shared by all events: the affected name hash
    and the on-chain position of the log that produced the event.
    """

    event_name: ClassVar[str] = "Unknown"

    name_hash: str
    contract_address: str
    block_number: int
    transaction_hash: str
    transaction_index: int
    log_index: int
    raw_args: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def position(self) -> Tuple[int, int, int]:
        """
        The on-chain order key: (block, transaction index, log index).
        """
        return self.block_number, self.transaction_index, self.log_index

    def audit_fields(self) -> dict:
        """
        Optional columns of the raw event record populated by this event kind.
        """
        return {}


@dataclass(frozen=True)
class NameRegistered(DomainEvent):
    """A name was registered with its plaintext, owner, resolver and expiry."""

    event_name: ClassVar[str] = "NameRegistered"

    name: str = ""
    owner: str = ""
    resolver: Optional[str] = None
    expiration: int = 0

    def audit_fields(self) -> dict:
        return {
            "name": self.name,
            "owner": self.owner,
            "resolver": self.resolver,
            "expiration": self.expiration,
        }


@dataclass(frozen=True)
class NameRenewed(DomainEvent):
    """A name's expiry was extended."""

    event_name: ClassVar[str] = "NameRenewed"

    expiration: int = 0

    def audit_fields(self) -> dict:
        return {"expiration": self.expiration}


@dataclass(frozen=True)
class OwnershipTransferred(DomainEvent):
    """Registry-level ownership change."""

    event_name: ClassVar[str] = "OwnershipTransferred"

    previous_owner: str = ""
    new_owner: str = ""

    def audit_fields(self) -> dict:
        return {"owner": self.new_owner}


@dataclass(frozen=True)
class ResolverUpdated(DomainEvent):
    """The resolver contract of a name changed."""

    event_name: ClassVar[str] = "ResolverUpdated"

    resolver: str = ""

    def audit_fields(self) -> dict:
        return {"resolver": self.resolver}


@dataclass(frozen=True)
class Transfer(DomainEvent):
    """
    Ownership-token transfer.
    Mints come from the zero address and burns go to it.
    """

    event_name: ClassVar[str] = "Transfer"

    from_address: str = ""
    to_address: str = ""
    token_id: int = 0
    is_mint: bool = False
    is_burn: bool = False

    def audit_fields(self) -> dict:
        return {"owner": self.to_address}


@dataclass(frozen=True)
class TextChanged(DomainEvent):
    """A text record of a name was set."""

    event_name: ClassVar[str] = "TextChanged"

    key: str = ""
    value: str = ""


@dataclass(frozen=True)
class AddressChanged(DomainEvent):
    """A per-coin address record of a name was set."""

    event_name: ClassVar[str] = "AddressChanged"

    coin_type: int = 0
    address: str = ""
