"""
Application of ordered domain events to the projection.
Each event is first appended to the audit log, then dispatched by kind
to an idempotent projection write, followed by cache invalidation.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from pnsindex.core.domain_cache import DomainCache
from pnsindex.core.errors import ProjectionWriteError
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
from pnsindex.core.outbox import DomainOutboxPublisher
from pnsindex.core.projection_store import ProjectionStore
from pnsindex.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


class ProjectionApplier:
    """
    Type-dispatching state machine over the projection tables.
    """

    def __init__(
        self,
        store: ProjectionStore,
        cache: Optional[DomainCache] = None,
        outbox: Optional[DomainOutboxPublisher] = None,
    ):
        """
        Initialize the applier.

        :param store: The projection store.
        :param cache: The domain cache to invalidate, if any.
        :param outbox: The publisher notifying secondary consumers of
            registrations, if any.
        """
        self.store = store
        self.cache = cache
        self.outbox = outbox
        self._handlers = {
            NameRegistered: self._handle_name_registered,
            NameRenewed: self._handle_name_renewed,
            OwnershipTransferred: self._handle_ownership_transferred,
            ResolverUpdated: self._handle_resolver_updated,
            Transfer: self._handle_transfer,
            TextChanged: self._handle_text_changed,
            AddressChanged: self._handle_address_changed,
        }

    def apply(self, event: DomainEvent) -> bool:
        """
        Apply a single event.
        Store failures propagate as ProjectionWriteError so that the tick aborts
        and the whole batch is reprocessed.

        :param event: The event.
        :return: True if the projection changed.
        """
        try:
            self.store.record_event(event)
            handler = self._handlers.get(type(event))
            if handler is None:
                _LOG.warning(
                    "Unhandled event type %s at block %s (tx %s)",
                    event.event_name,
                    event.block_number,
                    event.transaction_hash,
                )
                return False
            return handler(event)
        except SQLAlchemyError as e:
            _LOG.error(
                "Error applying %s for %s at block %s (tx %s, log %s): %s",
                event.event_name,
                event.name_hash,
                event.block_number,
                event.transaction_hash,
                event.log_index,
                e,
            )
            raise ProjectionWriteError(
                event.event_name,
                event.transaction_hash,
                event.log_index,
                event.block_number,
                e,
            ) from e

    def apply_all(self, events: Iterable[DomainEvent]) -> int:
        """
        Apply events in the given order.

        :param events: The events, already in on-chain order.
        :return: The number of events applied.
        """
        n_events = 0
        for event in events:
            self.apply(event)
            n_events += 1
        return n_events

    def _invalidate(self, name_hash: str):
        if self.cache is not None:
            self.cache.invalidate(name_hash)

    def _log_not_updated(self, event: DomainEvent):
        # Either the domain is unknown or the row holds a newer write.
        _LOG.debug(
            "%s for %s at block %s did not update any row",
            event.event_name,
            event.name_hash,
            event.block_number,
        )

    def _handle_name_registered(self, event: NameRegistered) -> bool:
        # Guard against malformed or placeholder registrations.
        if not event.name or not event.name.strip():
            _LOG.warning(
                "Dropping NameRegistered with empty name for %s at block %s (tx %s)",
                event.name_hash,
                event.block_number,
                event.transaction_hash,
            )
            return False
        written = self.store.upsert_domain(event)
        if not written:
            self._log_not_updated(event)
            return False
        self._invalidate(event.name_hash)
        _LOG.info(
            "Domain registered: %s (%s) owner %s expiration %s",
            event.name,
            event.name_hash,
            event.owner,
            event.expiration,
        )
        if self.outbox is not None:
            self.outbox.publish(
                event,
                {
                    "nameHash": event.name_hash,
                    "name": event.name,
                    "owner": event.owner,
                    "resolver": event.resolver,
                    "expiration": event.expiration,
                    "blockNumber": event.block_number,
                    "transactionHash": event.transaction_hash,
                },
            )
        return True

    def _update_domain(self, event: DomainEvent, **values) -> bool:
        written = self.store.update_domain(event, **values)
        if not written:
            self._log_not_updated(event)
            return False
        self._invalidate(event.name_hash)
        return True

    def _handle_name_renewed(self, event: NameRenewed) -> bool:
        return self._update_domain(event, expiration=event.expiration)

    def _handle_ownership_transferred(self, event: OwnershipTransferred) -> bool:
        return self._update_domain(event, owner=event.new_owner)

    def _handle_resolver_updated(self, event: ResolverUpdated) -> bool:
        return self._update_domain(event, resolver=event.resolver)

    def _handle_transfer(self, event: Transfer) -> bool:
        if event.is_mint:
            # The registration event already establishes ownership.
            _LOG.debug(
                "Skipping mint transfer of %s at block %s", event.name_hash, event.block_number
            )
            return False
        # Burns keep the row and set the owner to the zero address.
        return self._update_domain(event, owner=event.to_address)

    def _handle_text_changed(self, event: TextChanged) -> bool:
        written = self.store.upsert_text_record(event)
        if not written:
            self._log_not_updated(event)
            return False
        self._invalidate(event.name_hash)
        return True

    def _handle_address_changed(self, event: AddressChanged) -> bool:
        written = self.store.upsert_address_record(event)
        if not written:
            self._log_not_updated(event)
            return False
        self._invalidate(event.name_hash)
        return True
