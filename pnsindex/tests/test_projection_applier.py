"""Test the projection applier against an in-memory database
"""

import unittest
from dataclasses import dataclass, replace
from typing import ClassVar
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from pnsindex.core.domain_cache import LocalDomainCache
from pnsindex.core.errors import ProjectionWriteError
from pnsindex.core.events import DomainEvent
from pnsindex.core.models import AddressRecord, Domain, EventLog, TextRecord
from pnsindex.core.outbox import DomainOutboxPublisher
from pnsindex.core.projection_applier import ProjectionApplier
from pnsindex.core.projection_store import SQLProjectionStore
from pnsindex.tests.utils import (
    ALICE,
    ALICE_HASH,
    BOB,
    CAROL,
    RESOLVER_2,
    address_changed,
    create_test_engine,
    name_registered,
    name_renewed,
    ownership_transferred,
    resolver_updated,
    text_changed,
    transfer,
)
from pnsindex.utils.crypto_utils import ZERO_ADDRESS, namehash

_T1 = 2000000000
_T2 = 2100000000


@dataclass(frozen=True)
class _UnsupportedEvent(DomainEvent):
    event_name: ClassVar[str] = "Unsupported"


class TestProjectionApplier(unittest.TestCase):
    """Test projection state transitions."""

    def setUp(self):
        self.engine = create_test_engine()
        self.store = SQLProjectionStore(self.engine)
        self.cache = LocalDomainCache()
        self.outbox = DomainOutboxPublisher(self.engine)
        self.applier = ProjectionApplier(self.store, self.cache, self.outbox)

    def _domain(self, name_hash=ALICE_HASH) -> Domain:
        with Session(self.engine) as session:
            return session.get(Domain, name_hash)

    def _n_event_logs(self) -> int:
        with Session(self.engine) as session:
            return len(session.exec(select(EventLog)).all())

    def _text(self, key, name_hash=ALICE_HASH):
        with Session(self.engine) as session:
            row = session.get(TextRecord, (name_hash, key))
            return None if row is None else row.value

    def test_registration_and_text_record(self):
        self.applier.apply_all(
            [
                name_registered(block_number=100),
                text_changed("avatar", "ipfs://x", 101),
            ]
        )
        domain = self._domain()
        self.assertEqual(domain.name, "alice.poly")
        self.assertEqual(domain.owner, ALICE)
        self.assertEqual(domain.expiration, _T1)
        self.assertEqual(domain.last_updated_block, 100)
        self.assertEqual(self._text("avatar"), "ipfs://x")

    def test_renewal_keeps_owner(self):
        self.applier.apply_all(
            [
                name_registered(block_number=100),
                text_changed("avatar", "ipfs://x", 101),
                name_renewed(_T2, 150),
            ]
        )
        domain = self._domain()
        self.assertEqual(domain.expiration, _T2)
        self.assertEqual(domain.owner, ALICE)
        self.assertEqual(domain.last_updated_block, 150)

    def test_replay_is_idempotent(self):
        events = [
            name_registered(block_number=100),
            transfer(ZERO_ADDRESS, ALICE, 100, log_index=1),
            text_changed("avatar", "ipfs://x", 101),
        ]
        self.applier.apply_all(events)
        first_domain = self._domain().model_dump()
        first_count = self._n_event_logs()

        # Simulated restart before the checkpoint write.
        self.applier.apply_all(events)
        self.assertEqual(self._n_event_logs(), first_count)
        self.assertEqual(self._domain().model_dump(), first_domain)
        self.assertEqual(len(self.outbox.fetch()), 1)

    def test_empty_name_is_dropped(self):
        bob_hash = namehash("bob.poly")
        event = name_registered(name="bob.poly", owner=BOB, block_number=200)
        blank = replace(event, name="  ")
        self.assertEqual(blank.name_hash, bob_hash)

        with self.assertLogs("pnsindex.core.projection_applier", level="WARNING"):
            self.assertFalse(self.applier.apply(blank))
        self.assertIsNone(self._domain(bob_hash))
        # The raw event is still recorded.
        self.assertEqual(self._n_event_logs(), 1)

    def test_mint_does_not_overwrite_registration(self):
        self.applier.apply(name_registered(block_number=100, log_index=1))
        self.assertFalse(self.applier.apply(transfer(ZERO_ADDRESS, CAROL, 100, log_index=2)))
        self.assertEqual(self._domain().owner, ALICE)
        self.assertEqual(self._n_event_logs(), 2)

    def test_transfer_and_burn(self):
        self.applier.apply(name_registered(block_number=100))
        self.assertTrue(self.applier.apply(transfer(ALICE, BOB, 110)))
        self.assertEqual(self._domain().owner, BOB)

        self.assertTrue(self.applier.apply(transfer(BOB, ZERO_ADDRESS, 120)))
        domain = self._domain()
        self.assertIsNotNone(domain)
        self.assertEqual(domain.owner, ZERO_ADDRESS)

    def test_registry_updates(self):
        self.applier.apply(name_registered(block_number=100))
        self.applier.apply(ownership_transferred(ALICE, CAROL, 101))
        self.applier.apply(resolver_updated(RESOLVER_2, 102))
        domain = self._domain()
        self.assertEqual(domain.owner, CAROL)
        self.assertEqual(domain.resolver, RESOLVER_2)
        self.assertEqual(domain.last_updated_block, 102)

    def test_update_of_unknown_domain_is_no_op(self):
        self.assertFalse(self.applier.apply(name_renewed(_T2, 150)))
        self.assertIsNone(self._domain())
        self.assertEqual(self._n_event_logs(), 1)

    def test_address_record_latest_wins(self):
        self.applier.apply(address_changed(60, ALICE, 100))
        self.applier.apply(address_changed(60, BOB, 101))
        self.applier.apply(address_changed(0, CAROL, 101, log_index=1))
        with Session(self.engine) as session:
            rows = session.exec(
                select(AddressRecord).where(AddressRecord.name_hash == ALICE_HASH)
            ).all()
        self.assertEqual({r.coin_type: r.address for r in rows}, {0: CAROL, 60: BOB})

    def test_older_write_is_ignored(self):
        self.applier.apply_all(
            [
                name_registered(block_number=100),
                name_renewed(_T2, 150),
                text_changed("url", "new", 150),
            ]
        )
        # Resync from an earlier block replays older events.
        self.assertFalse(self.applier.apply(name_renewed(_T1 + 1, 120)))
        self.assertFalse(self.applier.apply(text_changed("url", "old", 120)))
        self.assertFalse(self.applier.apply(name_registered(owner=BOB, block_number=90)))
        domain = self._domain()
        self.assertEqual(domain.expiration, _T2)
        self.assertEqual(domain.owner, ALICE)
        self.assertEqual(self._text("url"), "new")

    def test_older_write_applies_without_guard(self):
        applier = ProjectionApplier(SQLProjectionStore(self.engine, enforce_monotonic_writes=False))
        applier.apply_all([name_registered(block_number=100), name_renewed(_T2, 150)])
        self.assertTrue(applier.apply(name_renewed(_T1 + 1, 120)))
        self.assertEqual(self._domain().expiration, _T1 + 1)

    def test_same_block_ordering_by_log_index(self):
        self.applier.apply_all(
            [
                name_registered(block_number=100),
                text_changed("k", "first", 101, log_index=1),
                text_changed("k", "second", 101, log_index=2),
            ]
        )
        self.assertFalse(self.applier.apply(text_changed("k", "first", 101, log_index=1)))
        self.assertEqual(self._text("k"), "second")

    def test_cache_invalidated_after_write(self):
        observed = []

        def invalidate(name_hash):
            observed.append(self._domain(name_hash))

        cache = MagicMock()
        cache.invalidate.side_effect = invalidate
        applier = ProjectionApplier(self.store, cache)
        applier.apply(name_registered(block_number=100))

        cache.invalidate.assert_called_once_with(ALICE_HASH)
        self.assertIsNotNone(observed[0])

    def test_local_cache_entry_dropped(self):
        self.cache.entries[ALICE_HASH] = {"name": "alice.poly"}
        self.applier.apply(name_registered(block_number=100))
        self.assertNotIn(ALICE_HASH, self.cache.entries)

    def test_registration_published_to_outbox(self):
        self.applier.apply(name_registered(block_number=100))
        self.applier.apply(text_changed("k", "v", 101))
        notifications = self.outbox.fetch()
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0]["eventType"], "NameRegistered")
        self.assertEqual(notifications[0]["payload"]["name"], "alice.poly")

    def test_unsupported_event_is_recorded_and_dropped(self):
        event = _UnsupportedEvent(
            name_hash=ALICE_HASH,
            contract_address=ALICE,
            block_number=100,
            transaction_hash="0x" + "ef" * 32,
            transaction_index=0,
            log_index=0,
        )
        with self.assertLogs("pnsindex.core.projection_applier", level="WARNING"):
            self.assertFalse(self.applier.apply(event))
        self.assertEqual(self._n_event_logs(), 1)

    def test_store_failure_raises(self):
        store = MagicMock()
        store.record_event.side_effect = OperationalError("INSERT", {}, Exception("down"))
        applier = ProjectionApplier(store)
        with self.assertRaises(ProjectionWriteError) as cm:
            applier.apply(name_registered(block_number=100))
        self.assertEqual(cm.exception.event_name, "NameRegistered")
        self.assertEqual(cm.exception.block_number, 100)


if __name__ == "__main__":
    unittest.main()
