"""
Idempotent writes to the projection tables.
Every write is a single-row upsert; there is no transaction spanning a batch.
"""

import json
from abc import ABC, abstractmethod

from sqlalchemy import and_, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from pnsindex.core.events import AddressChanged, DomainEvent, NameRegistered, TextChanged
from pnsindex.core.models import AddressRecord, Domain, EventLog, TextRecord
from pnsindex.utils.time_utils import now_ms


def dialect_insert(db_engine: Engine, model):
    """
    Create a dialect-specific INSERT supporting ON CONFLICT clauses.

    :param db_engine: The database engine.
    :param model: The SQLModel table class.
    :return: The insert statement.
    """
    dialect = db_engine.dialect.name
    if dialect == "postgresql":
        # pylint: disable=import-outside-toplevel
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        # pylint: disable=import-outside-toplevel
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upserts are not supported for {dialect}")
    return insert(model.__table__)


def position_not_newer(stored, incoming):
    """
    SQL condition: the stored (block, tx index, log index) position
    is at or before the incoming position.
    Equal positions pass so that replays converge.

    :param stored: The stored position columns.
    :param incoming: The incoming position columns or values.
    :return: The SQL boolean expression.
    """
    block, tx_index, log_index = stored
    new_block, new_tx_index, new_log_index = incoming
    return or_(
        block < new_block,
        and_(
            block == new_block,
            or_(
                tx_index < new_tx_index,
                and_(tx_index == new_tx_index, log_index <= new_log_index),
            ),
        ),
    )


class ProjectionStore(ABC):
    """
    Interface for the projection tables.
    All methods are idempotent for identical input.
    Methods returning bool report whether a row was written.
    """

    @abstractmethod
    def record_event(self, event: DomainEvent) -> bool:
        """
        Append an event to the audit log.
        A no-op if (transaction hash, log index) is already present.
        """

    @abstractmethod
    def upsert_domain(self, event: NameRegistered) -> bool:
        """
        Create or overwrite the domain row of a registration.
        """

    @abstractmethod
    def update_domain(self, event: DomainEvent, **values) -> bool:
        """
        Update fields of an existing domain row.
        A no-op if the row does not exist.
        """

    @abstractmethod
    def upsert_text_record(self, event: TextChanged) -> bool:
        """
        Set the latest value of a text record.
        """

    @abstractmethod
    def upsert_address_record(self, event: AddressChanged) -> bool:
        """
        Set the latest address of a coin type.
        """


class SQLProjectionStore(ProjectionStore):
    """
    Projection store backed by PostgreSQL or SQLite.
    """

    def __init__(self, db_engine: Engine, enforce_monotonic_writes: bool = True):
        """
        Initialize the store.

        :param db_engine: The database engine.
        :param enforce_monotonic_writes: If True, writes whose on-chain position
            is older than the stored row are ignored.
        """
        self.db_engine = db_engine
        self.enforce_monotonic_writes = enforce_monotonic_writes

    def create_tables(self):
        """
        Create all projection tables if they do not exist.
        """
        SQLModel.metadata.create_all(self.db_engine)

    def _execute(self, stmt) -> int:
        with self.db_engine.begin() as conn:
            result = conn.execute(stmt)
            return result.rowcount

    def record_event(self, event: DomainEvent) -> bool:
        audit = event.audit_fields()
        stmt = (
            dialect_insert(self.db_engine, EventLog)
            .values(
                transaction_hash=event.transaction_hash,
                log_index=event.log_index,
                event_name=event.event_name,
                name_hash=event.name_hash,
                name=audit.get("name"),
                owner=audit.get("owner"),
                resolver=audit.get("resolver"),
                expiration=audit.get("expiration"),
                contract_address=event.contract_address,
                block_number=event.block_number,
                transaction_index=event.transaction_index,
                raw_data=json.dumps(event.raw_args, sort_keys=True),
                indexed_at=now_ms(),
            )
            .on_conflict_do_nothing(index_elements=["transaction_hash", "log_index"])
        )
        return self._execute(stmt) > 0

    def _upsert(self, model, index_elements, values: dict, position_columns):
        stmt = dialect_insert(self.db_engine, model).values(**values)
        set_ = {k: stmt.excluded[k] for k in values if k not in index_elements}
        where = None
        if self.enforce_monotonic_writes:
            where = position_not_newer(
                [model.__table__.c[c] for c in position_columns],
                [stmt.excluded[c] for c in position_columns],
            )
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements, set_=set_, where=where
        )
        return self._execute(stmt) > 0

    def upsert_domain(self, event: NameRegistered) -> bool:
        return self._upsert(
            Domain,
            ["name_hash"],
            {
                "name_hash": event.name_hash,
                "name": event.name,
                "owner": event.owner,
                "resolver": event.resolver,
                "expiration": event.expiration,
                "last_updated_block": event.block_number,
                "last_updated_tx": event.transaction_hash,
                "last_updated_tx_index": event.transaction_index,
                "last_updated_log_index": event.log_index,
            },
            ["last_updated_block", "last_updated_tx_index", "last_updated_log_index"],
        )

    def update_domain(self, event: DomainEvent, **values) -> bool:
        table = Domain.__table__
        stmt = (
            update(table)
            .where(table.c.name_hash == event.name_hash)
            .values(
                last_updated_block=event.block_number,
                last_updated_tx=event.transaction_hash,
                last_updated_tx_index=event.transaction_index,
                last_updated_log_index=event.log_index,
                **values,
            )
        )
        if self.enforce_monotonic_writes:
            stmt = stmt.where(
                position_not_newer(
                    [
                        table.c.last_updated_block,
                        table.c.last_updated_tx_index,
                        table.c.last_updated_log_index,
                    ],
                    list(event.position),
                )
            )
        return self._execute(stmt) > 0

    def upsert_text_record(self, event: TextChanged) -> bool:
        return self._upsert(
            TextRecord,
            ["name_hash", "key"],
            {
                "name_hash": event.name_hash,
                "key": event.key,
                "value": event.value,
                "block_number": event.block_number,
                "transaction_hash": event.transaction_hash,
                "transaction_index": event.transaction_index,
                "log_index": event.log_index,
            },
            ["block_number", "transaction_index", "log_index"],
        )

    def upsert_address_record(self, event: AddressChanged) -> bool:
        return self._upsert(
            AddressRecord,
            ["name_hash", "coin_type"],
            {
                "name_hash": event.name_hash,
                "coin_type": event.coin_type,
                "address": event.address,
                "block_number": event.block_number,
                "transaction_hash": event.transaction_hash,
                "transaction_index": event.transaction_index,
                "log_index": event.log_index,
            },
            ["block_number", "transaction_index", "log_index"],
        )

