"""
Post-commit notifications for secondary consumers of registrations.
Consumers read the outbox instead of receiving a second blind write
of the same logical state.
"""

import json
import logging
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from pnsindex.core.events import DomainEvent
from pnsindex.core.models import DomainOutbox
from pnsindex.core.projection_store import dialect_insert
from pnsindex.utils.log import get_default_logger
from pnsindex.utils.time_utils import now_ms


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


def create_uniq_key(tx_hash: str, log_index: int) -> str:
    """
    Create the idempotency key of a notification.
    Lower-case without 0x to stay stable across caller formatting.
    """
    tx = tx_hash[2:] if tx_hash.startswith("0x") else tx_hash
    return f"{tx.lower()}:{log_index}"


class DomainOutboxPublisher:
    """
    Writes notifications to the domain_outbox table.
    """

    def __init__(self, db_engine: Engine):
        self.db_engine = db_engine

    def publish(self, event: DomainEvent, payload: dict) -> bool:
        """
        Publish a notification for an applied event.
        Publishing the same event twice is a no-op.

        :param event: The applied event.
        :param payload: The JSON-serializable notification body.
        :return: True if a new notification was written.
        """
        stmt = (
            dialect_insert(self.db_engine, DomainOutbox)
            .values(
                uniq=create_uniq_key(event.transaction_hash, event.log_index),
                event_type=event.event_name,
                name_hash=event.name_hash,
                block_number=event.block_number,
                payload_json=json.dumps(payload, sort_keys=True),
                created_at=now_ms(),
            )
            .on_conflict_do_nothing(index_elements=["uniq"])
        )
        with self.db_engine.begin() as conn:
            inserted = conn.execute(stmt).rowcount > 0
        if inserted:
            _LOG.debug("Published %s for %s", event.event_name, event.name_hash)
        return inserted

    def fetch(
        self, after_block: int = -1, event_type: Optional[str] = None, limit: int = 100
    ) -> List[dict]:
        """
        Read notifications in block order.

        :param after_block: Only return notifications from later blocks.
        :param event_type: Optional event type filter.
        :param limit: Maximum number of notifications.
        :return: The list of notifications with decoded payloads.
        """
        with Session(self.db_engine) as session:
            statement = select(DomainOutbox).where(DomainOutbox.block_number > after_block)
            if event_type is not None:
                statement = statement.where(DomainOutbox.event_type == event_type)
            statement = statement.order_by(DomainOutbox.block_number, DomainOutbox.uniq).limit(limit)
            rows = session.exec(statement).all()
            return [
                {
                    "uniq": row.uniq,
                    "eventType": row.event_type,
                    "nameHash": row.name_hash,
                    "blockNumber": int(row.block_number),
                    "payload": json.loads(row.payload_json),
                }
                for row in rows
            ]
