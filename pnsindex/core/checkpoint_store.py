"""
Durable storage of the last fully processed block.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from pnsindex.core.errors import CheckpointError
from pnsindex.core.models import IndexerCheckpoint, LastBatchProcessingTime
from pnsindex.utils.log import get_default_logger
from pnsindex.utils.time_utils import now_ms


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


DEFAULT_CHECKPOINT_ID = "last_scanned_block"
DEFAULT_HEARTBEAT_ID = "pns-indexer"


class CheckpointStore(ABC):
    """
    Interface for the checkpoint store.
    The scan loop is the single writer.
    """

    @abstractmethod
    def get(self) -> int:
        """
        Return the stored checkpoint.
        Fails open: if the value is absent or unreadable,
        returns the deployment block fallback.

        :return: The highest block fully processed.
        """

    @abstractmethod
    def set(self, block: int):
        """
        Persist the checkpoint.
        Raises CheckpointError on failure; the caller must not treat
        the batch as committed in that case.

        :param block: The highest block fully processed.
        """

    def heartbeat(self):
        """
        Record that the indexer completed a tick.
        Default implementation does nothing.
        """


class SQLCheckpointStore(CheckpointStore):
    """
    Checkpoint store kept in the projection database.
    """

    def __init__(
        self,
        db_engine: Engine,
        deployment_block: int = 0,
        checkpoint_id: str = DEFAULT_CHECKPOINT_ID,
        heartbeat_id: str = DEFAULT_HEARTBEAT_ID,
    ):
        self.db_engine = db_engine
        self.deployment_block = deployment_block
        self.checkpoint_id = checkpoint_id
        self.heartbeat_id = heartbeat_id

    def get(self) -> int:
        try:
            with Session(self.db_engine) as session:
                row = session.get(IndexerCheckpoint, self.checkpoint_id)
                if row is not None:
                    return int(row.block)
        except SQLAlchemyError as e:
            # Startup must not block on checkpoint store flakiness.
            _LOG.warning(
                "SQLCheckpointStore.get(): failed to read checkpoint %s, "
                "falling back to deployment block %s: %s",
                self.checkpoint_id,
                self.deployment_block,
                e,
            )
            return self.deployment_block
        _LOG.info(
            "SQLCheckpointStore.get(): no checkpoint %s, using deployment block %s",
            self.checkpoint_id,
            self.deployment_block,
        )
        return self.deployment_block

    def set(self, block: int):
        try:
            with Session(self.db_engine) as session:
                row = session.get(IndexerCheckpoint, self.checkpoint_id)
                if row is None:
                    row = IndexerCheckpoint(id=self.checkpoint_id, block=block, updated_at=0)
                row.block = block
                row.updated_at = now_ms()
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            _LOG.error(
                "SQLCheckpointStore.set(): failed to persist block %s: %s", block, e
            )
            raise CheckpointError(block, e) from e
        _LOG.debug("Saved checkpoint %s = %s", self.checkpoint_id, block)

    def heartbeat(self):
        with Session(self.db_engine) as session:
            row = session.get(LastBatchProcessingTime, self.heartbeat_id)
            if row is None:
                row = LastBatchProcessingTime(id=self.heartbeat_id, timestamp=0)
            row.timestamp = now_ms()
            session.add(row)
            session.commit()


class InMemoryCheckpointStore(CheckpointStore):
    """
    Process-local checkpoint store for tests and dry runs.
    """

    def __init__(self, deployment_block: int = 0):
        self.deployment_block = deployment_block
        self.block = None

    def get(self) -> int:
        return self.deployment_block if self.block is None else self.block

    def set(self, block: int):
        self.block = block
