"""
Read surface over the projection tables.
Queries never touch the chain.
"""

from typing import List, Optional, Union

import pandas as pd
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine, select

from pnsindex.core.errors import IndexingStaleError
from pnsindex.core.models import (
    AddressRecord,
    Domain,
    EventLog,
    LastBatchProcessingTime,
    TextRecord,
)
from pnsindex.utils.crypto_utils import (
    get_full_domain_name,
    namehash,
    normalize_address,
)
from pnsindex.utils.time_utils import convert_timestamp_chain_to_str, ms_to_timestamp


class SQLDomainQueryService:
    """
    Domain query service based on projection data from sql db.
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        engine_kwargs: Union[dict, None] = None,
        db_engine: Optional[Engine] = None,
        stale_threshold_seconds: Optional[int] = None,
    ):
        """
        :param db_url: SQLAlchemy URL of the projection database.
        :param engine_kwargs: Keyword arguments for create_engine.
        :param db_engine: An existing engine. Takes precedence over db_url.
        :param stale_threshold_seconds: If set, queries fail with IndexingStaleError
            when the indexer heartbeat is older than this many seconds.
        """
        if db_engine is None:
            if db_url is None:
                raise ValueError("Either db_url or db_engine is required")
            db_engine = create_engine(db_url, **(engine_kwargs or {}))
        self.db_engine = db_engine
        self.stale_threshold_seconds = stale_threshold_seconds

    def find_domain(self, name_hash: str) -> Union[dict, None]:
        """
        Find a domain by its name hash.
        """
        name_hash = name_hash.lower()
        self._fail_if_indexing_stale()
        with Session(self.db_engine) as session:
            domain = session.get(Domain, name_hash)
            return self._domain_to_dict(domain) if domain is not None else None

    def find_domain_by_name(self, name: str) -> Union[dict, None]:
        """
        Find a domain by name. Bare labels get the registry TLD.
        """
        return self.find_domain(namehash(get_full_domain_name(name)))

    def find_domains_by_owner(self, owner: str) -> List[dict]:
        """
        Find all domains currently held by an owner.
        """
        owner = normalize_address(owner)
        self._fail_if_indexing_stale()
        with Session(self.db_engine) as session:
            statement = select(Domain).where(Domain.owner == owner).order_by(Domain.name)
            return [self._domain_to_dict(d) for d in session.exec(statement).all()]

    def find_text_records(self, name_hash: str) -> dict:
        """
        Find all text records of a domain.

        :return: Dictionary of record key to value.
        """
        name_hash = name_hash.lower()
        self._fail_if_indexing_stale()
        with Session(self.db_engine) as session:
            statement = (
                select(TextRecord)
                .where(TextRecord.name_hash == name_hash)
                .order_by(TextRecord.key)
            )
            return {r.key: r.value for r in session.exec(statement).all()}

    def find_address_records(self, name_hash: str) -> dict:
        """
        Find all address records of a domain.

        :return: Dictionary of coin type to address.
        """
        name_hash = name_hash.lower()
        self._fail_if_indexing_stale()
        with Session(self.db_engine) as session:
            statement = (
                select(AddressRecord)
                .where(AddressRecord.name_hash == name_hash)
                .order_by(AddressRecord.coin_type)
            )
            return {r.coin_type: r.address for r in session.exec(statement).all()}

    def find_event_logs(self, name_hash: str) -> List[dict]:
        """
        Find the audit log of a domain in on-chain order.
        """
        name_hash = name_hash.lower()
        self._fail_if_indexing_stale()
        with Session(self.db_engine) as session:
            statement = (
                select(EventLog)
                .where(EventLog.name_hash == name_hash)
                .order_by(
                    EventLog.block_number,
                    EventLog.transaction_index,
                    EventLog.log_index,
                )
            )
            return [
                {
                    "eventName": e.event_name,
                    "nameHash": e.name_hash,
                    "name": e.name,
                    "owner": e.owner,
                    "resolver": e.resolver,
                    "expiration": e.expiration,
                    "contractAddress": e.contract_address,
                    "blockNumber": e.block_number,
                    "transactionHash": e.transaction_hash,
                    "transactionIndex": e.transaction_index,
                    "logIndex": e.log_index,
                    "indexedAt": str(ms_to_timestamp(e.indexed_at)),
                }
                for e in session.exec(statement).all()
            ]

    @staticmethod
    def _domain_to_dict(domain: Domain) -> dict:
        return {
            "nameHash": domain.name_hash,
            "name": domain.name,
            "owner": domain.owner,
            "resolver": domain.resolver,
            "expiration": domain.expiration,
            "expirationTimestamp": convert_timestamp_chain_to_str(domain.expiration),
            "lastUpdatedBlock": domain.last_updated_block,
            "lastUpdatedTx": domain.last_updated_tx,
        }

    def _fail_if_indexing_stale(self):
        """
        Checks the latest heartbeat timestamp.
        Raises an exception if the indexing is stale.
        """
        if self.stale_threshold_seconds is None:
            return
        with Session(self.db_engine) as session:
            statement = select(LastBatchProcessingTime).order_by(
                LastBatchProcessingTime.timestamp.desc()
            )
            last_batch = session.exec(statement).first()
            if last_batch is None:
                raise IndexingStaleError(
                    "No batch processing time found. Indexing might not have started."
                )

            current_time = pd.Timestamp.now(tz="UTC")
            last_time = ms_to_timestamp(last_batch.timestamp)
            if (current_time - last_time).total_seconds() > self.stale_threshold_seconds:
                raise IndexingStaleError(
                    f"Indexing is stale. Last batch processing time: {last_time} "
                    f"by {last_batch.id}, current time: {current_time}. "
                    f"Stale threshold: {self.stale_threshold_seconds} seconds."
                )
