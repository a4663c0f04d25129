"""SQL models for the name registry projection."""

from typing import Optional

from sqlalchemy import BigInteger, Text
from sqlmodel import Field, SQLModel


class EventLog(SQLModel, table=True):
    """ORM model for the event_logs table, the append-only audit log of every decoded event."""

    __tablename__ = "event_logs"
    transaction_hash: str = Field(primary_key=True)
    log_index: int = Field(primary_key=True)
    event_name: str = Field(index=True)
    name_hash: str = Field(index=True)
    name: Optional[str] = Field(default=None)
    owner: Optional[str] = Field(default=None, index=True)
    resolver: Optional[str] = Field(default=None)
    expiration: Optional[int] = Field(default=None, sa_type=BigInteger)
    contract_address: str = Field(index=False)
    block_number: int = Field(index=True, sa_type=BigInteger)
    transaction_index: int = Field(index=False)
    raw_data: Optional[str] = Field(default=None, sa_type=Text)
    indexed_at: int = Field(index=False, sa_type=BigInteger)


class Domain(SQLModel, table=True):
    """ORM model for the domains table, the current state of each registered name."""

    __tablename__ = "domains"
    name_hash: str = Field(primary_key=True)
    name: str = Field(index=True)
    owner: str = Field(index=True)
    resolver: Optional[str] = Field(default=None)
    expiration: Optional[int] = Field(default=None, index=True, sa_type=BigInteger)
    last_updated_block: int = Field(sa_type=BigInteger)
    last_updated_tx: str = Field(index=False)
    last_updated_tx_index: int = Field(default=0)
    last_updated_log_index: int = Field(default=0)


class TextRecord(SQLModel, table=True):
    """ORM model for the text_records table, latest value per (name_hash, key)."""

    __tablename__ = "text_records"
    name_hash: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    value: str = Field(sa_type=Text)
    block_number: int = Field(sa_type=BigInteger)
    transaction_hash: str = Field(index=False)
    transaction_index: int = Field(default=0)
    log_index: int = Field(default=0)


class AddressRecord(SQLModel, table=True):
    """ORM model for the address_records table, latest address per (name_hash, coin_type)."""

    __tablename__ = "address_records"
    name_hash: str = Field(primary_key=True)
    # Coin types above the signed 64-bit range are rejected by the decoder.
    coin_type: int = Field(primary_key=True, sa_type=BigInteger)
    address: str = Field(sa_type=Text)
    block_number: int = Field(sa_type=BigInteger)
    transaction_hash: str = Field(index=False)
    transaction_index: int = Field(default=0)
    log_index: int = Field(default=0)


class IndexerCheckpoint(SQLModel, table=True):
    """ORM model for the indexer_checkpoint table, the last fully processed block."""

    __tablename__ = "indexer_checkpoint"
    id: str = Field(primary_key=True, index=True)
    block: int = Field(sa_type=BigInteger)
    updated_at: int = Field(sa_type=BigInteger)


class LastBatchProcessingTime(SQLModel, table=True):
    """ORM model for the last_batch_processing_time table, tracking indexer heartbeat."""

    __tablename__ = "last_batch_processing_time"
    id: str = Field(primary_key=True, index=True)
    timestamp: int = Field(index=False, sa_type=BigInteger)


class DomainOutbox(SQLModel, table=True):
    """ORM model for the domain_outbox table, post-commit notifications for secondary consumers."""

    __tablename__ = "domain_outbox"
    uniq: str = Field(primary_key=True)
    event_type: str = Field(index=True)
    name_hash: str = Field(index=True)
    block_number: int = Field(sa_type=BigInteger)
    payload_json: str = Field(sa_type=Text)
    created_at: int = Field(sa_type=BigInteger)
