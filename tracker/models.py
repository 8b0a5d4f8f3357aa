from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from .utils import utc_now

Base = declarative_base()

# Room for 18-decimal stablecoins without rounding.
AMOUNT = Numeric(precision=38, scale=18, asdecimal=True)


class IndexCheckpoint(Base):
    __tablename__ = "index_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stream_id = Column(String, nullable=False)
    watermark = Column(String, nullable=False)     # upstream db_write_timestamp, verbatim
    last_event_id = Column(String, nullable=False, default="")
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (UniqueConstraint('stream_id', name='uq_checkpoint_stream'),)


class Minting(Base):
    __tablename__ = "mintings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String, index=True, nullable=False)
    network_id = Column(Integer, nullable=False)
    txid = Column(String, nullable=False)
    timestamp = Column(BigInteger)                 # seconds since epoch
    deposit_amount = Column(AMOUNT, nullable=False)
    # Fields below belong to order fulfillment; ingestion only sets defaults.
    ustc_amount = Column(AMOUNT, nullable=False, default=0)
    order_completed = Column(Boolean, nullable=False, default=False)
    order_id = Column(Integer, nullable=False, default=0)
    deposit_status = Column(Integer, nullable=False, default=-1)
    nft_id = Column(BigInteger, nullable=False)
    manual = Column(Boolean, nullable=False, default=False)
    mint_completed = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint('txid', 'network_id', name='uq_minting_txid_network'),
        Index('ix_minting_nft_network', 'nft_id', 'network_id'),
    )
    __mapper_args__ = {"version_id_col": version}


class Nft(Base):
    __tablename__ = "nfts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(BigInteger, nullable=False)
    network_id = Column(Integer, nullable=False)
    owner = Column(String, index=True, nullable=False)
    params = Column(JSON, nullable=False, default=dict)   # mint-time parameters read from chain
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (UniqueConstraint('token_id', 'network_id', name='uq_nft_token_network'),)


class FailedEvent(Base):
    __tablename__ = "failed_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stream_id = Column(String, index=True, nullable=False)
    event_id = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    error_kind = Column(String, nullable=False)
    detail = Column(Text)
    attempts = Column(Integer, nullable=False, default=1)
    resolved = Column(Boolean, index=True, nullable=False, default=False)
    first_seen_at = Column(DateTime, default=utc_now)
    last_attempt_at = Column(DateTime, default=utc_now)

    __table_args__ = (UniqueConstraint('stream_id', 'event_id', name='uq_failed_stream_event'),)
