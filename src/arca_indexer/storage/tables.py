"""ORM tables for the Arca indexer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
JSONType = JSON().with_variant(JSONB, "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for ORM models."""


class ProcessedBlock(Base):
    __tablename__ = "processed_blocks"
    __table_args__ = (
        UniqueConstraint("chain_id", "contract_address", "block_number", name="uq_processed_block"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class EventRecord(Base):
    __tablename__ = "event_records"
    __table_args__ = (
        UniqueConstraint("tx_hash", "log_index", name="uq_event_tx_log"),
        Index("ix_event_records_scope_block", "chain_id", "contract_address", "block_number", "log_index"),
        Index("ix_event_records_package", "package_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    package_key: Mapped[str] = mapped_column(String(66), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    emitting_address: Mapped[str] = mapped_column(String(42), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PackageCache(Base):
    __tablename__ = "package_cache"
    __table_args__ = (
        UniqueConstraint("chain_id", "contract_address", "package_key", name="uq_package_cache_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    package_key: Mapped[str] = mapped_column(String(66), nullable=False)
    owner_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    beneficiary_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    manifest_uri: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cached_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    pending_since: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_check_in: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_indexed_block: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    guardians: Mapped[list["GuardianCache"]] = relationship(
        "GuardianCache",
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="GuardianCache.position",
    )


class GuardianCache(Base):
    __tablename__ = "guardian_cache"
    __table_args__ = (
        UniqueConstraint("package_cache_id", "guardian_address", name="uq_guardian_cache_member"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    package_cache_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("package_cache.id", ondelete="CASCADE"), nullable=False
    )
    guardian_address: Mapped[str] = mapped_column(String(42), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    package: Mapped[PackageCache] = relationship("PackageCache", back_populates="guardians")


class NotificationTarget(Base):
    __tablename__ = "notification_targets"
    __table_args__ = (
        Index("ix_notification_targets_scope", "chain_id", "contract_address", "package_key", "active"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    package_key: Mapped[str] = mapped_column(String(66), nullable=False)
    subscriber_address: Mapped[str] = mapped_column(String(42), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(16), nullable=False)
    channel_value: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    event_types: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    last_delivery_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_delivery_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


__all__ = [
    "Base",
    "ProcessedBlock",
    "EventRecord",
    "PackageCache",
    "GuardianCache",
    "NotificationTarget",
    "utcnow",
]
