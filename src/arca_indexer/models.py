"""
Shared data models for the Arca indexer.

This module contains the enums and immutable data classes passed between the
decoder, the poller, the projection and the notification dispatcher.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """The closed set of policy contract events the indexer understands."""
    PACKAGE_ACTIVATED = "PackageActivated"
    MANIFEST_UPDATED = "ManifestUpdated"
    CHECK_IN = "CheckIn"
    RENEWED = "Renewed"
    GUARDIAN_APPROVED = "GuardianApproved"
    GUARDIAN_VETOED = "GuardianVetoed"
    GUARDIAN_VETO_RESCINDED = "GuardianVetoRescinded"
    GUARDIAN_APPROVE_RESCINDED = "GuardianApproveRescinded"
    GUARDIAN_STATE_RESET = "GuardianStateReset"
    PENDING_RELEASE = "PendingRelease"
    RELEASED = "Released"
    REVOKED = "Revoked"
    PACKAGE_RESCUED = "PackageRescued"


class PackageStatus(str, Enum):
    """Cached package status names, mirroring the on-chain enum."""
    ACTIVE = "ACTIVE"
    PENDING_RELEASE = "PENDING_RELEASE"
    RELEASED = "RELEASED"
    REVOKED = "REVOKED"


class DeliveryStatus(str, Enum):
    """Outcome recorded on a subscription after a dispatch."""
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DecodedEvent:
    """A policy contract log decoded into a typed domain event.

    Attributes:
        event_type: Which of the known events this log is
        package_key: 32-byte package identifier (0x-prefixed hex, from topic[1])
        emitting_address: Address of the contract that emitted the log
        block_number: Block the log was included in
        block_hash: Hash of that block as reported with the log
        tx_hash: Transaction hash
        log_index: Index of the log within the block
        data: Event-specific decoded fields
    """
    event_type: EventType
    package_key: str
    emitting_address: str
    block_number: int
    block_hash: str
    tx_hash: str
    log_index: int
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"{self.event_type.value}(package={self.package_key[:10]}..., "
            f"block={self.block_number}, log={self.log_index})"
        )


@dataclass(frozen=True, slots=True)
class IndexedEvent:
    """A newly persisted event, as handed to the notification dispatcher."""
    chain_id: int
    contract_address: str
    package_key: str
    event_type: EventType
    block_number: int
    tx_hash: str
    log_index: int
    block_timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)

    def to_envelope(self) -> dict[str, Any]:
        """JSON body sent to webhook subscribers."""
        return {
            "packageKey": self.package_key,
            "eventType": self.event_type.value,
            "data": self.data,
        }


@dataclass(frozen=True, slots=True)
class EventRecordView:
    """Read-side view of a stored event record."""
    id: int
    chain_id: int
    contract_address: str
    package_key: str
    event_type: str
    emitting_address: str
    block_number: int
    block_hash: str
    tx_hash: str
    log_index: int
    block_timestamp: datetime
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class EventPage:
    """One page of event records, ordered by (block_number, log_index)."""
    items: list[EventRecordView]
    total: int
    next_cursor: str | None = None


@dataclass(frozen=True, slots=True)
class PackageView:
    """Read-side view of a projected package.

    Advisory only: authoritative package state must be read from the chain.
    """
    chain_id: int
    contract_address: str
    package_key: str
    owner_address: str | None
    beneficiary_address: str | None
    manifest_uri: str | None
    cached_status: str | None
    pending_since: datetime | None
    released_at: datetime | None
    last_check_in: datetime | None
    paid_until: datetime | None
    last_indexed_block: int | None
    updated_at: datetime | None
    guardians: list[str] = field(default_factory=list)
