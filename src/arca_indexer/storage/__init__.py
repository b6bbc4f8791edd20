"""Persistence layer: tables, ledger, event store and the poller lock."""

from .db import Database
from .event_store import EventStore
from .ledger import ProcessedRangeLedger
from .lock import AdvisoryLock, derive_lock_id
from .tables import (
    Base,
    EventRecord,
    GuardianCache,
    NotificationTarget,
    PackageCache,
    ProcessedBlock,
)

__all__ = [
    "AdvisoryLock",
    "Base",
    "Database",
    "EventRecord",
    "EventStore",
    "GuardianCache",
    "NotificationTarget",
    "PackageCache",
    "ProcessedBlock",
    "ProcessedRangeLedger",
    "derive_lock_id",
]
