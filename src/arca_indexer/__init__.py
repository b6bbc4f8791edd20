"""
Arca indexer package.

Event indexer and notification dispatcher for the Arca inheritance policy
contract.
"""

from .chain_poller import ChainPoller
from .config import IndexerConfig
from .event_decoder import EventDecodeError, UnknownEventError, decode_log
from .indexer import IndexerService
from .models import DecodedEvent, EventType, IndexedEvent, PackageStatus
from .query_service import EventQueryService

__all__ = [
    "ChainPoller",
    "DecodedEvent",
    "EventDecodeError",
    "EventQueryService",
    "EventType",
    "IndexedEvent",
    "IndexerConfig",
    "IndexerService",
    "PackageStatus",
    "UnknownEventError",
    "decode_log",
]
__version__ = "0.1.0"
