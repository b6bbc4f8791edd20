"""
Decoder for policy contract logs.

Maps a raw log (topics + data) to one of the known domain events. Event
identity comes from topic[0]; the package key is always topic[1]. Indexed
guardian addresses are read from topic[2], everything else is ABI-decoded
from the data payload with eth-abi.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from .models import DecodedEvent, EventType

logger = logging.getLogger(__name__)


class UnknownEventError(Exception):
    """topic[0] does not match any known event signature."""


class EventDecodeError(Exception):
    """A log with a known signature could not be decoded."""


@dataclass(frozen=True, slots=True)
class EventShape:
    """Parameter layout of one policy contract event."""
    event_type: EventType
    signature: str
    data_names: tuple[str, ...] = ()
    data_types: tuple[str, ...] = ()
    indexed_guardian: bool = False

    @property
    def topic0(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.signature))

    @property
    def topic_count(self) -> int:
        # signature + packageKey (+ guardian)
        return 3 if self.indexed_guardian else 2


EVENT_SHAPES: tuple[EventShape, ...] = (
    EventShape(
        EventType.PACKAGE_ACTIVATED,
        "PackageActivated(bytes32,address,address,string,address[],uint256,uint256,uint256)",
        data_names=(
            "owner", "beneficiary", "manifestUri", "guardians",
            "guardianQuorum", "warnThreshold", "inactivityThreshold",
        ),
        data_types=("address", "address", "string", "address[]", "uint256", "uint256", "uint256"),
    ),
    EventShape(
        EventType.MANIFEST_UPDATED,
        "ManifestUpdated(bytes32,string)",
        data_names=("manifestUri",),
        data_types=("string",),
    ),
    EventShape(EventType.CHECK_IN, "CheckIn(bytes32)"),
    EventShape(
        EventType.RENEWED,
        "Renewed(bytes32,uint256)",
        data_names=("paidUntil",),
        data_types=("uint256",),
    ),
    EventShape(EventType.GUARDIAN_APPROVED, "GuardianApproved(bytes32,address)", indexed_guardian=True),
    EventShape(EventType.GUARDIAN_VETOED, "GuardianVetoed(bytes32,address)", indexed_guardian=True),
    EventShape(
        EventType.GUARDIAN_VETO_RESCINDED, "GuardianVetoRescinded(bytes32,address)", indexed_guardian=True
    ),
    EventShape(
        EventType.GUARDIAN_APPROVE_RESCINDED, "GuardianApproveRescinded(bytes32,address)", indexed_guardian=True
    ),
    EventShape(EventType.GUARDIAN_STATE_RESET, "GuardianStateReset(bytes32)"),
    EventShape(
        EventType.PENDING_RELEASE,
        "PendingRelease(bytes32,uint256)",
        data_names=("reasonFlags",),
        data_types=("uint256",),
    ),
    EventShape(EventType.RELEASED, "Released(bytes32)"),
    EventShape(EventType.REVOKED, "Revoked(bytes32)"),
    EventShape(EventType.PACKAGE_RESCUED, "PackageRescued(bytes32)"),
)

# Precomputed topic0 -> shape lookup
SHAPES_BY_TOPIC: dict[str, EventShape] = {shape.topic0: shape for shape in EVENT_SHAPES}

# PendingRelease reason bits
REASON_INACTIVITY = 0x1
REASON_FUNDING_LAPSE = 0x2


def to_hex_str(value: Any) -> str:
    """
    Normalize a hash or topic to a lowercase 0x-prefixed hex string.

    Providers return topics and hashes either as bytes (HexBytes) or as hex
    strings depending on the transport.

    Args:
        value: bytes, HexBytes or hex string

    Returns:
        Lowercase hex string with 0x prefix
    """
    match value:
        case bytes() | bytearray():
            return Web3.to_hex(bytes(value)).lower()
        case str():
            text = value.lower()
            return text if text.startswith("0x") else f"0x{text}"
        case _:
            raise EventDecodeError(f"Unexpected hex value type: {type(value)}")


def to_bytes(value: Any) -> bytes:
    """Convert a bytes-like or hex string value to raw bytes."""
    match value:
        case bytes() | bytearray():
            return bytes(value)
        case str():
            hex_str = value[2:] if value.startswith(("0x", "0X")) else value
            try:
                return bytes.fromhex(hex_str)
            except ValueError as e:
                raise EventDecodeError(f"Malformed hex data: {e}") from e
        case None:
            return b""
        case _:
            raise EventDecodeError(f"Unexpected data type: {type(value)}")


def topic_to_address(topic: Any) -> str:
    """Recover an indexed address from the low 20 bytes of its topic."""
    raw = to_bytes(topic)
    if len(raw) != 32:
        raise EventDecodeError(f"Address topic must be 32 bytes, got {len(raw)}")
    return Web3.to_checksum_address(Web3.to_hex(raw[-20:]))


def _normalize(abi_type: str, value: Any) -> Any:
    """Make a decoded ABI value JSON friendly."""
    match abi_type:
        case "address":
            return Web3.to_checksum_address(value)
        case "address[]":
            return [Web3.to_checksum_address(item) for item in value]
        case _:
            return value


def decode_log(log: Mapping[str, Any]) -> DecodedEvent:
    """
    Decode a raw policy contract log into a typed event.

    Args:
        log: Raw log as returned by eth_getLogs (web3 LogReceipt or dict)

    Returns:
        DecodedEvent with the event-specific fields in ``data``

    Raises:
        UnknownEventError: If topic[0] is missing or not a known signature
        EventDecodeError: If a known event has the wrong shape or bad data
    """
    topics = list(log.get("topics") or [])
    if not topics:
        raise UnknownEventError("Log has no topics")

    topic0 = to_hex_str(topics[0])
    shape = SHAPES_BY_TOPIC.get(topic0)
    if shape is None:
        raise UnknownEventError(f"Unknown event signature {topic0}")

    if len(topics) != shape.topic_count:
        raise EventDecodeError(
            f"{shape.event_type.value} expects {shape.topic_count} topics, got {len(topics)}"
        )

    package_key = to_hex_str(topics[1])
    if len(package_key) != 66:
        raise EventDecodeError(f"Package key must be 32 bytes, got {package_key}")

    data: dict[str, Any] = {}
    if shape.indexed_guardian:
        data["guardian"] = topic_to_address(topics[2])

    if shape.data_types:
        payload = to_bytes(log.get("data"))
        if not payload:
            raise EventDecodeError(f"{shape.event_type.value} is missing its data payload")
        try:
            values = decode(list(shape.data_types), payload)
        except (DecodingError, ValueError, OverflowError) as e:
            raise EventDecodeError(f"Failed to decode {shape.event_type.value} data: {e}") from e
        for name, abi_type, value in zip(shape.data_names, shape.data_types, values):
            data[name] = _normalize(abi_type, value)

    if shape.event_type is EventType.PENDING_RELEASE:
        flags = data["reasonFlags"]
        data["inactivity"] = bool(flags & REASON_INACTIVITY)
        data["fundingLapse"] = bool(flags & REASON_FUNDING_LAPSE)

    try:
        return DecodedEvent(
            event_type=shape.event_type,
            package_key=package_key,
            emitting_address=Web3.to_checksum_address(log["address"]),
            block_number=int(log["blockNumber"]),
            block_hash=to_hex_str(log["blockHash"]),
            tx_hash=to_hex_str(log["transactionHash"]),
            log_index=int(log["logIndex"]),
            data=data,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise EventDecodeError(f"Log is missing required metadata: {e}") from e
