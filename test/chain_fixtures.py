"""Builders for raw policy contract logs and a fake chain RPC used across tests."""

from datetime import datetime, timezone
from typing import Any

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

CHAIN_ID = 11155111
CONTRACT = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"

PACKAGE_KEY = "0x" + "aa" * 32
OTHER_PACKAGE_KEY = "0x" + "bb" * 32
OWNER = "0x1111111111111111111111111111111111111111"
BENEFICIARY = "0x2222222222222222222222222222222222222222"
GUARDIAN_A = "0x3333333333333333333333333333333333333333"
GUARDIAN_B = "0x4444444444444444444444444444444444444444"
TX_HASH = "0x" + "dd" * 32


def block_hash(number: int, fork: int = 0) -> str:
    """Deterministic 32-byte block hash; a different fork gives a different hash."""
    return "0x" + f"{number:060x}{fork:04x}"


def tx_hash_for(block_number: int, log_index: int) -> str:
    return "0x" + f"{block_number:032x}{log_index:032x}"


def address_topic(address: str) -> HexBytes:
    return HexBytes(bytes(12) + bytes.fromhex(address[2:]))


def make_log(
    signature: str,
    package_key: str = PACKAGE_KEY,
    data_types: tuple[str, ...] = (),
    data_values: tuple[Any, ...] = (),
    extra_topics: tuple[Any, ...] = (),
    block_number: int = 100,
    log_index: int = 0,
    tx_hash: str | None = None,
    block_hash_value: str | None = None,
    address: str = CONTRACT,
) -> dict[str, Any]:
    """Build a raw log shaped like a web3 LogReceipt."""
    return {
        "address": address,
        "topics": [Web3.keccak(text=signature), HexBytes(package_key), *extra_topics],
        "data": HexBytes(encode(list(data_types), list(data_values))) if data_types else HexBytes(b""),
        "blockNumber": block_number,
        "blockHash": HexBytes(block_hash_value or block_hash(block_number)),
        "transactionHash": HexBytes(tx_hash or tx_hash_for(block_number, log_index)),
        "logIndex": log_index,
    }


def activated_log(
    package_key: str = PACKAGE_KEY,
    owner: str = OWNER,
    beneficiary: str = BENEFICIARY,
    manifest_uri: str = "ipfs://Qm1",
    guardians: tuple[str, ...] = (),
    **kwargs: Any,
) -> dict[str, Any]:
    return make_log(
        "PackageActivated(bytes32,address,address,string,address[],uint256,uint256,uint256)",
        package_key,
        data_types=("address", "address", "string", "address[]", "uint256", "uint256", "uint256"),
        data_values=(owner, beneficiary, manifest_uri, list(guardians), 1, 86400, 172800),
        **kwargs,
    )


def manifest_updated_log(manifest_uri: str, package_key: str = PACKAGE_KEY, **kwargs: Any) -> dict[str, Any]:
    return make_log(
        "ManifestUpdated(bytes32,string)",
        package_key,
        data_types=("string",),
        data_values=(manifest_uri,),
        **kwargs,
    )


def renewed_log(paid_until: int, package_key: str = PACKAGE_KEY, **kwargs: Any) -> dict[str, Any]:
    return make_log("Renewed(bytes32,uint256)", package_key, ("uint256",), (paid_until,), **kwargs)


def pending_release_log(reason_flags: int, package_key: str = PACKAGE_KEY, **kwargs: Any) -> dict[str, Any]:
    return make_log("PendingRelease(bytes32,uint256)", package_key, ("uint256",), (reason_flags,), **kwargs)


def guardian_log(name: str, guardian: str, package_key: str = PACKAGE_KEY, **kwargs: Any) -> dict[str, Any]:
    return make_log(f"{name}(bytes32,address)", package_key, extra_topics=(address_topic(guardian),), **kwargs)


def simple_log(name: str, package_key: str = PACKAGE_KEY, **kwargs: Any) -> dict[str, Any]:
    """Events whose only parameter is the package key (CheckIn, Released, Revoked, ...)."""
    return make_log(f"{name}(bytes32)", package_key, **kwargs)


def unknown_log(**kwargs: Any) -> dict[str, Any]:
    return make_log("Transfer(address,address,uint256)", **kwargs)


class FakeRpc:
    """In-memory stand-in for ChainRpcClient."""

    def __init__(self, head: int = 0, chain: int = CHAIN_ID):
        self.head = head
        self.chain = chain
        self.logs: list[dict[str, Any]] = []
        self.hash_overrides: dict[int, str] = {}
        self.get_logs_calls: list[tuple[int, int]] = []
        self.fail_get_logs: Exception | None = None

    def chain_id(self) -> int:
        return self.chain

    def current_block_height(self) -> int:
        return self.head

    def get_logs(self, contract_address: str, from_block: int, to_block: int) -> list[dict[str, Any]]:
        self.get_logs_calls.append((from_block, to_block))
        if self.fail_get_logs is not None:
            raise self.fail_get_logs
        return [log for log in self.logs if from_block <= log["blockNumber"] <= to_block]

    def get_block_hash(self, block_number: int) -> str:
        return self.hash_overrides.get(block_number, block_hash(block_number))

    def get_block_timestamp(self, block_number: int) -> datetime:
        return datetime.fromtimestamp(1_700_000_000 + block_number * 12, tz=timezone.utc)

    def clear_cache(self) -> None:
        pass
