"""
Chain RPC client used by the poller.

Thin wrapper over web3's HTTP provider. Every request carries the configured
timeout so a stalled node fails the cycle instead of wedging it. Block headers
are cached until clear_cache() is called at the start of each cycle.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from web3 import Web3
from web3.types import BlockData, LogReceipt

logger = logging.getLogger(__name__)


class ChainRpcClient:
    """Blocking JSON-RPC access to the monitored chain."""

    def __init__(self, rpc_url: str, request_timeout: int = 30, w3: Web3 | None = None):
        """
        Initialize the RPC client.

        Args:
            rpc_url: HTTP(S) RPC endpoint
            request_timeout: Per-request timeout in seconds
            w3: Pre-built Web3 instance (tests)
        """
        self.rpc_url = rpc_url
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': request_timeout})
        )
        self._blocks: dict[int, BlockData] = {}

    def chain_id(self) -> int:
        return int(self.w3.eth.chain_id)

    def current_block_height(self) -> int:
        return int(self.w3.eth.block_number)

    def get_logs(self, contract_address: str, from_block: int, to_block: int) -> list[LogReceipt]:
        """
        Fetch all logs of one contract in an inclusive block range.

        Args:
            contract_address: Checksummed contract address
            from_block: First block (inclusive)
            to_block: Last block (inclusive)

        Returns:
            Raw logs as returned by eth_getLogs
        """
        logs = self.w3.eth.get_logs({
            "address": contract_address,
            "fromBlock": from_block,
            "toBlock": to_block,
        })
        logger.debug(f"eth_getLogs {contract_address} [{from_block}, {to_block}] -> {len(logs)} logs")
        return list(logs)

    def _get_block(self, block_number: int) -> BlockData:
        block = self._blocks.get(block_number)
        if block is None:
            block = self.w3.eth.get_block(block_number)
            if block is None:
                raise ValueError(f"Block {block_number} not found")
            self._blocks[block_number] = block
        return block

    def get_block_hash(self, block_number: int) -> str:
        return _hex(self._get_block(block_number)["hash"])

    def get_block_timestamp(self, block_number: int) -> datetime:
        timestamp = self._get_block(block_number)["timestamp"]
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)

    def clear_cache(self) -> None:
        self._blocks.clear()


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value)).lower()
    return str(value).lower()
