"""Configuration management for the Arca indexer.

This module provides type-safe configuration dataclasses with validation
for the indexer and the notification dispatcher. Configuration is loaded from
environment variables with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from urllib.parse import urlparse

from web3 import Web3

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the monitored chain and policy contract.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint
        contract_address: Checksummed address of the policy proxy contract
        chain_id: Chain ID (configured, or fetched from the RPC at startup)
    """

    rpc_url: str
    contract_address: str
    chain_id: int | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (ARCA_RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. Expected http or https"
            )

        if not self.contract_address:
            raise ValueError("Contract address is required (ARCA_CONTRACT_ADDRESS)")

        if not Web3.is_address(self.contract_address):
            raise ValueError(f"Invalid contract address: {self.contract_address}")

        checksummed = Web3.to_checksum_address(self.contract_address)
        if checksummed == ZERO_ADDRESS:
            raise ValueError("Contract address must not be the zero address")
        if checksummed != self.contract_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'contract_address', checksummed)

        if self.chain_id is not None and self.chain_id <= 0:
            raise ValueError(f"Chain ID must be a positive integer, got {self.chain_id}")


@dataclass(frozen=True, slots=True)
class IndexerSettings:
    """Configuration for the chain poller."""
    enabled: bool = True
    confirmation_depth: int = 12  # blocks behind head treated as final
    start_block: int = 0  # first block scanned on an empty ledger
    polling_interval: int = 15  # seconds between the end of a cycle and the next
    request_timeout: int = 30  # RPC request timeout in seconds
    max_blocks_per_cycle: int = 0  # 0 = no cap on the range of one cycle
    lock_id: int = 0  # 0 = derive from the contract address

    def __post_init__(self) -> None:
        """Validate indexer settings."""
        if self.confirmation_depth < 0:
            raise ValueError(
                f"Confirmation depth must be non-negative, got {self.confirmation_depth}"
            )
        if self.start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {self.start_block}")
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 3600:
            raise ValueError(f"Polling interval too long (max 3600s), got {self.polling_interval}")
        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")
        if self.max_blocks_per_cycle < 0:
            raise ValueError(
                f"Max blocks per cycle must be non-negative, got {self.max_blocks_per_cycle}"
            )
        if self.lock_id < 0:
            raise ValueError(f"Lock id must be non-negative, got {self.lock_id}")


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    """Configuration for notification delivery."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds, doubled after each failed attempt
    workers: int = 2
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "no-reply@arcadigitalis.com"
    smtp_starttls: bool = True
    smtp_timeout: int = 10
    webhook_timeout: int = 10

    def __post_init__(self) -> None:
        """Validate notification settings."""
        if self.max_attempts < 1:
            raise ValueError(f"Max attempts must be at least 1, got {self.max_attempts}")
        if self.max_attempts > 10:
            raise ValueError(f"Max attempts too high (max 10), got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"Base delay must be non-negative, got {self.base_delay}")
        if self.workers < 1:
            raise ValueError(f"Workers must be at least 1, got {self.workers}")
        if not 0 < self.smtp_port < 65536:
            raise ValueError(f"Invalid SMTP port: {self.smtp_port}")
        if self.smtp_timeout <= 0 or self.webhook_timeout <= 0:
            raise ValueError("Delivery timeouts must be positive")


@dataclass(frozen=True, slots=True)
class IndexerConfig:
    """Main configuration for the Arca indexer.

    Attributes:
        chain: Monitored chain and contract
        database_url: SQLAlchemy database URL
        indexer: Chain poller settings
        notifications: Notification delivery settings
    """

    chain: ChainConfig
    database_url: str
    indexer: IndexerSettings = field(default_factory=IndexerSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    def __post_init__(self) -> None:
        """Validate the database URL."""
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable is required")
        if "://" not in self.database_url:
            raise ValueError(f"Invalid DATABASE_URL: {self.database_url}")

    @property
    def chain_id(self) -> int | None:
        return self.chain.chain_id

    @property
    def contract_address(self) -> str:
        return self.chain.contract_address

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Load configuration from environment variables.

        Returns:
            IndexerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("ARCA_RPC_URL", "")
        if not rpc_url:
            raise ValueError(
                "ARCA_RPC_URL environment variable is required. "
                "Example: https://ethereum-sepolia.publicnode.com"
            )

        contract_address = os.environ.get("ARCA_CONTRACT_ADDRESS", "")
        if not contract_address:
            raise ValueError(
                "ARCA_CONTRACT_ADDRESS environment variable is required. "
                "This should be the policy proxy contract address."
            )

        chain_id_raw = os.environ.get("ARCA_CHAIN_ID", "")
        chain = ChainConfig(
            rpc_url=rpc_url,
            contract_address=contract_address,
            chain_id=int(chain_id_raw) if chain_id_raw else None,
        )

        indexer = IndexerSettings(
            enabled=_env_bool("INDEXER_ENABLED", True),
            confirmation_depth=int(os.environ.get("CONFIRMATION_DEPTH", "12")),
            start_block=int(os.environ.get("START_BLOCK", "0")),
            polling_interval=int(os.environ.get("POLLING_INTERVAL", "15")),
            request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "30")),
            max_blocks_per_cycle=int(os.environ.get("MAX_BLOCKS_PER_CYCLE", "0")),
            lock_id=int(os.environ.get("INDEXER_LOCK_ID", "0")),
        )

        notifications = NotificationSettings(
            max_attempts=int(os.environ.get("NOTIFY_MAX_ATTEMPTS", "3")),
            base_delay=float(os.environ.get("NOTIFY_BASE_DELAY", "1.0")),
            workers=int(os.environ.get("NOTIFY_WORKERS", "2")),
            smtp_host=os.environ.get("SMTP_HOST", "localhost"),
            smtp_port=int(os.environ.get("SMTP_PORT", "587")),
            smtp_username=os.environ.get("SMTP_USERNAME") or None,
            smtp_password=os.environ.get("SMTP_PASSWORD") or None,
            smtp_from=os.environ.get("SMTP_FROM", "no-reply@arcadigitalis.com"),
            smtp_starttls=_env_bool("SMTP_STARTTLS", True),
            smtp_timeout=int(os.environ.get("SMTP_TIMEOUT", "10")),
            webhook_timeout=int(os.environ.get("WEBHOOK_TIMEOUT", "10")),
        )

        return cls(
            chain=chain,
            database_url=os.environ.get("DATABASE_URL", ""),
            indexer=indexer,
            notifications=notifications,
        )

    def with_chain_id(self, chain_id: int) -> "IndexerConfig":
        """Create a new config with the chain ID reported by the RPC.

        Args:
            chain_id: The chain ID from the connected RPC

        Returns:
            New IndexerConfig instance with chain_id set

        Raises:
            ValueError: If a different chain ID was configured explicitly
        """
        if self.chain.chain_id is not None and self.chain.chain_id != chain_id:
            raise ValueError(
                f"Configured chain ID {self.chain.chain_id} does not match "
                f"RPC chain ID {chain_id}"
            )
        return replace(self, chain=replace(self.chain, chain_id=chain_id))

    def log_config(self) -> None:
        """Log the configuration in a readable format (hiding sensitive data)."""
        logger.info("=" * 60)
        logger.info("Arca Indexer Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  Contract: {self.chain.contract_address}")
        logger.info(f"  Chain ID: {self.chain.chain_id if self.chain.chain_id else '[FROM RPC]'}")

        logger.info("Indexer Settings:")
        logger.info(f"  Enabled: {self.indexer.enabled}")
        logger.info(f"  Confirmation Depth: {self.indexer.confirmation_depth} blocks")
        logger.info(f"  Start Block: {self.indexer.start_block}")
        logger.info(f"  Polling Interval: {self.indexer.polling_interval} seconds")
        logger.info(f"  Request Timeout: {self.indexer.request_timeout} seconds")
        if self.indexer.max_blocks_per_cycle:
            logger.info(f"  Max Blocks Per Cycle: {self.indexer.max_blocks_per_cycle}")

        logger.info("Notifications:")
        logger.info(f"  Max Attempts: {self.notifications.max_attempts}")
        logger.info(f"  Base Delay: {self.notifications.base_delay} seconds")
        logger.info(f"  Workers: {self.notifications.workers}")
        logger.info(f"  SMTP: {self.notifications.smtp_host}:{self.notifications.smtp_port}")
        logger.info(
            f"  SMTP Credentials: {'[SET]' if self.notifications.smtp_password else '[NOT SET]'}"
        )

        logger.info(f"Database: {'[SET]' if self.database_url else '[NOT SET]'}")
        logger.info("=" * 60)
