#!/usr/bin/env python3
"""Entry point for the Arca indexer service.

Loads configuration from the environment (and a local .env file when present),
then runs the chain poller and notification dispatcher until interrupted.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from arca_indexer.indexer import IndexerService
from arca_indexer.utils.log_masking import MaskingFormatter


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Every handler gets a MaskingFormatter so secrets never reach the output.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    formatter = MaskingFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)


# Get logger for this module
logger = logging.getLogger(__name__)


async def main() -> None:
    """Main entry point for the Arca indexer.

    Parses startup arguments, loads configuration from environment,
    and starts the indexer service.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Arca Indexer - mirror policy contract events and drive notifications",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  ARCA_RPC_URL           - RPC endpoint of the monitored chain
  ARCA_CONTRACT_ADDRESS  - Policy proxy contract address
  ARCA_CHAIN_ID          - Expected chain ID (optional, checked against the RPC)
  DATABASE_URL           - SQLAlchemy database URL
  CONFIRMATION_DEPTH     - Blocks behind head treated as final (default: 12)
  START_BLOCK            - First block to scan on an empty ledger (default: 0)
  POLLING_INTERVAL       - Delay between poll cycles in seconds (default: 15)
  NOTIFY_MAX_ATTEMPTS    - Delivery attempts per subscription (default: 3)
  SMTP_HOST / SMTP_PORT  - Mail relay for email notifications
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single poll cycle and exit"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("=== Arca Indexer Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        service: IndexerService = IndexerService.from_env()

        if args.once:
            completed = await service.run_once()
            sys.exit(0 if completed else 1)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, service.stop)

        await service.run()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - ARCA_RPC_URL: RPC endpoint of the monitored chain")
        logger.error("  - ARCA_CONTRACT_ADDRESS: Policy proxy contract address")
        logger.error("  - DATABASE_URL: Database connection URL")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
