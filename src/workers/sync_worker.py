"""Sync worker for running the engine headless.

This module runs the sync engine as a standalone process: it loads the
configuration, syncs every enabled project on the configured interval and
logs notifications until it receives SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal
import sys
from typing import Any

from src.config.loader import ConfigurationLoader
from src.config.models import Config
from src.github.exceptions import AuthError
from src.workers.sync.engine import SyncEngine
from src.workers.sync.events import BadgeCounts, SyncEventListener
from src.workers.sync.registry import WatchedProject
from src.workers.sync.scheduler import SweepResult

logger = logging.getLogger(__name__)


class LoggingEventListener(SyncEventListener):
    """Reports engine events to the log."""

    async def on_badge_counts(self, counts: BadgeCounts) -> None:
        """Log the unread total."""
        logger.info(f"Unread items: {counts.total}")

    async def on_project_health(
        self, project: WatchedProject, failing: bool, reason: str | None
    ) -> None:
        """Log persistent project failures and recoveries."""
        if failing:
            logger.error(f"{project.full_name} keeps failing: {reason}")
        else:
            logger.info(f"{project.full_name} recovered")

    async def on_auth_failure(self, error: AuthError) -> None:
        """Log the halt; a restart with a valid token resumes syncing."""
        logger.error(f"Sync halted, check the GitHub token: {error}")

    async def on_sweep_complete(self, result: SweepResult) -> None:
        """Log the sweep summary."""
        logger.debug(f"Sweep finished: {result}")


class SyncWorker:
    """Runs a sync engine until shut down."""

    def __init__(self, config_path: str | None = None, log_level: str | None = None):
        """Initialize sync worker.

        Args:
            config_path: Optional path to configuration file
            log_level: Level given on the command line; overrides
                ``system.log_level`` from the configuration
        """
        self.config_path = config_path
        self.log_level = log_level
        self.config: Config | None = None
        self.engine: SyncEngine | None = None
        self.shutdown_event = asyncio.Event()

    async def initialize(self) -> None:
        """Load configuration and initialize the engine."""
        logger.info("Initializing sync worker...")

        loader = ConfigurationLoader()
        if self.config_path:
            self.config = loader.load_from_file(self.config_path)
        else:
            self.config = loader.load_default()

        if self.log_level is None:
            logging.getLogger().setLevel(self.config.system.log_level.value)

        logger.info(
            f"Configuration loaded: {len(self.config.projects)} project(s) configured"
        )

        self.engine = SyncEngine(self.config, listener=LoggingEventListener())
        await self.engine.initialize()

    async def run_once(self) -> SweepResult:
        """Run a single sweep over all enabled projects."""
        if not self.engine:
            raise RuntimeError("Worker not initialized. Call initialize() first.")
        return await self.engine.refresh_now()

    async def run(self) -> None:
        """Sync on schedule until a shutdown signal arrives."""
        if not self.engine:
            raise RuntimeError("Worker not initialized. Call initialize() first.")

        self._setup_signal_handlers()
        await self.engine.start()
        logger.info("Sync worker running")
        await self.shutdown_event.wait()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""

        def signal_handler(sig: int, frame: Any) -> None:
            logger.info(f"Received signal {sig}, initiating shutdown...")
            self.shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def shutdown(self) -> None:
        """Initiate graceful shutdown."""
        logger.info("Shutting down sync worker...")
        self.shutdown_event.set()

    async def cleanup(self) -> None:
        """Stop the engine and release its resources."""
        if self.engine:
            await self.engine.close()
        logger.info("Cleanup completed")


async def main() -> None:
    """Main entry point for the sync worker."""
    import argparse

    parser = argparse.ArgumentParser(description="Repository sync worker")
    parser.add_argument("--config", help="Configuration file path")
    parser.add_argument(
        "--log-level", help="Log level (default: system.log_level from the config)"
    )
    parser.add_argument(
        "--once", action="store_true", help="Run one sweep and exit"
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, (args.log_level or "INFO").upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    worker = SyncWorker(config_path=args.config, log_level=args.log_level)

    try:
        await worker.initialize()
        if args.once:
            result = await worker.run_once()
            logger.info(f"Sweep complete: {result}")
        else:
            await worker.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}")
        sys.exit(1)
    finally:
        await worker.cleanup()


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
