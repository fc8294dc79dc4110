"""
Entry point for the analysis consumer.

Usage:
    # Consume queued modules, 5 at a time
    python -m analysis_consumer consume

    # Consume 10 modules concurrently with info logging
    python -m analysis_consumer consume -c 10 --log-level INFO

    # Disable the metrics server
    python -m analysis_consumer consume --metrics-port 0

Configuration:
    Connection settings come from environment variables (see
    ConsumerConfig.from_env); the blacklist, GitHub tokens, git ref
    overrides and service factories come from the YAML file named by
    --config or CONSUMER_CONFIG_PATH (default: ./config.yaml).
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from prometheus_client import start_http_server

from analysis_consumer.config import ConsumerConfig
from analysis_consumer.consumer import DEFAULT_CONCURRENCY
from analysis_consumer.logging import get_logger
from analysis_consumer.logging.setup import setup_logging

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

# Global shutdown event, set by signal handlers
_shutdown_event: Optional[asyncio.Event] = None


def get_shutdown_event() -> asyncio.Event:
    """Get or create the global shutdown event."""
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def concurrency_arg(value: str) -> int:
    """argparse type for --concurrency: a positive integer."""
    try:
        concurrency = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid argument: --concurrency must be a number, got {value!r}"
        )
    if concurrency < 1:
        raise argparse.ArgumentTypeError("Invalid argument: --concurrency must be at least 1")
    return concurrency


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="analysis_consumer",
        description="Run the module analysis consumer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    consume = subparsers.add_parser(
        "consume",
        help="Consume queued modules, triggering the analysis of each",
        description=(
            "Consumes modules that are queued, triggering the analysis process "
            "for each module."
        ),
    )
    consume.add_argument(
        "-c",
        "--concurrency",
        type=concurrency_arg,
        default=DEFAULT_CONCURRENCY,
        help=f"Number of modules to consume concurrently (default: {DEFAULT_CONCURRENCY})",
    )
    consume.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: CONSUMER_CONFIG_PATH or ./config.yaml)",
    )
    consume.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Port for Prometheus metrics server, 0 to disable (default: 8000)",
    )
    consume.add_argument(
        "--no-json-logs",
        action="store_true",
        help="Write plain-text instead of JSON log files",
    )
    consume.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        default="WARNING",
        help="Console logging level (default: WARNING)",
    )
    consume.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    return build_parser().parse_args(argv)


async def run_consumer(config: ConsumerConfig, concurrency: int) -> None:
    """Run the analysis worker until a shutdown signal arrives.

    In-flight deliveries are allowed to finish before the worker exits.
    """
    from analysis_consumer.worker import AnalysisWorker

    worker = AnalysisWorker(config, concurrency=concurrency)
    shutdown_event = get_shutdown_event()

    async def shutdown_watcher():
        """Wait for shutdown signal and stop worker gracefully."""
        await shutdown_event.wait()
        logger.info("Shutdown signal received, stopping analysis worker...")
        await worker.stop()

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        await worker.start()
    finally:
        if shutdown_event.is_set():
            # The watcher is stopping the worker; let it commit and leave the group
            await watcher_task
        else:
            watcher_task.cancel()
            try:
                await watcher_task
            except asyncio.CancelledError:
                pass
        await worker.stop()


def setup_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """Set up signal handlers for graceful shutdown.

    The first SIGINT/SIGTERM sets the shutdown event; the second cancels
    all tasks.
    """

    def handle_signal(sig):
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    # Signal handlers are not supported on Windows
    if sys.platform == "win32":
        return

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)


def main(argv: Optional[List[str]] = None) -> None:
    global logger

    args = parse_args(argv)

    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))
    setup_logging(
        name="analysis_consumer",
        stage=args.command,
        domain="npms",
        log_dir=log_dir,
        json_format=not args.no_json_logs,
        console_level=getattr(logging, args.log_level),
        worker_id=os.getenv("WORKER_ID", f"npms-analyzer-{args.command}"),
    )

    # Re-get logger after setup to use new handlers
    logger = get_logger(__name__)

    try:
        config = ConsumerConfig.load(args.config)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.metrics_port:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_signal_handlers(loop)

    try:
        loop.run_until_complete(run_consumer(config, args.concurrency))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    except asyncio.CancelledError:
        logger.warning("Consumer cancelled")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        loop.close()
        logger.info("Consumer shutdown complete")


if __name__ == "__main__":
    main()
