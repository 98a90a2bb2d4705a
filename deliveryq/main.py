"""Main entry point for the notification delivery queue service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from deliveryq.config.environment import EnvironmentConfig
from deliveryq.config.exceptions import ConfigurationError
from deliveryq.config.loader import load_config, validate_config_file
from deliveryq.config.models import AppConfig
from deliveryq.logging import get_logger
from deliveryq.logging.config import configure_logging
from deliveryq.notifications.templates import TemplateRenderer
from deliveryq.persistence.database import close_database, get_session, init_database
from deliveryq.persistence.exceptions import PersistenceError
from deliveryq.persistence.repositories import QueueRepository
from deliveryq.queue.processor import QueueProcessor
from deliveryq.scheduler import SchedulerService
from deliveryq.transports.factory import get_transport

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI flag > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_processor(app_config: AppConfig, env_config: EnvironmentConfig) -> QueueProcessor:
    """Wire the transport, renderer and processor from configuration."""
    transport = get_transport(env_config, app_config.email)
    renderer = TemplateRenderer(
        frontend_url=app_config.links.frontend_url,
        preview_limit=app_config.queue.digest_preview_limit,
    )
    return QueueProcessor(
        transport=transport,
        renderer=renderer,
        queue_config=app_config.queue,
    )


def print_stats() -> None:
    """Print queue item counts per status to stdout."""
    with get_session() as session:
        counts = QueueRepository(session).count_by_status()

    width = max(len(status) for status in counts)
    for status, count in counts.items():
        print(f"{status:<{width}}  {count}")
    print(f"{'total':<{width}}  {sum(counts.values())}")


def run_daemon(processor: QueueProcessor, interval_seconds: int) -> None:
    """Run cycles on a schedule until SIGINT or SIGTERM."""
    shutdown_event = threading.Event()

    scheduler_service = SchedulerService(
        cycle_callable=processor.run_cycle,
        interval_seconds=interval_seconds,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()
    logger.info(
        "Scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )
        scheduler_service.shutdown(wait=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deliveryq",
        description="Notification delivery queue - batches, retries and delivers notification emails",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--run-once",
        action="store_true",
        help="Run a single processing cycle and exit",
    )
    mode.add_argument(
        "--stats",
        action="store_true",
        help="Print queue item counts by status and exit",
    )
    mode.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    return parser


def main(argv=None) -> int:
    """
    Main entry point for the delivery queue.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    if args.validate_config:
        config_path = args.config or Path("config.yaml")
        if not config_path.exists():
            print(f"Configuration file not found: {config_path}", file=sys.stderr)
            return 1
        return 0 if validate_config_file(config_path) else 1

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=os.environ.get("ENVIRONMENT", "local"),
        )

        logger.info(
            "Notification delivery queue starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "run_once": args.run_once,
            },
        )

        init_database(env_config.database_url)

        if args.stats:
            print_stats()
            return 0

        processor = build_processor(app_config, env_config)
        logger.info(
            "Configuration loaded",
            extra={
                "event": "config.loaded",
                "transport": app_config.email.transport,
                "process_interval_seconds": app_config.queue.process_interval_seconds,
                "retention_seconds": app_config.queue.retention_seconds,
            },
        )

        if args.run_once:
            result = processor.run_cycle()
            logger.info(
                f"Single cycle completed: {result.expired} expired, "
                f"{result.batches.groups_consolidated} digests, "
                f"{result.delivery.sent} sent, "
                f"{result.delivery.retried} retried, "
                f"{result.delivery.failed} failed",
                extra={"event": "service.run_once.completed", "aborted": result.aborted},
            )
            return 1 if result.aborted else 0

        run_daemon(processor, app_config.queue.process_interval_seconds)
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except PersistenceError as e:
        print(f"Database Error: {e}", file=sys.stderr)
        logger.error(
            f"Database error: {e}",
            extra={"event": "service.database_error", "error_type": type(e).__name__},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        return 1
    finally:
        close_database()
        logger.info(
            "Notification delivery queue stopped",
            extra={
                "event": "service.stopping",
                "uptime_seconds": round(time.time() - start_time, 2),
            },
        )


if __name__ == "__main__":
    sys.exit(main())
