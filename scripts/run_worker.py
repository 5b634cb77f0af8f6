#!/usr/bin/env python3
"""
Notification Worker — runs the delayed-job consumer until SIGINT/SIGTERM.

Usage:
    python scripts/run_worker.py                         # config/settings.yaml
    python scripts/run_worker.py --config prod.yaml
    python scripts/run_worker.py --concurrency 10 --console-logs
    python scripts/run_worker.py --dry-run               # log sends instead of delivering
"""
import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog

from backend.sender import LoggingNotificationSender
from config.log_setup import configure_logging
from config.settings import load_settings
from core.service import NotificationService

logger = structlog.get_logger()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run the notification worker")
    parser.add_argument("--config", help="Path to settings YAML (default: $NOTIFY_CONFIG)")
    parser.add_argument("--concurrency", type=int, help="Jobs processed in parallel")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs")
    parser.add_argument("--dry-run", action="store_true", help="Log notifications instead of sending")
    return parser.parse_args(argv)


async def run(args) -> int:
    settings = load_settings(args.config)
    if args.concurrency:
        settings.queue.worker_concurrency = args.concurrency
    configure_logging(
        json_logs=settings.logging.json and not args.console_logs,
        level=settings.logging.level,
    )

    sender = LoggingNotificationSender() if args.dry_run else None
    service = NotificationService(settings, sender=sender)
    await service.open()
    if not service.queue.is_available:
        logger.error("worker_exiting", reason="queue unavailable")
        await service.close()
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await service.worker.start_background()
    logger.info("worker_running", concurrency=settings.queue.worker_concurrency)
    await stop.wait()

    logger.info("worker_shutting_down")
    await service.close()
    return 0


def main():
    sys.exit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
