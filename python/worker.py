#!/usr/bin/env python3
"""
Screening Worker

Consumes the durable screening job queue and runs screenings until
interrupted. Run one or more of these next to the API (started with
RUN_WORKERS=false) to scale execution independently of submission.

Usage:
    python worker.py [--workers 4] [--once]
"""

import sys
import signal
import argparse
import logging
import threading
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from bootstrap import BACKEND_DATABASE, build_service
from config_manager import get_config, ConfigurationError
from log_utils import setup_logging

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Run screening queue workers")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--workers", type=int, help="Number of worker threads (default: queue.workers)")
    parser.add_argument("--once", action="store_true", help="Drain the queue once and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    try:
        config = get_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config.logging)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    service = build_service(config, backend=BACKEND_DATABASE)
    job_name = config.queue.job_name

    if args.once:
        try:
            service.runner.requeue_stuck_jobs()
            executed = service.runner.drain(job_name)
            logger.info(f"Queue drained: {executed} job(s) executed")
        finally:
            service.shutdown()
        return

    stop = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping workers...")
        stop.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    service.start_workers(args.workers)
    try:
        stop.wait()
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
