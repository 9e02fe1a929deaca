#!/usr/bin/env python3
"""Drone simulator service entry point.

Usage:
    python -m app --host 0.0.0.0 --port 8000 --autostart
"""

import argparse
import sys

import uvicorn
from loguru import logger

from app.config import settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Drone telemetry simulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m app
  python -m app --port 9000 --autostart
  WS_URL=ws://backend:8080/drone-data STREAMING_METHOD=both python -m app
""",
    )
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port")
    parser.add_argument("--log-level", default=settings.log_level, help="Log level (DEBUG, INFO, ...)")
    parser.add_argument("--autostart", action="store_true",
                        help="Start the simulation as soon as the service is up")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    if args.autostart:
        settings.autostart = True

    uvicorn.run("app.main:app", host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
