from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from raffle.config import load_settings
from raffle.services.container import build_services

from .config import load_config
from .scheduler import ExpiryScheduler


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


async def run(args: argparse.Namespace) -> None:
    settings = load_config(args.env_file)
    app_settings = load_settings(args.env_file)
    configure_logging(args.verbose)
    logger = logging.getLogger("raffle.sweeper")

    services = build_services(app_settings)
    services.db.create_all()
    scheduler = ExpiryScheduler(settings, services.sweeper, logger=logger)

    try:
        if args.once or settings.run_only_once:
            report = await scheduler.run_once()
            logger.info(
                "Sweep done: cancelled=%s reminded=%s failures=%s",
                len(report.cancelled_orders), len(report.reminded_orders), report.failures,
            )
            return
        await scheduler.run_forever()
    finally:
        services.db.dispose()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Raffle reservation expiry sweeper")
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file with settings")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging (default INFO)."
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("Sweeper stopped by user.")


if __name__ == "__main__":
    main()
