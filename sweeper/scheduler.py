from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional, Protocol

from raffle.types import SweepReport

from .config import SweeperSettings


class SweeperProtocol(Protocol):
    def release_expired(self, now: Optional[dt.datetime] = None) -> SweepReport:
        ...

    def send_reminders(self, now: Optional[dt.datetime] = None) -> SweepReport:
        ...


class ExpiryScheduler:
    """Runs the reservation expiry sweep on a fixed interval."""

    def __init__(
        self,
        settings: SweeperSettings,
        sweeper: SweeperProtocol,
        clock: Callable[[], dt.datetime] = dt.datetime.utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._sweeper = sweeper
        self._clock = clock
        self._logger = logger or logging.getLogger("raffle.sweeper")

    async def run_forever(self) -> None:
        interval = self._settings.poll_interval_seconds
        self._logger.info("Sweep loop started; interval=%s", interval)
        while True:
            try:
                await self._attempt_sweep()
            except Exception as exc:
                self._logger.exception("Sweep iteration failed: %s", exc)
            if self._settings.run_only_once:
                self._logger.info("Run-once flag set; exiting loop.")
                return
            await asyncio.sleep(interval)

    async def run_once(self) -> SweepReport:
        return await self._attempt_sweep()

    async def _attempt_sweep(self) -> SweepReport:
        now = self._clock()
        expired = await asyncio.to_thread(self._sweeper.release_expired, now)
        if expired.cancelled_orders:
            self._logger.info("Cancelled expired orders: %s", list(expired.cancelled_orders))

        reminded = SweepReport()
        if self._settings.send_reminders:
            reminded = await asyncio.to_thread(self._sweeper.send_reminders, now)
            if reminded.reminded_orders:
                self._logger.info("Reminded pending orders: %s", list(reminded.reminded_orders))

        failures = expired.failures + reminded.failures
        if failures:
            self._logger.warning("Sweep finished with %s failures", failures)
        return SweepReport(
            cancelled_orders=expired.cancelled_orders,
            reminded_orders=reminded.reminded_orders,
            failures=failures,
        )
