from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authartic.core.clock import Clock, as_utc, utc_now
from authartic.services.quota import expire_due

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, hour: int) -> float:
    """Seconds from `now` until the next hour:00 UTC (a full day if we are exactly on it)."""
    now = as_utc(now)
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_expiry_sweeper(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    hour: int = 0,
    clock: Clock = utc_now,
) -> None:
    """Daily loop; runs until cancelled."""
    logger.info("Expiry sweeper scheduled daily at %02d:00 UTC", hour)
    while True:
        await asyncio.sleep(seconds_until_next_run(clock(), hour))
        try:
            await expire_due(session_factory, clock=clock)
        except Exception:
            # the listing query itself failed; try again tomorrow
            logger.exception("Expiry sweep failed")
