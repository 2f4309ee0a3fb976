"""Per-sender admission control for attachment-bearing messages.

A window opens on the first admitted message and lasts ``window_seconds``;
once it has elapsed the next message opens a fresh window with a count of
one. Counts do not decay inside a window. This is a fixed window restarted on
demand rather than a true sliding window, which is all abuse throttling needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.config import RateLimitSettings, get_settings
from app.db.models.core import RateWindow
from app.db.session import Database
from app.logging import logger
from app.utils.datetime import ensure_utc, utc_now
from app.utils.locks import KeyedLock


@dataclass(frozen=True)
class WindowSnapshot:
    count: int
    window_start: datetime


Decision = Callable[[WindowSnapshot | None, datetime], tuple[WindowSnapshot, bool]]


def decide_admission(
    window: WindowSnapshot | None,
    now: datetime,
    *,
    limit: int,
    period: timedelta,
) -> tuple[WindowSnapshot, bool]:
    """Return the window to store and whether the message is admitted."""

    if window is None or now > window.window_start + period:
        return WindowSnapshot(count=1, window_start=now), True
    if window.count < limit:
        return WindowSnapshot(count=window.count + 1, window_start=window.window_start), True
    return window, False


class RateWindowStore(Protocol):
    async def apply(self, key: str, decide: Decision, now: datetime) -> bool:
        """Atomically read the window for ``key``, decide, persist and return admission."""


class InMemoryRateWindowStore:
    """Single-process store; windows are lost on restart.

    Expired windows are swept every ``sweep_interval`` calls so senders that
    stop writing do not stay in memory forever.
    """

    def __init__(
        self,
        period: timedelta = timedelta(hours=1),
        *,
        sweep_interval: int = 256,
    ) -> None:
        self.period = period
        self.sweep_interval = max(1, sweep_interval)
        self._windows: dict[str, WindowSnapshot] = {}
        self._locks = KeyedLock()
        self._calls = 0

    async def apply(self, key: str, decide: Decision, now: datetime) -> bool:
        self._calls += 1
        if self._calls % self.sweep_interval == 0:
            self.prune(now)
        async with self._locks.hold(key):
            current = self._windows.get(key)
            updated, admitted = decide(current, now)
            if admitted:
                self._windows[key] = updated
            return admitted

    def prune(self, now: datetime) -> int:
        """Drop windows that have fully elapsed; returns how many were removed."""

        cutoff = now - self.period
        expired = [key for key, window in self._windows.items() if window.window_start < cutoff]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("rate_windows_pruned", count=len(expired))
        return len(expired)

    def snapshot(self, key: str) -> WindowSnapshot | None:
        return self._windows.get(key)

    def __len__(self) -> int:
        return len(self._windows)


class DatabaseRateWindowStore:
    """Shared store for multi-process deployments, one row per sender."""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def apply(self, key: str, decide: Decision, now: datetime) -> bool:
        try:
            return await self._apply_once(key, decide, now)
        except IntegrityError:
            # Another process inserted the first window for this key; the row exists now.
            return await self._apply_once(key, decide, now)

    async def _apply_once(self, key: str, decide: Decision, now: datetime) -> bool:
        async with self.database.session() as session:
            stmt = select(RateWindow).where(RateWindow.address == key).with_for_update()
            row = (await session.execute(stmt)).scalar_one_or_none()
            current = (
                WindowSnapshot(count=row.count, window_start=ensure_utc(row.window_start))
                if row is not None
                else None
            )
            updated, admitted = decide(current, now)
            if admitted:
                if row is None:
                    session.add(
                        RateWindow(
                            address=key,
                            count=updated.count,
                            window_start=updated.window_start,
                        )
                    )
                else:
                    row.count = updated.count
                    row.window_start = updated.window_start
                await session.commit()
            return admitted


class RateLimiter:
    def __init__(
        self,
        store: RateWindowStore,
        settings: RateLimitSettings | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or get_settings().rate_limit
        self.store = store
        self.limit = self.settings.per_hour
        self.period = timedelta(seconds=self.settings.window_seconds)
        self.clock = clock

    async def admit(self, address: str) -> bool:
        def _decide(window: WindowSnapshot | None, now: datetime) -> tuple[WindowSnapshot, bool]:
            return decide_admission(window, now, limit=self.limit, period=self.period)

        admitted = await self.store.apply(address, _decide, self.clock())
        if not admitted:
            logger.info("rate_limit_rejected", address=address, limit=self.limit)
        return admitted


def build_rate_window_store(
    settings: RateLimitSettings, database: Database | None = None
) -> RateWindowStore:
    if settings.backend == "database":
        if database is None:
            raise ValueError("The database rate-limit backend needs a Database instance")
        return DatabaseRateWindowStore(database)
    return InMemoryRateWindowStore(timedelta(seconds=settings.window_seconds))


__all__ = [
    "DatabaseRateWindowStore",
    "InMemoryRateWindowStore",
    "RateLimiter",
    "RateWindowStore",
    "WindowSnapshot",
    "build_rate_window_store",
    "decide_admission",
]
