from __future__ import annotations

import asyncio
import heapq
from datetime import datetime, timedelta, timezone

import pytest


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Virtual clock whose ``sleep`` only returns when ``advance`` passes it."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []
        self._waiters: list[tuple[datetime, int, asyncio.Future]] = []
        self._counter = 0

    def __call__(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        future = asyncio.get_running_loop().create_future()
        self._counter += 1
        heapq.heappush(
            self._waiters,
            (self.now + timedelta(seconds=seconds), self._counter, future),
        )
        await future

    async def advance(self, seconds: float) -> None:
        target = self.now + timedelta(seconds=seconds)
        await settle()
        while self._waiters and self._waiters[0][0] <= target:
            due, _, future = heapq.heappop(self._waiters)
            self.now = max(self.now, due)
            if not future.done():
                future.set_result(None)
            await settle()
        self.now = target
        await settle()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
