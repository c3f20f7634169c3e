"""Periodic pull loops feeding frames and audio blocks to consumers."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable

import numpy as np

from .media import MediaSource

logger = logging.getLogger(__name__)

DEFAULT_FRAME_INTERVAL = 0.5
DEFAULT_AUDIO_INTERVAL = 0.2

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]
Consumer = Callable[[np.ndarray, datetime], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PeriodicSampler(ABC):
    """Pull one item from a media source every ``interval`` seconds."""

    kind = "sample"

    def __init__(
        self,
        source: MediaSource,
        consumer: Consumer,
        *,
        interval: float,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError("Sampling interval must be positive")
        self._source = source
        self._consumer = consumer
        self._interval = float(interval)
        self._clock = clock
        self._sleep = sleep
        self.samples_taken = 0
        self.read_failures = 0

    @property
    def interval(self) -> float:
        return self._interval

    @abstractmethod
    async def _read(self) -> np.ndarray:  # pragma: no cover - interface only
        raise NotImplementedError

    async def tick(self) -> None:
        """Read one item and hand it to the consumer."""

        try:
            item = await self._read()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.read_failures += 1
            logger.warning("Failed to read %s from media source: %s", self.kind, exc)
            return
        self.samples_taken += 1
        try:
            self._consumer(item, self._clock())
        except Exception:
            logger.exception("Consumer failed while handling %s", self.kind)

    async def run(self) -> None:
        while True:
            await self.tick()
            await self._sleep(self._interval)


class FrameSampler(PeriodicSampler):
    kind = "frame"

    def __init__(self, source: MediaSource, consumer: Consumer, *, interval: float = DEFAULT_FRAME_INTERVAL, **kwargs) -> None:
        super().__init__(source, consumer, interval=interval, **kwargs)

    async def _read(self) -> np.ndarray:
        return await self._source.read_frame()


class AudioSampler(PeriodicSampler):
    kind = "audio block"

    def __init__(self, source: MediaSource, consumer: Consumer, *, interval: float = DEFAULT_AUDIO_INTERVAL, **kwargs) -> None:
        super().__init__(source, consumer, interval=interval, **kwargs)

    async def _read(self) -> np.ndarray:
        return await self._source.read_audio()


__all__ = [
    "AudioSampler",
    "DEFAULT_AUDIO_INTERVAL",
    "DEFAULT_FRAME_INTERVAL",
    "FrameSampler",
    "PeriodicSampler",
    "utcnow",
]
