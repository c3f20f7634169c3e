"""Media source abstractions providing video frames and audio blocks."""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16000
DEFAULT_AUDIO_BLOCK_SECONDS = 0.2

PERMISSION_DENIED_MESSAGE = (
    "Could not access camera/microphone. Please check permissions and refresh."
)


class MediaAccessError(RuntimeError):
    """Raised when the camera or microphone cannot be opened."""


class MediaSource(ABC):
    """Abstract source capable of producing RGB frames and audio blocks.

    ``open`` is the only call allowed to block on the user granting access.
    Frame dimensions must stay fixed between ``open`` and ``release``.

    Audio blocks are 1-D float arrays of mono samples. The amplitude sound
    mode compares their RMS directly with the sensitivity, so the source's
    units set the scale (e.g. 16-bit PCM counts). The spectrum mode expects
    samples normalised to ``[-1, 1]`` and scores on a 0-255 scale.
    """

    @abstractmethod
    async def open(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def read_frame(self) -> np.ndarray:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def read_audio(self) -> np.ndarray:  # pragma: no cover - interface only
        raise NotImplementedError

    def release(self) -> None:  # pragma: no cover - optional override
        return None


class SyntheticMediaSource(MediaSource):
    """Generates a moving test pattern and a quiet tone for development."""

    def __init__(
        self,
        width: int = 320,
        height: int = 240,
        *,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        block_seconds: float = DEFAULT_AUDIO_BLOCK_SECONDS,
        tone_hz: float = 440.0,
        amplitude: float = 4.0,
    ) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Frame dimensions must be positive")
        self._width = int(width)
        self._height = int(height)
        self._sample_rate = int(sample_rate)
        self._block_size = max(1, int(sample_rate * block_seconds))
        self._tone_hz = float(tone_hz)
        self._amplitude = float(amplitude)
        self._start = time.perf_counter()
        self._opened = False
        self._audio_offset = 0

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> None:
        self._start = time.perf_counter()
        self._audio_offset = 0
        self._opened = True

    async def read_frame(self) -> np.ndarray:
        self._ensure_open()
        elapsed = time.perf_counter() - self._start
        horizontal = np.linspace(0, 255, self._width, dtype=np.uint8)
        vertical = np.linspace(0, 255, self._height, dtype=np.uint8).reshape(-1, 1)
        red = np.tile(horizontal, (self._height, 1))
        green = np.roll(red, int(elapsed * 10), axis=1)
        blue = np.tile(vertical, (1, self._width))
        frame = np.stack([red, green, blue], axis=2)
        return frame.astype(np.uint8)

    async def read_audio(self) -> np.ndarray:
        self._ensure_open()
        index = np.arange(self._audio_offset, self._audio_offset + self._block_size)
        self._audio_offset += self._block_size
        tone = np.sin(2.0 * np.pi * self._tone_hz * index / float(self._sample_rate))
        return (tone * self._amplitude).astype(np.float32)

    def release(self) -> None:
        self._opened = False

    def _ensure_open(self) -> None:
        if not self._opened:
            raise RuntimeError("Media source is not open")


class StaticMediaSource(MediaSource):
    """Replays fixed frames and audio blocks, repeating the last of each."""

    def __init__(
        self,
        frames: Sequence[np.ndarray],
        audio_blocks: Sequence[np.ndarray] | None = None,
        *,
        deny_access: bool = False,
    ) -> None:
        if not frames:
            raise ValueError("At least one frame is required")
        self._frames = [np.asarray(frame) for frame in frames]
        blocks = audio_blocks if audio_blocks else [np.zeros(1, dtype=np.float32)]
        self._blocks = [np.asarray(block) for block in blocks]
        self._deny_access = deny_access
        self._frame_index = 0
        self._block_index = 0
        self.opened = False
        self.released = False

    async def open(self) -> None:
        if self._deny_access:
            raise MediaAccessError(PERMISSION_DENIED_MESSAGE)
        self.opened = True
        self.released = False

    async def read_frame(self) -> np.ndarray:
        frame = self._frames[min(self._frame_index, len(self._frames) - 1)]
        self._frame_index += 1
        return frame

    async def read_audio(self) -> np.ndarray:
        block = self._blocks[min(self._block_index, len(self._blocks) - 1)]
        self._block_index += 1
        return block

    def release(self) -> None:
        self.opened = False
        self.released = True


__all__ = [
    "DEFAULT_AUDIO_BLOCK_SECONDS",
    "DEFAULT_SAMPLE_RATE",
    "MediaAccessError",
    "MediaSource",
    "PERMISSION_DENIED_MESSAGE",
    "StaticMediaSource",
    "SyntheticMediaSource",
]
