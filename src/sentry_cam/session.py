"""Bounded-duration capture windows and the media clips they produce."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np

from .video import encode_frames_to_mp4

logger = logging.getLogger(__name__)


class MediaClip:
    """In-memory media captured by one recording session.

    The clip is the media handle shared by the recording store and its
    collaborators. ``release`` drops the buffers; any later access raises
    ``RuntimeError``.
    """

    def __init__(
        self,
        frames: list[np.ndarray],
        audio: np.ndarray,
        *,
        fps: float,
        sample_rate: int | None = None,
    ) -> None:
        self._frames: list[np.ndarray] | None = list(frames)
        self._audio: np.ndarray | None = audio
        self.fps = float(fps) if fps > 0 else 1.0
        self.sample_rate = sample_rate

    @property
    def released(self) -> bool:
        return self._frames is None

    @property
    def frames(self) -> list[np.ndarray]:
        if self._frames is None:
            raise RuntimeError("Media clip has been released")
        return self._frames

    @property
    def audio(self) -> np.ndarray:
        if self._audio is None:
            raise RuntimeError("Media clip has been released")
        return self._audio

    @property
    def frame_count(self) -> int:
        return 0 if self._frames is None else len(self._frames)

    @property
    def duration_s(self) -> float:
        return self.frame_count / self.fps

    def still_frame(self, offset_s: float = 1.0) -> np.ndarray | None:
        """Return the frame *offset_s* seconds in, clamped to the last frame."""

        frames = self.frames
        if not frames:
            return None
        index = int(max(0.0, float(offset_s)) * self.fps)
        return frames[min(index, len(frames) - 1)]

    def export(self, path: Path | str) -> Path:
        """Encode the captured frames into an MP4 file at *path*."""

        return encode_frames_to_mp4(Path(path), self.frames, fps=self.fps)

    def release(self) -> None:
        self._frames = None
        self._audio = None


@dataclass
class RecordingSession:
    """Accumulates frames and audio between a trigger and its expiry."""

    started_at: datetime
    planned_duration: float
    frame_interval: float = 0.5
    sample_rate: int | None = None
    frames: list[np.ndarray] = field(default_factory=list)
    audio_blocks: list[np.ndarray] = field(default_factory=list)
    _finalized: bool = field(init=False, default=False)

    @property
    def ends_at(self) -> datetime:
        return self.started_at + timedelta(seconds=float(self.planned_duration))

    @property
    def finalized(self) -> bool:
        return self._finalized

    def add_frame(self, frame: np.ndarray) -> None:
        if self._finalized:
            return
        self.frames.append(np.array(frame, copy=True))

    def add_audio(self, block: np.ndarray) -> None:
        if self._finalized:
            return
        self.audio_blocks.append(np.asarray(block).ravel().copy())

    def finalize(self) -> MediaClip:
        if self._finalized:
            raise RuntimeError("Recording session already finalized")
        self._finalized = True
        if self.audio_blocks:
            audio = np.concatenate(self.audio_blocks)
        else:
            audio = np.zeros(0, dtype=np.float32)
        fps = 1.0 / self.frame_interval if self.frame_interval > 0 else 1.0
        clip = MediaClip(self.frames, audio, fps=fps, sample_rate=self.sample_rate)
        logger.debug(
            "Recording session finalized with %d frames and %d audio samples",
            clip.frame_count,
            audio.size,
        )
        self.frames = []
        self.audio_blocks = []
        return clip


__all__ = ["MediaClip", "RecordingSession"]
