"""Frame differencing motion detection and RMS sound detection."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)

MOTION_THRESHOLD_SCALE = 10000
SPECTRUM_FFT_SIZE = 512
SPECTRUM_DB_RANGE = (-100.0, -30.0)


class DetectorError(RuntimeError):
    """Raised when a detector cannot interpret its input."""


class TriggerSource(str, Enum):
    """Detector that produced a trigger."""

    MOTION = "motion"
    SOUND = "sound"


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    source: TriggerSource
    score: float
    timestamp: datetime


def motion_threshold(sensitivity: int) -> int:
    """Return the mean per-pixel difference needed to register motion."""

    # Larger sensitivity lowers the threshold.
    return (101 - int(sensitivity)) * MOTION_THRESHOLD_SCALE


def _intensity(frame) -> np.ndarray:
    array = np.asarray(frame)
    if array.size == 0:
        raise DetectorError("Frame has no pixels")
    if array.ndim == 3:
        if array.shape[2] == 0:
            raise DetectorError("Frame has no channels")
        return np.mean(array[..., :3].astype(np.float64), axis=2)
    if array.ndim == 2:
        return array.astype(np.float64)
    raise DetectorError(f"Unsupported frame shape for motion detection: {array.shape}")


@dataclass
class MotionDetector:
    """Compare consecutive frames and flag bulk intensity changes.

    Frames are reduced to a single intensity channel and sampled every
    ``stride`` rows and columns. The score is the mean absolute difference
    between the sampled pixels of the current and the previous frame.
    """

    sensitivity: int = 20
    stride: int = 4
    active: bool = field(init=False, default=True)
    last_score: float | None = field(init=False, default=None)
    _previous: np.ndarray | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.sensitivity = int(self.sensitivity)
        self.stride = max(1, int(self.stride))

    @property
    def threshold(self) -> int:
        return motion_threshold(self.sensitivity)

    def reset(self) -> None:
        """Clear frame history and reactivate the detector."""

        self._previous = None
        self.last_score = None
        self.active = True

    def score(self, previous, current) -> float:
        """Return the mean sampled intensity difference between two frames."""

        return self._difference(self._sample(previous), self._sample(current))

    def process(self, frame, timestamp: datetime) -> TriggerEvent | None:
        if not self.active:
            return None
        try:
            sample = self._sample(frame)
            previous = self._previous
            self._previous = sample
            if previous is None:
                return None
            score = self._difference(previous, sample)
        except (DetectorError, TypeError, ValueError) as exc:
            logger.warning("Motion detector disabled: %s", exc)
            self.active = False
            self._previous = None
            return None
        self.last_score = score
        if score > self.threshold:
            return TriggerEvent(TriggerSource.MOTION, score, timestamp)
        return None

    def _sample(self, frame) -> np.ndarray:
        return _intensity(frame)[:: self.stride, :: self.stride]

    @staticmethod
    def _difference(before: np.ndarray, after: np.ndarray) -> float:
        if before.shape != after.shape:
            raise DetectorError(
                f"Frame dimensions changed from {before.shape} to {after.shape}"
            )
        return float(np.abs(after - before).mean())


def rms_energy(samples) -> float:
    """Root mean square of raw amplitude samples."""

    array = np.asarray(samples, dtype=np.float64)
    if array.size == 0:
        return 0.0
    return float(math.sqrt(np.mean(np.square(array))))


def spectrum_energy(samples, *, fft_size: int = SPECTRUM_FFT_SIZE) -> float:
    """Root mean square of the byte-scaled magnitude spectrum.

    The most recent ``fft_size`` samples (expected in ``[-1, 1]``) are
    Blackman windowed and transformed. Each bin's magnitude in decibels is
    mapped linearly from ``SPECTRUM_DB_RANGE`` onto 0-255, so the score shares
    the 0-255 scale of the sensitivity setting.
    """

    array = np.asarray(samples, dtype=np.float64)
    if array.size == 0:
        return 0.0
    window = array[-fft_size:]
    spectrum = np.fft.rfft(window * np.blackman(window.size), n=fft_size)
    magnitudes = np.abs(spectrum[: fft_size // 2]) / float(fft_size)
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitudes)
    low, high = SPECTRUM_DB_RANGE
    scaled = np.clip((decibels - low) * 255.0 / (high - low), 0.0, 255.0)
    return rms_energy(scaled)


_SOUND_MODES = {
    "amplitude": rms_energy,
    "spectrum": spectrum_energy,
}


@dataclass
class SoundDetector:
    """Flag audio blocks whose energy exceeds the sensitivity value."""

    sensitivity: int = 10
    mode: str = "amplitude"
    active: bool = field(init=False, default=True)
    last_score: float | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.sensitivity = int(self.sensitivity)
        if self.mode not in _SOUND_MODES:
            raise ValueError(f"Unknown sound detection mode {self.mode!r}")

    def reset(self) -> None:
        self.last_score = None
        self.active = True

    def score(self, block) -> float:
        array = np.asarray(block)
        if array.ndim != 1:
            raise DetectorError(f"Audio block must be one dimensional, got {array.shape}")
        return _SOUND_MODES[self.mode](array)

    def process(self, block, timestamp: datetime) -> TriggerEvent | None:
        if not self.active:
            return None
        try:
            if np.asarray(block).size == 0:
                return None
            score = self.score(block)
        except (DetectorError, TypeError, ValueError) as exc:
            logger.warning("Sound detector disabled: %s", exc)
            self.active = False
            return None
        self.last_score = score
        if score > self.sensitivity:
            return TriggerEvent(TriggerSource.SOUND, score, timestamp)
        return None


__all__ = [
    "DetectorError",
    "MOTION_THRESHOLD_SCALE",
    "SPECTRUM_DB_RANGE",
    "SPECTRUM_FFT_SIZE",
    "MotionDetector",
    "SoundDetector",
    "TriggerEvent",
    "TriggerSource",
    "motion_threshold",
    "rms_energy",
    "spectrum_energy",
]
