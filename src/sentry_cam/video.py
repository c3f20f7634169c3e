"""Encoding of captured clips to MP4 files and of stills to JPEG."""
from __future__ import annotations

import logging
from fractions import Fraction
from pathlib import Path
from typing import Iterable

import av
import numpy as np
import simplejpeg

logger = logging.getLogger(__name__)

CONTAINER_EXTENSION = "mp4"
CODEC_PREFERENCE = ("libx264", "h264", "mpeg4")


def as_rgb24(frame, *, even: bool = True) -> np.ndarray:
    """Convert *frame* to a contiguous ``uint8`` RGB array.

    Greyscale and single channel frames are expanded, extra channels are
    dropped and values outside 0-255 are clipped. With ``even`` the frame is
    cropped to even dimensions as required by 4:2:0 encoders.
    """

    array = np.asarray(frame)
    if array.ndim == 2:
        array = array[:, :, np.newaxis]
    if array.ndim != 3 or array.shape[2] == 0:
        raise ValueError(f"Cannot encode frame with shape {array.shape}")
    if array.shape[2] < 3:
        array = np.repeat(array[:, :, :1], 3, axis=2)
    else:
        array = array[:, :, :3]
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    if even:
        height, width = array.shape[:2]
        array = array[: height - height % 2, : width - width % 2]
    return np.ascontiguousarray(array)


def _frame_rate(fps: float) -> Fraction:
    if fps <= 0:
        raise ValueError("fps must be positive")
    return Fraction(fps).limit_denominator(1000)


class ClipWriter:
    """Write RGB frames into an MP4 file.

    The container is opened on the first frame, whose (even-cropped) size
    fixes the size of the stream; later frames of a different size are
    cropped or zero padded to fit.
    """

    def __init__(self, path: Path | str, fps: float, *, codecs: Iterable[str] = CODEC_PREFERENCE) -> None:
        self.path = Path(path)
        self.rate = _frame_rate(fps)
        self.codecs = tuple(codecs)
        self.frames_written = 0
        self._container = None
        self._stream = None
        self._size: tuple[int, int] | None = None
        self._closed = False

    @property
    def codec(self) -> str | None:
        return None if self._stream is None else self._stream.codec_context.name

    def write(self, frame) -> None:
        if self._closed:
            raise RuntimeError("Clip writer has been closed")
        rgb = as_rgb24(frame)
        if self._stream is None:
            self._start(rgb.shape[0], rgb.shape[1])
        rgb = self._fit(rgb)
        video_frame = av.VideoFrame.from_ndarray(rgb, format="rgb24")
        video_frame.pts = self.frames_written
        self.frames_written += 1
        for packet in self._stream.encode(video_frame):
            self._container.mux(packet)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._stream is None:
            return
        for packet in self._stream.encode():
            self._container.mux(packet)
        self._container.close()
        logger.debug("Wrote %d frames to %s (%s)", self.frames_written, self.path, self.codec)

    def __enter__(self) -> "ClipWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _start(self, height: int, width: int) -> None:
        if height < 2 or width < 2:
            raise ValueError(f"Frame of {width}x{height} is too small to encode")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        container = av.open(self.path.as_posix(), mode="w")
        stream = None
        for name in self.codecs:
            try:
                stream = container.add_stream(name, rate=self.rate)
                break
            except (av.error.FFmpegError, ValueError) as exc:
                logger.debug("Codec %s unavailable: %s", name, exc)
        if stream is None:
            container.close()
            raise RuntimeError(f"None of the codecs {self.codecs} are available")
        stream.width = width
        stream.height = height
        stream.pix_fmt = "yuv420p"
        stream.time_base = 1 / self.rate
        self._container = container
        self._stream = stream
        self._size = (height, width)

    def _fit(self, rgb: np.ndarray) -> np.ndarray:
        height, width = self._size
        if rgb.shape[:2] == (height, width):
            return rgb
        fitted = np.zeros((height, width, 3), dtype=np.uint8)
        rows = min(height, rgb.shape[0])
        cols = min(width, rgb.shape[1])
        fitted[:rows, :cols] = rgb[:rows, :cols]
        return fitted


def encode_frames_to_mp4(path: Path | str, frames: Iterable, *, fps: float) -> Path:
    """Encode *frames* into an MP4 file at *path* and return the path."""

    frames = list(frames)
    if not frames:
        raise ValueError("At least one frame is required for encoding")
    with ClipWriter(path, fps) as writer:
        for frame in frames:
            writer.write(frame)
    return writer.path


def encode_jpeg(frame, *, quality: int = 80) -> bytes:
    rgb = as_rgb24(frame, even=False)
    return simplejpeg.encode_jpeg(rgb, quality=quality, colorspace="RGB")


__all__ = [
    "CODEC_PREFERENCE",
    "CONTAINER_EXTENSION",
    "ClipWriter",
    "as_rgb24",
    "encode_frames_to_mp4",
    "encode_jpeg",
]
