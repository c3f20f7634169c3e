from __future__ import annotations

from datetime import datetime, timedelta, timezone

import av
import numpy as np
import pytest

from sentry_cam.session import MediaClip, RecordingSession
from sentry_cam.video import ClipWriter, as_rgb24, encode_jpeg

START = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)


def _frames(count: int, size: tuple[int, int] = (32, 48)) -> list[np.ndarray]:
    height, width = size
    return [np.full((height, width, 3), index * 10, dtype=np.uint8) for index in range(count)]


def test_recording_session_window_and_finalize() -> None:
    session = RecordingSession(started_at=START, planned_duration=10, frame_interval=0.5)
    assert session.ends_at == START + timedelta(seconds=10)

    for frame in _frames(3):
        session.add_frame(frame)
    session.add_audio(np.ones(4))
    session.add_audio(np.zeros((2, 2)))

    clip = session.finalize()
    assert session.finalized is True
    assert clip.frame_count == 3
    assert clip.fps == 2.0
    assert clip.duration_s == pytest.approx(1.5)
    assert clip.audio.shape == (8,)

    # Late samples are dropped and a second finalize is refused.
    session.add_frame(_frames(1)[0])
    assert clip.frame_count == 3
    with pytest.raises(RuntimeError):
        session.finalize()


def test_recording_session_copies_frames() -> None:
    session = RecordingSession(started_at=START, planned_duration=5)
    frame = np.zeros((4, 4, 3), dtype=np.uint8)
    session.add_frame(frame)
    frame[:] = 255
    clip = session.finalize()
    assert int(clip.frames[0].max()) == 0


def test_media_clip_still_frame_offset_and_clamp() -> None:
    clip = MediaClip(_frames(5), np.zeros(0), fps=2.0)
    assert int(clip.still_frame(1.0)[0, 0, 0]) == 20
    assert int(clip.still_frame(60.0)[0, 0, 0]) == 40
    assert int(clip.still_frame(-3)[0, 0, 0]) == 0
    assert MediaClip([], np.zeros(0), fps=2.0).still_frame() is None


def test_media_clip_release_blocks_further_access() -> None:
    clip = MediaClip(_frames(2), np.zeros(0), fps=2.0)
    clip.release()
    assert clip.released is True
    assert clip.frame_count == 0
    with pytest.raises(RuntimeError):
        clip.still_frame()


def test_media_clip_exports_playable_mp4(tmp_path) -> None:
    clip = MediaClip(_frames(6, size=(33, 47)), np.zeros(0), fps=2.0)
    path = clip.export(tmp_path / "exports" / "clip.mp4")
    assert path.exists()
    assert path.stat().st_size > 0
    with av.open(path.as_posix()) as container:
        stream = container.streams.video[0]
        decoded = list(container.decode(stream))
    assert len(decoded) == 6
    assert decoded[0].width == 46
    assert decoded[0].height == 32


def test_media_clip_export_requires_frames(tmp_path) -> None:
    clip = MediaClip([], np.zeros(0), fps=2.0)
    with pytest.raises(ValueError):
        clip.export(tmp_path / "empty.mp4")


def test_as_rgb24_normalises_input() -> None:
    grey = np.full((5, 7), 300.0)
    rgb = as_rgb24(grey, even=True)
    assert rgb.shape == (4, 6, 3)
    assert rgb.dtype == np.uint8
    assert int(rgb.max()) == 255

    rgba = np.zeros((4, 4, 4), dtype=np.uint8)
    assert as_rgb24(rgba).shape == (4, 4, 3)
    with pytest.raises(ValueError):
        as_rgb24(np.zeros(8))


def test_clip_writer_fits_frames_to_first_size(tmp_path) -> None:
    path = tmp_path / "mixed.mp4"
    with ClipWriter(path, 2.0) as writer:
        writer.write(np.zeros((32, 32, 3), dtype=np.uint8))
        writer.write(np.zeros((48, 16, 3), dtype=np.uint8))
    assert writer.frames_written == 2
    with pytest.raises(RuntimeError):
        writer.write(np.zeros((32, 32, 3), dtype=np.uint8))
    with av.open(path.as_posix()) as container:
        decoded = list(container.decode(video=0))
    assert [(frame.width, frame.height) for frame in decoded] == [(32, 32), (32, 32)]


def test_encode_jpeg_produces_jpeg_bytes() -> None:
    payload = encode_jpeg(np.zeros((16, 16, 3), dtype=np.uint8))
    assert payload[:2] == b"\xff\xd8"
    assert payload[-2:] == b"\xff\xd9"
