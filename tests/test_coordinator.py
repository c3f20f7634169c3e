from __future__ import annotations

from datetime import timedelta

import numpy as np
import pytest

from conftest import ManualClock, settle
from sentry_cam.cloud import SimulatedCloudSync
from sentry_cam.coordinator import CoordinatorStatus, TriggerCoordinator
from sentry_cam.detection import TriggerEvent, TriggerSource
from sentry_cam.event_log import EventLog
from sentry_cam.media import MediaAccessError, StaticMediaSource
from sentry_cam.recordings import CloudStatus, RecordingStore
from sentry_cam.settings import MonitorSettings

QUIET = np.zeros(3200, dtype=np.float32)


def _still_source() -> StaticMediaSource:
    return StaticMediaSource([np.zeros((8, 8, 3), dtype=np.float64)], [QUIET])


def _coordinator(clock: ManualClock, source_factory=_still_source, **kwargs):
    store = RecordingStore(SimulatedCloudSync(delay=0))
    coordinator = TriggerCoordinator(
        store,
        source_factory,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )
    return coordinator, store


def _event(clock: ManualClock, source: TriggerSource = TriggerSource.MOTION) -> TriggerEvent:
    return TriggerEvent(source=source, score=1e6, timestamp=clock())


@pytest.mark.anyio
async def test_start_and_stop_update_status(clock: ManualClock) -> None:
    sources: list[StaticMediaSource] = []

    def _factory() -> StaticMediaSource:
        source = _still_source()
        sources.append(source)
        return source

    coordinator, store = _coordinator(clock, _factory)
    assert coordinator.status is CoordinatorStatus.IDLE
    assert coordinator.status_text == "Idle"

    await coordinator.start(MonitorSettings())
    assert coordinator.status is CoordinatorStatus.MONITORING
    assert coordinator.status_text == "Monitoring…"
    assert sources[0].opened is True
    with pytest.raises(RuntimeError):
        await coordinator.start(MonitorSettings())

    await clock.advance(5)
    assert coordinator.session is not None
    assert coordinator.session.triggers == 0

    coordinator.stop()
    assert coordinator.status is CoordinatorStatus.IDLE
    assert sources[0].released is True
    assert coordinator.session is None
    assert len(store) == 0
    await coordinator.aclose()


@pytest.mark.anyio
async def test_permission_denied_is_surfaced(clock: ManualClock) -> None:
    log = EventLog()
    coordinator, _ = _coordinator(
        clock,
        lambda: StaticMediaSource([np.zeros((4, 4))], deny_access=True),
        event_log=log,
    )
    with pytest.raises(MediaAccessError, match="Could not access camera/microphone"):
        await coordinator.start(MonitorSettings())
    assert coordinator.status is CoordinatorStatus.PERMISSION_DENIED
    assert coordinator.is_monitoring is False
    assert log.tail()[-1].event == "failed"


@pytest.mark.anyio
async def test_triggers_during_session_are_debounced(clock: ManualClock) -> None:
    coordinator, store = _coordinator(clock)
    await coordinator.start(MonitorSettings(recording_duration=10))

    assert coordinator.handle_trigger(_event(clock)) is True
    assert coordinator.status is CoordinatorStatus.RECORDING
    assert coordinator.status_text == "Triggered! Recording…"
    await clock.advance(3)
    assert coordinator.handle_trigger(_event(clock, TriggerSource.SOUND)) is False
    await clock.advance(3)
    assert coordinator.handle_trigger(_event(clock)) is False

    await clock.advance(4)
    assert len(store) == 1
    assert coordinator.status is CoordinatorStatus.MONITORING
    assert coordinator.session.suppressed_triggers == 2

    assert coordinator.handle_trigger(_event(clock)) is True
    await clock.advance(10)
    assert len(store) == 2
    await coordinator.aclose()


@pytest.mark.anyio
async def test_session_finalizes_exactly_at_planned_end(clock: ManualClock) -> None:
    frames = [np.zeros((8, 8)), np.full((8, 8), 2e6)] * 100
    coordinator, store = _coordinator(
        clock, lambda: StaticMediaSource(frames, [QUIET])
    )
    await coordinator.start(MonitorSettings(motion_sensitivity=50, recording_duration=7))
    start = clock()

    await clock.advance(0.5)
    assert coordinator.is_recording is True
    started_at = coordinator.session.recording.started_at
    assert started_at == start + timedelta(seconds=0.5)

    # Motion keeps going for the whole window without extending it.
    await clock.advance(6.9)
    assert len(store) == 0
    await clock.advance(0.1)
    assert len(store) == 1
    recording = store.list_recordings()[0]
    assert recording.started_at == started_at
    assert recording.timestamp == started_at + timedelta(seconds=7)
    assert recording.media.frame_count == 14
    await coordinator.aclose()


@pytest.mark.anyio
async def test_session_ends_on_time_when_motion_vanishes(clock: ManualClock) -> None:
    frames = [np.zeros((8, 8)), np.full((8, 8), 2e6)]
    coordinator, store = _coordinator(
        clock, lambda: StaticMediaSource(frames, [QUIET])
    )
    await coordinator.start(MonitorSettings(motion_sensitivity=50, recording_duration=5))
    await clock.advance(0.5)
    started_at = coordinator.session.recording.started_at

    await clock.advance(5)
    assert len(store) == 1
    assert store.list_recordings()[0].timestamp - started_at == timedelta(seconds=5)
    assert coordinator.is_recording is False
    await coordinator.aclose()


@pytest.mark.anyio
async def test_sound_trigger_records_audio(clock: ManualClock) -> None:
    loud = np.full(3200, 500.0)
    coordinator, store = _coordinator(
        clock, lambda: StaticMediaSource([np.zeros((8, 8))], [QUIET, loud, QUIET])
    )
    await coordinator.start(MonitorSettings(sound_sensitivity=10, recording_duration=5))
    await clock.advance(0.2)
    assert coordinator.is_recording is True
    await clock.advance(5)
    recording = store.list_recordings()[0]
    assert recording.media.audio.size >= loud.size
    await coordinator.aclose()


@pytest.mark.anyio
async def test_end_to_end_motion_scenario(clock: ManualClock) -> None:
    frames = [np.zeros((8, 8, 3)), np.full((8, 8, 3), 900_000.0)]
    coordinator, store = _coordinator(
        clock, lambda: StaticMediaSource(frames, [QUIET])
    )
    await coordinator.start(MonitorSettings(motion_sensitivity=20, recording_duration=10))

    await clock.advance(0.5)
    assert coordinator.session.motion.last_score == pytest.approx(900_000.0)
    assert coordinator.is_recording is True

    await clock.advance(10)
    recordings = store.list_recordings()
    assert len(recordings) == 1
    assert recordings[0].cloud_status is CloudStatus.LOCAL
    assert recordings[0].analysis is None
    await coordinator.aclose()


@pytest.mark.anyio
async def test_auto_sync_setting_saves_new_recordings(clock: ManualClock) -> None:
    coordinator, store = _coordinator(clock)
    await coordinator.start(MonitorSettings(auto_sync=True))
    coordinator.handle_trigger(_event(clock))
    await clock.advance(10)
    await store.wait_for_pending()
    assert store.list_recordings()[0].cloud_status is CloudStatus.SAVED
    await coordinator.aclose()


@pytest.mark.anyio
async def test_stop_finalizes_partial_recording_and_leaves_store_work(clock: ManualClock) -> None:
    coordinator, store = _coordinator(clock)
    await coordinator.start(MonitorSettings(recording_duration=30, auto_sync=True))
    coordinator.handle_trigger(_event(clock))
    await clock.advance(2)

    coordinator.stop()
    assert coordinator.status is CoordinatorStatus.IDLE
    assert len(store) == 1
    recording = store.list_recordings()[0]
    assert recording.timestamp - recording.started_at == timedelta(seconds=2)
    assert recording.cloud_status is CloudStatus.SAVING

    await coordinator.aclose()
    await store.wait_for_pending()
    assert recording.cloud_status is CloudStatus.SAVED

    # The cancelled expiry timer never produces a second recording.
    await clock.advance(60)
    assert len(store) == 1


@pytest.mark.anyio
async def test_degraded_motion_detector_keeps_sound_running(clock: ManualClock) -> None:
    frames = [np.zeros((8, 8)), np.zeros((16, 16))]
    loud = np.full(10, 100.0)
    coordinator, store = _coordinator(
        clock, lambda: StaticMediaSource(frames, [QUIET, QUIET, QUIET, loud])
    )
    await coordinator.start(MonitorSettings())
    await clock.advance(0.6)
    session = coordinator.session
    assert session.motion.active is False
    assert session.sound.active is True
    assert coordinator.is_recording is True
    await coordinator.aclose()


@pytest.mark.anyio
async def test_stop_without_session_is_idle(clock: ManualClock) -> None:
    coordinator, _ = _coordinator(clock)
    coordinator.stop()
    await settle()
    assert coordinator.status is CoordinatorStatus.IDLE
    assert coordinator.snapshot()["monitoring"] is False
