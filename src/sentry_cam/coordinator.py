"""Coordinate detectors, the single active recording session and the store."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import numpy as np

from .detection import MotionDetector, SoundDetector, TriggerEvent
from .event_log import EventLog
from .media import MediaAccessError, MediaSource
from .recordings import Recording, RecordingStore, new_recording_id
from .sampling import (
    DEFAULT_AUDIO_INTERVAL,
    DEFAULT_FRAME_INTERVAL,
    AudioSampler,
    Clock,
    FrameSampler,
    Sleep,
    utcnow,
)
from .session import RecordingSession
from .settings import MonitorSettings

logger = logging.getLogger(__name__)


class CoordinatorStatus(str, Enum):
    IDLE = "idle"
    REQUESTING_PERMISSIONS = "requesting_permissions"
    MONITORING = "monitoring"
    RECORDING = "recording"
    PERMISSION_DENIED = "permission_denied"

    @property
    def text(self) -> str:
        return _STATUS_TEXT[self]


_STATUS_TEXT = {
    CoordinatorStatus.IDLE: "Idle",
    CoordinatorStatus.REQUESTING_PERMISSIONS: "Requesting permissions",
    CoordinatorStatus.MONITORING: "Monitoring…",
    CoordinatorStatus.RECORDING: "Triggered! Recording…",
    CoordinatorStatus.PERMISSION_DENIED: "Permission denied",
}


@dataclass
class MonitoringSession:
    """Everything owned by one monitoring run, from start until stop."""

    settings: MonitorSettings
    source: MediaSource
    motion: MotionDetector
    sound: SoundDetector
    tasks: list[asyncio.Task] = field(default_factory=list)
    recording: RecordingSession | None = None
    expiry_task: asyncio.Task | None = None
    triggers: int = 0
    suppressed_triggers: int = 0
    recordings_captured: int = 0


class TriggerCoordinator:
    """Turn detector triggers into bounded, debounced recordings.

    At most one recording session is active at a time. Triggers that arrive
    while a session is active are swallowed; the session always ends
    ``recording_duration`` seconds after it started.
    """

    def __init__(
        self,
        store: RecordingStore,
        source_factory: Callable[[], MediaSource],
        *,
        frame_interval: float = DEFAULT_FRAME_INTERVAL,
        audio_interval: float = DEFAULT_AUDIO_INTERVAL,
        motion_stride: int = 4,
        sound_mode: str = "amplitude",
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
        event_log: EventLog | None = None,
    ) -> None:
        self._store = store
        self._source_factory = source_factory
        self._frame_interval = float(frame_interval)
        self._audio_interval = float(audio_interval)
        self._motion_stride = int(motion_stride)
        self._sound_mode = sound_mode
        self._clock = clock
        self._sleep = sleep
        self._event_log = event_log
        self._session: MonitoringSession | None = None
        self._status = CoordinatorStatus.IDLE
        self._starting = False
        self._generation = 0
        self._retired: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def status(self) -> CoordinatorStatus:
        return self._status

    @property
    def status_text(self) -> str:
        return self._status.text

    @property
    def session(self) -> MonitoringSession | None:
        return self._session

    @property
    def is_monitoring(self) -> bool:
        return self._session is not None

    @property
    def is_recording(self) -> bool:
        return self._session is not None and self._session.recording is not None

    def snapshot(self) -> dict[str, object]:
        session = self._session
        payload: dict[str, object] = {
            "status": self._status.value,
            "status_text": self._status.text,
            "monitoring": session is not None,
            "recording": self.is_recording,
        }
        if session is not None:
            payload.update(
                {
                    "settings": session.settings.to_dict(),
                    "motion_active": session.motion.active,
                    "motion_score": session.motion.last_score,
                    "sound_active": session.sound.active,
                    "sound_score": session.sound.last_score,
                    "triggers": session.triggers,
                    "suppressed_triggers": session.suppressed_triggers,
                    "recordings_captured": session.recordings_captured,
                }
            )
            if session.recording is not None:
                payload["recording_started_at"] = session.recording.started_at.isoformat()
                payload["recording_ends_at"] = session.recording.ends_at.isoformat()
        return payload

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self, settings: MonitorSettings) -> MonitoringSession:
        """Open the media source and launch both detector loops."""

        if self._session is not None or self._starting:
            raise RuntimeError("Monitoring already active")
        self._starting = True
        generation = self._generation
        self._status = CoordinatorStatus.REQUESTING_PERMISSIONS
        source = self._source_factory()
        try:
            await source.open()
        except MediaAccessError as exc:
            self._status = CoordinatorStatus.PERMISSION_DENIED
            logger.warning("Media access denied: %s", exc)
            self._log("failed", str(exc))
            raise
        except BaseException:
            self._status = CoordinatorStatus.IDLE
            raise
        finally:
            self._starting = False

        if generation != self._generation:
            source.release()
            self._status = CoordinatorStatus.IDLE
            raise RuntimeError("Monitoring was stopped while waiting for media access")

        session = MonitoringSession(
            settings=settings,
            source=source,
            motion=MotionDetector(settings.motion_sensitivity, stride=self._motion_stride),
            sound=SoundDetector(settings.sound_sensitivity, mode=self._sound_mode),
        )
        frames = FrameSampler(
            source,
            lambda frame, ts: self._on_frame(session, frame, ts),
            interval=self._frame_interval,
            clock=self._clock,
            sleep=self._sleep,
        )
        audio = AudioSampler(
            source,
            lambda block, ts: self._on_audio(session, block, ts),
            interval=self._audio_interval,
            clock=self._clock,
            sleep=self._sleep,
        )
        self._session = session
        session.tasks.append(asyncio.create_task(frames.run()))
        session.tasks.append(asyncio.create_task(audio.run()))
        self._status = CoordinatorStatus.MONITORING
        logger.info(
            "Monitoring started: motion=%d sound=%d duration=%ss",
            settings.motion_sensitivity,
            settings.sound_sensitivity,
            settings.recording_duration,
        )
        self._log("started", "Monitoring for motion and sound")
        return session

    def stop(self) -> None:
        """Halt both detector loops and release the media source.

        A recording in progress is finalized with whatever was captured so
        far. Cloud-save and analysis work already handed to the store is left
        running.
        """

        self._generation += 1
        session = self._session
        if session is None:
            if not self._starting:
                self._status = CoordinatorStatus.IDLE
            return
        self._session = None
        for task in session.tasks:
            task.cancel()
        self._retired = [task for task in self._retired if not task.done()]
        self._retired.extend(session.tasks)
        session.tasks.clear()
        if session.recording is not None:
            self._finalise_recording(session, reason="monitoring stopped")
        try:
            session.source.release()
        except Exception:
            logger.exception("Failed to release media source")
        self._status = CoordinatorStatus.IDLE
        logger.info("Monitoring stopped")
        self._log("stopped", "Monitoring stopped")

    async def aclose(self) -> None:
        self.stop()
        retired, self._retired = self._retired, []
        if retired:
            await asyncio.gather(*retired, return_exceptions=True)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def handle_trigger(self, event: TriggerEvent) -> bool:
        """Start a recording session for *event* unless one is already active."""

        session = self._session
        if session is None:
            return False
        session.triggers += 1
        if session.recording is not None:
            session.suppressed_triggers += 1
            return False
        started_at = self._clock()
        duration = float(session.settings.recording_duration)
        session.recording = RecordingSession(
            started_at=started_at,
            planned_duration=duration,
            frame_interval=self._frame_interval,
        )
        session.expiry_task = asyncio.create_task(self._expire(session, session.recording))
        self._status = CoordinatorStatus.RECORDING
        logger.info(
            "%s trigger (score=%.1f) started a %ss recording",
            event.source.value.capitalize(),
            event.score,
            session.settings.recording_duration,
        )
        self._log("triggered", f"Triggered by {event.source.value}", score=round(event.score, 3))
        return True

    async def _expire(self, session: MonitoringSession, recording: RecordingSession) -> None:
        await self._sleep(recording.planned_duration)
        if session.recording is recording:
            session.expiry_task = None
            self._finalise_recording(session, reason="duration elapsed")

    def _finalise_recording(self, session: MonitoringSession, *, reason: str) -> Recording | None:
        recording_session = session.recording
        if recording_session is None:
            return None
        session.recording = None
        expiry = session.expiry_task
        session.expiry_task = None
        if expiry is not None and expiry is not asyncio.current_task():
            expiry.cancel()
            self._retired.append(expiry)
        try:
            media = recording_session.finalize()
            recording = Recording(
                id=new_recording_id(),
                media=media,
                timestamp=self._clock(),
                started_at=recording_session.started_at,
            )
            self._store.add(recording, auto_sync=session.settings.auto_sync)
        except Exception:
            logger.exception("Failed to finalise recording (%s)", reason)
            return None
        finally:
            if self._session is session:
                self._status = CoordinatorStatus.MONITORING
        session.recordings_captured += 1
        logger.info("Recording captured: id=%s (%s)", recording.id, reason)
        return recording

    # ------------------------------------------------------------------
    # Sampler callbacks
    # ------------------------------------------------------------------
    def _on_frame(self, session: MonitoringSession, frame: np.ndarray, timestamp) -> None:
        if session is not self._session:
            return
        if session.recording is not None:
            session.recording.add_frame(frame)
        event = session.motion.process(frame, timestamp)
        if event is not None and self.handle_trigger(event):
            session.recording.add_frame(frame)

    def _on_audio(self, session: MonitoringSession, block: np.ndarray, timestamp) -> None:
        if session is not self._session:
            return
        if session.recording is not None:
            session.recording.add_audio(block)
        event = session.sound.process(block, timestamp)
        if event is not None and self.handle_trigger(event):
            session.recording.add_audio(block)

    def _log(self, event: str, message: str, **metadata: object) -> None:
        if self._event_log is not None:
            self._event_log.record("monitoring", event, message, **metadata)


__all__ = ["CoordinatorStatus", "MonitoringSession", "TriggerCoordinator"]
