"""In-memory gallery of finished recordings and their sync/analysis state."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Coroutine, Iterator

from .analysis import AnalysisService, capture_still
from .cloud import CloudSync, CloudSyncError
from .event_log import EventLog
from .session import MediaClip
from .video import CONTAINER_EXTENSION

logger = logging.getLogger(__name__)


class CloudStatus(str, Enum):
    LOCAL = "local"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class RecordingNotFoundError(KeyError):
    """Raised when a recording id is not present in the store."""


def new_recording_id() -> str:
    return uuid.uuid4().hex


def export_filename(timestamp: datetime) -> str:
    """Return ``security-event-<ISO timestamp>.mp4`` with ``:`` and ``.`` replaced."""

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    utc = timestamp.astimezone(timezone.utc)
    iso = utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"
    stamp = iso.replace(":", "-").replace(".", "-")
    return f"security-event-{stamp}.{CONTAINER_EXTENSION}"


@dataclass
class Recording:
    id: str
    media: MediaClip
    timestamp: datetime
    started_at: datetime | None = None
    analysis: str | None = None
    cloud_status: CloudStatus = CloudStatus.LOCAL
    analyzing: bool = False
    export_path: Path | None = None

    @property
    def export_name(self) -> str:
        return export_filename(self.timestamp)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration_s": self.media.duration_s,
            "frame_count": self.media.frame_count,
            "analysis": self.analysis,
            "analyzing": self.analyzing,
            "cloud_status": self.cloud_status.value,
            "export_name": self.export_name,
            "export_path": str(self.export_path) if self.export_path else None,
        }


@dataclass
class RecordingStore:
    """Hold recordings most-recent-first and drive their background work.

    Each recording may have at most one save and one analysis in flight.
    Deleting a recording cancels its outstanding work and releases its media.
    """

    cloud_sync: CloudSync
    analysis_service: AnalysisService | None = None
    export_directory: Path | None = None
    still_offset_s: float = 1.0
    event_log: EventLog | None = None
    _recordings: list[Recording] = field(init=False, default_factory=list)
    _tasks: dict[str, set[asyncio.Task]] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        if self.export_directory is not None:
            self.export_directory = Path(self.export_directory)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._recordings)

    def __iter__(self) -> Iterator[Recording]:
        return iter(list(self._recordings))

    def __contains__(self, recording_id: object) -> bool:
        return self._find(recording_id) is not None

    def list_recordings(self) -> list[Recording]:
        return list(self._recordings)

    def get(self, recording_id: str) -> Recording:
        recording = self._find(recording_id)
        if recording is None:
            raise RecordingNotFoundError(recording_id)
        return recording

    @property
    def synced_count(self) -> int:
        return sum(1 for item in self._recordings if item.cloud_status is CloudStatus.SAVED)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add(self, recording: Recording, *, auto_sync: bool = False) -> Recording:
        if self._find(recording.id) is not None:
            raise ValueError(f"Recording {recording.id} already stored")
        self._recordings.insert(0, recording)
        logger.info("Recording stored: id=%s frames=%d", recording.id, recording.media.frame_count)
        self._log("recording", "stored", "Recording captured", id=recording.id)
        if auto_sync:
            self.schedule_save(recording.id)
        return recording

    def delete(self, recording_id: str) -> bool:
        recording = self._find(recording_id)
        if recording is None:
            return False
        self._recordings.remove(recording)
        for task in self._tasks.pop(recording_id, set()):
            task.cancel()
        # A task cancelled before its first step never reaches its handlers.
        if recording.cloud_status is CloudStatus.SAVING:
            recording.cloud_status = CloudStatus.ERROR
        if recording.analyzing:
            recording.analysis = "Error: Analysis cancelled"
            recording.analyzing = False
        recording.media.release()
        self._log("recording", "deleted", "Recording deleted", id=recording_id)
        return True

    def schedule_save(self, recording_id: str) -> asyncio.Task | None:
        """Start the cloud-save flow in the background.

        Returns ``None`` when a save is already running or has completed.
        """

        recording = self.get(recording_id)
        if recording.cloud_status in (CloudStatus.SAVING, CloudStatus.SAVED):
            return None
        recording.cloud_status = CloudStatus.SAVING
        return self._track(recording.id, self._run_save(recording))

    async def save_to_drive(self, recording_id: str) -> CloudStatus:
        recording = self.get(recording_id)
        task = self.schedule_save(recording_id)
        if task is None:
            return recording.cloud_status
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return recording.cloud_status

    async def analyze(self, recording_id: str) -> str | None:
        """Describe the recording; ``None`` when an analysis is already running."""

        recording = self.get(recording_id)
        if recording.analyzing:
            return None
        recording.analyzing = True
        task = self._track(recording.id, self._run_analysis(recording))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        return recording.analysis

    async def wait_for_pending(self) -> None:
        pending = [task for tasks in self._tasks.values() for task in tasks]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        pending = [task for tasks in self._tasks.values() for task in tasks]
        self._tasks.clear()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Background operations
    # ------------------------------------------------------------------
    async def _run_save(self, recording: Recording) -> None:
        try:
            accepted = await self.cloud_sync.save(recording.media)
            if not accepted:
                raise CloudSyncError("Cloud sync rejected the recording")
            if self.export_directory is not None:
                target = self.export_directory / recording.export_name
                recording.export_path = await asyncio.to_thread(recording.media.export, target)
        except asyncio.CancelledError:
            recording.cloud_status = CloudStatus.ERROR
            raise
        except Exception as exc:
            logger.warning("Failed to save recording %s: %s", recording.id, exc)
            recording.cloud_status = CloudStatus.ERROR
            self._log("sync", "failed", f"Cloud sync failed: {exc}", id=recording.id)
            return
        recording.cloud_status = CloudStatus.SAVED
        self._log(
            "sync",
            "saved",
            "Recording saved to cloud",
            id=recording.id,
            export_path=str(recording.export_path) if recording.export_path else None,
        )

    async def _run_analysis(self, recording: Recording) -> None:
        try:
            if self.analysis_service is None:
                raise RuntimeError("Analysis service is not configured.")
            image = await asyncio.to_thread(capture_still, recording.media, self.still_offset_s)
            description = await self.analysis_service.analyze(image)
            recording.analysis = description
            self._log("analysis", "completed", "Recording analyzed", id=recording.id)
        except asyncio.CancelledError:
            recording.analysis = "Error: Analysis cancelled"
            raise
        except Exception as exc:
            logger.warning("Analysis failed for recording %s: %s", recording.id, exc)
            message = str(exc) or "An unknown error occurred during analysis."
            recording.analysis = f"Error: {message}"
            self._log("analysis", "failed", recording.analysis, id=recording.id)
        finally:
            recording.analyzing = False

    # ------------------------------------------------------------------
    def _find(self, recording_id: object) -> Recording | None:
        for recording in self._recordings:
            if recording.id == recording_id:
                return recording
        return None

    def _track(self, recording_id: str, coro: Coroutine[object, object, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.setdefault(recording_id, set()).add(task)

        def _discard(done: asyncio.Task) -> None:
            tasks = self._tasks.get(recording_id)
            if tasks is None:
                return
            tasks.discard(done)
            if not tasks:
                self._tasks.pop(recording_id, None)

        task.add_done_callback(_discard)
        return task

    def _log(self, category: str, event: str, message: str, **metadata: object) -> None:
        if self.event_log is not None:
            self.event_log.record(category, event, message, **metadata)


__all__ = [
    "CloudStatus",
    "Recording",
    "RecordingNotFoundError",
    "RecordingStore",
    "export_filename",
    "new_recording_id",
]
