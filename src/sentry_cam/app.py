"""FastAPI application wiring together the SentryCam services."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .analysis import DEFAULT_GEMINI_MODEL, AnalysisService, GeminiAnalysisService
from .cloud import CloudSync, SimulatedCloudSync, WebhookCloudSync
from .coordinator import TriggerCoordinator
from .event_log import EventLog
from .media import MediaAccessError, MediaSource, SyntheticMediaSource
from .recordings import RecordingNotFoundError, RecordingStore
from .settings import MonitorSettings, SettingsStore
from .version import APP_VERSION

DEFAULT_CONFIG_PATH = Path(os.environ.get("SENTRYCAM_CONFIG", "data/settings.json"))


class SettingsPayload(BaseModel):
    motion_sensitivity: int | None = Field(default=None, ge=1, le=100)
    sound_sensitivity: int | None = Field(default=None, ge=1, le=100)
    recording_duration: int | None = Field(default=None, ge=5, le=300)
    auto_sync: bool | None = None


def _default_cloud_sync() -> CloudSync:
    url = os.getenv("SENTRYCAM_CLOUD_URL")
    if url:
        return WebhookCloudSync(url)
    return SimulatedCloudSync()


def _default_analysis_service() -> AnalysisService:
    return GeminiAnalysisService(
        os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
        model=os.getenv("SENTRYCAM_GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
    )


def create_app(
    config_path: Path | str = DEFAULT_CONFIG_PATH,
    *,
    media_source_factory: Callable[[], MediaSource] | None = None,
    cloud_sync: CloudSync | None = None,
    analysis_service: AnalysisService | None = None,
    export_directory: Path | str | None = None,
    event_log: EventLog | None = None,
) -> FastAPI:
    app = FastAPI(title="SentryCam", version=APP_VERSION)

    logger = logging.getLogger(__name__)

    settings_store = SettingsStore(config_path)
    if export_directory is None:
        export_env = os.getenv("SENTRYCAM_EXPORT_DIR")
        export_directory = Path(export_env) if export_env else None
    log = event_log if event_log is not None else EventLog()
    store = RecordingStore(
        cloud_sync if cloud_sync is not None else _default_cloud_sync(),
        analysis_service if analysis_service is not None else _default_analysis_service(),
        export_directory=Path(export_directory) if export_directory is not None else None,
        event_log=log,
    )
    coordinator = TriggerCoordinator(
        store,
        media_source_factory or SyntheticMediaSource,
        event_log=log,
    )
    app.state.settings_store = settings_store
    app.state.store = store
    app.state.coordinator = coordinator
    app.state.event_log = log

    def _load_settings() -> MonitorSettings:
        try:
            return settings_store.load()
        except ValueError as exc:
            logger.warning("Invalid settings file %s: %s", settings_store.path, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    def _recording_or_404(recording_id: str):
        try:
            return store.get(recording_id)
        except RecordingNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Recording not found") from exc

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await coordinator.aclose()
        await store.aclose()

    @app.get("/api/status")
    async def get_status() -> dict[str, object]:
        payload = coordinator.snapshot()
        payload["recordings"] = len(store)
        payload["synced"] = store.synced_count
        return payload

    @app.get("/api/settings")
    async def get_settings() -> dict[str, object]:
        return {"settings": _load_settings().to_dict(), "editable": not coordinator.is_monitoring}

    @app.post("/api/settings")
    async def update_settings(payload: SettingsPayload) -> dict[str, object]:
        if coordinator.is_monitoring:
            raise HTTPException(status_code=409, detail="Stop monitoring before changing settings")
        changes = payload.model_dump(exclude_none=True)
        try:
            settings = settings_store.update(changes)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"settings": settings.to_dict()}

    @app.post("/api/monitoring/start")
    async def start_monitoring() -> dict[str, object]:
        settings = _load_settings()
        try:
            await coordinator.start(settings)
        except MediaAccessError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return coordinator.snapshot()

    @app.post("/api/monitoring/stop")
    async def stop_monitoring() -> dict[str, object]:
        coordinator.stop()
        return coordinator.snapshot()

    @app.get("/api/recordings")
    async def list_recordings() -> dict[str, object]:
        recordings = store.list_recordings()
        return {
            "recordings": [item.to_dict() for item in recordings],
            "total": len(recordings),
            "synced": store.synced_count,
        }

    @app.get("/api/recordings/{recording_id}")
    async def get_recording(recording_id: str) -> dict[str, object]:
        return _recording_or_404(recording_id).to_dict()

    @app.delete("/api/recordings/{recording_id}")
    async def delete_recording(recording_id: str) -> dict[str, object]:
        if not store.delete(recording_id):
            raise HTTPException(status_code=404, detail="Recording not found")
        return {"deleted": recording_id}

    @app.post("/api/recordings/{recording_id}/save")
    async def save_recording(recording_id: str) -> dict[str, object]:
        recording = _recording_or_404(recording_id)
        store.schedule_save(recording_id)
        return recording.to_dict()

    @app.post("/api/recordings/{recording_id}/analyze")
    async def analyze_recording(recording_id: str) -> dict[str, object]:
        recording = _recording_or_404(recording_id)
        if recording.analyzing:
            raise HTTPException(status_code=409, detail="Analysis already in progress")
        await store.analyze(recording_id)
        return recording.to_dict()

    @app.get("/api/events")
    async def get_events(limit: int = 50, category: str | None = None) -> dict[str, object]:
        entries = log.tail(limit, category=category)
        return {"events": [entry.to_dict() for entry in entries]}

    return app


__all__ = ["create_app", "SettingsPayload"]
