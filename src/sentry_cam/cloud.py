"""Cloud sync collaborators used by the recording store."""
from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Protocol

import httpx

from .session import MediaClip

logger = logging.getLogger(__name__)


class CloudSyncError(RuntimeError):
    """Raised when a recording could not be stored remotely."""


class CloudSync(Protocol):
    async def save(self, media: MediaClip) -> bool:  # pragma: no cover - interface only
        ...


class SimulatedCloudSync:
    """Pretend upload that waits ``delay`` seconds and reports ``succeed``."""

    def __init__(self, delay: float = 2.0, *, succeed: bool = True) -> None:
        self.delay = float(delay)
        self.succeed = bool(succeed)
        self.calls = 0

    async def save(self, media: MediaClip) -> bool:
        self.calls += 1
        if media.released:
            raise CloudSyncError("Media clip has been released")
        await asyncio.sleep(self.delay)
        return self.succeed


class WebhookCloudSync:
    """Upload the encoded clip to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        *,
        method: str = "POST",
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("Cloud sync URL must not be empty")
        self.url = url
        self.method = method.upper()
        self.timeout = float(timeout)
        self.headers = dict(headers or {})
        self._transport = transport

    async def save(self, media: MediaClip) -> bool:
        payload = await asyncio.to_thread(self._encode, media)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.request(
                    self.method,
                    self.url,
                    content=payload,
                    headers={"Content-Type": "video/mp4", **self.headers},
                )
            except httpx.HTTPError as exc:
                raise CloudSyncError(f"Upload failed: {exc}") from exc
        if response.is_success:
            return True
        logger.warning("Cloud sync rejected upload with HTTP %s", response.status_code)
        return False

    @staticmethod
    def _encode(media: MediaClip) -> bytes:
        with tempfile.TemporaryDirectory() as folder:
            path = media.export(Path(folder) / "upload.mp4")
            return path.read_bytes()


__all__ = ["CloudSync", "CloudSyncError", "SimulatedCloudSync", "WebhookCloudSync"]
