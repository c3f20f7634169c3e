"""Monitoring configuration structures."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace as _replace
from pathlib import Path
from typing import Any, Mapping

import json

SENSITIVITY_RANGE = (1, 100)
RECORDING_DURATION_RANGE = (5, 300)


def _coerce_int(name: str, value: Any, bounds: tuple[int, int]) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{name} must be an integer")
        value = int(value)
    if not isinstance(value, int):
        try:
            value = int(str(value).strip())
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be an integer") from exc
    lower, upper = bounds
    if not (lower <= value <= upper):
        raise ValueError(f"{name} must be between {lower} and {upper}")
    return value


@dataclass(frozen=True, slots=True)
class MonitorSettings:
    """User configurable options captured when monitoring starts."""

    motion_sensitivity: int = 20
    sound_sensitivity: int = 10
    recording_duration: int = 10
    auto_sync: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "motion_sensitivity",
            _coerce_int("Motion sensitivity", self.motion_sensitivity, SENSITIVITY_RANGE),
        )
        object.__setattr__(
            self,
            "sound_sensitivity",
            _coerce_int("Sound sensitivity", self.sound_sensitivity, SENSITIVITY_RANGE),
        )
        object.__setattr__(
            self,
            "recording_duration",
            _coerce_int("Recording duration", self.recording_duration, RECORDING_DURATION_RANGE),
        )
        if not isinstance(self.auto_sync, bool):
            raise ValueError("Auto sync must be a boolean")

    def replace(self, **changes: Any) -> "MonitorSettings":
        """Return a validated copy with *changes* applied."""

        return _replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MonitorSettings":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        return cls(**dict(payload))


class SettingsStore:
    """Simple JSON backed persistence for :class:`MonitorSettings`."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> MonitorSettings:
        if not self._path.exists():
            return MonitorSettings()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid settings JSON") from exc
        if not isinstance(raw, dict):
            raise ValueError("Settings file must contain a JSON object")
        return MonitorSettings.from_dict(raw)

    def save(self, settings: MonitorSettings) -> None:
        payload = settings.to_dict()
        self._path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

    def update(self, changes: Mapping[str, Any]) -> MonitorSettings:
        """Merge *changes* into the stored settings and persist the result."""

        settings = MonitorSettings.from_dict({**self.load().to_dict(), **dict(changes)})
        self.save(settings)
        return settings


__all__ = [
    "MonitorSettings",
    "RECORDING_DURATION_RANGE",
    "SENSITIVITY_RANGE",
    "SettingsStore",
]
