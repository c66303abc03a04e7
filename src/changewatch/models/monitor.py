from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel


@dataclass(frozen=True)
class MonitoringState:
    """Desired scheduler state derived from the persisted settings."""

    should_run: bool
    interval_ms: int


class MonitorStatus(BaseModel):
    enabled: bool
    interval_ms: int
    last_known_version: str | None
    is_running: bool
    schedule_expression: str | None


class UrlTestResult(BaseModel):
    valid: bool
    latest_version: str | None = None
    preview: str | None = None
    message: str | None = None
