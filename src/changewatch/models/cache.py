from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from changewatch.models.analysis import AnalysisResult


class AnalysisCacheEntry(BaseModel):
    """Cached analysis for a version key."""

    version: str
    analysis: AnalysisResult
    created_at: datetime


class AudioCacheEntry(BaseModel):
    """Cached WAV audio keyed by (text_hash, voice)."""

    id: str
    text_hash: str  # Caller-supplied fingerprint of the spoken text
    voice: str
    audio_data: bytes
    created_at: datetime


class AudioCacheInfo(BaseModel):
    """Audio cache listing row, without the payload."""

    id: str
    text_hash: str
    voice: str
    size: int
    created_at: datetime
