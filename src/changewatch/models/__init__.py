from __future__ import annotations

from changewatch.models.analysis import AnalysisCategories, AnalysisResult, Removal
from changewatch.models.cache import AnalysisCacheEntry, AudioCacheEntry, AudioCacheInfo
from changewatch.models.monitor import MonitoringState, MonitorStatus, UrlTestResult
from changewatch.models.sources import (
    ParsedChangelogEntry,
    Source,
    SourceCreateInput,
    SourceUpdateInput,
    VersionRecord,
)

__all__ = [
    # sources
    "Source",
    "VersionRecord",
    "ParsedChangelogEntry",
    "SourceCreateInput",
    "SourceUpdateInput",
    # analysis
    "AnalysisResult",
    "AnalysisCategories",
    "Removal",
    # cache
    "AnalysisCacheEntry",
    "AudioCacheEntry",
    "AudioCacheInfo",
    # monitor
    "MonitoringState",
    "MonitorStatus",
    "UrlTestResult",
]
