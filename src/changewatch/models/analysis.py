from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, field_validator

Sentiment = Literal["positive", "neutral", "critical"]

_SENTIMENTS: frozenset[str] = frozenset({"positive", "neutral", "critical"})


class Removal(BaseModel):
    feature: str = ""
    severity: str = ""
    why: str = ""


class AnalysisCategories(BaseModel):
    critical_breaking_changes: list[str] = []
    removals: list[Removal] = []
    major_features: list[str] = []
    important_fixes: list[str] = []
    new_slash_commands: list[str] = []
    terminal_improvements: list[str] = []
    api_changes: list[str] = []


class AnalysisResult(BaseModel):
    """Structured AI summary of one changelog version block."""

    version: str = ""  # Set by the caller, e.g. "Claude Code 2.0.74"
    tldr: str
    categories: AnalysisCategories = AnalysisCategories()
    action_items: list[str] = []
    sentiment: Sentiment = "neutral"

    @field_validator("sentiment", mode="before")
    @classmethod
    def _coerce_sentiment(cls, value: object) -> str:
        """Case-fold known sentiments; anything else becomes "neutral"."""
        if isinstance(value, str) and value.strip().lower() in _SENTIMENTS:
            return value.strip().lower()
        return "neutral"
