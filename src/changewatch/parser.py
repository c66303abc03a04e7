"""Latest-version parser for changelog documents.

Single pass over the document lines. Anchors only on ``## <semver>`` header
lines, so arbitrary content inside a version block (code fences, lists,
nested headings) is captured verbatim.
"""

from __future__ import annotations

import re

from changewatch.errors import ParseError
from changewatch.models.sources import ParsedChangelogEntry

_VERSION_HEADER_RE = re.compile(r"^##\s+\[?(\d+\.\d+\.\d+(?:-[a-zA-Z0-9.]+)?)\]?")


def parse_latest_version(markdown: str) -> ParsedChangelogEntry | None:
    """Extract the first version block from a changelog.

    Content runs from the first version header (inclusive) up to the second
    version header (exclusive), or to the end of the document. Returns
    ``None`` when no version header is present.
    """
    version: str | None = None
    captured: list[str] = []

    for line in markdown.split("\n"):
        match = _VERSION_HEADER_RE.match(line)
        if match:
            if version is not None:
                break
            version = match.group(1)
        if version is not None:
            captured.append(line)

    if version is None:
        return None
    return ParsedChangelogEntry(version=version, content="\n".join(captured))


def require_latest_version(markdown: str, url: str) -> ParsedChangelogEntry:
    """Like ``parse_latest_version`` but raises ParseError when nothing is found."""
    entry = parse_latest_version(markdown)
    if entry is None:
        raise ParseError(url)
    return entry
