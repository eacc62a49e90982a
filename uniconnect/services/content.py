"""Text helpers for user-generated content."""
from __future__ import annotations

import re

HASHTAG_PATTERN = re.compile(r"#(\w+)")


def extract_hashtags(content: str) -> list[str]:
    """Return the lower-cased ``#tag`` tokens of ``content`` in first-seen order."""

    seen: dict[str, None] = {}
    for match in HASHTAG_PATTERN.finditer(content or ""):
        seen.setdefault(match.group(1).lower(), None)
    return list(seen)


def normalize_hashtags(tags: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for tag in tags:
        cleaned = tag.strip().lstrip("#").lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


__all__ = ["HASHTAG_PATTERN", "extract_hashtags", "normalize_hashtags"]
