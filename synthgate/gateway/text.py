"""Text helpers: boundary-aware splitting and speech input cleanup."""

from __future__ import annotations

import re
import unicodedata

MAX_SPEECH_CHARS = 1000

# Boundary tiers, tried in order. Each character ends a chunk (kept with it).
SENTENCE_BOUNDARIES = "。！？!?.\n"
CLAUSE_BOUNDARIES = "、，,;；:："

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def split_text(text: str, max_chunk: int = 200, min_chunk: int = 50) -> list[str]:
    """Split ``text`` into chunks of at most ``max_chunk`` characters.

    Each cut goes after the rightmost sentence boundary inside the limit, else
    the rightmost clause boundary, else the rightmost whitespace. A boundary
    closer than ``min_chunk`` to the start is ignored so no tiny fragments are
    produced; with no usable boundary the text is cut hard at ``max_chunk``.
    Chunks are stripped and empty ones dropped.
    """
    if max_chunk <= 0:
        raise ValueError("max_chunk must be positive")
    min_chunk = max(0, min(min_chunk, max_chunk - 1))

    chunks: list[str] = []
    remaining = text
    while len(remaining) > max_chunk:
        cut = _find_cut(remaining, max_chunk, min_chunk)
        chunks.append(remaining[:cut])
        remaining = remaining[cut:]
    chunks.append(remaining)

    return [chunk.strip() for chunk in chunks if chunk.strip()]


def _find_cut(text: str, max_chunk: int, min_chunk: int) -> int:
    window = text[:max_chunk]
    for boundaries in (SENTENCE_BOUNDARIES, CLAUSE_BOUNDARIES):
        index = max(window.rfind(ch) for ch in boundaries)
        if index + 1 >= min_chunk and index >= 0:
            return index + 1

    for index in range(len(window) - 1, -1, -1):
        if window[index].isspace():
            if index + 1 >= min_chunk:
                return index + 1
            break
    return max_chunk


def is_speakable(text: str) -> bool:
    """True if the text has at least one letter or digit (any script)."""
    if not text or not text.strip():
        return False
    return any(unicodedata.category(ch)[0] in ("L", "N") for ch in text)


def sanitize_speech_text(text: str, limit: int = MAX_SPEECH_CHARS) -> str:
    """Remove control characters and truncate to what a speech call accepts."""
    cleaned = _CONTROL_CHARS.sub("", text).strip()
    return cleaned[:limit]


def join_text(parts: list[str]) -> str:
    """Rejoin stripped chunks, restoring a single space at Latin-script seams.

    No space is inserted where either side of the seam is a wide (CJK)
    character or already whitespace.
    """
    joined = ""
    for part in parts:
        if joined and part and not _tight_seam(joined[-1], part[0]):
            joined += " "
        joined += part
    return joined


def _tight_seam(left: str, right: str) -> bool:
    if left.isspace() or right.isspace():
        return True
    return any(unicodedata.east_asian_width(ch) in ("W", "F") for ch in (left, right))
