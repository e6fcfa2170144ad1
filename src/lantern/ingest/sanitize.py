"""Lossy text policies applied before hashing and embedding.

Each policy is a named function so its data loss is explicit at the call site:

* ``sanitize``               strips control characters, squeezes whitespace, caps length
* ``is_near_empty``          decides which sanitised chunks are dropped
* ``truncate_for_embedding`` cuts over-long texts to the per-item token cap
"""

from __future__ import annotations

import logging
import re

from lantern.ingest.chunking import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 8_000
DEFAULT_MIN_CHARS = 3

# C0 and C1 controls except \t and \n; NUL is the one stores choke on.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_SPACES_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def sanitize(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Return *text* cleaned for storage.

    NUL and other control characters become spaces, line endings are
    normalised to ``\\n``, runs of spaces/tabs collapse to one space, three or
    more newlines collapse to two, the result is trimmed and capped at
    *max_chars* characters.
    """
    if not text:
        return ""
    s = text.replace("\r\n", "\n").replace("\r", "\n")
    s = _CONTROL_RE.sub(" ", s)
    s = _SPACES_RE.sub(" ", s)
    s = _BLANK_LINES_RE.sub("\n\n", s)
    s = s.strip()
    if max_chars > 0 and len(s) > max_chars:
        s = s[:max_chars].rstrip()
    return s


def is_near_empty(text: str, min_chars: int = DEFAULT_MIN_CHARS) -> bool:
    """True if *text* has fewer than *min_chars* non-whitespace characters."""
    return sum(1 for ch in text if not ch.isspace()) < min_chars


def truncate_for_embedding(text: str, max_tokens: int) -> tuple[str, bool]:
    """Cut *text* so its estimated token count fits *max_tokens*.

    Returns:
        ``(text, truncated)``; the stored chunk content is never affected, only
        the string sent to the embedding provider.
    """
    if max_tokens <= 0 or estimate_tokens(text) <= max_tokens:
        return text, False
    cut = text[: max_tokens * 4]
    logger.debug("Truncated embedding input from %d to %d chars", len(text), len(cut))
    return cut, True
