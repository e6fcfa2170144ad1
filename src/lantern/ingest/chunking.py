"""Fixed-window character chunker.

Pure character slicing with overlap: no sentence or heading awareness. Windows
are cheap to compute and their positions are stable, which keeps
``chunk_no`` meaningful across re-ingests of the same document.

Token counting uses a 4-chars-per-token approximation; no external tokenizer
dependency is required.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

DEFAULT_CHARS = 1200
DEFAULT_OVERLAP_RATIO = 0.15


@dataclass(frozen=True)
class ChunkOptions:
    """Normalised window parameters.

    Attributes:
        chars: Window length in characters (>= 1).
        overlap: Characters shared by consecutive windows, in ``[0, chars - 1]``.
        step: Distance between window starts, ``max(1, chars - overlap)``.
    """

    chars: int
    overlap: int
    step: int


def normalize_chunk_options(chars: int | None = None, overlap: int | None = None) -> ChunkOptions:
    """Apply defaults and clamps to raw window parameters.

    A missing or non-positive *chars* becomes 1200. A missing or negative
    *overlap* becomes 15 % of *chars*; any overlap is clamped to ``chars - 1``.
    """
    size = int(chars) if chars is not None and chars > 0 else DEFAULT_CHARS
    if overlap is None or overlap < 0:
        ov = int(size * DEFAULT_OVERLAP_RATIO)
    else:
        ov = int(overlap)
    ov = min(ov, size - 1)
    return ChunkOptions(chars=size, overlap=ov, step=max(1, size - ov))


def iter_chunks(text: str, chars: int | None = None, overlap: int | None = None) -> Iterator[str]:
    """Lazily yield windows ``text[i:i + chars]`` for ``i = 0, step, 2*step, ...``."""
    src = text or ""
    if not src.strip():
        return
    opts = normalize_chunk_options(chars, overlap)
    for i in range(0, len(src), opts.step):
        yield src[i : i + opts.chars]


def chunk_text(text: str, chars: int | None = None, overlap: int | None = None) -> list[str]:
    """Split *text* into overlapping fixed-size windows.

    Empty or whitespace-only input yields an empty list.

    Examples:
        >>> len(chunk_text("x" * 25, chars=10, overlap=2))
        4
    """
    return list(iter_chunks(text, chars, overlap))


def estimate_tokens(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token (minimum 1)."""
    return max(1, len(text) // 4)
