"""Hybrid scorer: weighted fusion of dense, lexical and recency signals.

    fused = alpha * clamp01(dense) + gamma * clamp01(lexical) + beta * decay(age)

Lexical rank arrives on the store's own (unbounded) scale; clamping it to 1
keeps a single strong keyword hit from outweighing the dense channel.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from lantern.db.models import RetrievedCandidate
from lantern.rag.recency import RecencyConfig, decay


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def fuse(dense: float, lexical: float, age_days: float, cfg: RecencyConfig) -> float:
    """Return the fused score of one candidate under *cfg*."""
    return (
        cfg.alpha * clamp01(dense)
        + cfg.gamma * clamp01(lexical)
        + cfg.beta * decay(age_days, cfg.half_life_days)
    )


def score_candidates(
    candidates: Iterable[RetrievedCandidate],
    cfg: RecencyConfig,
    min_score: float = 0.0,
) -> list[RetrievedCandidate]:
    """Set ``fused_score`` on every candidate, keep those >= *min_score*.

    Returns the survivors sorted by fused score, best first. The sort is
    stable, so equal scores keep their fetch order.
    """
    kept: list[RetrievedCandidate] = []
    for cand in candidates:
        cand.fused_score = fuse(cand.dense, cand.lexical, cand.age_days, cfg)
        if cand.fused_score >= min_score:
            kept.append(cand)
    kept.sort(key=lambda c: c.fused_score, reverse=True)
    return kept
