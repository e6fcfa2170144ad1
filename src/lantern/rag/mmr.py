"""Maximal Marginal Relevance selection over scored candidates.

Greedy: each round picks the remaining candidate maximising

    lambda * cos(candidate, query) - (1 - lambda) * max cos(candidate, selected)

Ties go to the candidate seen first. MMR decides which candidates are kept;
``select_diverse`` then orders them by fused score for presentation.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from lantern.db.models import RetrievedCandidate
from lantern.db.vectors import unit_rows

DEFAULT_LAMBDA = 0.7


def mmr_select(
    query_vector: Sequence[float],
    candidates: Sequence[RetrievedCandidate],
    top_k: int,
    lambda_: float = DEFAULT_LAMBDA,
) -> list[RetrievedCandidate]:
    """Return ``min(top_k, len(candidates))`` candidates in selection order.

    Candidates whose embedding is missing or has the wrong length are treated
    as zero vectors (similarity 0 to everything).

    Raises:
        ValueError: If *lambda_* is outside ``[0, 1]``.
    """
    if not 0.0 <= lambda_ <= 1.0:
        raise ValueError("lambda_ must be within [0, 1]")
    k = min(int(top_k), len(candidates))
    if k <= 0:
        return []

    query = np.asarray(query_vector, dtype=np.float64)
    dim = query.shape[0]
    matrix = np.zeros((len(candidates), dim), dtype=np.float64)
    for row, cand in enumerate(candidates):
        if len(cand.embedding) == dim:
            matrix[row] = cand.embedding

    unit = unit_rows(matrix)
    relevance = unit @ unit_rows(query)[0]

    taken = np.zeros(len(candidates), dtype=bool)
    redundancy = np.zeros(len(candidates), dtype=np.float64)
    order: list[int] = []

    for _ in range(k):
        scores = lambda_ * relevance - (1.0 - lambda_) * redundancy
        scores[taken] = -np.inf
        best = int(np.argmax(scores))  # first maximum wins ties
        order.append(best)
        taken[best] = True
        sims = unit @ unit[best]
        redundancy = sims if len(order) == 1 else np.maximum(redundancy, sims)

    return [candidates[i] for i in order]


def select_diverse(
    query_vector: Sequence[float],
    candidates: Sequence[RetrievedCandidate],
    top_k: int,
    lambda_: float = DEFAULT_LAMBDA,
) -> list[RetrievedCandidate]:
    """MMR selection, re-sorted by ``fused_score`` descending."""
    chosen = mmr_select(query_vector, candidates, top_k, lambda_)
    return sorted(chosen, key=lambda c: c.fused_score, reverse=True)
