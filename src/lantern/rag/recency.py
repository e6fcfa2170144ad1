"""Recency model: exponential decay weights and hard TTL cutoffs.

Per-namespace parameters live in a ``RecencyTable`` built once from config and
passed to retrieval; nothing here is module-level mutable state.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TypeVar

from lantern.rag.filters import namespace_ancestors

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RecencyConfig:
    """Decay, retention and fusion weights for one namespace.

    Attributes:
        half_life_days: Age at which the recency weight drops to 0.5.
        ttl_days: Hard retention cutoff; None disables it.
        alpha: Weight of dense similarity in the fused score.
        beta: Weight of the recency decay.
        gamma: Weight of the lexical rank.
    """

    half_life_days: float = 180.0
    ttl_days: float | None = 365.0
    alpha: float = 0.75
    beta: float = 0.15
    gamma: float = 0.10

    @property
    def weight_sum(self) -> float:
        return self.alpha + self.beta + self.gamma


DEFAULT_RECENCY = RecencyConfig()


def decay(age_days: float, half_life_days: float) -> float:
    """``0.5 ** (age / half_life)``; exactly 1.0 for non-positive ages.

    A non-positive half-life is treated as one day.

    Examples:
        >>> decay(0, 30)
        1.0
        >>> decay(30, 30)
        0.5
    """
    if age_days <= 0:
        return 1.0
    hl = half_life_days if half_life_days > 0 else 1.0
    return 0.5 ** (age_days / hl)


def within_ttl(age_days: float, ttl_days: float | None) -> bool:
    """False only when a TTL is set and *age_days* exceeds it."""
    return ttl_days is None or age_days <= ttl_days


def apply_ttl(candidates: Iterable[T], ttl_days: float | None) -> list[T]:
    """Drop candidates (anything with ``age_days``) older than *ttl_days*."""
    if ttl_days is None:
        return list(candidates)
    return [c for c in candidates if within_ttl(c.age_days, ttl_days)]


@dataclass
class RecencyTable:
    """Lookup of RecencyConfig by namespace.

    Resolution order: the exact namespace, then its nearest ancestor
    (``a/b/c`` -> ``a/b`` -> ``a``), then ``default``.
    """

    default: RecencyConfig = DEFAULT_RECENCY
    namespaces: Mapping[str, RecencyConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name, cfg in [("default", self.default), *self.namespaces.items()]:
            if not 0.5 <= cfg.weight_sum <= 1.5:
                logger.warning(
                    "Recency weights for %s sum to %.2f; fused scores are easiest "
                    "to read when alpha + beta + gamma is close to 1.0",
                    name, cfg.weight_sum,
                )

    def for_namespace(self, namespace: str) -> RecencyConfig:
        if namespace in self.namespaces:
            return self.namespaces[namespace]
        for ancestor in namespace_ancestors(namespace):
            if ancestor in self.namespaces:
                return self.namespaces[ancestor]
        return self.default
