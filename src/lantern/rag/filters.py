"""Namespace and source-domain filters.

The namespace rules here are the in-process twin of the SQL clauses in
``lantern.db.repository``; both must agree on what "prefix" means.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from lantern.db.models import NamespaceMode
from lantern.errors import ValidationError

_NAMESPACE_RE = re.compile(r"^[a-z0-9][a-z0-9._/-]*$", re.IGNORECASE)


def validate_namespace(namespace: str | None) -> str:
    """Return *namespace* stripped, or raise if it is missing or malformed.

    Raises:
        ValidationError: If the namespace is empty or contains characters
            outside ``[a-z0-9._/-]`` (case-insensitive), or does not start
            with a letter or digit.
    """
    ns = (namespace or "").strip()
    if not ns:
        raise ValidationError("namespace is required")
    if not _NAMESPACE_RE.match(ns):
        raise ValidationError(
            f"Invalid namespace {namespace!r}: use letters, digits, '.', '_', '-' and '/' "
            "and start with a letter or digit."
        )
    return ns


def namespace_matches(candidate: str, namespace: str, mode: NamespaceMode | str) -> bool:
    """True if *candidate* falls under *namespace* for the given mode."""
    if candidate == namespace:
        return True
    if NamespaceMode.parse(mode) is NamespaceMode.PREFIX:
        return candidate.startswith(namespace + "/")
    return False


def namespace_ancestors(namespace: str) -> list[str]:
    """``"a/b/c"`` -> ``["a/b", "a"]`` (nearest first)."""
    parts = namespace.split("/")
    return ["/".join(parts[:i]) for i in range(len(parts) - 1, 0, -1)]


@dataclass
class DomainFilter:
    """Allow/deny lists matched as case-insensitive substrings of a source URL.

    Attributes:
        allow: If non-empty, a URL must contain one of these to pass.
        deny:  A URL containing any of these is rejected, even if allowed.
    """

    allow: list[str] = field(default_factory=list)
    deny: list[str] = field(default_factory=list)

    @classmethod
    def from_lists(
        cls,
        allow: Iterable[str] | None = None,
        deny: Iterable[str] | None = None,
    ) -> DomainFilter:
        return cls(allow=_clean(allow), deny=_clean(deny))

    @property
    def is_empty(self) -> bool:
        return not self.allow and not self.deny


def matches_domain(url: str | None, domain_filter: DomainFilter | None) -> bool:
    """Decide whether a candidate with *url* passes *domain_filter*.

    Deny wins over allow. An empty allow list admits every URL not denied.
    A candidate without a URL only fails when an allow list is present.
    """
    if domain_filter is None or domain_filter.is_empty:
        return True
    if not url:
        return not domain_filter.allow
    haystack = url.lower()
    if any(d.lower() in haystack for d in domain_filter.deny):
        return False
    if domain_filter.allow:
        return any(a.lower() in haystack for a in domain_filter.allow)
    return True


def _clean(values: Iterable[str] | None) -> list[str]:
    if not values:
        return []
    return [v.strip() for v in values if v and v.strip()]

