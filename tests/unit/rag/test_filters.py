"""Tests for namespace and domain filters."""

from __future__ import annotations

import pytest

from lantern.errors import ValidationError
from lantern.rag.filters import (
    DomainFilter,
    matches_domain,
    namespace_ancestors,
    namespace_matches,
    validate_namespace,
)


# ------------------------------------------------------------------
# Namespaces
# ------------------------------------------------------------------


@pytest.mark.parametrize("ns", ["docs", "Docs/API", "team-a/v1.2", "0/_x"])
def test_valid_namespaces(ns):
    assert validate_namespace(f"  {ns} ") == ns


@pytest.mark.parametrize("ns", ["", "   ", None, "/docs", "-docs", "docs space", "docs?"])
def test_invalid_namespaces(ns):
    with pytest.raises(ValidationError):
        validate_namespace(ns)


def test_namespace_matches_strict():
    assert namespace_matches("docs", "docs", "strict")
    assert not namespace_matches("docs/api", "docs", "strict")


def test_namespace_matches_prefix():
    assert namespace_matches("docs/api", "docs", "prefix")
    assert namespace_matches("docs/api/v1", "docs", "prefix")
    assert not namespace_matches("docsite", "docs", "prefix")


def test_namespace_ancestors():
    assert namespace_ancestors("a/b/c") == ["a/b", "a"]
    assert namespace_ancestors("a") == []


# ------------------------------------------------------------------
# Domains
# ------------------------------------------------------------------


def test_no_filter_admits_everything():
    assert matches_domain("https://a.com", None)
    assert matches_domain(None, DomainFilter())


def test_allow_list():
    f = DomainFilter.from_lists(allow=["example.com"])
    assert matches_domain("https://docs.EXAMPLE.com/x", f)
    assert not matches_domain("https://other.org", f)
    assert not matches_domain(None, f)


def test_deny_wins_over_allow():
    f = DomainFilter.from_lists(allow=["example.com"], deny=["blog.example.com"])
    assert matches_domain("https://docs.example.com", f)
    assert not matches_domain("https://blog.example.com/post", f)


def test_deny_only_admits_missing_url():
    f = DomainFilter.from_lists(deny=["spam"])
    assert matches_domain(None, f)
    assert not matches_domain("https://spam.net", f)


def test_from_lists_drops_blanks():
    f = DomainFilter.from_lists(allow=[" a.com ", "", "  "], deny=None)
    assert f.allow == ["a.com"]
    assert f.deny == []
