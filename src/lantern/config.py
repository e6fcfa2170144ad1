"""lantern configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not in this module)
  2. Environment variables  (LANTERN_EMBEDDING_MODEL, LANTERN_EMBEDDING_DIMENSIONS)
  3. Per-project lantern.yaml  (next to .lantern.db)
  4. Global ~/.lantern/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from collections.abc import Iterator
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from lantern.db.models import NamespaceMode
from lantern.errors import ValidationError
from lantern.ingest.chunking import DEFAULT_CHARS
from lantern.ingest.embedder import EmbeddingConfig
from lantern.ingest.upsert import IngestConfig
from lantern.rag.recency import DEFAULT_RECENCY, RecencyConfig, RecencyTable
from lantern.rag.retriever import RetrieverConfig

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".lantern"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "lantern.yaml"

# Credential-like key names, rejected in global config. Token *limits*
# (max_batch_tokens, max_item_tokens) do not match.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_-]?(?:key|secret)|(?:^|_)(?:token|secret)$|passw(?:ord|d)|credential",
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "ingest", "retrieval", "recency"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkingCfg:
    """Fixed-window chunker parameters (lantern.yaml: chunking:).

    ``overlap`` of None means 15 % of ``chars``.
    """

    chars: int = DEFAULT_CHARS
    overlap: int | None = None


@dataclass
class LanternConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    ingest: IngestConfig = field(default_factory=IngestConfig)
    retrieval: RetrieverConfig = field(default_factory=RetrieverConfig)
    recency: RecencyTable = field(default_factory=RecencyTable)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _secret_paths(obj: Any, prefix: str = "") -> Iterator[str]:
    """Yield dotted paths of every key in *obj* that looks like a credential."""
    if not isinstance(obj, dict):
        return
    for key, value in obj.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if _API_KEY_RE.search(str(key)):
            yield dotted
        yield from _secret_paths(value, dotted)


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if the global config holds anything credential-like."""
    found = next(_secret_paths(data), None)
    if found is None:
        return
    env_name = found.rsplit(".", 1)[-1].upper().replace("-", "_")
    raise ConfigError(
        f"'{found}' in {source} looks like a credential. Global config holds "
        f"defaults only; remove it and export {env_name}=<value> instead."
    )


def _read_yaml(path: Path) -> dict[str, Any]:
    """Parse *path* with yaml.safe_load; an empty file is an empty mapping."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path} is not valid YAML: {exc}") from None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in sorted(set(data) - _KNOWN_SECTIONS):
        warnings.warn(f"{source}: unknown section '{key}' ignored", UserWarning, stacklevel=4)


def _number(section: str, raw: dict[str, Any], key: str, default: Any, kind: type, minimum: float | None = None) -> Any:
    """Read ``raw[key]`` as *kind*, falling back to *default*.

    Raises:
        ConfigError: If the value is not numeric or is below *minimum*.
    """
    if key not in raw or raw[key] is None:
        return default
    value = raw[key]
    if isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    try:
        parsed = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from None
    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {value!r}")
    return parsed


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(raw).__name__}")
    return raw


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_recency(raw: dict[str, Any], defaults: RecencyConfig, where: str) -> RecencyConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping, got {type(raw).__name__}")
    ttl = defaults.ttl_days
    if "ttl_days" in raw:
        ttl = None if raw["ttl_days"] is None else _number(where, raw, "ttl_days", None, float, 0)
    return RecencyConfig(
        half_life_days=_number(where, raw, "half_life_days", defaults.half_life_days, float),
        ttl_days=ttl,
        alpha=_number(where, raw, "alpha", defaults.alpha, float, 0),
        beta=_number(where, raw, "beta", defaults.beta, float, 0),
        gamma=_number(where, raw, "gamma", defaults.gamma, float, 0),
    )


def _cfg_from_dict(data: dict[str, Any]) -> LanternConfig:
    """Build a *LanternConfig* from a merged raw YAML dict."""
    cfg = LanternConfig()

    if "embedding" in data:
        e = _section(data, "embedding")
        d = cfg.embedding
        cfg.embedding = EmbeddingConfig(
            model=str(e.get("model", d.model)),
            dimensions=_number("embedding", e, "dimensions", d.dimensions, int, 1),
            max_batch_items=_number("embedding", e, "max_batch_items", d.max_batch_items, int, 1),
            max_batch_tokens=_number("embedding", e, "max_batch_tokens", d.max_batch_tokens, int, 1),
            max_item_tokens=_number("embedding", e, "max_item_tokens", d.max_item_tokens, int, 1),
            workers=_number("embedding", e, "workers", d.workers, int, 1),
            num_retries=_number("embedding", e, "num_retries", d.num_retries, int, 0),
        )

    if "chunking" in data:
        c = _section(data, "chunking")
        cfg.chunking = ChunkingCfg(
            chars=_number("chunking", c, "chars", cfg.chunking.chars, int, 1),
            overlap=_number("chunking", c, "overlap", cfg.chunking.overlap, int, 0),
        )

    if "ingest" in data:
        i = _section(data, "ingest")
        d = cfg.ingest
        cfg.ingest = IngestConfig(
            max_content_chars=_number("ingest", i, "max_content_chars", d.max_content_chars, int, 1),
            min_content_chars=_number("ingest", i, "min_content_chars", d.min_content_chars, int, 0),
            max_attempts=_number("ingest", i, "max_attempts", d.max_attempts, int, 1),
        )

    if "retrieval" in data:
        r = _section(data, "retrieval")
        d = cfg.retrieval
        mode = str(r.get("namespace_mode", d.namespace_mode))
        try:
            NamespaceMode.parse(mode)
        except ValidationError as exc:
            raise ConfigError(f"retrieval.namespace_mode: {exc}") from None
        mmr_lambda = _number("retrieval", r, "mmr_lambda", d.mmr_lambda, float, 0)
        if mmr_lambda > 1:
            raise ConfigError(f"retrieval.mmr_lambda must be within [0, 1], got {mmr_lambda}")
        cfg.retrieval = RetrieverConfig(
            top_k=_number("retrieval", r, "top_k", d.top_k, int, 1),
            candidate_k=_number("retrieval", r, "candidate_k", d.candidate_k, int, 1),
            min_score=_number("retrieval", r, "min_score", d.min_score, float),
            min_similarity=_number("retrieval", r, "min_similarity", d.min_similarity, float),
            mmr_lambda=mmr_lambda,
            namespace_mode=mode.strip().lower(),
            snippet_chars=_number("retrieval", r, "snippet_chars", d.snippet_chars, int, 1),
        )

    if "recency" in data:
        rc = _section(data, "recency")
        default = _parse_recency(rc.get("default") or {}, DEFAULT_RECENCY, "recency.default")
        raw_ns = rc.get("namespaces") or {}
        if not isinstance(raw_ns, dict):
            raise ConfigError("recency.namespaces must be a mapping of namespace -> settings")
        cfg.recency = RecencyTable(
            default=default,
            namespaces={
                str(ns): _parse_recency(v or {}, default, f"recency.namespaces.{ns}")
                for ns, v in raw_ns.items()
            },
        )

    cfg.retrieval.dimensions = cfg.embedding.dimensions
    return cfg


def _apply_env_overrides(cfg: LanternConfig) -> LanternConfig:
    """Apply LANTERN_* environment variable overrides (layer 2)."""
    if model := os.environ.get("LANTERN_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if dims := os.environ.get("LANTERN_EMBEDDING_DIMENSIONS"):
        try:
            cfg.embedding.dimensions = int(dims)
        except ValueError:
            raise ConfigError(
                f"LANTERN_EMBEDDING_DIMENSIONS must be an integer, got {dims!r}"
            ) from None
        cfg.retrieval.dimensions = cfg.embedding.dimensions
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> LanternConfig:
    """Merge global YAML, project YAML and LANTERN_* env vars into a LanternConfig.

    Args:
        project_dir: Directory holding *lantern.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: On malformed YAML, a credential-like key in the global
            file, or a value of the wrong type or range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    project_path = (project_dir if project_dir is not None else Path.cwd()) / _PROJECT_CONFIG_NAME

    merged: dict[str, Any] = {}
    for path, is_global in ((global_path, True), (project_path, False)):
        if not path.exists():
            continue
        raw = _read_yaml(path)
        if is_global:
            _check_no_api_keys(raw, path)
        _warn_unknown_keys(raw, path)
        merged = _deep_merge(merged, raw)

    return _apply_env_overrides(_cfg_from_dict(merged))


def with_overrides(cfg: LanternConfig, section: str, **overrides: Any) -> LanternConfig:
    """Return a copy of *cfg* with non-None *overrides* applied to one section.

    Used by the CLI to layer flag values on top of the loaded config.
    """
    current = getattr(cfg, section)
    names = {f.name for f in fields(current)}
    values = {k: v for k, v in overrides.items() if v is not None and k in names}
    if not values:
        return cfg
    out = replace(cfg, **{section: replace(current, **values)})
    if out.retrieval.dimensions != out.embedding.dimensions:
        out = replace(out, retrieval=replace(out.retrieval, dimensions=out.embedding.dimensions))
    return out


_GLOBAL_HEADER = (
    "# lantern global defaults. Per-project lantern.yaml overrides these.\n"
    "# Credentials are never read from here: export OPENAI_API_KEY=... instead.\n\n"
)


def _global_defaults() -> dict[str, Any]:
    emb = EmbeddingConfig()
    ret = RetrieverConfig()
    rec = DEFAULT_RECENCY
    return {
        "embedding": {"model": emb.model, "dimensions": emb.dimensions},
        "retrieval": {
            "top_k": ret.top_k,
            "candidate_k": ret.candidate_k,
            "min_score": ret.min_score,
        },
        "recency": {
            "default": {
                "half_life_days": rec.half_life_days,
                "ttl_days": rec.ttl_days,
                "alpha": rec.alpha,
                "beta": rec.beta,
                "gamma": rec.gamma,
            }
        },
    }


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Write ``~/.lantern/config.yaml`` with the built-in defaults if missing.

    The directory is created 0o700 and the file 0o600. An existing file is
    never touched.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    if target.exists():
        return target

    body = yaml.safe_dump(_global_defaults(), sort_keys=False, default_flow_style=False)
    target.write_text(_GLOBAL_HEADER + body, encoding="utf-8")
    target.chmod(0o600)
    return target
