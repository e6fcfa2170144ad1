"""lantern rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from lantern.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from lantern.errors import EmbeddingDimensionError


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".lantern.db") -> str:
    """No .lantern.db found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  lantern init"
    )


def err_invalid_input(message: str) -> str:
    """Document, namespace, slot or query failed validation."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Fix the input and retry. Namespaces use letters, digits, '.', '_', '-'\n"
        "  and '/' (e.g. team/topic); slots are 'staging' or 'prod'."
    )


def err_config(message: str, config_path: str = "lantern.yaml") -> str:
    """Config file contains an invalid or forbidden value."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        f"  Fix the value in {config_path} (or ~/.lantern/config.yaml) and retry."
    )


def err_embedding_failed(message: str, model: str) -> str:
    """Embedding provider call failed."""
    return (
        f"[red]Error:[/] Embedding failed for model '{model}': {message}\n"
        "  Check the provider API key and network access, or set a different model:\n"
        "    export LANTERN_EMBEDDING_MODEL=<provider/model>"
    )


def err_dimension_mismatch(exc: EmbeddingDimensionError, model: str) -> str:
    """Provider returned vectors of a different size than configured."""
    return (
        f"[red]Error:[/] Model '{model}' returned {exc.actual}-dimensional vectors; "
        f"the configuration expects {exc.expected}.\n"
        f"  Set:  embedding.dimensions: {exc.actual}   (in lantern.yaml, then re-ingest)\n"
        "  or switch back to the model used at ingest time."
    )


def err_store(message: str) -> str:
    """Database query failed."""
    return (
        f"[red]Error:[/] Database query failed: {message}\n"
        "  Run:  lantern init   (applies pending migrations)"
    )


def err_same_slot(slot: str) -> str:
    return (
        f"[red]Error:[/] Source and destination slot are both '{slot}'.\n"
        "  Use:  lantern promote --namespace <ns> --from staging --to prod"
    )


def warn_prod_purged(namespace: str) -> str:
    """Warning shown after purging a prod slot; live queries are affected."""
    return (
        f"[yellow]⚠[/] Live (prod) content of '{namespace}' was removed.\n"
        "  Restore it from staging with:\n"
        f"    lantern promote --namespace {namespace} --from staging --to prod"
    )
