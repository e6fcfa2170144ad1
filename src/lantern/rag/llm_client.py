"""LiteLLM embedding client with retry, backoff, and API key validation.

Every call to an embedding provider routes through this module. LiteLLM's
built-in retry is used (``num_retries``, exponential backoff). The rest of the
core only sees the black-box shape ``embed(texts) -> vectors``.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

EmbedFn = Callable[[Sequence[str]], list[list[float]]]

# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a 'provider/model' string ('openai' if absent)."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def embed_texts(
    model: str,
    texts: Sequence[str],
    num_retries: int = 3,
    dimensions: int | None = None,
) -> list[list[float]]:
    """Call litellm.embedding() for a batch of texts, preserving order.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        texts: Inputs for one provider request.
        num_retries: Number of retries on transient errors.
        dimensions: Requested output size for models that support shortening.

    Returns:
        One embedding per input, in input order.
    """
    kwargs: dict[str, object] = {"model": model, "input": list(texts), "num_retries": num_retries}
    if dimensions is not None:
        # Providers that cannot shorten vectors ignore the parameter instead of failing.
        kwargs["dimensions"] = dimensions
        kwargs["drop_params"] = True
    response = litellm.embedding(**kwargs)
    items = sorted(response.data, key=lambda d: d.get("index", 0))
    return [list(item["embedding"]) for item in items]


def make_embed_fn(model: str, num_retries: int = 3, dimensions: int | None = None) -> EmbedFn:
    """Bind *model* into an ``embed(texts) -> vectors`` callable."""

    def _embed(texts: Sequence[str]) -> list[list[float]]:
        return embed_texts(model, texts, num_retries=num_retries, dimensions=dimensions)

    return _embed
