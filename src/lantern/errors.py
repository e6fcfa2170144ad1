"""Exception hierarchy for the ingestion and retrieval core.

Validation errors fail an ingestion call before any embedding or store cost is
incurred. Embedding errors are fatal for the batch that produced them. Store
failures during retrieval surface as StoreError so callers can tell "no data"
(an empty result list) apart from "system failure".
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lantern.ingest.upsert import IngestResult


class LanternError(Exception):
    """Base class for all errors raised by lantern."""


class ValidationError(LanternError, ValueError):
    """Raised when input documents or query parameters are malformed.

    Attributes:
        document_index: Position of the offending document in the ingest call,
            or None when the error is not tied to a document.
    """

    def __init__(self, message: str, document_index: int | None = None) -> None:
        if document_index is not None:
            message = f"document[{document_index}]: {message}"
        super().__init__(message)
        self.document_index = document_index


class EmbeddingError(LanternError, RuntimeError):
    """Raised when the embedding provider fails for a batch."""


class EmbeddingDimensionError(EmbeddingError):
    """Raised when a returned vector does not have the configured dimension.

    Attributes:
        index: Position of the offending text in the ``embed_many`` input.
        expected: Configured dimensionality.
        actual: Length of the vector the provider returned.
    """

    def __init__(self, index: int, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding at index {index} has {actual} dimensions, expected {expected}."
        )
        self.index = index
        self.expected = expected
        self.actual = actual


class StaleSnapshotError(LanternError):
    """Raised inside a write transaction when a row changed after it was planned."""


class StoreError(LanternError, RuntimeError):
    """Raised when the backing store fails to serve a query."""


class IngestError(LanternError):
    """Raised by ``fail_fast`` ingestion; carries the counts committed so far."""

    def __init__(self, message: str, result: IngestResult) -> None:
        super().__init__(message)
        self.result = result
