"""Embedding vector encoding and cosine math.

Vectors are stored in the ``chunks.embedding`` column as JSON arrays, the text
form sqlite-vec's scalar functions (``vec_distance_cosine``) accept directly.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

import numpy as np


def encode_vector(vector: Sequence[float]) -> str:
    """Serialise *vector* to the JSON text stored in the database."""
    return json.dumps([float(x) for x in vector])


def decode_vector(raw: str | bytes | None) -> list[float] | None:
    """Parse a stored vector. Returns None for rows without an embedding."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return np.frombuffer(raw, dtype=np.float32).astype(float).tolist()
    return [float(x) for x in json.loads(raw)]


def unit_rows(matrix: np.ndarray) -> np.ndarray:
    """Scale each row of *matrix* to unit length; zero rows stay zero.

    Dot products of the result are cosine similarities, with 0.0 against any
    zero vector.
    """
    matrix = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)
