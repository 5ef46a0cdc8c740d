"""Vector helpers shared by the style service, retrieval engine and clustering."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from tonematch.common.exceptions import InvalidVectorError

ArrayLike = np.ndarray | Sequence[float]


def as_vector(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float32).reshape(-1)


def is_zero(vector: np.ndarray | None) -> bool:
    """True for a missing vector or one with no non-zero component."""
    return vector is None or not np.any(vector)


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """
    Cosine similarity with a zero-norm guard.

    Returns 0.0 when either operand has zero norm. Raises
    InvalidVectorError when the dimensions differ.
    """
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape != vb.shape:
        raise InvalidVectorError(
            f"Vector dimensions differ: {va.shape[0]} vs {vb.shape[0]}",
            expected=va.shape[0],
            actual=vb.shape[0],
        )
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalisation; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return matrix / safe


def validate_vector(vector: ArrayLike, expected_dim: int, name: str = "vector") -> np.ndarray:
    """Check dimension and finiteness; returns the float32 array."""
    arr = as_vector(vector)
    if arr.shape[0] != expected_dim:
        raise InvalidVectorError(
            f"{name} has dimension {arr.shape[0]}, expected {expected_dim}",
            expected=expected_dim,
            actual=arr.shape[0],
        )
    if not np.all(np.isfinite(arr)):
        raise InvalidVectorError(
            f"{name} contains non-finite values",
            expected=expected_dim,
            actual=arr.shape[0],
        )
    return arr
