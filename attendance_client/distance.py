from __future__ import annotations

import math
from typing import Any

import numpy as np

# Returned for absent or mismatched inputs; larger than any finite distance.
INFINITE_DISTANCE = math.inf


def as_vector(values: Any) -> np.ndarray | None:
    if values is None:
        return None
    try:
        vector = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if vector.ndim != 1 or vector.size == 0:
        return None
    return vector


def squared_distance(a: Any, b: Any) -> float:
    va = as_vector(a)
    vb = as_vector(b)
    if va is None or vb is None or va.shape != vb.shape:
        return INFINITE_DISTANCE
    diff = va - vb
    return float(np.dot(diff, diff))


def euclidean_distance(a: Any, b: Any) -> float:
    """Euclidean distance between two embeddings of equal length.

    Never raises: absent, malformed or mismatched inputs yield
    ``INFINITE_DISTANCE`` so callers can never select them as a match.
    """
    squared = squared_distance(a, b)
    if math.isinf(squared):
        return INFINITE_DISTANCE
    return math.sqrt(squared)
