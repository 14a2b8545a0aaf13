"""Vector similarity helpers."""

from collections.abc import Sequence

import numpy as np

from convmem.errors import DimensionMismatchError


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(vec_a, vec_b) / (norm_a * norm_b))


def recency_weight(age_days: float, half_life_days: float) -> float:
    """Hyperbolic recency decay: 1 / (1 + age / half_life).

    Negative ages (clock skew, future timestamps) count as zero.
    """
    return 1.0 / (1.0 + max(0.0, age_days) / half_life_days)
