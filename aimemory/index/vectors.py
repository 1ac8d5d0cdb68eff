"""
Similarity functions and storage codecs for sparse and dense vectors.
"""

import base64
import binascii
import json
import math
from typing import Collection, Mapping, Optional, Sequence

import numpy as np

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def cosine_similarity(vec_a: Mapping[str, float], vec_b: Mapping[str, float]) -> float:
    """Cosine similarity of two sparse vectors, 0 when either is all zeros."""
    if len(vec_a) > len(vec_b):
        vec_a, vec_b = vec_b, vec_a
    dot = sum(weight * vec_b[term] for term, weight in vec_a.items() if term in vec_b)
    norm_a = math.sqrt(sum(w * w for w in vec_a.values()))
    norm_b = math.sqrt(sum(w * w for w in vec_b.values()))
    denom = norm_a * norm_b
    return dot / denom if denom > 0 else 0.0


def cosine_similarity_dense(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity of two dense vectors.

    Vectors of different dimension come from different providers and are never
    comparable, so they score 0.
    """
    a = np.asarray(vec_a, dtype=np.float32)
    b = np.asarray(vec_b, dtype=np.float32)
    if a.shape != b.shape or a.size == 0:
        return 0.0
    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom <= 0:
        return 0.0
    return float(np.dot(a, b)) / denom


def jaccard_similarity(set_a: Collection[str], set_b: Collection[str]) -> float:
    set_a, set_b = set(set_a), set(set_b)
    if not set_a and not set_b:
        return 1.0
    intersection = len(set_a & set_b)
    union = len(set_a) + len(set_b) - intersection
    return intersection / union if union else 0.0


def serialize_sparse(vec: Mapping[str, float]) -> str:
    return json.dumps([[term, weight] for term, weight in vec.items()], ensure_ascii=False)


def deserialize_sparse(raw: Optional[str]) -> dict:
    """Decode a stored sparse vector; corrupted rows decode as empty."""
    try:
        return {str(term): float(weight) for term, weight in json.loads(raw)}
    except (TypeError, ValueError) as e:
        logger.warning(f'Discarding unreadable sparse vector: {e}')
        return {}


def serialize_dense(vec: Sequence[float]) -> str:
    return base64.b64encode(np.asarray(vec, dtype='<f4').tobytes()).decode('ascii')


def deserialize_dense(raw: Optional[str]) -> np.ndarray:
    """Decode a base64 float32 vector; corrupted rows decode as empty."""
    try:
        buf = base64.b64decode(raw or '', validate=True)
        if len(buf) % 4:
            raise ValueError(f'buffer length {len(buf)} is not a multiple of 4')
        return np.frombuffer(buf, dtype='<f4').astype(np.float32)
    except (binascii.Error, ValueError) as e:
        logger.warning(f'Discarding unreadable dense vector: {e}')
        return np.zeros(0, dtype=np.float32)
