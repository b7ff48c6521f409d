"""
Cosine similarity over pre-normalised embeddings.

Vectors handed to the scorer are assumed L2-normalised, so cosine similarity
is the plain dot product. Use `normalize_vector` on raw embeddings first.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from loreseek.core.types import Chunk, Collection, VectorResult


logger = logging.getLogger(__name__)

VectorLike = Optional[Sequence[float]]


def _as_array(vector: VectorLike) -> np.ndarray:
    if vector is None:
        return np.zeros(0, dtype=np.float64)
    return np.asarray(vector, dtype=np.float64).ravel()


def cosine_similarity(vec_a: VectorLike, vec_b: VectorLike) -> float:
    """Dot product over the shorter length, clamped to [0, 1]; degenerate input scores 0."""
    a = _as_array(vec_a)
    b = _as_array(vec_b)
    n = min(a.size, b.size)
    if n == 0:
        return 0.0
    dot = float(np.dot(a[:n], b[:n]))
    if not np.isfinite(dot):
        return 0.0
    return max(0.0, min(1.0, dot))


def find_top_k_similar(
    query_vector: VectorLike,
    chunks: Sequence[Chunk],
    top_k: int = 5,
    threshold: float = 0.7,
) -> List[VectorResult]:
    if query_vector is None or len(query_vector) == 0 or not chunks:
        return []

    query = _as_array(query_vector)
    scored = [
        VectorResult(chunk_id=chunk.id, similarity=cosine_similarity(query, chunk.vector), chunk=chunk)
        for chunk in chunks
    ]

    # sorted() is stable, so equal similarities keep chunk order
    kept = sorted((r for r in scored if r.similarity >= threshold), key=lambda r: r.similarity, reverse=True)
    return kept[: max(top_k, 0)]


def search_in_collections(
    query_vector: VectorLike,
    collections: Sequence[Collection],
    collection_ids: Optional[Sequence[str]] = None,
    top_k: int = 5,
    threshold: float = 0.7,
) -> List[VectorResult]:
    """Top-k per in-scope collection, merged and re-sorted by similarity."""
    if query_vector is None or len(query_vector) == 0 or not collections:
        return []

    scope = set(collection_ids) if collection_ids else None
    results: List[VectorResult] = []

    for collection in collections:
        if scope is not None and collection.id not in scope:
            continue
        if not collection.chunks:
            logger.debug("collection %s has no chunks", collection.id)
            continue

        for hit in find_top_k_similar(query_vector, collection.chunks, top_k, threshold):
            results.append(
                VectorResult(
                    chunk_id=hit.chunk_id,
                    similarity=hit.similarity,
                    chunk=hit.chunk,
                    collection_id=collection.id,
                    collection_name=collection.display_name,
                )
            )

    results.sort(key=lambda r: r.similarity, reverse=True)
    return results


def vector_norm(vector: VectorLike) -> float:
    a = _as_array(vector)
    if a.size == 0:
        return 0.0
    return float(np.linalg.norm(a))


def normalize_vector(vector: VectorLike) -> List[float]:
    a = _as_array(vector)
    if a.size == 0:
        return []
    norm = np.linalg.norm(a)
    if norm == 0:
        return [0.0] * a.size
    return (a / norm).tolist()


def normalize_vectors(vectors: Optional[Sequence[VectorLike]]) -> List[List[float]]:
    if not vectors:
        return []
    return [normalize_vector(v) for v in vectors]
