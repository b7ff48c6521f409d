from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Union

from loreseek.core.config import CascadeParams, FusionConfig, WeightedParams
from loreseek.core.types import (
    Chunk,
    Collection,
    FusedResult,
    FusionStats,
    KeywordMatch,
    KeywordResult,
    RankedResult,
    ScoreSource,
    VectorMatch,
    VectorResult,
)


logger = logging.getLogger(__name__)

ChunkLookup = Mapping[str, Chunk]

# weighted fusion never divides by less than this
MIN_NORMALIZER = 0.001


def _rrf_contribution(rank: int, k: int) -> float:
    # rank is 1-based. Higher rank number => smaller contribution
    return 1.0 / (k + rank)


@dataclass
class _Entry:
    """Mutable accumulator for one chunk while a fusion pass runs."""

    chunk_id: str
    score: float = 0.0
    vector: Optional[VectorMatch] = None
    keyword: Optional[KeywordMatch] = None
    chunk: Optional[Chunk] = None
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None

    def locate(self, result: Union[VectorResult, KeywordResult], chunks: ChunkLookup) -> None:
        if self.chunk is None:
            self.chunk = result.chunk or chunks.get(self.chunk_id)
        if self.collection_id is None:
            self.collection_id = result.collection_id or (self.chunk.collection_id if self.chunk else None)
        if self.collection_name is None:
            self.collection_name = result.collection_name or (self.chunk.collection_name if self.chunk else None)

    def freeze(self, with_score: bool = True, source: Optional[ScoreSource] = None) -> FusedResult:
        return FusedResult(
            chunk_id=self.chunk_id,
            fusion_score=self.score if with_score else None,
            vector=self.vector,
            keyword=self.keyword,
            chunk=self.chunk,
            collection_id=self.collection_id,
            collection_name=self.collection_name,
            source=source,
        )


def _chunk_id(result: Union[VectorResult, KeywordResult]) -> Optional[str]:
    if result.chunk_id:
        return result.chunk_id
    return result.chunk.id if result.chunk is not None else None


def _sorted(seen: Dict[str, _Entry]) -> List[FusedResult]:
    # stable: equal scores keep first-seen order (vector list before keyword list)
    entries = sorted(seen.values(), key=lambda e: e.score, reverse=True)
    return [e.freeze() for e in entries]


def rrf_fusion(
    vector_results: Sequence[VectorResult],
    keyword_results: Sequence[KeywordResult],
    chunks: Optional[ChunkLookup] = None,
    k: int = 60,
) -> List[FusedResult]:
    """
    Reciprocal Rank Fusion.

    RRF(d) = 1/(k+rank_vector(d)) + 1/(k+rank_keyword(d)), ranks 1-based.

    Scale-free: only positions matter, so BM25 scores and cosine similarities
    never need to be made comparable.
    """
    chunks = chunks or {}
    seen: Dict[str, _Entry] = {}

    for rank, item in enumerate(vector_results, start=1):
        cid = _chunk_id(item)
        if not cid:
            continue
        entry = seen.setdefault(cid, _Entry(cid))
        entry.score += _rrf_contribution(rank, k)
        if entry.vector is None:
            entry.vector = VectorMatch(rank=rank, similarity=item.similarity)
        entry.locate(item, chunks)

    for rank, item in enumerate(keyword_results, start=1):
        cid = _chunk_id(item)
        if not cid:
            continue
        entry = seen.setdefault(cid, _Entry(cid))
        entry.score += _rrf_contribution(rank, k)
        if entry.keyword is None:
            entry.keyword = KeywordMatch(rank=rank, score=item.score, matched_terms=item.matched_terms)
        entry.locate(item, chunks)

    return _sorted(seen)


def weighted_fusion(
    vector_results: Sequence[VectorResult],
    keyword_results: Sequence[KeywordResult],
    chunks: Optional[ChunkLookup] = None,
    weights: Optional[WeightedParams] = None,
) -> List[FusedResult]:
    """
    Score fusion after per-list max normalisation.

    Each list is divided by max(scores, 0.001) so its top item scores 1.0,
    then scaled by that list's weight and summed per chunk.
    """
    chunks = chunks or {}
    weights = weights or WeightedParams()
    seen: Dict[str, _Entry] = {}

    max_vector = max([r.similarity or 0.0 for r in vector_results] + [MIN_NORMALIZER])
    for rank, item in enumerate(vector_results, start=1):
        cid = _chunk_id(item)
        if not cid:
            continue
        entry = seen.setdefault(cid, _Entry(cid))
        entry.score += (item.similarity or 0.0) / max_vector * weights.vector_weight
        if entry.vector is None:
            entry.vector = VectorMatch(rank=rank, similarity=item.similarity)
        entry.locate(item, chunks)

    max_keyword = max([r.score or 0.0 for r in keyword_results] + [MIN_NORMALIZER])
    for rank, item in enumerate(keyword_results, start=1):
        cid = _chunk_id(item)
        if not cid:
            continue
        entry = seen.setdefault(cid, _Entry(cid))
        entry.score += (item.score or 0.0) / max_keyword * weights.keyword_weight
        if entry.keyword is None:
            entry.keyword = KeywordMatch(rank=rank, score=item.score, matched_terms=item.matched_terms)
        entry.locate(item, chunks)

    return _sorted(seen)


def _cascade_entry(
    item: Union[VectorResult, KeywordResult],
    rank: int,
    cid: str,
    chunks: ChunkLookup,
) -> _Entry:
    entry = _Entry(cid)
    if isinstance(item, VectorResult):
        entry.vector = VectorMatch(rank=rank, similarity=item.similarity)
    else:
        entry.keyword = KeywordMatch(rank=rank, score=item.score, matched_terms=item.matched_terms)
    entry.locate(item, chunks)
    return entry


def cascade_fusion(
    vector_results: Sequence[VectorResult],
    keyword_results: Sequence[KeywordResult],
    chunks: Optional[ChunkLookup] = None,
    params: Optional[CascadeParams] = None,
) -> List[FusedResult]:
    """
    Primary method first; the fallback method only tops up a short primary list.

    No scores are recombined: output order is primary order followed by
    fallback order, each record tagged with the method that produced it.
    """
    chunks = chunks or {}
    params = params or CascadeParams()

    if params.primary_method == "vector":
        primary, fallback = vector_results, keyword_results
        primary_source, fallback_source = ScoreSource.VECTOR, ScoreSource.KEYWORD
    else:
        primary, fallback = keyword_results, vector_results
        primary_source, fallback_source = ScoreSource.KEYWORD, ScoreSource.VECTOR

    results: List[FusedResult] = []
    added = set()

    for rank, item in enumerate(primary, start=1):
        cid = _chunk_id(item)
        if not cid or cid in added:
            continue
        results.append(_cascade_entry(item, rank, cid, chunks).freeze(with_score=False, source=primary_source))
        added.add(cid)

    if len(results) < params.min_primary_results:
        for rank, item in enumerate(fallback, start=1):
            cid = _chunk_id(item)
            if not cid or cid in added:
                continue
            results.append(_cascade_entry(item, rank, cid, chunks).freeze(with_score=False, source=fallback_source))
            added.add(cid)

    return results


def hybrid_fusion(
    vector_results: Sequence[VectorResult],
    keyword_results: Sequence[KeywordResult],
    chunks: Optional[ChunkLookup] = None,
    config: Optional[FusionConfig] = None,
) -> List[FusedResult]:
    """Dispatch on `config.method`; unknown methods log and use RRF with k=60."""
    config = config or FusionConfig()
    method = config.method

    if method == "rrf":
        return rrf_fusion(vector_results, keyword_results, chunks, k=config.rrf.k)
    if method == "weighted":
        return weighted_fusion(vector_results, keyword_results, chunks, weights=config.weighted)
    if method == "cascade":
        return cascade_fusion(vector_results, keyword_results, chunks, params=config.cascade)

    logger.warning("unsupported fusion method %r, using rrf", method)
    return rrf_fusion(vector_results, keyword_results, chunks, k=60)


def generate_fusion_stats(
    results: Sequence[Union[FusedResult, RankedResult]],
    method: str = "rrf",
) -> FusionStats:
    """Coverage of a fused list: how many hits came from vector, keyword or both."""
    fused = [r.result if isinstance(r, RankedResult) else r for r in results or ()]
    fused = [r for r in fused if isinstance(r, FusedResult)]
    if not fused:
        return FusionStats(method=method)

    vector_only = keyword_only = both = 0
    for r in fused:
        if r.vector is not None and r.keyword is not None:
            both += 1
        elif r.vector is not None:
            vector_only += 1
        elif r.keyword is not None:
            keyword_only += 1

    avg = sum(r.fusion_score or 0.0 for r in fused) / len(fused)
    return FusionStats(
        total_results=len(fused),
        vector_only_count=vector_only,
        keyword_only_count=keyword_only,
        both_methods_count=both,
        avg_fusion_score=round(avg, 4),
        method=method,
    )


def build_chunks_map(collections: Sequence[Collection]) -> Dict[str, Chunk]:
    """chunk id -> chunk annotated with the collection it lives in."""
    chunks_map: Dict[str, Chunk] = {}
    for collection in collections or ():
        if collection is None:
            continue
        for chunk in collection.chunks:
            if not chunk.id:
                logger.warning("skipping chunk without id in collection %s", collection.id)
                continue
            chunks_map[chunk.id] = _with_collection(chunk, collection)
    logger.debug("built chunk map with %d chunks", len(chunks_map))
    return chunks_map


def _with_collection(chunk: Chunk, collection: Collection) -> Chunk:
    if chunk.collection_id and chunk.collection_name:
        return chunk
    return replace(
        chunk,
        collection_id=chunk.collection_id or collection.id,
        collection_name=chunk.collection_name or collection.display_name,
    )
