from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from loreseek.core.config import RetrievalConfig
from loreseek.core.types import (
    AnyResult,
    Chunk,
    Collection,
    KeywordResult,
    QueryIntent,
    RankedResult,
    RetrievalOutcome,
    RetrievalStats,
    VectorResult,
)
from loreseek.retrieval.fusion import build_chunks_map, generate_fusion_stats, hybrid_fusion
from loreseek.retrieval.keyword_search import keyword_search_in_collections
from loreseek.retrieval.query_parser import intent_to_retrieval_config, parse_world_context_intent
from loreseek.retrieval.ranker import generate_result_stats, merge_query_results
from loreseek.retrieval.similarity import search_in_collections


logger = logging.getLogger(__name__)


class EmbedFn(Protocol):
    def __call__(self, text: str) -> Sequence[float]: ...


@dataclass
class _QueryEvaluation:
    marked: List[RankedResult] = field(default_factory=list)
    vector_results: List[VectorResult] = field(default_factory=list)
    keyword_results: List[KeywordResult] = field(default_factory=list)


def _mark(results: Sequence[AnyResult], query: QueryIntent) -> List[RankedResult]:
    return [RankedResult(result=r, importance=query.importance, query_text=query.query) for r in results]


class HybridRetriever:
    """
    Runs one retrieval request against a fixed snapshot of collections.

    The collections (and their keyword indexes) are only read, so one
    retriever may serve concurrent requests and its sub-queries may run on a
    thread pool.
    """

    def __init__(
        self,
        collections: Sequence[Collection],
        config: Optional[RetrievalConfig] = None,
        embed_fn: Optional[EmbedFn] = None,
    ):
        self.collections = list(collections)
        self.config = config or RetrievalConfig()
        self.embed_fn = embed_fn
        self._chunks: Optional[Dict[str, Chunk]] = None

    @property
    def mode(self) -> str:
        mode = self.config.mode
        if mode not in ("hybrid", "vector_only", "keyword_only"):
            logger.warning("unsupported retrieval mode %r, using hybrid", mode)
            return "hybrid"
        return mode

    def _chunk_lookup(self) -> Dict[str, Chunk]:
        if self._chunks is None:
            self._chunks = build_chunks_map(self.collections)
        return self._chunks

    def _vector_search(self, query: QueryIntent) -> List[VectorResult]:
        if self.embed_fn is None:
            logger.warning("no embedding provider configured, skipping vector search for %r", query.query)
            return []
        vs = self.config.vector_search
        query_vector = self.embed_fn(query.query)
        return search_in_collections(
            query_vector,
            self.collections,
            query.collections or None,
            top_k=vs.top_k,
            threshold=vs.similarity_threshold,
        )

    def _keyword_search(self, query: QueryIntent) -> List[KeywordResult]:
        return keyword_search_in_collections(
            query.query,
            self.collections,
            query.collections or None,
            self.config.keyword_search,
        )

    def _evaluate(self, query: QueryIntent, mode: str) -> _QueryEvaluation:
        logger.info("%s retrieval for query: %s", mode, query.query)

        if mode == "vector_only":
            vector = self._vector_search(query)
            return _QueryEvaluation(marked=_mark(vector, query), vector_results=vector)

        if mode == "keyword_only":
            keyword = self._keyword_search(query)
            return _QueryEvaluation(marked=_mark(keyword, query), keyword_results=keyword)

        vector = self._vector_search(query)
        keyword = self._keyword_search(query)
        fused = hybrid_fusion(vector, keyword, self._chunk_lookup(), self.config.fusion)
        return _QueryEvaluation(marked=_mark(fused, query), vector_results=vector, keyword_results=keyword)

    def _evaluate_all(self, queries: Sequence[QueryIntent], mode: str) -> List[_QueryEvaluation]:
        workers = self.config.query_workers
        if mode == "hybrid":
            # build once before fanning out so workers share the map
            self._chunk_lookup()
        if workers > 1 and len(queries) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                return list(pool.map(lambda q: self._evaluate(q, mode), queries))
        return [self._evaluate(q, mode) for q in queries]

    def retrieve(self, queries: Sequence[QueryIntent]) -> RetrievalOutcome:
        queries = [q for q in queries or () if q is not None and q.query]
        if not queries or not self.collections:
            if not self.collections:
                logger.warning("no collections available for retrieval")
            return RetrievalOutcome()

        mode = self.mode
        try:
            evaluations = self._evaluate_all(queries, mode)
        except Exception as e:
            # collaborators (embedding provider) may fail; the host gets an empty outcome
            logger.exception("retrieval failed")
            return RetrievalOutcome(stats=RetrievalStats(mode=mode), error=str(e))

        ranked = merge_query_results(
            [ev.marked for ev in evaluations],
            token_budget=self.config.token_budget,
            deduplicate=self.config.deduplicate,
            deduplicate_by=self.config.deduplicate_by,
        )
        logger.info("retrieval finished with %d results", len(ranked))

        stats = RetrievalStats(mode=mode, summary=generate_result_stats(ranked))
        if mode == "hybrid":
            method = self.config.fusion.method
            stats = RetrievalStats(
                mode=mode,
                summary=stats.summary,
                fusion=generate_fusion_stats(ranked, method),
                fusion_method=method,
                vector_results=[r for ev in evaluations for r in ev.vector_results],
                keyword_results=[r for ev in evaluations for r in ev.keyword_results],
            )
        return RetrievalOutcome(results=ranked, stats=stats)


def retrieve(
    queries: Sequence[QueryIntent],
    collections: Sequence[Collection],
    config: Optional[RetrievalConfig] = None,
    embed_fn: Optional[EmbedFn] = None,
) -> RetrievalOutcome:
    return HybridRetriever(collections, config=config, embed_fn=embed_fn).retrieve(queries)


def parse_and_retrieve(
    text: str,
    collections: Sequence[Collection],
    config: Optional[RetrievalConfig] = None,
    embed_fn: Optional[EmbedFn] = None,
) -> RetrievalOutcome:
    queries, config = intent_to_retrieval_config(parse_world_context_intent(text), config)
    if not queries:
        logger.info("no WorldContextIntent queries found")
        return RetrievalOutcome()
    return retrieve(queries, collections, config=config, embed_fn=embed_fn)
