from __future__ import annotations

import logging
import math
import re
from typing import Dict, List, Mapping, Optional, Sequence

from loreseek.core.config import KeywordSearchConfig, TokenizationConfig
from loreseek.core.types import Collection, KeywordResult, KeywordSearchStats
from loreseek.indexing.keyword_index import KeywordIndex
from loreseek.indexing.tokenizer import tokenize


logger = logging.getLogger(__name__)


def _matched_terms(chunk_id: str, query_terms: Sequence[str], index: KeywordIndex) -> Dict[str, int]:
    chunk_terms = index.term_frequency.get(chunk_id, {})
    matched: Dict[str, int] = {}
    for term in query_terms:
        count = chunk_terms.get(term, 0)
        if count:
            matched[term] = count
    return matched


def _rank(
    scores: Dict[str, float],
    query_terms: Sequence[str],
    index: KeywordIndex,
    top_k: int,
    algorithm: str,
) -> List[KeywordResult]:
    # ties resolve by chunk insertion order
    order = index.chunk_order()
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], order.get(kv[0], len(order))))
    return [
        KeywordResult(
            chunk_id=chunk_id,
            score=score,
            matched_terms=_matched_terms(chunk_id, query_terms, index),
            algorithm=algorithm,
        )
        for chunk_id, score in ranked[: max(top_k, 0)]
    ]


def bm25_search(
    query: str,
    index: Optional[KeywordIndex],
    k1: float = 1.5,
    b: float = 0.75,
    top_k: int = 10,
    tokenization: Optional[TokenizationConfig] = None,
) -> List[KeywordResult]:
    """
    Okapi BM25 over the inverted index.

    idf = ln((N - df + 0.5) / (df + 0.5) + 1)
    score += idf * tf*(k1+1) / (tf + k1*(1 - b + b*len/avg))

    Repeated query terms contribute once per occurrence. The query is
    tokenized with the index's own config; `tokenization` only applies to
    indexes that carry none.
    """
    if not query or index is None:
        return []

    query_terms = tokenize(query, index.tokenization or tokenization)
    if not query_terms:
        return []

    n = index.total_chunks
    avg = index.avg_doc_length
    scores: Dict[str, float] = {}

    for term in query_terms:
        chunk_ids = index.inverted_index.get(term, ())
        df = len(chunk_ids)
        if df == 0:
            continue

        idf = math.log((n - df + 0.5) / (df + 0.5) + 1)

        for chunk_id in chunk_ids:
            tf = index.term_frequency.get(chunk_id, {}).get(term, 0)
            doc_len = index.doc_lengths.get(chunk_id, 0)
            length_ratio = doc_len / avg if avg > 0 else 0.0
            contribution = idf * (tf * (k1 + 1)) / (tf + k1 * (1 - b + b * length_ratio))
            scores[chunk_id] = scores.get(chunk_id, 0.0) + contribution

    return _rank(scores, query_terms, index, top_k, "bm25")


def tfidf_search(
    query: str,
    index: Optional[KeywordIndex],
    top_k: int = 10,
    tokenization: Optional[TokenizationConfig] = None,
) -> List[KeywordResult]:
    """Length-normalised TF-IDF: score += (tf / max(len, 1)) * ln(N / df)."""
    if not query or index is None:
        return []

    query_terms = tokenize(query, index.tokenization or tokenization)
    if not query_terms:
        return []

    n = index.total_chunks
    scores: Dict[str, float] = {}

    for term in query_terms:
        chunk_ids = index.inverted_index.get(term, ())
        df = len(chunk_ids)
        if df == 0:
            continue

        idf = math.log(n / df)

        for chunk_id in chunk_ids:
            tf = index.term_frequency.get(chunk_id, {}).get(term, 0)
            doc_len = index.doc_lengths.get(chunk_id, 0) or 1
            scores[chunk_id] = scores.get(chunk_id, 0.0) + (tf / doc_len) * idf

    return _rank(scores, query_terms, index, top_k, "tfidf")


def keyword_search(
    query: str,
    index: Optional[KeywordIndex],
    config: Optional[KeywordSearchConfig] = None,
) -> List[KeywordResult]:
    """Run the configured algorithm; unknown names fall back to BM25."""
    config = config or KeywordSearchConfig()
    algorithm = config.algorithm
    if algorithm == "tfidf":
        return tfidf_search(query, index, top_k=config.top_k, tokenization=config.tokenization)
    if algorithm != "bm25":
        logger.warning("unsupported keyword algorithm %r, using bm25", algorithm)
    return bm25_search(
        query,
        index,
        k1=config.bm25.k1,
        b=config.bm25.b,
        top_k=config.top_k,
        tokenization=config.tokenization,
    )


def keyword_search_in_collections(
    query: str,
    collections: Sequence[Collection],
    collection_ids: Optional[Sequence[str]] = None,
    config: Optional[KeywordSearchConfig] = None,
) -> List[KeywordResult]:
    """
    Search every in-scope collection's keyword index and merge by score.

    Collections without an index and hits whose chunk is missing from the
    collection are skipped.
    """
    if not query or not collections:
        return []

    scope = set(collection_ids) if collection_ids else None
    results: List[KeywordResult] = []

    for collection in collections:
        if scope is not None and collection.id not in scope:
            continue
        if collection.keyword_index is None:
            logger.warning("collection %s has no keyword index", collection.id)
            continue

        chunks_by_id = {c.id: c for c in collection.chunks}
        for hit in keyword_search(query, collection.keyword_index, config):
            chunk = chunks_by_id.get(hit.chunk_id)
            if chunk is None:
                logger.warning("chunk %s not found in collection %s", hit.chunk_id, collection.id)
                continue
            results.append(
                KeywordResult(
                    chunk_id=hit.chunk_id,
                    score=hit.score,
                    matched_terms=hit.matched_terms,
                    algorithm=hit.algorithm,
                    chunk=chunk,
                    collection_id=collection.id,
                    collection_name=collection.display_name,
                )
            )

    results.sort(key=lambda r: r.score, reverse=True)
    return results


def highlight_matches(text: str, query_terms: Sequence[str]) -> str:
    """Wrap case-insensitive matches in **bold**, longest terms first."""
    if not text or not query_terms:
        return text

    highlighted = text
    for term in sorted(query_terms, key=len, reverse=True):
        pattern = re.compile(re.escape(term), re.IGNORECASE)
        highlighted = pattern.sub(lambda m: f"**{m.group(0)}**", highlighted)
    return highlighted


def calculate_query_coverage(query_terms: Sequence[str], matched_terms: Optional[Mapping[str, int]]) -> float:
    """Fraction of distinct query terms that matched (0-1)."""
    unique = set(query_terms or ())
    if not unique:
        return 0.0
    matched = matched_terms or {}
    return sum(1 for t in unique if matched.get(t, 0) > 0) / len(unique)


def generate_keyword_search_stats(results: Sequence[KeywordResult]) -> KeywordSearchStats:
    if not results:
        return KeywordSearchStats()

    scores = [r.score or 0.0 for r in results]
    collections = list(dict.fromkeys(r.collection_id for r in results if r.collection_id))
    return KeywordSearchStats(
        total_results=len(results),
        avg_score=round(sum(scores) / len(scores), 2),
        max_score=round(max(scores), 2),
        min_score=round(min(scores), 2),
        collections=collections,
    )

