from __future__ import annotations

import logging
import math
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence

from loreseek.core.types import RankedResult, ResultStats


logger = logging.getLogger(__name__)

_CJK_RE = re.compile(r"[\u4e00-\u9fa5]")

# roughly 1.5 Chinese characters or 4 other characters per token
CJK_CHARS_PER_TOKEN = 1.5
OTHER_CHARS_PER_TOKEN = 4
TRUNCATE_CHARS_PER_TOKEN = 3
ELLIPSIS = "..."
SIMILARITY_DEDUP_EPSILON = 0.01


def estimate_token_count(text: Optional[str]) -> int:
    if not text or not isinstance(text, str):
        return 0
    cjk = len(_CJK_RE.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk / CJK_CHARS_PER_TOKEN + other / OTHER_CHARS_PER_TOKEN)


def truncate_text(text: Optional[str], token_budget: int) -> str:
    """
    Cut `text` to about `token_budget * 3` characters plus an ellipsis.

    The cut shrinks further until the estimate of the result fits the budget,
    which matters for dense CJK text.
    """
    if not text or token_budget <= 0:
        return ""

    cut = int(token_budget * TRUNCATE_CHARS_PER_TOKEN)
    if len(text) <= cut and estimate_token_count(text) <= token_budget:
        return text

    cut = min(cut, len(text))
    while cut > 0 and estimate_token_count(text[:cut] + ELLIPSIS) > token_budget:
        cut -= 1
    return text[:cut] + ELLIPSIS


def _sort_key(result: RankedResult):
    # must_have strictly first, then score descending
    return (0 if result.is_must_have else 1, -result.score)


def _dedup_by_doc(ranked: Iterable[RankedResult]) -> List[RankedResult]:
    """Keep the first hit per document in importance-then-score order.

    This is not a plain highest-score-per-document rule: a must_have hit of a
    document wins over a higher-scoring nice_to_have hit of the same document,
    so deduplication never demotes a must_have result.
    """
    kept: Dict[str, RankedResult] = {}
    for result in ranked:
        doc_id = result.doc_id
        if not doc_id:
            logger.debug("dropping result %s without a document id", result.chunk_id)
            continue
        if doc_id not in kept:
            kept[doc_id] = result
    return list(kept.values())


def _dedup_by_score(ranked: Iterable[RankedResult]) -> List[RankedResult]:
    # near-duplicate filter on score proximity, not on content
    kept: List[RankedResult] = []
    for result in ranked:
        if any(abs(existing.score - result.score) < SIMILARITY_DEDUP_EPSILON for existing in kept):
            continue
        kept.append(result)
    return kept


def rank_results(
    results: Sequence[RankedResult],
    token_budget: int = 2000,
    deduplicate: bool = True,
    deduplicate_by: str = "docId",
) -> List[RankedResult]:
    """
    Order, deduplicate and budget a result list.

    1. must_have before nice_to_have, then by score.
    2. optional dedup by document ("docId") or by score proximity ("similarity").
    3. walk the list spending estimated tokens. The first result that does not
       fit ends the walk; a must_have one is first truncated into whatever
       budget remains and included with `truncated=True`.
    """
    if not results:
        return []

    ranked = sorted(results, key=_sort_key)

    if deduplicate:
        if deduplicate_by == "docId":
            ranked = _dedup_by_doc(ranked)
        elif deduplicate_by == "similarity":
            ranked = _dedup_by_score(ranked)
        else:
            logger.warning("unsupported deduplicate strategy %r, skipping deduplication", deduplicate_by)

    within_budget: List[RankedResult] = []
    used = 0

    for result in ranked:
        text = result.chunk.text if result.chunk is not None else ""
        tokens = estimate_token_count(text)

        if used + tokens <= token_budget:
            within_budget.append(replace(result, estimated_tokens=tokens, truncated=False))
            used += tokens
            continue

        if result.is_must_have and used < token_budget:
            remaining = token_budget - used
            short = truncate_text(text, remaining)
            chunk = replace(result.chunk, text=short) if result.chunk is not None else None
            within_budget.append(
                replace(result, chunk=chunk, estimated_tokens=estimate_token_count(short), truncated=True)
            )
        break

    return within_budget


def merge_query_results(
    query_results: Sequence[Sequence[RankedResult]],
    token_budget: int = 2000,
    deduplicate: bool = True,
    deduplicate_by: str = "docId",
) -> List[RankedResult]:
    """Flatten several queries' results and rank them in one pass."""
    if not query_results:
        return []

    merged: List[RankedResult] = []
    for results in query_results:
        if results:
            merged.extend(results)

    return rank_results(
        merged,
        token_budget=token_budget,
        deduplicate=deduplicate,
        deduplicate_by=deduplicate_by,
    )


def group_by_collection(results: Iterable[RankedResult]) -> Dict[str, List[RankedResult]]:
    grouped: Dict[str, List[RankedResult]] = {}
    for result in results:
        grouped.setdefault(result.collection_id or "unknown", []).append(result)
    return grouped


def generate_result_stats(results: Sequence[RankedResult]) -> ResultStats:
    if not results:
        return ResultStats()

    total_tokens = sum(r.estimated_tokens or 0 for r in results)
    avg = sum(r.score for r in results) / len(results)
    collections = list(dict.fromkeys(r.collection_id for r in results if r.collection_id))
    return ResultStats(
        total_results=len(results),
        total_tokens=total_tokens,
        avg_score=round(avg, 2),
        collections=collections,
    )
