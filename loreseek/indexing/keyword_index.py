from __future__ import annotations

import logging
import math
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from loreseek.core.config import TokenizationConfig
from loreseek.core.types import Chunk, Collection, ValidationReport
from loreseek.indexing.tokenizer import tokenize


logger = logging.getLogger(__name__)

INDEX_VERSION = "1.0"


@dataclass(frozen=True)
class KeywordIndex:
    """
    Read-only BM25 statistics for one collection.

    Instances are never mutated after construction; `update_index` returns a
    new index, so a reader holding a reference always sees a consistent state.
    `doc_lengths` keeps chunk insertion order, which scorers use to break ties.
    """

    inverted_index: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    term_frequency: Dict[str, Dict[str, int]] = field(default_factory=dict)
    doc_lengths: Dict[str, int] = field(default_factory=dict)
    avg_doc_length: float = 0.0
    total_chunks: int = 0
    version: str = field(default=INDEX_VERSION, compare=False)
    # queries must be tokenized the same way the chunks were
    tokenization: Optional[TokenizationConfig] = field(default=None, compare=False)
    indexed_at: Optional[str] = field(default=None, compare=False)

    def chunk_order(self) -> Dict[str, int]:
        return {cid: i for i, cid in enumerate(self.doc_lengths)}


def _count_terms(chunk: Chunk, config: Optional[TokenizationConfig]) -> Tuple[str, Counter]:
    return chunk.id, Counter(tokenize(chunk.text or "", config))


def _count_all(
    chunks: Sequence[Chunk],
    config: Optional[TokenizationConfig],
    max_workers: int,
) -> List[Tuple[str, Counter]]:
    if max_workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda c: _count_terms(c, config), chunks))
    return [_count_terms(c, config) for c in chunks]


def _assemble(
    counted: Iterable[Tuple[str, Counter]],
    postings: Dict[str, set],
    term_frequency: Dict[str, Dict[str, int]],
    doc_lengths: Dict[str, int],
) -> None:
    for chunk_id, counts in counted:
        if chunk_id in doc_lengths:
            # same id indexed twice: the later text replaces the earlier one
            _strip(chunk_id, postings, term_frequency, doc_lengths)
        doc_lengths[chunk_id] = sum(counts.values())
        term_frequency[chunk_id] = dict(counts)
        for term in counts:
            postings.setdefault(term, set()).add(chunk_id)


def _strip(
    chunk_id: str,
    postings: Dict[str, set],
    term_frequency: Dict[str, Dict[str, int]],
    doc_lengths: Dict[str, int],
) -> None:
    doc_lengths.pop(chunk_id, None)
    for term in term_frequency.pop(chunk_id, {}):
        ids = postings.get(term)
        if ids is None:
            continue
        ids.discard(chunk_id)
        if not ids:
            del postings[term]


def _finish(
    postings: Dict[str, set],
    term_frequency: Dict[str, Dict[str, int]],
    doc_lengths: Dict[str, int],
    tokenization: TokenizationConfig,
) -> KeywordIndex:
    total = len(doc_lengths)
    avg = sum(doc_lengths.values()) / total if total > 0 else 0.0
    return KeywordIndex(
        inverted_index={term: frozenset(ids) for term, ids in postings.items()},
        term_frequency=term_frequency,
        doc_lengths=doc_lengths,
        avg_doc_length=avg,
        total_chunks=total,
        indexed_at=datetime.now(timezone.utc).isoformat(),
        tokenization=tokenization,
    )


def build_index(
    chunks: Sequence[Chunk],
    config: Optional[TokenizationConfig] = None,
    max_workers: int = 1,
) -> KeywordIndex:
    """
    Build an inverted index over `chunks`.

    Tokenizing and counting is independent per chunk and may run on a thread
    pool (`max_workers` > 1); posting lists are assembled sequentially. The
    index keeps `config` so queries against it tokenize the same way.
    """
    config = config or TokenizationConfig()
    if not chunks:
        return _finish({}, {}, {}, config)

    postings: Dict[str, set] = {}
    term_frequency: Dict[str, Dict[str, int]] = {}
    doc_lengths: Dict[str, int] = {}

    _assemble(_count_all(chunks, config, max_workers), postings, term_frequency, doc_lengths)
    index = _finish(postings, term_frequency, doc_lengths, config)
    logger.debug("built keyword index: %d chunks, %d terms", index.total_chunks, len(index.inverted_index))
    return index


def update_index(
    existing: Optional[KeywordIndex],
    added: Sequence[Chunk],
    removed_ids: Iterable[str],
    config: Optional[TokenizationConfig] = None,
    max_workers: int = 1,
) -> KeywordIndex:
    """
    Apply removals then additions to a copy of `existing`.

    The result equals `build_index` over the final chunk set with the
    tokenization `existing` was built with; `existing` is left untouched so
    concurrent readers keep a consistent snapshot.
    """
    if existing is None:
        return build_index(added, config, max_workers=max_workers)

    tokenization = existing.tokenization or config or TokenizationConfig()
    if config is not None and config != tokenization:
        logger.warning("ignoring tokenization override on update, the index keeps its build-time config")

    # copy-on-write: inner term-count dicts are shared since they are never mutated
    postings: Dict[str, set] = {term: set(ids) for term, ids in existing.inverted_index.items()}
    term_frequency = dict(existing.term_frequency)
    doc_lengths = dict(existing.doc_lengths)

    for chunk_id in removed_ids:
        _strip(chunk_id, postings, term_frequency, doc_lengths)

    _assemble(_count_all(added, tokenization, max_workers), postings, term_frequency, doc_lengths)
    return _finish(postings, term_frequency, doc_lengths, tokenization)


def build_index_for_collection(
    collection: Optional[Collection],
    config: Optional[TokenizationConfig] = None,
    max_workers: int = 1,
) -> Optional[KeywordIndex]:
    if collection is None:
        return None
    return build_index(collection.chunks, config, max_workers=max_workers)


def validate_keyword_index(index: Any) -> ValidationReport:
    """Advisory structural check; never called on the query path."""
    errors: List[str] = []

    if not isinstance(index, KeywordIndex):
        return ValidationReport.from_errors(["keyword index is not a KeywordIndex"])

    if not isinstance(index.inverted_index, dict):
        errors.append("missing inverted index")
    if not isinstance(index.term_frequency, dict):
        errors.append("missing term frequency table")
    if not isinstance(index.doc_lengths, dict):
        errors.append("missing document lengths")
    if not isinstance(index.avg_doc_length, (int, float)):
        errors.append("missing average document length")
    if not isinstance(index.total_chunks, int):
        errors.append("missing total chunk count")
    if errors:
        return ValidationReport.from_errors(errors)

    if index.total_chunks != len(index.doc_lengths):
        errors.append(
            f"total_chunks is {index.total_chunks} but {len(index.doc_lengths)} documents have lengths"
        )

    expected_avg = sum(index.doc_lengths.values()) / len(index.doc_lengths) if index.doc_lengths else 0.0
    if not math.isclose(index.avg_doc_length, expected_avg, rel_tol=1e-9, abs_tol=1e-9):
        errors.append(f"avg_doc_length is {index.avg_doc_length} but the mean length is {expected_avg}")

    for term, ids in index.inverted_index.items():
        if not ids:
            errors.append(f"empty posting list for term {term!r}")
        for chunk_id in ids:
            if chunk_id not in index.term_frequency:
                errors.append(f"chunk {chunk_id} posted under {term!r} has no term frequencies")
            elif term not in index.term_frequency[chunk_id]:
                errors.append(f"chunk {chunk_id} posted under {term!r} never contains it")
            if chunk_id not in index.doc_lengths:
                errors.append(f"chunk {chunk_id} posted under {term!r} has no length")

    return ValidationReport.from_errors(errors)
