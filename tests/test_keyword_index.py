from dataclasses import replace

import pytest

from loreseek.core.config import TokenizationConfig
from loreseek.core.types import Chunk, Collection
from loreseek.indexing.keyword_index import (
    KeywordIndex,
    build_index,
    build_index_for_collection,
    update_index,
    validate_keyword_index,
)


ZH = TokenizationConfig(language="zh")


def test_build_index_counts_ngrams(zh_chunks):
    index = build_index(zh_chunks, ZH)

    assert index.doc_lengths == {"A": 15, "B": 15, "C": 20}
    assert index.total_chunks == 3
    assert index.avg_doc_length == pytest.approx(50 / 3)
    assert index.inverted_index["猫"] == frozenset({"A", "C"})
    assert index.inverted_index["喜欢"] == frozenset({"A", "B"})
    assert index.term_frequency["C"]["朋友"] == 1
    assert index.indexed_at is not None


def test_doc_lengths_keep_insertion_order(zh_chunks):
    index = build_index(list(reversed(zh_chunks)), ZH)
    assert list(index.doc_lengths) == ["C", "B", "A"]
    assert index.chunk_order() == {"C": 0, "B": 1, "A": 2}


def test_stop_words_shrink_lengths(zh_chunks):
    config = TokenizationConfig(language="zh", stop_words=frozenset({"和", "是"}))
    index = build_index(zh_chunks, config)
    assert index.doc_lengths["C"] == 18
    assert "和" not in index.inverted_index


def test_empty_build():
    index = build_index([], ZH)
    assert index.total_chunks == 0
    assert index.avg_doc_length == 0.0
    assert index.inverted_index == {}


def test_chunk_without_text_has_zero_length():
    index = build_index([Chunk(id="x", doc_id="d", text="")], ZH)
    assert index.doc_lengths == {"x": 0}
    assert index.total_chunks == 1


def test_parallel_build_matches_sequential(zh_chunks):
    assert build_index(zh_chunks, ZH, max_workers=4) == build_index(zh_chunks, ZH)


def test_update_equals_rebuild(zh_chunks):
    a, b, c = zh_chunks
    d = Chunk(id="D", doc_id="doc-d", text="鱼在水里游")

    existing = build_index([a, b, c], ZH)
    updated = update_index(existing, [d], ["B"], ZH)

    assert updated == build_index([a, c, d], ZH)
    assert list(updated.doc_lengths) == ["A", "C", "D"]


def test_update_drops_terms_left_without_postings(zh_chunks):
    existing = build_index(zh_chunks, ZH)
    updated = update_index(existing, [], ["B"], ZH)

    assert "球" not in updated.inverted_index
    assert "玩球" not in updated.inverted_index
    assert updated.inverted_index["喜欢"] == frozenset({"A"})


def test_update_leaves_existing_index_untouched(zh_chunks):
    existing = build_index(zh_chunks, ZH)
    before = (dict(existing.inverted_index), dict(existing.doc_lengths), existing.total_chunks)

    update_index(existing, [Chunk(id="D", doc_id="doc-d", text="鸟")], ["A", "B"], ZH)

    assert (dict(existing.inverted_index), dict(existing.doc_lengths), existing.total_chunks) == before
    assert existing.inverted_index["猫"] == frozenset({"A", "C"})


def test_update_replaces_chunk_with_same_id(zh_chunks):
    existing = build_index(zh_chunks, ZH)
    changed = replace(zh_chunks[0], text="鸟")

    updated = update_index(existing, [changed], [], ZH)

    assert updated.doc_lengths["A"] == 1
    assert updated.inverted_index["猫"] == frozenset({"C"})
    assert updated.total_chunks == 3


def test_update_ignores_unknown_removals(zh_chunks):
    existing = build_index(zh_chunks, ZH)
    assert update_index(existing, [], ["nope"], ZH) == existing


def test_update_from_nothing_builds(zh_chunks):
    assert update_index(None, zh_chunks, [], ZH) == build_index(zh_chunks, ZH)


def test_build_index_for_collection(zh_chunks):
    assert build_index_for_collection(None) is None
    index = build_index_for_collection(Collection(id="c", chunks=tuple(zh_chunks)), ZH)
    assert index.total_chunks == 3


def test_validate_accepts_built_index(zh_chunks):
    report = validate_keyword_index(build_index(zh_chunks, ZH))
    assert report.valid
    assert report.errors == []


def test_validate_rejects_non_index():
    report = validate_keyword_index({"inverted_index": {}})
    assert not report.valid


def test_validate_reports_inconsistencies(zh_chunks):
    index = build_index(zh_chunks, ZH)
    broken = KeywordIndex(
        inverted_index={**index.inverted_index, "ghost": frozenset({"Z"})},
        term_frequency=index.term_frequency,
        doc_lengths=index.doc_lengths,
        avg_doc_length=1.0,
        total_chunks=7,
    )

    errors = validate_keyword_index(broken).errors

    assert any("total_chunks is 7" in e for e in errors)
    assert any("avg_doc_length" in e for e in errors)
    assert any("chunk Z" in e for e in errors)


def test_index_remembers_its_tokenization(zh_chunks):
    assert build_index(zh_chunks, ZH).tokenization == ZH
    assert build_index([]).tokenization == TokenizationConfig()


def test_update_keeps_build_time_tokenization(zh_chunks):
    stop = TokenizationConfig(language="zh", stop_words=frozenset({"鸟"}))
    existing = build_index(zh_chunks, ZH)

    updated = update_index(existing, [Chunk(id="D", doc_id="doc-d", text="鸟")], [], stop)

    assert updated.tokenization == ZH
    assert updated.inverted_index["鸟"] == frozenset({"D"})
