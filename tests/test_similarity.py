import pytest

from loreseek.core.types import Chunk, Collection
from loreseek.retrieval.similarity import (
    cosine_similarity,
    find_top_k_similar,
    normalize_vector,
    normalize_vectors,
    search_in_collections,
    vector_norm,
)


def test_cosine_is_dot_product_of_normalised_vectors():
    assert cosine_similarity([1.0, 0.0], [0.6, 0.8]) == pytest.approx(0.6)
    assert cosine_similarity([0.6, 0.8], [0.6, 0.8]) == pytest.approx(1.0)


def test_cosine_clamps_to_unit_interval():
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0
    assert cosine_similarity([2.0, 0.0], [2.0, 0.0]) == 1.0


def test_cosine_degenerate_inputs():
    assert cosine_similarity(None, [1.0]) == 0.0
    assert cosine_similarity([], [1.0]) == 0.0
    assert cosine_similarity([float("nan")], [1.0]) == 0.0


def test_cosine_uses_shorter_length():
    assert cosine_similarity([1.0, 0.0, 5.0], [1.0, 0.0]) == pytest.approx(1.0)


def test_find_top_k_filters_by_threshold(zh_chunks):
    results = find_top_k_similar([1.0, 0.0], zh_chunks, top_k=5, threshold=0.5)
    assert [r.chunk_id for r in results] == ["A", "C"]
    assert results[1].similarity == pytest.approx(0.6)
    assert results[0].chunk is zh_chunks[0]


def test_find_top_k_limits_and_handles_missing_vectors(zh_chunks):
    chunks = zh_chunks + [Chunk(id="N", doc_id="doc-n", text="无")]
    assert [r.chunk_id for r in find_top_k_similar([0.6, 0.8], chunks, top_k=2, threshold=0.0)] == ["C", "B"]
    assert find_top_k_similar(None, chunks) == []
    assert find_top_k_similar([1.0, 0.0], []) == []


def test_find_top_k_keeps_chunk_order_on_ties():
    chunks = [Chunk(id=str(i), doc_id="d", text="", vector=(1.0, 0.0)) for i in range(3)]
    assert [r.chunk_id for r in find_top_k_similar([1.0, 0.0], chunks, threshold=0.0)] == ["0", "1", "2"]


def test_search_in_collections(zh_chunks):
    collections = [
        Collection(id="animals", name="Animals", chunks=tuple(zh_chunks)),
        Collection(id="other", chunks=(Chunk(id="X", doc_id="doc-x", text="x", vector=(0.8, 0.6)),)),
        Collection(id="empty"),
    ]

    results = search_in_collections([1.0, 0.0], collections, threshold=0.5)
    assert [r.chunk_id for r in results] == ["A", "X", "C"]
    assert results[0].collection_name == "Animals"
    assert results[1].collection_id == "other"

    scoped = search_in_collections([1.0, 0.0], collections, ["other"], threshold=0.5)
    assert [r.chunk_id for r in scoped] == ["X"]


def test_normalize_vector():
    assert normalize_vector([3.0, 4.0]) == pytest.approx([0.6, 0.8])
    assert normalize_vector([0.0, 0.0]) == [0.0, 0.0]
    assert normalize_vector([]) == []
    assert vector_norm([3.0, 4.0]) == pytest.approx(5.0)
    assert vector_norm(None) == 0.0
    assert normalize_vectors([[2.0, 0.0], [0.0, 5.0]]) == [[1.0, 0.0], [0.0, 1.0]]
    assert normalize_vectors(None) == []
