import threading

import pytest

from loreseek.core.errors import LoreseekError, UnknownCollectionError
from loreseek.core.types import Chunk
from loreseek.indexing.keyword_index import build_index, validate_keyword_index


def test_put_and_get(store):
    collection = store.get("animals")

    assert collection.name == "Animals"
    assert [c.id for c in collection.chunks] == ["A", "B", "C"]
    assert all(c.collection_id == "animals" for c in collection.chunks)
    assert all(c.collection_name == "Animals" for c in collection.chunks)
    assert collection.keyword_index.total_chunks == 3


def test_unknown_collection(store):
    with pytest.raises(UnknownCollectionError) as exc:
        store.get("missing")
    assert exc.value.collection_id == "missing"
    assert isinstance(exc.value, LoreseekError)
    assert isinstance(exc.value, LookupError)

    with pytest.raises(UnknownCollectionError):
        store.update_chunks("missing", added=[Chunk(id="x", doc_id="d", text="x")])


def test_update_matches_full_rebuild(store, zh_chunks):
    added = Chunk(id="D", doc_id="doc-d", text="鸟会飞")
    updated = store.update_chunks("animals", added=[added], removed_ids=["B"])

    assert [c.id for c in updated.chunks] == ["A", "C", "D"]
    assert updated.chunks[-1].collection_id == "animals"
    expected = build_index([zh_chunks[0], zh_chunks[2], added], store.tokenization)
    assert updated.keyword_index == expected


def test_update_replaces_chunk_in_place_of_old_one(store):
    updated = store.update_chunks("animals", added=[Chunk(id="A", doc_id="doc-a", text="鸟")])
    assert [c.id for c in updated.chunks] == ["B", "C", "A"]
    assert updated.keyword_index.doc_lengths["A"] == 1


def test_old_snapshot_survives_update(store):
    before = store.get("animals")
    store.update_chunks("animals", removed_ids=["A", "B"])

    assert [c.id for c in before.chunks] == ["A", "B", "C"]
    assert before.keyword_index.total_chunks == 3
    assert before.keyword_index.inverted_index["猫"] == frozenset({"A", "C"})
    assert store.get("animals").keyword_index.total_chunks == 1


def test_snapshot_scoping(store):
    store.put_collection("places", [Chunk(id="P", doc_id="doc-p", text="城")])
    assert {c.id for c in store.snapshot()} == {"animals", "places"}
    assert [c.id for c in store.snapshot(["places", "nope"])] == ["places"]
    assert store.get("places").display_name == "places"
    assert store.get("places").chunks[0].collection_name == "places"


def test_remove_collection(store):
    store.remove_collection("animals")
    assert store.snapshot() == []
    with pytest.raises(UnknownCollectionError):
        store.remove_collection("animals")


def test_readers_always_see_consistent_snapshots(store):
    errors = []
    stop = threading.Event()

    def read():
        while not stop.is_set():
            collection = store.get("animals")
            index = collection.keyword_index
            if index.total_chunks != len(collection.chunks) or not validate_keyword_index(index).valid:
                errors.append(collection)

    readers = [threading.Thread(target=read) for _ in range(4)]
    for t in readers:
        t.start()
    try:
        for i in range(50):
            store.update_chunks("animals", added=[Chunk(id=f"n{i}", doc_id=f"doc-n{i}", text=f"新{i}号龙")])
            store.update_chunks("animals", removed_ids=[f"n{i}"])
    finally:
        stop.set()
        for t in readers:
            t.join()

    assert errors == []
    assert store.get("animals").keyword_index.total_chunks == 3


def test_repeated_chunk_ids_keep_last_copy(store):
    chunks = [
        Chunk(id="A", doc_id="doc-a", text="猫"),
        Chunk(id="B", doc_id="doc-b", text="狗"),
        Chunk(id="A", doc_id="doc-a", text="鸟"),
    ]
    collection = store.put_collection("dupes", chunks)

    assert [(c.id, c.text) for c in collection.chunks] == [("B", "狗"), ("A", "鸟")]
    assert collection.keyword_index.total_chunks == len(collection.chunks)
    assert list(collection.keyword_index.doc_lengths) == ["B", "A"]

    added = [Chunk(id="C", doc_id="doc-c", text="鱼"), Chunk(id="C", doc_id="doc-c", text="龙")]
    updated = store.update_chunks("dupes", added=added)
    assert [(c.id, c.text) for c in updated.chunks] == [("B", "狗"), ("A", "鸟"), ("C", "龙")]
    assert updated.keyword_index.total_chunks == 3
