import pytest
from fastapi.testclient import TestClient

from loreseek.api.main import app
from loreseek.api.routes_retrieve import get_embedder, get_store
from loreseek.core.config import RetrievalConfig
from loreseek.indexing.collection_store import CollectionStore


CHUNKS = [
    {"id": "A", "doc_id": "doc-a", "text": "猫喜欢吃鱼", "vector": [1.0, 0.0], "metadata": {"doc_title": "Cats"}},
    {"id": "B", "doc_id": "doc-b", "text": "狗喜欢玩球", "vector": [0.0, 1.0]},
    {"id": "C", "doc_id": "doc-c", "text": "猫和狗是朋友", "vector": [0.6, 0.8]},
]


@pytest.fixture
def client():
    store = CollectionStore(tokenization=RetrievalConfig().keyword_search.tokenization)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_embedder] = lambda: None
    with TestClient(app) as c:
        r = c.put("/collections/animals", json={"name": "Animals", "chunks": CHUNKS})
        assert r.status_code == 200
        yield c
    app.dependency_overrides.clear()


def test_put_collection_summary(client):
    r = client.put("/collections/places", json={"chunks": [{"id": "P", "doc_id": "doc-p", "text": "王城"}]})
    assert r.status_code == 200
    assert r.json() == {"id": "places", "name": "places", "total_chunks": 1, "total_terms": 3, "avg_doc_length": 3.0}


def test_update_chunks(client):
    r = client.patch(
        "/collections/animals/chunks",
        json={"added": [{"id": "D", "doc_id": "doc-d", "text": "鸟"}], "removed_ids": ["B"]},
    )
    assert r.status_code == 200
    assert r.json()["total_chunks"] == 3
    assert r.json()["name"] == "Animals"


def test_unknown_collection_is_404(client):
    assert client.patch("/collections/nope/chunks", json={"removed_ids": ["A"]}).status_code == 404
    assert client.get("/collections/nope/index/validation").status_code == 404


def test_index_validation(client):
    r = client.get("/collections/animals/index/validation")
    assert r.status_code == 200
    assert r.json() == {"valid": True, "errors": []}


def test_retrieve_keyword_only(client):
    r = client.post("/retrieve", json={"queries": [{"query": "猫"}], "config": {"mode": "keyword_only"}})
    assert r.status_code == 200
    body = r.json()
    assert [item["chunk_id"] for item in body["results"]] == ["A", "C"]
    first = body["results"][0]
    assert first["doc_title"] == "Cats"
    assert first["collection_name"] == "Animals"
    assert first["matched_terms"] == {"猫": 1}
    assert first["importance"] == "nice_to_have"
    assert body["stats"]["mode"] == "keyword_only"
    assert body["error"] is None


def test_retrieve_hybrid_with_supplied_query_vector(client):
    r = client.post(
        "/retrieve",
        json={"queries": [{"query": "猫", "importance": "must_have"}], "query_vectors": {"猫": [1.0, 0.0]}},
    )
    body = r.json()
    assert [item["chunk_id"] for item in body["results"]] == ["A", "C"]
    assert body["results"][0]["fusion_score"] == pytest.approx(2 / 61)
    assert body["results"][0]["vector_similarity"] == pytest.approx(1.0)
    assert body["stats"]["fusion"]["both_methods_count"] == 2


def test_retrieve_missing_query_vector_reports_error(client):
    r = client.post("/retrieve", json={"queries": [{"query": "猫"}], "query_vectors": {"狗": [0.0, 1.0]}})
    assert r.status_code == 200
    assert r.json()["results"] == []
    assert "no vector supplied" in r.json()["error"]


def test_retrieve_scoped_to_missing_collection(client):
    r = client.post("/retrieve", json={"queries": [{"query": "猫"}], "collections": ["nope"]})
    assert r.json()["results"] == []


def test_invalid_config_override_is_422(client):
    r = client.post("/retrieve", json={"queries": [{"query": "猫"}], "config": {"token_budget": "lots"}})
    assert r.status_code == 422


def test_retrieve_from_intent(client):
    text = '<WorldContextIntent><Queries>- query: "狗"\n  importance: "must_have"</Queries></WorldContextIntent>'
    r = client.post("/retrieve/intent", json={"text": text, "config": {"mode": "keyword_only"}})
    body = r.json()
    assert [item["chunk_id"] for item in body["results"]] == ["B", "C"]
    assert body["results"][0]["importance"] == "must_have"
    assert body["results"][0]["query_text"] == "狗"
