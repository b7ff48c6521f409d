import pytest

from loreseek.core.config import RetrievalConfig
from loreseek.core.types import Chunk
from loreseek.indexing.collection_store import CollectionStore


@pytest.fixture
def zh_chunks():
    # vectors are unit length: A points along x, B along y, C in between
    return [
        Chunk(id="A", doc_id="doc-a", text="猫喜欢吃鱼", vector=(1.0, 0.0), metadata={"doc_title": "Cats"}),
        Chunk(id="B", doc_id="doc-b", text="狗喜欢玩球", vector=(0.0, 1.0), metadata={"doc_title": "Dogs"}),
        Chunk(id="C", doc_id="doc-c", text="猫和狗是朋友", vector=(0.6, 0.8), metadata={"doc_title": "Friends"}),
    ]


@pytest.fixture
def default_config():
    return RetrievalConfig()


@pytest.fixture
def store(zh_chunks, default_config):
    s = CollectionStore(tokenization=default_config.keyword_search.tokenization)
    s.put_collection("animals", zh_chunks, name="Animals")
    return s
