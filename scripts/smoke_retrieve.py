import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from loreseek.core.config import settings
from loreseek.core.logger import setup_logging
from loreseek.core.types import Chunk, Importance, QueryIntent
from loreseek.embedding.openai_embedder import OpenAIEmbedder
from loreseek.indexing.collection_store import CollectionStore
from loreseek.retrieval.hybrid import retrieve

load_dotenv()
setup_logging(settings.log_level)

LORE = [
    ("dragon-1", "dragons", "赤龙栖息在北方火山，畏惧寒冰。"),
    ("dragon-2", "dragons", "赤龙每百年苏醒一次，苏醒时火山喷发。"),
    ("city-1", "capital", "王城建于三百年前，城墙由白石砌成。"),
    ("city-2", "capital", "王城的北门通往火山脚下的矿镇。"),
    ("guild-1", "guilds", "猎龙公会只接受持有寒冰武器的成员。"),
]

config = settings.retrieval_config()
store = CollectionStore(tokenization=config.keyword_search.tokenization)

embedder = None
if os.environ.get("OPENAI_API_KEY"):
    embedder = OpenAIEmbedder(api_key=os.environ["OPENAI_API_KEY"], model=settings.embedding_model)

chunks = [Chunk(id=cid, doc_id=doc, text=text) for cid, doc, text in LORE]
if embedder is not None:
    chunks = embedder.vectorize_chunks(chunks, progress=lambda done, total: print(f"embedded {done}/{total}"))
store.put_collection("world", chunks, name="World lore")

queries = [
    QueryIntent(query="赤龙的弱点", importance=Importance.MUST_HAVE),
    QueryIntent(query="王城北门"),
]
outcome = retrieve(queries, store.snapshot(), config=config, embed_fn=embedder)

print("MODE:", outcome.stats.mode, "| error:", outcome.error)
print("RANKED:")
for i, r in enumerate(outcome.results, start=1):
    print(i, r.chunk_id, r.importance.value, "score=", round(r.score, 6), "| tokens=", r.estimated_tokens, "|", r.chunk.text[:40])
if outcome.stats.fusion:
    print("FUSION:", outcome.stats.fusion)
