from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from loreseek.api.schemas import (
    ChunkIn,
    CollectionSummary,
    IntentRetrieveRequest,
    PutCollectionRequest,
    RetrieveRequest,
    RetrieveResponse,
    RetrievedItem,
    UpdateChunksRequest,
    ValidationResponse,
)
from loreseek.core.config import RetrievalConfig, settings
from loreseek.core.errors import UnknownCollectionError
from loreseek.core.types import (
    Chunk,
    Collection,
    FusedResult,
    Importance,
    KeywordResult,
    QueryIntent,
    RankedResult,
    RetrievalOutcome,
    VectorResult,
)
from loreseek.embedding.openai_embedder import OpenAIEmbedder
from loreseek.indexing.collection_store import CollectionStore
from loreseek.indexing.keyword_index import validate_keyword_index
from loreseek.retrieval.hybrid import EmbedFn, parse_and_retrieve, retrieve

load_dotenv()
router = APIRouter()

# Shared state
_default_config = settings.retrieval_config()
_store = CollectionStore(tokenization=_default_config.keyword_search.tokenization)
_embedder: Optional[OpenAIEmbedder] = None


def get_store() -> CollectionStore:
    return _store


def get_embedder() -> Optional[EmbedFn]:
    global _embedder
    if _embedder is None and settings.openai_api_key:
        _embedder = OpenAIEmbedder(api_key=settings.openai_api_key, model=settings.embedding_model)
    return _embedder


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _config(overrides: Dict[str, Any]) -> RetrievalConfig:
    if not overrides:
        return _default_config
    try:
        return RetrievalConfig.model_validate(_deep_merge(_default_config.model_dump(), overrides))
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))


def _to_chunk(c: ChunkIn) -> Chunk:
    return Chunk(
        id=c.id,
        doc_id=c.doc_id,
        text=c.text,
        vector=tuple(c.vector) if c.vector else None,
        metadata=dict(c.metadata),
    )


def _summary(collection: Collection) -> CollectionSummary:
    index = collection.keyword_index
    return CollectionSummary(
        id=collection.id,
        name=collection.display_name,
        total_chunks=index.total_chunks if index else 0,
        total_terms=len(index.inverted_index) if index else 0,
        avg_doc_length=index.avg_doc_length if index else 0.0,
    )


def _with_query_vectors(vectors: Dict[str, List[float]], embedder: Optional[EmbedFn]) -> Optional[EmbedFn]:
    if not vectors:
        return embedder

    def embed(text: str) -> Sequence[float]:
        if text in vectors:
            return vectors[text]
        if embedder is None:
            raise LookupError(f"no vector supplied for query {text!r} and no embedding provider configured")
        return embedder(text)

    return embed


def _item(r: RankedResult) -> RetrievedItem:
    res = r.result
    fusion_score = vector_similarity = keyword_score = None
    matched_terms = source = None
    if isinstance(res, FusedResult):
        fusion_score = res.fusion_score
        vector_similarity = res.vector_similarity
        keyword_score = res.keyword_score
        matched_terms = res.matched_terms
        source = res.source.value if res.source else None
    elif isinstance(res, VectorResult):
        vector_similarity = res.similarity
    elif isinstance(res, KeywordResult):
        keyword_score = res.score
        matched_terms = res.matched_terms

    chunk = r.chunk
    return RetrievedItem(
        chunk_id=r.chunk_id,
        doc_id=chunk.doc_id if chunk else None,
        doc_title=chunk.doc_title if chunk else None,
        collection_id=r.collection_id,
        collection_name=r.collection_name,
        text=chunk.text if chunk else "",
        importance=r.importance.value,
        query_text=r.query_text,
        score=r.score,
        fusion_score=fusion_score,
        vector_similarity=vector_similarity,
        keyword_score=keyword_score,
        matched_terms=matched_terms,
        source=source,
        estimated_tokens=r.estimated_tokens,
        truncated=r.truncated,
    )


def _response(outcome: RetrievalOutcome) -> RetrieveResponse:
    stats = outcome.stats
    return RetrieveResponse(
        results=[_item(r) for r in outcome.results],
        stats={
            "mode": stats.mode,
            **asdict(stats.summary),
            "fusion": asdict(stats.fusion) if stats.fusion else None,
            "fusion_method": stats.fusion_method,
            "vector_result_count": len(stats.vector_results),
            "keyword_result_count": len(stats.keyword_results),
        },
        error=outcome.error,
    )


@router.put("/collections/{collection_id}", response_model=CollectionSummary)
def put_collection(
    collection_id: str,
    req: PutCollectionRequest,
    store: CollectionStore = Depends(get_store),
) -> CollectionSummary:
    collection = store.put_collection(collection_id, [_to_chunk(c) for c in req.chunks], name=req.name)
    return _summary(collection)


@router.patch("/collections/{collection_id}/chunks", response_model=CollectionSummary)
def update_chunks(
    collection_id: str,
    req: UpdateChunksRequest,
    store: CollectionStore = Depends(get_store),
) -> CollectionSummary:
    try:
        collection = store.update_chunks(
            collection_id,
            added=[_to_chunk(c) for c in req.added],
            removed_ids=req.removed_ids,
        )
    except UnknownCollectionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _summary(collection)


@router.get("/collections/{collection_id}/index/validation", response_model=ValidationResponse)
def validate_collection_index(
    collection_id: str,
    store: CollectionStore = Depends(get_store),
) -> ValidationResponse:
    try:
        collection = store.get(collection_id)
    except UnknownCollectionError as e:
        raise HTTPException(status_code=404, detail=str(e))
    report = validate_keyword_index(collection.keyword_index)
    return ValidationResponse(valid=report.valid, errors=report.errors)


@router.post("/retrieve", response_model=RetrieveResponse)
def retrieve_chunks(
    req: RetrieveRequest,
    store: CollectionStore = Depends(get_store),
    embedder: Optional[EmbedFn] = Depends(get_embedder),
) -> RetrieveResponse:
    queries = [
        QueryIntent(query=q.query, collections=list(q.collections), importance=Importance.parse(q.importance))
        for q in req.queries
    ]
    outcome = retrieve(
        queries,
        store.snapshot(req.collections),
        config=_config(req.config),
        embed_fn=_with_query_vectors(req.query_vectors, embedder),
    )
    return _response(outcome)


@router.post("/retrieve/intent", response_model=RetrieveResponse)
def retrieve_from_intent(
    req: IntentRetrieveRequest,
    store: CollectionStore = Depends(get_store),
    embedder: Optional[EmbedFn] = Depends(get_embedder),
) -> RetrieveResponse:
    outcome = parse_and_retrieve(
        req.text,
        store.snapshot(req.collections),
        config=_config(req.config),
        embed_fn=embedder,
    )
    return _response(outcome)
