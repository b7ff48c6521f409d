from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class ChunkIn(BaseModel):
    id: str
    doc_id: str
    text: str
    vector: Optional[List[float]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PutCollectionRequest(BaseModel):
    name: str = ""
    chunks: List[ChunkIn] = Field(default_factory=list)


class UpdateChunksRequest(BaseModel):
    added: List[ChunkIn] = Field(default_factory=list)
    removed_ids: List[str] = Field(default_factory=list)


class CollectionSummary(BaseModel):
    id: str
    name: str
    total_chunks: int
    total_terms: int
    avg_doc_length: float


class ValidationResponse(BaseModel):
    valid: bool
    errors: List[str]


class QueryIn(BaseModel):
    query: str
    collections: List[str] = Field(default_factory=list)
    importance: str = "nice_to_have"


class RetrieveRequest(BaseModel):
    queries: List[QueryIn]
    collections: Optional[List[str]] = None      # None = every collection
    config: Dict[str, Any] = Field(default_factory=dict)   # overrides on top of the server defaults
    query_vectors: Dict[str, List[float]] = Field(default_factory=dict)   # query text -> normalised vector


class IntentRetrieveRequest(BaseModel):
    text: str
    collections: Optional[List[str]] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class RetrievedItem(BaseModel):
    chunk_id: str
    doc_id: Optional[str] = None
    doc_title: Optional[str] = None
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None
    text: str
    importance: str
    query_text: str
    score: float
    fusion_score: Optional[float] = None
    vector_similarity: Optional[float] = None
    keyword_score: Optional[float] = None
    matched_terms: Optional[Dict[str, int]] = None
    source: Optional[str] = None
    estimated_tokens: int
    truncated: bool = False


class RetrieveResponse(BaseModel):
    results: List[RetrievedItem]
    stats: Dict[str, Any]
    error: Optional[str] = None
