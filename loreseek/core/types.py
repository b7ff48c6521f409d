from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


class Importance(str, Enum):
    MUST_HAVE = "must_have"
    NICE_TO_HAVE = "nice_to_have"

    @classmethod
    def parse(cls, value: Any) -> "Importance":
        # anything that is not explicitly must_have ranks as nice_to_have
        if isinstance(value, Importance):
            return value
        return cls.MUST_HAVE if value == cls.MUST_HAVE.value else cls.NICE_TO_HAVE


class ScoreSource(str, Enum):
    KEYWORD = "keyword"
    VECTOR = "vector"


@dataclass(frozen=True)
class Chunk:
    id: str
    doc_id: str
    text: str
    vector: Optional[Tuple[float, ...]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None

    @property
    def doc_title(self) -> Optional[str]:
        return self.metadata.get("doc_title")


@dataclass(frozen=True)
class Collection:
    """An immutable snapshot of a collection's chunks and keyword index."""

    id: str
    name: str = ""
    chunks: Tuple[Chunk, ...] = ()
    keyword_index: Optional[Any] = None  # KeywordIndex; typed loosely to avoid an import cycle

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class KeywordResult:
    chunk_id: str
    score: float
    matched_terms: Dict[str, int] = field(default_factory=dict)
    algorithm: str = "bm25"
    chunk: Optional[Chunk] = None
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None


@dataclass(frozen=True)
class VectorResult:
    chunk_id: str
    similarity: float
    chunk: Optional[Chunk] = None
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None

    @property
    def score(self) -> float:
        return self.similarity


@dataclass(frozen=True)
class VectorMatch:
    rank: int                   # 1-based rank in the vector list
    similarity: float


@dataclass(frozen=True)
class KeywordMatch:
    rank: int                   # 1-based rank in the keyword list
    score: float
    matched_terms: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class FusedResult:
    chunk_id: str
    fusion_score: Optional[float] = None   # None for cascade output
    vector: Optional[VectorMatch] = None
    keyword: Optional[KeywordMatch] = None
    chunk: Optional[Chunk] = None
    collection_id: Optional[str] = None
    collection_name: Optional[str] = None
    source: Optional[ScoreSource] = None
    score: float = field(init=False)

    def __post_init__(self):
        if self.fusion_score is not None:
            resolved = self.fusion_score
        elif self.vector is not None:
            resolved = self.vector.similarity
        elif self.keyword is not None:
            resolved = self.keyword.score
        else:
            resolved = 0.0
        object.__setattr__(self, "score", float(resolved))

    @property
    def vector_similarity(self) -> Optional[float]:
        return self.vector.similarity if self.vector is not None else None

    @property
    def keyword_score(self) -> Optional[float]:
        return self.keyword.score if self.keyword is not None else None

    @property
    def matched_terms(self) -> Optional[Dict[str, int]]:
        return self.keyword.matched_terms if self.keyword is not None else None


AnyResult = Union[FusedResult, VectorResult, KeywordResult]


@dataclass(frozen=True)
class RankedResult:
    """A result tagged with the query it answers and its budget accounting.

    `chunk` starts as the underlying result's chunk and is replaced by a
    shortened copy when the ranker truncates it.
    """

    result: AnyResult
    importance: Importance = Importance.NICE_TO_HAVE
    query_text: str = ""
    chunk: Optional[Chunk] = None
    estimated_tokens: int = 0
    truncated: bool = False

    def __post_init__(self):
        if self.chunk is None and self.result.chunk is not None:
            object.__setattr__(self, "chunk", self.result.chunk)

    @property
    def chunk_id(self) -> str:
        return self.result.chunk_id

    @property
    def score(self) -> float:
        return self.result.score

    @property
    def doc_id(self) -> Optional[str]:
        return self.chunk.doc_id if self.chunk is not None else None

    @property
    def collection_id(self) -> Optional[str]:
        if self.result.collection_id:
            return self.result.collection_id
        return self.chunk.collection_id if self.chunk is not None else None

    @property
    def collection_name(self) -> Optional[str]:
        if self.result.collection_name:
            return self.result.collection_name
        return self.chunk.collection_name if self.chunk is not None else None

    @property
    def is_must_have(self) -> bool:
        return self.importance is Importance.MUST_HAVE


@dataclass(frozen=True)
class QueryIntent:
    query: str
    collections: List[str] = field(default_factory=list)
    importance: Importance = Importance.NICE_TO_HAVE


@dataclass(frozen=True)
class WorldContextIntent:
    raw: str = ""
    analysis: str = ""
    queries: List[QueryIntent] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: Sequence[str]) -> "ValidationReport":
        return cls(valid=not errors, errors=list(errors))


@dataclass(frozen=True)
class FusionStats:
    total_results: int = 0
    vector_only_count: int = 0
    keyword_only_count: int = 0
    both_methods_count: int = 0
    avg_fusion_score: float = 0.0
    method: str = "rrf"


@dataclass(frozen=True)
class ResultStats:
    total_results: int = 0
    total_tokens: int = 0
    avg_score: float = 0.0
    collections: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class KeywordSearchStats:
    total_results: int = 0
    avg_score: float = 0.0
    max_score: float = 0.0
    min_score: float = 0.0
    collections: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RetrievalStats:
    mode: str = "hybrid"
    summary: ResultStats = field(default_factory=ResultStats)
    fusion: Optional[FusionStats] = None
    fusion_method: Optional[str] = None
    vector_results: List[VectorResult] = field(default_factory=list)
    keyword_results: List[KeywordResult] = field(default_factory=list)


@dataclass(frozen=True)
class RetrievalOutcome:
    results: List[RankedResult] = field(default_factory=list)
    stats: RetrievalStats = field(default_factory=RetrievalStats)
    error: Optional[str] = None
