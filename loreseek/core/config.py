from __future__ import annotations

from typing import Any, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from loreseek.core.types import ValidationReport


RETRIEVAL_MODES = ("hybrid", "vector_only", "keyword_only")
FUSION_METHODS = ("rrf", "weighted", "cascade")
KEYWORD_ALGORITHMS = ("bm25", "tfidf")
DEDUPLICATE_STRATEGIES = ("docId", "similarity")

DEFAULT_ZH_STOP_WORDS = frozenset({
    "的", "了", "在", "是", "和", "有", "这", "个", "我", "你", "他", "她", "它", "们",
    "与", "及", "或", "等", "为", "以", "到", "从", "对", "把", "被", "将", "让", "使",
    "给", "向", "往", "由", "于", "按", "照", "跟", "同", "随", "着", "沿", "朝", "当",
    "趁", "顺", "比", "除", "关于", "根据", "通过", "经过", "凭借", "依靠", "按照",
})


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class TokenizationConfig(_Frozen):
    language: str = "zh"
    stop_words: FrozenSet[str] = frozenset()
    stemming: bool = False


class BM25Params(_Frozen):
    k1: float = 1.5
    b: float = 0.75


class VectorSearchConfig(_Frozen):
    top_k: int = 10
    similarity_threshold: float = 0.6


class KeywordSearchConfig(_Frozen):
    top_k: int = 10
    # plain string so an unknown algorithm degrades to bm25 instead of failing validation
    algorithm: str = "bm25"
    bm25: BM25Params = Field(default_factory=BM25Params)
    tokenization: TokenizationConfig = Field(
        default_factory=lambda: TokenizationConfig(stop_words=DEFAULT_ZH_STOP_WORDS)
    )


class RRFParams(_Frozen):
    k: int = 60


class WeightedParams(_Frozen):
    vector_weight: float = 0.6
    keyword_weight: float = 0.4


class CascadeParams(_Frozen):
    primary_method: str = "keyword"
    min_primary_results: int = 3


class FusionConfig(_Frozen):
    method: str = "rrf"
    rrf: RRFParams = Field(default_factory=RRFParams)
    weighted: WeightedParams = Field(default_factory=WeightedParams)
    cascade: CascadeParams = Field(default_factory=CascadeParams)


class RetrievalConfig(_Frozen):
    mode: str = "hybrid"
    vector_search: VectorSearchConfig = Field(default_factory=VectorSearchConfig)
    keyword_search: KeywordSearchConfig = Field(default_factory=KeywordSearchConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    token_budget: int = 2000
    deduplicate: bool = True
    deduplicate_by: str = "docId"
    # >1 evaluates the sub-queries of one request on a thread pool
    query_workers: int = 1


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Embeddings (OpenAI); optional so keyword-only deployments need no key
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    embedding_model: str = Field("text-embedding-3-small", alias="EMBEDDING_MODEL")

    # Retrieval mode
    retrieval_mode: str = Field("hybrid", alias="RETRIEVAL_MODE")

    # Vector search
    vector_top_k: int = Field(10, alias="VECTOR_TOP_K")
    similarity_threshold: float = Field(0.6, alias="SIMILARITY_THRESHOLD")

    # Keyword search
    keyword_top_k: int = Field(10, alias="KEYWORD_TOP_K")
    keyword_algorithm: str = Field("bm25", alias="KEYWORD_ALGORITHM")
    bm25_k1: float = Field(1.5, alias="BM25_K1")
    bm25_b: float = Field(0.75, alias="BM25_B")
    tokenize_language: str = Field("zh", alias="TOKENIZE_LANGUAGE")
    tokenize_stemming: bool = Field(False, alias="TOKENIZE_STEMMING")

    # Fusion
    fusion_method: str = Field("rrf", alias="FUSION_METHOD")
    rrf_k: int = Field(60, alias="RRF_K")
    w_vector: float = Field(0.6, alias="W_VECTOR")
    w_keyword: float = Field(0.4, alias="W_KEYWORD")
    cascade_primary: str = Field("keyword", alias="CASCADE_PRIMARY")
    cascade_min_primary: int = Field(3, alias="CASCADE_MIN_PRIMARY")

    # Final context size
    token_budget: int = Field(2000, alias="TOKEN_BUDGET")
    deduplicate: bool = Field(True, alias="DEDUPLICATE")
    deduplicate_by: str = Field("docId", alias="DEDUPLICATE_BY")

    query_workers: int = Field(1, alias="QUERY_WORKERS")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    def retrieval_config(self) -> RetrievalConfig:
        stop_words = DEFAULT_ZH_STOP_WORDS if self.tokenize_language == "zh" else frozenset()
        return RetrievalConfig(
            mode=self.retrieval_mode,
            vector_search=VectorSearchConfig(
                top_k=self.vector_top_k,
                similarity_threshold=self.similarity_threshold,
            ),
            keyword_search=KeywordSearchConfig(
                top_k=self.keyword_top_k,
                algorithm=self.keyword_algorithm,
                bm25=BM25Params(k1=self.bm25_k1, b=self.bm25_b),
                tokenization=TokenizationConfig(
                    language=self.tokenize_language,
                    stop_words=stop_words,
                    stemming=self.tokenize_stemming,
                ),
            ),
            fusion=FusionConfig(
                method=self.fusion_method,
                rrf=RRFParams(k=self.rrf_k),
                weighted=WeightedParams(vector_weight=self.w_vector, keyword_weight=self.w_keyword),
                cascade=CascadeParams(
                    primary_method=self.cascade_primary,
                    min_primary_results=self.cascade_min_primary,
                ),
            ),
            token_budget=self.token_budget,
            deduplicate=self.deduplicate,
            deduplicate_by=self.deduplicate_by,
            query_workers=self.query_workers,
        )


def validate_lore_config(raw: Any) -> ValidationReport:
    """Advisory check of a raw lore configuration mapping.

    Expected shape: ``{"collections": [{"id": ..., "chunks": [...]}, ...],
    "retrieval": {...RetrievalConfig fields...}}``. Never raises; the
    retrieval path does not call this.
    """
    errors: List[str] = []

    if not isinstance(raw, Mapping):
        return ValidationReport.from_errors(["lore config must be a mapping"])

    collections = raw.get("collections")
    if not isinstance(collections, list):
        errors.append("collections must be a list")
    else:
        seen = set()
        for i, col in enumerate(collections):
            if not isinstance(col, Mapping):
                errors.append(f"collections[{i}] must be a mapping")
                continue
            cid = col.get("id")
            if not cid:
                errors.append(f"collections[{i}] is missing an id")
            elif cid in seen:
                errors.append(f"duplicate collection id: {cid}")
            else:
                seen.add(cid)
            if not isinstance(col.get("chunks"), list):
                errors.append(f"collections[{i}].chunks must be a list")

    retrieval = raw.get("retrieval")
    if not isinstance(retrieval, Mapping):
        errors.append("missing retrieval config")
    else:
        try:
            cfg = RetrievalConfig.model_validate(retrieval)
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(p) for p in err["loc"])
                errors.append(f"retrieval.{loc}: {err['msg']}")
        else:
            if cfg.mode not in RETRIEVAL_MODES:
                errors.append(f"unknown retrieval mode: {cfg.mode}")
            if cfg.fusion.method not in FUSION_METHODS:
                errors.append(f"unknown fusion method: {cfg.fusion.method}")
            if cfg.keyword_search.algorithm not in KEYWORD_ALGORITHMS:
                errors.append(f"unknown keyword algorithm: {cfg.keyword_search.algorithm}")
            if cfg.deduplicate_by not in DEDUPLICATE_STRATEGIES:
                errors.append(f"unknown deduplicate strategy: {cfg.deduplicate_by}")
            if cfg.fusion.cascade.primary_method not in ("keyword", "vector"):
                errors.append(f"unknown cascade primary method: {cfg.fusion.cascade.primary_method}")
            if cfg.token_budget < 0:
                errors.append("token_budget must be non-negative")

    return ValidationReport.from_errors(errors)


settings = Settings()
