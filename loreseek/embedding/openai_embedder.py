from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from openai import OpenAI

from loreseek.core.types import Chunk
from loreseek.retrieval.similarity import normalize_vector


logger = logging.getLogger(__name__)

# called with (chunks_done, chunks_total) after every batch
ProgressCallback = Callable[[int, int], None]


class OpenAIEmbedder:
    """
    Embedding provider backed by the OpenAI embeddings endpoint.

    Vectors are L2-normalised before they are returned so the vector scorer
    can use a plain dot product. Instances are callable and can be passed
    straight to `retrieve(..., embed_fn=embedder)`.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-small",
        batch_size: int = 64,
        client: Optional[OpenAI] = None,
    ):
        self.client = client or OpenAI(api_key=api_key)
        self.model = model
        self.batch_size = batch_size

    def embed(self, text: str) -> List[float]:
        r = self.client.embeddings.create(model=self.model, input=text)
        return normalize_vector(r.data[0].embedding)

    __call__ = embed

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        resp = self.client.embeddings.create(model=self.model, input=list(texts))
        return [normalize_vector(d.embedding) for d in resp.data]

    def vectorize_chunks(
        self,
        chunks: Sequence[Chunk],
        progress: Optional[ProgressCallback] = None,
    ) -> List[Chunk]:
        """Return copies of `chunks` carrying normalised vectors, in batches (safe for rate limits)."""
        total = len(chunks)
        out: List[Chunk] = []
        for i in range(0, total, self.batch_size):
            batch = chunks[i:i + self.batch_size]
            vectors = self.embed_batch([c.text for c in batch])
            out.extend(replace(c, vector=tuple(v)) for c, v in zip(batch, vectors))
            if progress is not None:
                progress(len(out), total)
        logger.info("vectorized %d chunks with %s", total, self.model)
        return out
