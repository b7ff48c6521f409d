from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loreseek.core.config import TokenizationConfig
from loreseek.core.errors import UnknownCollectionError
from loreseek.core.types import Chunk, Collection
from loreseek.indexing.keyword_index import build_index, update_index


logger = logging.getLogger(__name__)


class CollectionStore:
    """
    In-memory holder of collection snapshots.

    Writers are serialised by a lock and publish a complete new `Collection`
    (chunks plus keyword index) with a single dict assignment. Readers call
    `get`/`snapshot` without locking and keep whatever snapshot they got for
    the rest of their query.
    """

    def __init__(self, tokenization: Optional[TokenizationConfig] = None, index_workers: int = 1):
        self.tokenization = tokenization
        self.index_workers = index_workers
        self._collections: Dict[str, Collection] = {}
        self._write_lock = threading.Lock()

    def get(self, collection_id: str) -> Collection:
        collection = self._collections.get(collection_id)
        if collection is None:
            raise UnknownCollectionError(collection_id)
        return collection

    def snapshot(self, collection_ids: Optional[Iterable[str]] = None) -> List[Collection]:
        current = dict(self._collections)
        if collection_ids is None:
            return list(current.values())
        return [current[cid] for cid in collection_ids if cid in current]

    def put_collection(self, collection_id: str, chunks: Sequence[Chunk], name: str = "") -> Collection:
        """Replace a collection's chunks and rebuild its index from scratch."""
        located = self._located(chunks, collection_id, name)
        with self._write_lock:
            index = build_index(located, self.tokenization, max_workers=self.index_workers)
            collection = Collection(id=collection_id, name=name, chunks=located, keyword_index=index)
            self._collections[collection_id] = collection
        logger.info("indexed collection %s: %d chunks, %d terms",
                    collection_id, index.total_chunks, len(index.inverted_index))
        return collection

    def update_chunks(
        self,
        collection_id: str,
        added: Sequence[Chunk] = (),
        removed_ids: Iterable[str] = (),
    ) -> Collection:
        """Incrementally add and remove chunks; the previous snapshot stays intact."""
        removed = set(removed_ids)
        with self._write_lock:
            current = self.get(collection_id)
            located = self._located(added, collection_id, current.name)
            replaced = removed | {c.id for c in located}
            chunks = tuple(c for c in current.chunks if c.id not in replaced) + located
            index = update_index(
                current.keyword_index,
                located,
                removed,
                self.tokenization,
                max_workers=self.index_workers,
            )
            collection = Collection(id=collection_id, name=current.name, chunks=chunks, keyword_index=index)
            self._collections[collection_id] = collection
        logger.info("updated collection %s: +%d -%d chunks", collection_id, len(located), len(removed))
        return collection

    def remove_collection(self, collection_id: str) -> None:
        with self._write_lock:
            if self._collections.pop(collection_id, None) is None:
                raise UnknownCollectionError(collection_id)

    def _located(self, chunks: Sequence[Chunk], collection_id: str, name: str) -> Tuple[Chunk, ...]:
        # a repeated id keeps its last copy, at the last position, as the index does
        by_id: Dict[str, Chunk] = {}
        for chunk in chunks:
            by_id.pop(chunk.id, None)
            by_id[chunk.id] = self._locate(chunk, collection_id, name)
        return tuple(by_id.values())

    @staticmethod
    def _locate(chunk: Chunk, collection_id: str, name: str) -> Chunk:
        if chunk.collection_id == collection_id:
            return chunk
        return replace(chunk, collection_id=collection_id, collection_name=name or collection_id)
