from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import AbstractSet, List, Optional

from langchain_core.documents import Document

from room_doc_chat.exception.custom_exception import ValidationError
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.src.document_ingestion.vector_store import FaissStore, MetadataFilter


@dataclass(frozen=True)
class RetrievedChunk:
    document: Document
    score: float

    def as_source(self) -> dict:
        md = self.document.metadata
        return {
            "file": md.get("file"),
            "filename": md.get("filename"),
            "page": md.get("page"),
            "chunk_index": md.get("chunk_index"),
            "score": round(self.score, 6),
            "text": self.document.page_content,
        }


def distance_to_similarity(distance: float) -> float:
    """FAISS returns L2 distances; map them onto (0, 1] with 1 meaning identical."""
    return 1.0 / (1.0 + float(distance))


def rank(results: List[tuple[Document, float]], k: int) -> List[RetrievedChunk]:
    """
    Sort by descending similarity. Equal scores keep insertion order
    (metadata 'ordinal'), so rankings are reproducible.
    """
    chunks = [RetrievedChunk(doc, distance_to_similarity(d)) for doc, d in results]
    chunks.sort(key=lambda c: (-c.score, c.document.metadata.get("ordinal", 0)))
    return chunks[:k]


class RetrieverWrapper:
    """
    Top-K similarity retrieval over one named index.

    - scope: the session key this retriever serves (room:<id> / file:<name>),
      also used to partition the retrieval cache
    - metadata_filter: restricts a shared index to one room or one file

    IndexNotFound and BackendUnavailable from the store are propagated as is;
    an empty list only ever means "nothing relevant".
    """

    def __init__(
        self,
        store: FaissStore,
        index_name: str,
        k: int = 5,
        metadata_filter: Optional[MetadataFilter] = None,
        scope: str = "*",
        cache=None,
    ):
        self.store = store
        self.index_name = index_name
        self.k = k
        self.metadata_filter = metadata_filter
        self.scope = scope
        self.cache = cache

        log.info(
            "RetrieverWrapper initialized | index=%s | scope=%s | k=%d | filtered=%s",
            index_name,
            scope,
            k,
            metadata_filter is not None,
        )

    async def _from_cache(self, scope: str, query: str) -> Optional[List[RetrievedChunk]]:
        if self.cache is None:
            return None

        hits = self.cache.get(self.index_name, scope, query)
        if not hits:
            return None

        scores = dict(hits)
        docs = await self.store.get_by_ids(self.index_name, [h[0] for h in hits])
        if len(docs) != len(hits):
            # stale entry, fall back to a real search
            return None

        return [RetrievedChunk(d, scores[d.metadata["chunk_id"]]) for d in docs]

    def _restricted(
        self, document_ids: Optional[AbstractSet[str]]
    ) -> tuple[str, Optional[MetadataFilter]]:
        """Cache scope and filter for one call, narrowed to document_ids when given."""
        if document_ids is None:
            return self.scope, self.metadata_filter

        allowed = frozenset(document_ids)
        base = self.metadata_filter
        digest = hashlib.sha256("\n".join(sorted(allowed)).encode("utf-8")).hexdigest()[:16]

        def metadata_filter(md: dict) -> bool:
            if md.get("document_id") not in allowed:
                return False
            return base is None or base(md)

        return f"{self.scope}#{digest}", metadata_filter

    async def retrieve(
        self, query: str, document_ids: Optional[AbstractSet[str]] = None
    ) -> List[RetrievedChunk]:
        """
        document_ids, when given, limits the search to chunks of those
        documents on top of the retriever's own filter. An empty set matches
        nothing.
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")

        if document_ids is not None and not document_ids:
            return []

        scope, metadata_filter = self._restricted(document_ids)

        cached = await self._from_cache(scope, query)
        if cached is not None:
            log.info("Reused cached retrieval | index=%s | count=%d", self.index_name, len(cached))
            return cached

        results = await self.store.similarity_search(
            self.index_name, query, k=self.k, metadata_filter=metadata_filter
        )
        chunks = rank(results, self.k)

        if self.cache is not None and chunks:
            self.cache.store(
                self.index_name,
                scope,
                query,
                [(c.document.metadata["chunk_id"], c.score) for c in chunks],
            )

        log.info(
            "Retrieval complete | index=%s | scope=%s | count=%d",
            self.index_name,
            scope,
            len(chunks),
        )
        return chunks
