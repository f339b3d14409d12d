from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from typing import List, Optional, Sequence

from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from room_doc_chat.exception.custom_exception import BackendUnavailable, IndexingError
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.src.document_ingestion.vector_store import FaissStore
from room_doc_chat.utils.config_loader import TimeoutConfig


@dataclass(frozen=True)
class IndexingReport:
    index_name: str
    indexed: int
    skipped: int


def chunk_id(chunk: Document) -> str:
    md = chunk.metadata
    if "chunk_id" not in md:
        md["chunk_id"] = f"{md.get('document_id', 'doc')}__{md.get('chunk_index', 0)}"
    return md["chunk_id"]


def fingerprint(chunk: Document) -> str:
    """
    (document, file, text, position) key used to detect already-ingested chunks.
    A re-upload replacing a failed record has a new document id, so its chunks
    are written again under that id.
    """
    md = chunk.metadata
    h = hashlib.sha256(chunk.page_content.encode("utf-8")).hexdigest()
    doc_id = md.get("document_id", "doc")
    return f"{doc_id}::{md.get('file', 'unknown')}::{h}::{md.get('chunk_index', 0)}"


class Indexer:
    """
    Embeds chunks and writes them into a named index.

    A document is indexed all-or-nothing: every batch is embedded first and
    only if all of them succeed are the vectors written, in a single upsert.
    On failure IndexingError lists the chunk ids that were not indexed and
    the index is left untouched.
    """

    def __init__(
        self,
        store: FaissStore,
        embeddings: Embeddings,
        batch_size: int = 32,
        timeouts: Optional[TimeoutConfig] = None,
        retrieval_cache=None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.batch_size = batch_size
        self.timeouts = timeouts or TimeoutConfig()
        self.retrieval_cache = retrieval_cache

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        return await asyncio.wait_for(
            self.embeddings.aembed_documents(texts),
            timeout=self.timeouts.embedding_seconds,
        )

    async def index(self, chunks: Sequence[Document], index_name: str) -> IndexingReport:
        known = self.store.known_fingerprints(index_name)

        pending: List[Document] = []
        pending_fps: List[str] = []
        for c in chunks:
            chunk_id(c)
            fp = fingerprint(c)
            if fp in known:
                log.debug("Skipping already-ingested chunk | fingerprint=%s", fp)
                continue
            pending.append(c)
            pending_fps.append(fp)

        skipped = len(chunks) - len(pending)
        if not pending:
            log.info("Nothing new to index | index=%s | skipped=%d", index_name, skipped)
            return IndexingReport(index_name=index_name, indexed=0, skipped=skipped)

        vectors: List[List[float]] = []
        failed: List[str] = []

        # Step 1: embed every batch, remembering which chunks could not be embedded
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start : start + self.batch_size]
            try:
                batch_vectors = await self._embed_batch([c.page_content for c in batch])
                if len(batch_vectors) != len(batch):
                    raise ValueError(
                        f"expected {len(batch)} embeddings, got {len(batch_vectors)}"
                    )
                vectors.extend(batch_vectors)
            except Exception as e:
                ids = [chunk_id(c) for c in batch]
                log.error(
                    "Embedding batch failed | index=%s | chunks=%s | error=%r",
                    index_name,
                    ids,
                    e,
                )
                failed.extend(ids)

        if failed:
            raise IndexingError(
                f"{len(failed)} of {len(pending)} chunks could not be embedded",
                failed_chunk_ids=failed,
            )

        # Step 2: single write of the whole document
        try:
            written = await self.store.upsert(
                index_name,
                texts=[c.page_content for c in pending],
                vectors=vectors,
                metadatas=[c.metadata for c in pending],
                ids=[chunk_id(c) for c in pending],
                fingerprints=pending_fps,
            )
        except BackendUnavailable as e:
            raise IndexingError(
                "Vector store write failed",
                failed_chunk_ids=[chunk_id(c) for c in pending],
                error=e,
            ) from e

        if self.retrieval_cache is not None:
            self.retrieval_cache.invalidate_index(index_name)

        log.info(
            "Indexing complete | index=%s | indexed=%d | skipped=%d",
            index_name,
            written,
            skipped,
        )
        return IndexingReport(index_name=index_name, indexed=written, skipped=skipped)
