from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from langchain_community.vectorstores import FAISS
from langchain_core.documents import Document
from langchain_core.embeddings import Embeddings

from room_doc_chat.exception.custom_exception import BackendUnavailable, IndexNotFound
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.utils.config_loader import TimeoutConfig
from room_doc_chat.utils.thread_pool import run_sync

MetadataFilter = Callable[[Dict[str, Any]], bool]


class FaissStore:
    """
    Named FAISS indexes, one directory per index under base_dir.

    - index.faiss / index.pkl: the LangChain FAISS files
    - ingested_meta.json: fingerprints of chunks already written, so the same
      document is never embedded twice into the same index

    Loaded indexes stay in memory; a per-index lock serialises reads and writes
    because a FAISS flat index must not be searched while it is being extended.
    """

    META_FILE = "ingested_meta.json"

    def __init__(
        self,
        base_dir: Path | str,
        embeddings: Embeddings,
        timeouts: Optional[TimeoutConfig] = None,
    ):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.embeddings = embeddings
        self.timeouts = timeouts or TimeoutConfig()

        self._stores: Dict[str, FAISS] = {}
        self._meta: Dict[str, Dict[str, Any]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # ---------------------------------------------------------------
    # layout helpers
    # ---------------------------------------------------------------
    def index_dir(self, index_name: str) -> Path:
        safe = re.sub(r"[^a-zA-Z0-9_\-.]", "_", index_name).strip(".") or "_"
        return self.base_dir / safe

    def _lock(self, index_name: str) -> asyncio.Lock:
        return self._locks.setdefault(index_name, asyncio.Lock())

    def exists(self, index_name: str) -> bool:
        if index_name in self._stores:
            return True
        d = self.index_dir(index_name)
        return (d / "index.faiss").exists() and (d / "index.pkl").exists()

    async def _load(self, index_name: str) -> FAISS:
        """Return the in-memory index, loading it from disk on first use. Caller holds the lock."""
        vs = self._stores.get(index_name)
        if vs is not None:
            return vs

        if not self.exists(index_name):
            raise IndexNotFound(f"Index '{index_name}' does not exist")

        log.info("Loading existing FAISS index | index=%s", index_name)
        vs = await run_sync(
            FAISS.load_local,
            str(self.index_dir(index_name)),
            self.embeddings,
            allow_dangerous_deserialization=True,
        )
        self._stores[index_name] = vs
        return vs

    # ---------------------------------------------------------------
    # fingerprints
    # ---------------------------------------------------------------
    def _meta_for(self, index_name: str) -> Dict[str, Any]:
        meta = self._meta.get(index_name)
        if meta is not None:
            return meta

        meta = {"rows": {}}
        meta_path = self.index_dir(index_name) / self.META_FILE
        if meta_path.exists():
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8")) or {"rows": {}}
                log.info(
                    "Loaded existing FAISS metadata | entries=%d | index=%s",
                    len(meta.get("rows", {})),
                    index_name,
                )
            except (OSError, ValueError) as e:
                log.error("Failed to load FAISS metadata | error=%s | index=%s", e, index_name)
                meta = {"rows": {}}

        self._meta[index_name] = meta
        return meta

    def known_fingerprints(self, index_name: str) -> set[str]:
        return set(self._meta_for(index_name).get("rows", {}))

    def _save_meta(self, index_name: str) -> None:
        meta_path = self.index_dir(index_name) / self.META_FILE
        meta_path.write_text(
            json.dumps(self._meta_for(index_name), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )

    # ---------------------------------------------------------------
    # writes
    # ---------------------------------------------------------------
    async def upsert(
        self,
        index_name: str,
        texts: Sequence[str],
        vectors: Sequence[List[float]],
        metadatas: Sequence[Dict[str, Any]],
        ids: Sequence[str],
        fingerprints: Sequence[str],
    ) -> int:
        """
        Write pre-computed (vector, text, metadata) triples into the named index
        in one step and persist it. Each metadata gets an 'ordinal' recording its
        insertion position. Returns the number of vectors written.
        """
        if not texts:
            return 0

        async with self._lock(index_name):
            existing = self._stores.get(index_name)
            if existing is None and self.exists(index_name):
                existing = await self._load(index_name)

            start = existing.index.ntotal if existing is not None else 0
            metas = []
            for offset, md in enumerate(metadatas):
                md = dict(md)
                md["ordinal"] = start + offset
                metas.append(md)

            pairs = list(zip(texts, vectors))
            index_dir = self.index_dir(index_name)
            index_dir.mkdir(parents=True, exist_ok=True)

            try:
                if existing is None:
                    vs = await asyncio.wait_for(
                        run_sync(
                            FAISS.from_embeddings,
                            pairs,
                            self.embeddings,
                            metadatas=metas,
                            ids=list(ids),
                        ),
                        timeout=self.timeouts.vector_store_seconds,
                    )
                else:
                    vs = existing
                    await asyncio.wait_for(
                        run_sync(vs.add_embeddings, pairs, metadatas=metas, ids=list(ids)),
                        timeout=self.timeouts.vector_store_seconds,
                    )
                await run_sync(vs.save_local, str(index_dir))
            except Exception as e:
                # the on-disk copy is the last good state, drop the in-memory one
                self._stores.pop(index_name, None)
                log.error("FAISS write failed | index=%s | error=%r", index_name, e)
                raise BackendUnavailable(f"Vector store write failed for '{index_name}'", e) from e

            self._stores[index_name] = vs

            rows = self._meta_for(index_name).setdefault("rows", {})
            for fp, md, text in zip(fingerprints, metas, texts):
                rows[fp] = {
                    "file": md.get("file"),
                    "ordinal": md["ordinal"],
                    "length": len(text),
                }
            self._save_meta(index_name)

        log.info(
            "Added new chunks to FAISS index | new_count=%d | index=%s",
            len(texts),
            index_name,
        )
        return len(texts)

    # ---------------------------------------------------------------
    # reads
    # ---------------------------------------------------------------
    async def similarity_search(
        self,
        index_name: str,
        query: str,
        k: int,
        metadata_filter: Optional[MetadataFilter] = None,
    ) -> List[Tuple[Document, float]]:
        """
        Embed the query and return up to k (Document, L2 distance) pairs.
        With a filter the whole index is scanned so filtering cannot starve k.
        """
        if not self.exists(index_name):
            raise IndexNotFound(f"Index '{index_name}' does not exist")

        try:
            vector = await asyncio.wait_for(
                self.embeddings.aembed_query(query),
                timeout=self.timeouts.embedding_seconds,
            )
        except Exception as e:
            log.error("Query embedding failed | index=%s | error=%r", index_name, e)
            raise BackendUnavailable("Embedding backend unavailable", e) from e

        async with self._lock(index_name):
            vs = await self._load(index_name)
            fetch_k = vs.index.ntotal if metadata_filter is not None else max(k, 20)
            try:
                return await asyncio.wait_for(
                    run_sync(
                        vs.similarity_search_with_score_by_vector,
                        vector,
                        k=k,
                        filter=metadata_filter,
                        fetch_k=fetch_k,
                    ),
                    timeout=self.timeouts.vector_store_seconds,
                )
            except Exception as e:
                log.error("FAISS search failed | index=%s | error=%r", index_name, e)
                raise BackendUnavailable(f"Vector store search failed for '{index_name}'", e) from e

    async def get_by_ids(self, index_name: str, ids: Sequence[str]) -> List[Document]:
        """Rebuild Documents from docstore ids, skipping ids that are gone."""
        async with self._lock(index_name):
            vs = await self._load(index_name)
            docs: List[Document] = []
            for _id in ids:
                doc = vs.docstore.search(_id)
                if isinstance(doc, Document):
                    docs.append(doc)
                else:
                    log.warning("Doc ID not found in FAISS docstore | doc_id=%s", _id)
            return docs
