from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

from langchain_core.documents import Document

from db.document_repository import DocumentRepository
from db.models import INDEXING_FAILED, INDEXING_READY, DocumentRecord
from room_doc_chat.exception.custom_exception import ValidationError
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.src.document_ingestion.chunker import FixedWindowTextSplitter
from room_doc_chat.src.document_ingestion.indexer import Indexer
from room_doc_chat.utils.document_ops import load_document
from room_doc_chat.utils.file_io import (
    DEFAULT_SUPPORTED_EXTENSIONS,
    derive_index_name,
    ensure_supported,
    save_uploaded_file,
)
from room_doc_chat.utils.thread_pool import run_sync


def split_csv_field(value: Optional[str]) -> List[str]:
    """'a, b,,c' -> ['a', 'b', 'c']"""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class DataIngestor:
    """
    Upload -> DocumentRecord + indexed chunks.

    - validate the file type before anything is persisted
    - create the record in 'pending' state (file identity must be unique)
    - save the file, extract text, chunk it with room/permission metadata
    - index all chunks, then flip the record to 'ready'
    - on any failure after the record exists, flip it to 'failed' and re-raise
    """

    def __init__(
        self,
        repository: DocumentRepository,
        indexer: Indexer,
        splitter: FixedWindowTextSplitter,
        *,
        upload_dir: Path | str = "data",
        granularity: str = "shared",
        shared_index_name: str = "documents",
        supported_extensions: Iterable[str] = DEFAULT_SUPPORTED_EXTENSIONS,
    ):
        self.repository = repository
        self.indexer = indexer
        self.splitter = splitter
        self.upload_dir = Path(upload_dir)
        self.granularity = granularity
        self.shared_index_name = shared_index_name
        self.supported_extensions = set(supported_extensions)

    def index_name_for(self, file: str) -> str:
        if self.granularity == "file":
            return derive_index_name(file)
        return self.shared_index_name

    def chunk(self, docs: List[Document], record: DocumentRecord) -> List[Document]:
        """Split extracted parts and merge the document-level metadata into every chunk."""
        base = {
            "document_id": record.id,
            "file": record.file,
            "filename": record.filename,
            "room_ids": list(record.room_ids),
            "roles_allowed": list(record.roles_allowed or []),
            "users_allowed": list(record.users_allowed or []),
        }
        for doc in docs:
            doc.metadata = {**(doc.metadata or {}), **base}

        chunks = self.splitter.split_documents(docs)
        for idx, c in enumerate(chunks):
            c.metadata["chunk_index"] = idx
            c.metadata["chunk_id"] = f"{record.id}__{idx}"

        log.info("Chunking complete | file=%s | chunks=%d", record.file, len(chunks))
        return chunks

    async def ingest(
        self,
        *,
        filename: str,
        data: bytes,
        room_ids: List[str],
        roles_allowed: List[str],
        users_allowed: List[str],
    ) -> DocumentRecord:
        file = Path(filename or "").name
        if not file:
            raise ValidationError("Uploaded file has no name")

        # Step 0: reject before anything is written anywhere
        ensure_supported(file, self.supported_extensions)
        if not room_ids:
            raise ValidationError("room_ids must name at least one room")

        log.info("Starting ingestion | file=%s | rooms=%s", file, room_ids)

        # Step 1: pending record, fails fast on a duplicate file identity
        record = await self.repository.create(
            file=file,
            filename=filename,
            index_id=self.index_name_for(file),
            room_ids=room_ids,
            roles_allowed=roles_allowed,
            users_allowed=users_allowed,
        )

        try:
            # Step 2: persist + extract
            path = await run_sync(
                save_uploaded_file, file, data, self.upload_dir, self.supported_extensions
            )
            docs = await load_document(path)

            # Step 3: chunk
            chunks = self.chunk(docs, record)
            if not chunks:
                raise ValidationError(f"No text could be extracted from '{file}'")

            # Step 4: index
            report = await self.indexer.index(chunks, record.index_id)

            # Step 5: publish; chunks are only queryable once the record is ready
            await self.repository.set_indexing_status(
                record.id, INDEXING_READY, chunk_count=len(chunks)
            )
        except Exception as e:
            log.error("Ingestion failed | file=%s | error=%s", file, e)
            try:
                await self.repository.set_indexing_status(record.id, INDEXING_FAILED)
            except Exception as status_error:
                log.error(
                    "Could not mark record failed | id=%s | error=%r", record.id, status_error
                )
            raise

        record.indexing_status = INDEXING_READY
        record.chunk_count = len(chunks)

        log.info(
            "Ingestion complete | file=%s | index=%s | indexed=%d | skipped=%d",
            file,
            report.index_name,
            report.indexed,
            report.skipped,
        )
        return record
