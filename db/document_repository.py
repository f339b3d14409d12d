from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from room_doc_chat.exception.custom_exception import DuplicateResourceError
from room_doc_chat.logger import GLOBAL_LOGGER as log

from .models import INDEXING_FAILED, DocumentRecord, DocumentRoom


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


class DocumentRepository:
    """
    CRUD over DocumentRecord keyed by `file`. Every method opens its own
    session, so the repository can be shared by request handlers, the
    ingestion service and the access gate.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self.sessionmaker = sessionmaker

    async def create(
        self,
        *,
        file: str,
        filename: str,
        index_id: str,
        room_ids: Sequence[str],
        roles_allowed: Sequence[str],
        users_allowed: Sequence[str],
    ) -> DocumentRecord:
        """
        Insert a record in 'pending' state. A previous record of the same file
        that ended up 'failed' is replaced; any other collision is a duplicate.
        """
        async with self.sessionmaker() as db:
            existing = await db.scalar(
                select(DocumentRecord).where(DocumentRecord.file == file)
            )
            if existing is not None and existing.indexing_status == INDEXING_FAILED:
                log.info("Replacing failed document record | file=%s", file)
                await db.delete(existing)
                await db.flush()

            record = DocumentRecord(
                file=file,
                filename=filename,
                index_id=index_id,
                roles_allowed=_dedupe(roles_allowed),
                users_allowed=_dedupe(users_allowed),
                rooms=[
                    DocumentRoom(room_id=r, position=i)
                    for i, r in enumerate(_dedupe(room_ids))
                ],
            )
            db.add(record)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                log.warning("Duplicate document record | file=%s", file)
                raise DuplicateResourceError(f"File '{file}' already exists", e) from e

            log.info("Document record created | id=%s | file=%s", record.id, file)
            return record

    async def set_indexing_status(
        self, record_id: str, status: str, chunk_count: Optional[int] = None
    ) -> None:
        async with self.sessionmaker() as db:
            record = await db.get(DocumentRecord, record_id)
            if not record:
                return

            record.indexing_status = status
            if chunk_count is not None:
                record.chunk_count = chunk_count
            await db.commit()

        log.info(
            "Indexing status updated | id=%s | status=%s",
            record_id,
            status,
        )

    async def get_by_file(self, file: str) -> Optional[DocumentRecord]:
        async with self.sessionmaker() as db:
            return await db.scalar(
                select(DocumentRecord).where(DocumentRecord.file == file)
            )

    async def roles_allowed_for_file(self, file: str) -> List[str]:
        record = await self.get_by_file(file)
        return list(record.roles_allowed or []) if record else []

    async def users_allowed_for_file(self, file: str) -> List[str]:
        record = await self.get_by_file(file)
        return list(record.users_allowed or []) if record else []

    async def list_by_room(
        self, room_id: str, status: Optional[str] = None
    ) -> List[DocumentRecord]:
        async with self.sessionmaker() as db:
            q = (
                select(DocumentRecord)
                .join(DocumentRoom)
                .where(DocumentRoom.room_id == room_id)
                .order_by(DocumentRecord.created_at, DocumentRecord.file)
            )
            if status is not None:
                q = q.where(DocumentRecord.indexing_status == status)
            out = await db.execute(q)
            records = list(out.scalars().all())

        log.debug("Listed room documents | room_id=%s | count=%d", room_id, len(records))
        return records

    async def list_documents(self) -> List[DocumentRecord]:
        async with self.sessionmaker() as db:
            out = await db.execute(
                select(DocumentRecord).order_by(DocumentRecord.created_at.desc())
            )
            records = list(out.scalars().all())

        log.info("Listing documents | count=%d", len(records))
        return records
