import uuid
from datetime import datetime
from typing import List

from sqlalchemy import JSON, TIMESTAMP, ForeignKey, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

INDEXING_PENDING = "pending"
INDEXING_READY = "ready"
INDEXING_FAILED = "failed"

# layout fields that reveal where a document lives and who may read it
_PRIVATE_FIELDS = ("index_id", "room_ids", "roles_allowed", "users_allowed")


class Base(DeclarativeBase):
    pass


class DocumentRecord(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    file: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    filename: Mapped[str] = mapped_column(String, nullable=False)
    index_id: Mapped[str] = mapped_column(String, nullable=False)
    roles_allowed: Mapped[List[str]] = mapped_column(JSON, default=list)
    users_allowed: Mapped[List[str]] = mapped_column(JSON, default=list)
    indexing_status: Mapped[str] = mapped_column(String, default=INDEXING_PENDING)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP, server_default=func.now())

    rooms: Mapped[List["DocumentRoom"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentRoom.position",
        lazy="selectin",
    )

    @property
    def room_ids(self) -> List[str]:
        return [r.room_id for r in self.rooms]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "file": self.file,
            "index_id": self.index_id,
            "room_ids": self.room_ids,
            "roles_allowed": list(self.roles_allowed or []),
            "users_allowed": list(self.users_allowed or []),
            "indexing_status": self.indexing_status,
        }

    def to_public_dict(self) -> dict:
        """What any cleared reader may see; permissions and rooms stay private."""
        out = {k: v for k, v in self.to_dict().items() if k not in _PRIVATE_FIELDS}
        out.update(filename=self.filename, chunk_count=self.chunk_count)
        return out


class DocumentRoom(Base):
    """Room membership of a document, kept in upload order."""

    __tablename__ = "document_rooms"

    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    room_id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    document: Mapped[DocumentRecord] = relationship(back_populates="rooms")
