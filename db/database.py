from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from db.models import Base
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.utils.config_loader import DatabaseConfig


def build_engine(cfg: DatabaseConfig) -> AsyncEngine:
    return create_async_engine(cfg.url, echo=cfg.echo, future=True)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
        autoflush=False,
        autocommit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Initialize database and create tables if they do not exist.
    Should be called once at startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("Database initialized and tables created")
