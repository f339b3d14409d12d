from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from sqlalchemy.ext.asyncio import AsyncEngine

from db.database import build_engine, build_sessionmaker, init_db
from db.document_repository import DocumentRepository
from orchestrator.orchestrator_manager import SessionChainCache
from redis_cache.redis_client import RetrievalCache, build_redis_client
from room_doc_chat.auth.access_gate import AccessGate
from room_doc_chat.auth.identity import ConfigRoleResolver, RoleResolver
from room_doc_chat.graph.orchestrator import QAOrchestrator, SessionChainFactory
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.src.document_ingestion.chunker import FixedWindowTextSplitter
from room_doc_chat.src.document_ingestion.data_ingestion import DataIngestor
from room_doc_chat.src.document_ingestion.indexer import Indexer
from room_doc_chat.src.document_ingestion.vector_store import FaissStore
from room_doc_chat.utils.config_loader import AppConfig
from room_doc_chat.utils.model_loader import ModelLoader


@dataclass
class AppContext:
    """Every long-lived component of the service, wired from one AppConfig."""

    config: AppConfig
    engine: AsyncEngine
    repository: DocumentRepository
    store: FaissStore
    ingestor: DataIngestor
    gate: AccessGate
    sessions: SessionChainCache
    qa: QAOrchestrator

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        embeddings: Optional[Embeddings] = None,
        llm: Optional[BaseChatModel] = None,
        role_resolver: Optional[RoleResolver] = None,
        retrieval_cache: Optional[RetrievalCache] = None,
    ) -> "AppContext":
        """
        Composition root. Collaborators not passed in are constructed from the
        config (model providers need their API keys in the environment).
        """
        if embeddings is None or llm is None:
            loader = ModelLoader(config)
            embeddings = embeddings or loader.load_embeddings()
            llm = llm or loader.load_llm("rag")

        if retrieval_cache is None and config.redis.enabled:
            retrieval_cache = RetrievalCache(build_redis_client(config.redis), ttl=config.redis.ttl)

        engine = build_engine(config.database)
        repository = DocumentRepository(build_sessionmaker(engine))

        store = FaissStore(Path(config.vector_store.base_dir), embeddings, config.timeouts)

        indexer = Indexer(
            store,
            embeddings,
            batch_size=config.indexing.embed_batch_size,
            timeouts=config.timeouts,
            retrieval_cache=retrieval_cache,
        )
        splitter = FixedWindowTextSplitter(
            chunk_size=config.chunking.size, chunk_overlap=config.chunking.overlap
        )
        ingestor = DataIngestor(
            repository,
            indexer,
            splitter,
            upload_dir=config.uploads.dir,
            granularity=config.indexing.granularity,
            shared_index_name=config.indexing.shared_index_name,
            supported_extensions=config.uploads.supported_extensions,
        )

        gate = AccessGate(
            repository,
            role_resolver
            or ConfigRoleResolver(config.auth.user_roles, config.auth.default_roles),
        )

        factory = SessionChainFactory(
            store,
            llm,
            repository,
            granularity=config.indexing.granularity,
            shared_index_name=config.indexing.shared_index_name,
            top_k=config.retriever.top_k,
            generation_timeout=config.timeouts.generation_seconds,
            retrieval_cache=retrieval_cache,
        )
        sessions = SessionChainCache(
            factory,
            maxsize=config.session_cache.maxsize,
            ttl=config.session_cache.ttl,
        )
        qa = QAOrchestrator(
            sessions,
            gate,
            repository,
            granularity=config.indexing.granularity,
            max_turns=config.memory.max_turns,
        )

        log.info(
            "Application context built | granularity=%s | top_k=%d | chunk=%d/%d",
            config.indexing.granularity,
            config.retriever.top_k,
            config.chunking.size,
            config.chunking.overlap,
        )
        return cls(
            config=config,
            engine=engine,
            repository=repository,
            store=store,
            ingestor=ingestor,
            gate=gate,
            sessions=sessions,
            qa=qa,
        )

    async def startup(self) -> None:
        await init_db(self.engine)

    async def shutdown(self) -> None:
        await self.engine.dispose()
