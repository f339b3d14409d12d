from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AbstractSet, Any, ClassVar, Dict, List, Optional, Tuple

from langchain_core.chat_history import InMemoryChatMessageHistory
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from db.document_repository import DocumentRepository
from db.models import INDEXING_READY
from room_doc_chat.auth.access_gate import AccessGate
from room_doc_chat.auth.identity import UserIdentity
from room_doc_chat.exception.custom_exception import (
    AuthorizationDenied,
    DocChatException,
    IndexNotFound,
    IndexNotReady,
    InternalError,
    ValidationError,
)
from room_doc_chat.graph.builder import build_graph
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.src.document_chat.retrieval import RetrieverWrapper
from room_doc_chat.src.document_ingestion.vector_store import FaissStore

if TYPE_CHECKING:
    from orchestrator.orchestrator_manager import SessionChainCache

ROOM_PREFIX = "room:"
FILE_PREFIX = "file:"


def room_scope(room_id: str) -> str:
    return f"{ROOM_PREFIX}{room_id}"


def file_scope(file: str) -> str:
    return f"{FILE_PREFIX}{file}"


def parse_scope(scope: str) -> Tuple[str, str]:
    """'room:A' -> ('room', 'A'), 'file:x.pdf' -> ('file', 'x.pdf')"""
    for kind, prefix in (("room", ROOM_PREFIX), ("file", FILE_PREFIX)):
        if scope.startswith(prefix) and len(scope) > len(prefix):
            return kind, scope[len(prefix) :]
    raise ValidationError(f"Malformed session scope '{scope}'")


@dataclass(eq=False)
class SessionChain:
    """
    Per-session conversational state: a retriever bound to one index, the
    generation backend, and the running memory of question/answer turns.
    """

    scope: str
    retriever: RetrieverWrapper
    llm: BaseChatModel
    generation_timeout: float = 120.0
    history: InMemoryChatMessageHistory = field(default_factory=InMemoryChatMessageHistory)
    # one in-flight question per session, served in arrival order
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    input_key: ClassVar[str] = "question"
    output_key: ClassVar[str] = "answer"
    memory_key: ClassVar[str] = "chat_history"

    def recent_messages(self, max_turns: int) -> List[BaseMessage]:
        if max_turns <= 0:
            return []
        return list(self.history.messages[-2 * max_turns :])

    def remember(self, question: str, answer: str) -> None:
        self.history.add_messages([HumanMessage(content=question), AIMessage(content=answer)])

    @property
    def turns(self) -> List[Dict[str, str]]:
        msgs = self.history.messages
        return [
            {self.input_key: q.content, self.output_key: a.content}
            for q, a in zip(msgs[0::2], msgs[1::2])
        ]


def _room_filter(room_id: str):
    def _match(metadata: Dict[str, Any]) -> bool:
        return room_id in (metadata.get("room_ids") or [])

    return _match


def _file_filter(file: str):
    def _match(metadata: Dict[str, Any]) -> bool:
        return metadata.get("file") == file

    return _match


class SessionChainFactory:
    """
    Builds the SessionChain for a scope.

    granularity 'shared': every scope reads the shared index, narrowed by a
    room or file metadata filter.
    granularity 'file': file scopes read the file's own index; room scopes
    cannot be served because a room's files live in separate indexes.
    """

    def __init__(
        self,
        store: FaissStore,
        llm: BaseChatModel,
        repository: DocumentRepository,
        *,
        granularity: str = "shared",
        shared_index_name: str = "documents",
        top_k: int = 5,
        generation_timeout: float = 120.0,
        retrieval_cache=None,
    ):
        self.store = store
        self.llm = llm
        self.repository = repository
        self.granularity = granularity
        self.shared_index_name = shared_index_name
        self.top_k = top_k
        self.generation_timeout = generation_timeout
        self.retrieval_cache = retrieval_cache

    async def __call__(self, scope: str) -> SessionChain:
        kind, value = parse_scope(scope)

        if self.granularity == "shared":
            index_name = self.shared_index_name
            metadata_filter = _room_filter(value) if kind == "room" else _file_filter(value)
        else:
            if kind == "room":
                raise ValidationError("Room conversations require a shared index")
            record = await self.repository.get_by_file(value)
            if record is None:
                raise IndexNotFound(f"No document record for '{value}'")
            index_name = record.index_id
            # only this file's chunks, even if another file ever shares the index
            metadata_filter = _file_filter(value)

        retriever = RetrieverWrapper(
            store=self.store,
            index_name=index_name,
            k=self.top_k,
            metadata_filter=metadata_filter,
            scope=scope,
            cache=self.retrieval_cache,
        )
        return SessionChain(
            scope=scope,
            retriever=retriever,
            llm=self.llm,
            generation_timeout=self.generation_timeout,
        )


@dataclass(frozen=True)
class QAResult:
    answer: str
    standalone_question: str
    sources: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "standalone_question": self.standalone_question,
            "sources": self.sources,
        }


class QAOrchestrator:
    """
    Answers one question in one session:
      - access gate (room or file)
      - get or create the session chain
      - contextualize -> retrieve -> generate (langgraph)
      - append the turn to memory, only if everything above succeeded
    """

    def __init__(
        self,
        sessions: "SessionChainCache",
        gate: AccessGate,
        repository: DocumentRepository,
        *,
        granularity: str = "shared",
        max_turns: int = 5,
        graph=None,
    ):
        self.sessions = sessions
        self.gate = gate
        self.repository = repository
        self.granularity = granularity
        self.max_turns = max_turns

        # compile the graph once at initialization
        self.graph = graph or build_graph()
        log.info("QAOrchestrator initialized | granularity=%s", granularity)

    async def ask_room(self, room_id: str, question: str, user: UserIdentity) -> QAResult:
        if self.granularity != "shared":
            raise ValidationError("Room conversations require indexing.granularity=shared")

        document_ids = await self.gate.cleared_documents(room_id, user)
        if not document_ids:
            raise AuthorizationDenied("Unauthorized")

        return await self.answer(room_scope(room_id), question, document_ids=document_ids)

    async def ask_file(self, file: str, question: str, user: UserIdentity) -> QAResult:
        if not await self.gate.authorize(file, user):
            raise AuthorizationDenied("Unauthorized")

        record = await self.repository.get_by_file(file)
        if record is None or record.indexing_status != INDEXING_READY:
            status = record.indexing_status if record else "missing"
            raise IndexNotReady(f"Document '{file}' is not ready for questions (status={status})")

        return await self.answer(file_scope(file), question, document_ids=frozenset({record.id}))

    async def answer(
        self,
        scope: str,
        question: str,
        document_ids: Optional[AbstractSet[str]] = None,
    ) -> QAResult:
        """
        Run one turn. document_ids restricts retrieval to the documents the
        caller was cleared for; None leaves only the session's own filter.
        """
        if not question or not question.strip():
            raise ValidationError("Question must not be empty")

        async with self.sessions.checkout(scope) as chain:
            async with chain.turn_lock:
                state = {
                    "question": question,
                    "chat_history": chain.recent_messages(self.max_turns),
                    "chain": chain,
                    "steps": [],
                }
                if document_ids is not None:
                    state["document_ids"] = frozenset(document_ids)

                try:
                    result = await self.graph.ainvoke(state)
                except DocChatException as e:
                    log.error("QA turn failed | scope=%s | error=%s", scope, e)
                    raise
                except Exception as e:
                    log.error("QA turn failed | scope=%s | error=%r", scope, e)
                    raise InternalError("QA pipeline failed", e) from e

                answer = result["answer"]
                chain.remember(question, answer)

        log.info("QA turn completed | scope=%s | steps=%s", scope, result.get("steps"))
        return QAResult(
            answer=answer,
            standalone_question=result.get("standalone_question", question),
            sources=[d.as_source() for d in result.get("docs") or []],
        )
