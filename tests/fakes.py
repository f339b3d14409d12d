import asyncio
from typing import Any, Dict, List, Optional, Set

from langchain_core.documents import Document
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.outputs import ChatGeneration, ChatResult

EMBEDDING_SIZE = 16


class ScriptedChatModel(BaseChatModel):
    """
    Chat double. Question rewrites return the question unchanged; answers are
    "answer: <question>". Per-question delays and failures can be scripted.
    """

    delays: Dict[str, float] = {}
    fail_for: Set[str] = set()
    completed: List[str] = []

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        raise NotImplementedError("ScriptedChatModel is async only")

    async def _agenerate(
        self, messages: List[BaseMessage], stop=None, run_manager=None, **kwargs: Any
    ) -> ChatResult:
        question = next(m.content for m in reversed(messages) if isinstance(m, HumanMessage))
        system = next((m.content for m in messages if isinstance(m, SystemMessage)), "")

        if question in self.fail_for:
            raise RuntimeError(f"generation failed for {question!r}")

        await asyncio.sleep(self.delays.get(question, 0))

        if "rewriting" in system:
            text = question
        else:
            text = f"answer: {question}"
            self.completed.append(question)
        return ChatResult(generations=[ChatGeneration(message=AIMessage(content=text))])


class FailingEmbeddings(Embeddings):
    """Embeds like DeterministicFakeEmbedding except for texts containing `poison`."""

    def __init__(self, poison: str = "POISON", size: int = EMBEDDING_SIZE):
        self.poison = poison
        self.inner = DeterministicFakeEmbedding(size=size)

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if any(self.poison in t for t in texts):
            raise ConnectionError("embedding backend down")
        return self.inner.embed_documents(texts)

    def embed_query(self, text: str) -> List[float]:
        if self.poison in text:
            raise ConnectionError("embedding backend down")
        return self.inner.embed_query(text)


class FakeRedis:
    """The handful of redis commands RetrievalCache uses, kept in dicts."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.sets: Dict[str, Set[str]] = {}
        self.ttls: Dict[str, int] = {}

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self.values[key] = value
        self.ttls[key] = ttl

    def sadd(self, key: str, *members: str) -> None:
        self.sets.setdefault(key, set()).update(members)

    def expire(self, key: str, ttl: int) -> None:
        self.ttls[key] = ttl

    def smembers(self, key: str) -> Set[str]:
        return set(self.sets.get(key, set()))

    def delete(self, *keys: str) -> None:
        for k in keys:
            self.values.pop(k, None)
            self.sets.pop(k, None)



def make_chunks(document_id: str, file: str, texts: List[str], rooms=("A",)) -> List[Document]:
    """Chunks shaped like the ingestion pipeline produces them."""
    return [
        Document(
            page_content=t,
            metadata={
                "document_id": document_id,
                "file": file,
                "chunk_index": i,
                "room_ids": list(rooms),
            },
        )
        for i, t in enumerate(texts)
    ]
