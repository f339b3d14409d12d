from typing import AbstractSet, Any, List, TypedDict

from langchain_core.messages import BaseMessage


class GraphState(TypedDict, total=False):
    question: str
    chat_history: List[BaseMessage]
    chain: Any
    # documents this turn was cleared to read
    document_ids: AbstractSet[str]
    standalone_question: str
    docs: List[Any]
    answer: str
    steps: List[str]
