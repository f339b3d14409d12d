import asyncio

from langchain_core.output_parsers import StrOutputParser

from room_doc_chat.exception.custom_exception import BackendUnavailable, DocChatException
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.prompts.prompt_library import PROMPT_REGISTRY

"""
Each node is an async function returning the part of the state it fills in.
Graph wiring is done in builder.
"""

NO_CONTEXT_ANSWER = "I don't know based on the available documents."


# Appends the current step into existing steps in the state
def _append_step(state, step):
    steps = state.get("steps", [])
    return steps + [step]


def _format_context(docs) -> str:
    blocks = []
    for d in docs:
        md = d.document.metadata
        blocks.append(f"[{md.get('filename') or md.get('file', 'unknown')}]\n{d.document.page_content}")
    return "\n\n".join(blocks)


async def _call_backend(awaitable, timeout: float, what: str):
    """Await one generation-backend call, mapping every failure to BackendUnavailable."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except DocChatException:
        raise
    except asyncio.TimeoutError as e:
        log.error("Generation backend timed out | step=%s | timeout=%s", what, timeout)
        raise BackendUnavailable(f"Generation backend timed out during {what}", e) from e
    except Exception as e:
        log.error("Generation backend failed | step=%s | error=%r", what, e)
        raise BackendUnavailable(f"Generation backend failed during {what}", e) from e


async def contextualize_node(state):
    """
    Rewrite a follow-up question into a standalone one using prior turns.
    The first question of a session is used as is.
    """
    chain = state["chain"]
    question = state["question"]
    chat_history = state.get("chat_history", [])

    if not chat_history:
        log.info("No chat_history, using question as is | scope=%s", chain.scope)
        return {"standalone_question": question, "steps": _append_step(state, "contextualize")}

    rewrite_chain = PROMPT_REGISTRY["contextualize_question"] | chain.llm | StrOutputParser()
    rewritten = await _call_backend(
        rewrite_chain.ainvoke({"question": question, "chat_history": chat_history}),
        chain.generation_timeout,
        "contextualize",
    )
    rewritten = rewritten.strip() or question

    log.info("Question rewritten from chat history | scope=%s | rewritten=%s", chain.scope, rewritten)
    return {"standalone_question": rewritten, "steps": _append_step(state, "contextualize")}


async def retrieve_node(state):
    chain = state["chain"]
    docs = await chain.retriever.retrieve(
        state["standalone_question"], document_ids=state.get("document_ids")
    )

    log.info("Retrieve node | scope=%s | docs=%d", chain.scope, len(docs))
    return {"docs": docs, "steps": _append_step(state, "retrieve")}


async def generate_node(state):
    chain = state["chain"]
    docs = state.get("docs") or []

    if not docs:
        log.info("RAG: no documents retrieved | scope=%s", chain.scope)
        return {"answer": NO_CONTEXT_ANSWER, "steps": _append_step(state, "generate")}

    context = _format_context(docs)

    qa_chain = PROMPT_REGISTRY["context_qa"] | chain.llm | StrOutputParser()
    answer = await _call_backend(
        qa_chain.ainvoke(
            {
                "context": context,
                "question": state["standalone_question"],
                "chat_history": state.get("chat_history", []),
            }
        ),
        chain.generation_timeout,
        "generate",
    )

    log.info("Generate node | scope=%s | answer_chars=%d", chain.scope, len(answer))
    return {"answer": answer, "steps": _append_step(state, "generate")}
