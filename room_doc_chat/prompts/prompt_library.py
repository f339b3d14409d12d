from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

# Follow-up question -> standalone search query for the room's documents
contextualize_question_prompt = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            (
                "You are rewriting questions asked in a document chat room.\n"
                "Given the conversation so far, turn the latest question into one that can be "
                "understood on its own, resolving references such as 'it', 'that file' or 'the second point'.\n"
                "Keep names, numbers and file names exactly as they appear.\n"
                "Never answer the question and never add facts.\n"
                "Reply with the rewritten question only.\n"
            ),
        ),
        MessagesPlaceholder("chat_history"),
        ("human", "{question}"),
    ]
)


# Grounded answer over the retrieved chunks; each block is headed by its file
context_qa_prompt = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            (
                "You answer questions about the documents shared in this room.\n"
                "Each context block below starts with the name of the file it was taken from.\n"
                "Use ONLY that context. Mention the file a fact comes from when it helps the reader.\n"
                'If the context does not contain the answer, reply exactly: "I don\'t know based on the available documents."\n'
                "Keep the answer short and factual.\n\n"
                "Context:\n{context}"
            ),
        ),
        MessagesPlaceholder("chat_history"),
        ("human", "{question}"),
    ]
)


PROMPT_REGISTRY = {
    "contextualize_question": contextualize_question_prompt,
    "context_qa": context_qa_prompt,
}
