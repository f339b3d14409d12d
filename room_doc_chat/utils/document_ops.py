from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List

from langchain_community.document_loaders import (
    CSVLoader,
    Docx2txtLoader,
    PyPDFLoader,
    TextLoader,
)
from langchain_core.documents import Document

from room_doc_chat.exception.custom_exception import DocChatException, FileNotSupported
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.utils.thread_pool import run_sync

# extension -> loader factory; text extraction itself is delegated to langchain
LOADERS: Dict[str, Callable[[str], object]] = {
    ".pdf": lambda p: PyPDFLoader(p),
    ".docx": lambda p: Docx2txtLoader(p),
    ".txt": lambda p: TextLoader(p, encoding="utf-8"),
    ".md": lambda p: TextLoader(p, encoding="utf-8"),
    ".csv": lambda p: CSVLoader(p, encoding="utf-8"),
}


async def load_document(p: Path) -> List[Document]:
    """
    Extract text from a single file. PDFs come back one Document per page;
    every Document.metadata carries 'source'.
    """
    extension = p.suffix.lower()
    factory = LOADERS.get(extension)
    if factory is None:
        raise FileNotSupported(f"No loader for extension '{extension}'")

    try:
        loader = factory(str(p))
        docs = await run_sync(loader.load)
    except Exception as e:
        log.error("Failed processing file | file=%s | error=%s", p, e)
        raise DocChatException(f"Failed processing file {p}", e) from e

    for doc in docs:
        doc.metadata = dict(doc.metadata or {})
        doc.metadata["source"] = str(p)

    log.info("Document loaded | file=%s | parts=%d", p, len(docs))
    return docs


