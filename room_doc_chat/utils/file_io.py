from __future__ import annotations

import hashlib
import re
import uuid
from pathlib import Path
from typing import Iterable

from room_doc_chat.exception.custom_exception import DocChatException, FileNotSupported
from room_doc_chat.logger import GLOBAL_LOGGER as log

DEFAULT_SUPPORTED_EXTENSIONS = {".pdf", ".docx", ".txt", ".md", ".csv"}


def ensure_supported(
    name: str, supported_extensions: Iterable[str] = DEFAULT_SUPPORTED_EXTENSIONS
) -> str:
    """Return the lower-cased extension of `name` or raise FileNotSupported."""
    extension = Path(name).suffix.lower()
    if extension not in {e.lower() for e in supported_extensions}:
        log.warning("Unsupported file type | extension=%s | file=%s", extension, name)
        raise FileNotSupported(f"Unsupported file type: '{extension or name}'")
    return extension


def derive_index_name(name: str) -> str:
    """
    Index name used when every file gets its own index: a readable slug of the
    base name plus a digest of the full name, so names that slug alike
    ('a b.txt', 'a_b.txt', 'x/a.txt') never share an index.
    """
    slug = re.sub(r"[^a-zA-Z0-9_\-.]", "_", Path(name).name)
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:12]
    return f"{slug}-{digest}"


def save_uploaded_file(
    name: str,
    data: bytes | memoryview,
    target_dir: Path,
    supported_extensions: Iterable[str] = DEFAULT_SUPPORTED_EXTENSIONS,
) -> Path:
    """
    Persist one uploaded file under target_dir with a collision-free name.
    The extension is validated before anything touches the disk.
    """
    extension = ensure_supported(name, supported_extensions)

    try:
        target_dir.mkdir(parents=True, exist_ok=True)

        # Clean file name (only alphanum, dash, underscore)
        safe_name = re.sub(r"[^a-zA-Z0-9_\-]", "_", Path(name).stem).lower()
        file_name = f"{safe_name}_{uuid.uuid4().hex[:5]}{extension}"
        output_path = target_dir / file_name

        if isinstance(data, memoryview):
            data = data.tobytes()
        output_path.write_bytes(data)

        log.info("File saved for ingestion | uploaded=%s | saved_as=%s", name, output_path)
        return output_path
    except OSError as e:
        log.error("Failed to save uploaded file | error=%s | dir=%s", e, target_dir)
        raise DocChatException("Failed to save uploaded file", e) from e
