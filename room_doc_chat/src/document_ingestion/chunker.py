from __future__ import annotations

from typing import Any, List

from langchain_text_splitters import TextSplitter

from room_doc_chat.exception.custom_exception import ValidationError


class FixedWindowTextSplitter(TextSplitter):
    """
    Splits text into fixed-size character windows that overlap by exactly
    `chunk_overlap` characters.

    - every chunk except the last is exactly `chunk_size` long
    - consecutive chunks share `chunk_overlap` characters
    - the chunks cover the input without gaps
    - text shorter than `chunk_size` comes back as a single chunk

    Boundaries depend only on (text, chunk_size, chunk_overlap), so re-indexing
    the same file reproduces the same chunks.
    """

    def __init__(self, chunk_size: int = 500, chunk_overlap: int = 50, **kwargs: Any):
        if chunk_size <= 0:
            raise ValidationError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValidationError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap}"
            )
        kwargs.setdefault("strip_whitespace", False)
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, **kwargs)

    @property
    def step(self) -> int:
        return self._chunk_size - self._chunk_overlap

    def split_text(self, text: str) -> List[str]:
        if not text:
            return []

        size, step = self._chunk_size, self.step
        chunks: List[str] = []
        start = 0

        # keep sliding while the current window stops short of the end
        while start + size < len(text):
            chunks.append(text[start : start + size])
            start += step

        chunks.append(text[start:])
        return chunks
