import sys
import traceback
from typing import List, Optional


class DocChatException(Exception):
    """
    Base exception of the project.

    Keeps a human readable message plus the file/line where the wrapped error
    was raised, so request-boundary logs point at the real origin.
    """

    def __init__(self, error_message: str, error: Optional[BaseException] = None):
        super().__init__(error_message)
        self.error_message = error_message
        self.error = error

        # Prefer the traceback of the wrapped error, fall back to the active one
        exc_tb = error.__traceback__ if error is not None else sys.exc_info()[2]

        if exc_tb is not None:
            last = traceback.extract_tb(exc_tb)[-1]
            self.file_name = last.filename
            self.lineno = last.lineno
        else:
            self.file_name = "<unknown>"
            self.lineno = -1

    def __str__(self) -> str:
        base = f"{self.error_message} | file={self.file_name} | line={self.lineno}"
        if self.error is not None:
            return f"{base} | cause={self.error!r}"
        return base


class ValidationError(DocChatException):
    """Malformed upload fields or request parameters."""


class FileNotSupported(ValidationError):
    """Uploaded file has an extension no loader can extract text from."""


class DuplicateResourceError(DocChatException):
    """A DocumentRecord with the same file identity already exists."""


class AuthorizationDenied(DocChatException):
    """Access gate refused the request. The reason is never exposed."""


class BackendUnavailable(DocChatException):
    """Embedding, vector store or generation backend failed or timed out."""


class IndexNotFound(DocChatException):
    """Query against an index that holds no content."""


class IndexNotReady(IndexNotFound):
    """The document exists but its indexing is pending or failed."""


class IndexingError(DocChatException):
    """Some chunks of a document could not be embedded or written."""

    def __init__(
        self,
        error_message: str,
        failed_chunk_ids: List[str],
        error: Optional[BaseException] = None,
    ):
        super().__init__(error_message, error)
        self.failed_chunk_ids = list(failed_chunk_ids)


class InternalError(DocChatException):
    """Anything not covered by the other categories."""
