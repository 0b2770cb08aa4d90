"""Document storage adapter for leave attachments.

``DocumentStorage.upload(file, destination)`` returns the stored document's
``{name, url}``; the original filename is kept as the name while the
on-disk filename is a random UUID so nothing user-supplied reaches the path.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

from hrops.common.exceptions import UploadException, ValidationException
from hrops.config import settings
from hrops.leave.schemas import DocumentRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncomingDocument:
    """A file received with a leave application, already read into memory."""

    filename: str
    content_type: Optional[str]
    content: bytes


class DocumentStorage(Protocol):
    async def upload(self, file: IncomingDocument, destination: str) -> DocumentRef: ...

    async def delete(self, url: str) -> None: ...


def check_document(file: IncomingDocument) -> None:
    """MIME type and size validation, run before anything is written."""
    allowed = settings.allowed_upload_types
    if file.content_type not in allowed:
        raise ValidationException(
            {"files": [
                f"File type '{file.content_type}' not allowed for '{file.filename}'. "
                f"Accepted: {', '.join(sorted(allowed))}."
            ]}
        )
    max_size = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(file.content) > max_size:
        raise ValidationException(
            {"files": [
                f"File '{file.filename}' is too large. "
                f"Maximum size is {settings.MAX_UPLOAD_SIZE_MB} MB."
            ]}
        )


class LocalDocumentStorage:
    """Writes documents under ``UPLOAD_DIR`` and serves them from ``/uploads``."""

    def __init__(self, root: Optional[str] = None, url_prefix: str = "/uploads") -> None:
        self.root = root or settings.UPLOAD_DIR
        self.url_prefix = url_prefix.rstrip("/")

    async def upload(self, file: IncomingDocument, destination: str) -> DocumentRef:
        check_document(file)

        ext = os.path.splitext(file.filename or "")[1]
        safe_name = f"{uuid.uuid4().hex}{ext}"
        upload_dir = os.path.join(self.root, destination)
        try:
            os.makedirs(upload_dir, exist_ok=True)
            with open(os.path.join(upload_dir, safe_name), "wb") as f:
                f.write(file.content)
        except OSError as exc:
            raise UploadException(file.filename, exc.strerror or str(exc))

        return DocumentRef(
            name=file.filename,
            url=f"{self.url_prefix}/{destination}/{safe_name}",
        )

    async def delete(self, url: str) -> None:
        if not url.startswith(self.url_prefix + "/"):
            return
        relative = url[len(self.url_prefix) + 1:]
        path = os.path.join(self.root, *relative.split("/"))
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove uploaded document %s: %s", path, exc)


def get_document_storage() -> DocumentStorage:
    """FastAPI dependency: the storage backend for leave documents."""
    return LocalDocumentStorage()
