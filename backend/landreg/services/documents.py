"""
Title deed documents attached to Salesforce checks.

Storage layout in the title-deeds bucket:

  {batch_id}/{record_id}/{title}.pdf        the document
  {batch_id}/{record_id}/{title}.pdf.json   upload metadata

Public API:
  DocumentService.upload(request)                   -> DocumentUploadResponse
  DocumentService.signed_url(request)               -> DocumentAccessResponse
  DocumentService.list_documents(batch_id, record)  -> DocumentListResponse
  DocumentService.delete(request)                   -> str (deleted path)
"""

import base64
import binascii
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from landreg.models.documents import (
    DocumentAccessRequest,
    DocumentAccessResponse,
    DocumentInfo,
    DocumentListResponse,
    DocumentUploadRequest,
    DocumentUploadResponse,
)
from landreg.services.storage import BlobNotFound, BlobStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MINUTES = 60
METADATA_SUFFIX = ".json"

_INVALID_FILE_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class DocumentError(Exception):
    def __init__(self, message: str, error_code: str = "invalid_request"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_file_name(name: str) -> str:
    """Drop characters that are invalid in file names; spaces become underscores."""
    return _INVALID_FILE_NAME_CHARS.sub("", name).strip().replace(" ", "_")


def _path_segment(value: Optional[str], label: str) -> str:
    segment = (value or "").strip()
    if not segment or "/" in segment or "\\" in segment or ".." in segment:
        raise DocumentError(f"Invalid {label}")
    return segment


def document_path(batch_id: str, record_id: str, title_number: str) -> str:
    batch = _path_segment(batch_id, "batchId")
    record = _path_segment(record_id, "recordId")
    title = _path_segment(sanitize_file_name(title_number or ""), "titleNumber")
    return f"{batch}/{record}/{title}.pdf"


def metadata_path(blob_path: str) -> str:
    return blob_path + METADATA_SUFFIX


def resolve_document_path(request: DocumentAccessRequest) -> str:
    """An explicit blob_path wins; otherwise the path is built from the ids."""
    if request.blob_path and request.blob_path.strip():
        path = request.blob_path.strip()
        if path.startswith("/") or "\\" in path or ".." in path:
            raise DocumentError("Invalid blobPath")
        return path
    if request.batch_id and request.record_id and request.title_number:
        return document_path(request.batch_id, request.record_id, request.title_number)
    raise DocumentError("Either blobPath or (batchId, recordId, titleNumber) are required")


class DocumentService:
    def __init__(self, store: BlobStore, clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self._clock = clock

    async def upload(self, request: DocumentUploadRequest) -> DocumentUploadResponse:
        """
        Decode and store one document with its metadata, overwriting any
        earlier upload for the same check and title.

        Raises:
            DocumentError: missing ids, missing or invalid base64
            StorageError: the upload failed
        """
        if not (request.batch_id.strip() and request.record_id.strip() and request.title_number.strip()):
            raise DocumentError("BatchId, RecordId, and TitleNumber are required")
        if not request.document_base64.strip():
            raise DocumentError("DocumentBase64 is required")
        try:
            content = base64.b64decode(request.document_base64, validate=True)
        except (binascii.Error, ValueError):
            raise DocumentError("Invalid Base64 encoding for DocumentBase64")

        path = document_path(request.batch_id, request.record_id, request.title_number)
        uploaded_at = self._clock()
        logger.info(
            f"Uploading document for batch {request.batch_id}, record {request.record_id}, "
            f"title {request.title_number} ({len(content)} bytes)"
        )

        await self.store.put(path, content, request.content_type)
        await self.store.put_json(metadata_path(path), {
            "batch_id": request.batch_id,
            "record_id": request.record_id,
            "title_number": request.title_number,
            "uploaded_at": uploaded_at.isoformat(),
            "content_type": request.content_type,
            "file_size_bytes": len(content),
            "original_file_name": request.file_name,
        })

        return DocumentUploadResponse(
            success=True,
            blob_path=path,
            file_size_bytes=len(content),
            uploaded_at=uploaded_at,
        )

    async def signed_url(self, request: DocumentAccessRequest) -> DocumentAccessResponse:
        path = resolve_document_path(request)
        if not await self.store.exists(path):
            raise DocumentError(f"Document not found: {path}", "not_found")

        minutes = request.expiry_minutes if request.expiry_minutes > 0 else DEFAULT_EXPIRY_MINUTES
        url = await self.store.signed_url(path, expiry_seconds=minutes * 60)
        return DocumentAccessResponse(
            success=True,
            sas_url=url,
            blob_path=path,
            expires_at=self._clock() + timedelta(minutes=minutes),
        )

    async def list_documents(self, batch_id: str, record_id: Optional[str] = None) -> DocumentListResponse:
        prefix = _path_segment(batch_id, "batchId")
        if record_id:
            prefix = f"{prefix}/{_path_segment(record_id, 'recordId')}"

        documents = []
        for path in await self.store.list_by_prefix(prefix):
            if path.endswith(METADATA_SUFFIX):
                continue
            try:
                meta = await self.store.get_json(metadata_path(path))
            except BlobNotFound:
                meta = {}
            documents.append(DocumentInfo(
                blob_path=path,
                file_name=path.rsplit("/", 1)[-1],
                file_size_bytes=meta.get("file_size_bytes", 0),
                uploaded_at=meta.get("uploaded_at"),
                content_type=meta.get("content_type", "application/pdf"),
                original_file_name=meta.get("original_file_name"),
            ))

        logger.info(f"Found {len(documents)} document(s) under {prefix}")
        return DocumentListResponse(documents=documents)

    async def delete(self, request: DocumentAccessRequest) -> str:
        path = resolve_document_path(request)
        if not await self.store.exists(path):
            raise DocumentError(f"Document not found: {path}", "not_found")
        await self.store.delete([path, metadata_path(path)])
        logger.info(f"Deleted document {path}")
        return path
