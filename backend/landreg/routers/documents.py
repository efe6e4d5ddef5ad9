"""
Title deed documents stored against Salesforce checks.

Endpoints:
  POST   /upload   store a base64 document at {batch}/{record}/{title}.pdf
  POST   /url      time-limited signed URL for a document
  GET    /         list documents for a batch (optionally one record)
  DELETE /         delete a document
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from landreg.auth import verify_function_key
from landreg.clients import get_document_service
from landreg.models.documents import (
    DocumentAccessRequest,
    DocumentAccessResponse,
    DocumentListResponse,
    DocumentUploadRequest,
    DocumentUploadResponse,
)
from landreg.services.documents import DocumentError, DocumentService
from landreg.services.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: DocumentError) -> HTTPException:
    status = 404 if e.error_code == "not_found" else 400
    return HTTPException(status_code=status, detail=e.message)


@router.post("/upload", response_model=DocumentUploadResponse)
async def upload_document(
    request: DocumentUploadRequest,
    documents: DocumentService = Depends(get_document_service),
    _: None = Depends(verify_function_key),
):
    """
    Raises:
        400 for missing ids or invalid base64.
        502 if storage is unreachable.
    """
    try:
        return await documents.upload(request)
    except DocumentError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error(f"Error uploading document: {e.message}")
        raise HTTPException(status_code=502, detail=f"Error uploading document: {e.message}")


@router.post("/url", response_model=DocumentAccessResponse)
async def get_document_url(
    request: DocumentAccessRequest,
    documents: DocumentService = Depends(get_document_service),
    _: None = Depends(verify_function_key),
):
    try:
        return await documents.signed_url(request)
    except DocumentError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error(f"Error generating document URL: {e.message}")
        raise HTTPException(status_code=502, detail=f"Error generating document URL: {e.message}")


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    batch_id: str = Query(..., alias="batchId"),
    record_id: Optional[str] = Query(None, alias="recordId"),
    documents: DocumentService = Depends(get_document_service),
    _: None = Depends(verify_function_key),
):
    try:
        return await documents.list_documents(batch_id, record_id)
    except DocumentError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error(f"Error listing documents: {e.message}")
        raise HTTPException(status_code=502, detail=f"Error listing documents: {e.message}")


@router.delete("")
async def delete_document(
    request: DocumentAccessRequest,
    documents: DocumentService = Depends(get_document_service),
    _: None = Depends(verify_function_key),
) -> dict:
    try:
        path = await documents.delete(request)
    except DocumentError as e:
        raise _http_error(e)
    except StorageError as e:
        logger.error(f"Error deleting document: {e.message}")
        raise HTTPException(status_code=502, detail=f"Error deleting document: {e.message}")
    return {"success": True, "deleted_path": path}
