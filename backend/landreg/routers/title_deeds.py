"""
Title deed viewer.

Salesforce check records link here (Title_Deed_URL__c); the PDF archived
during reconciliation is streamed back inline.

Endpoints:
  GET /{title_number}        the title register PDF
  GET /{title_number}/link   short-lived signed storage URL for the PDF
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from landreg.auth import verify_function_key
from landreg.clients import get_deeds_store
from landreg.services.reconciler import title_deed_path
from landreg.services.storage import BlobNotFound, BlobStore, StorageError

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNED_URL_EXPIRY_SECONDS = 900


def _sanitize_title_number(title_number: str) -> str:
    title = title_number.strip()
    if not title or "/" in title or "\\" in title or ".." in title:
        raise HTTPException(status_code=400, detail="Invalid title number")
    return title.upper()


@router.get("/{title_number}")
async def get_title_deed(
    title_number: str,
    deeds: BlobStore = Depends(get_deeds_store),
    _: None = Depends(verify_function_key),
) -> Response:
    """
    Raises:
        400 for a title number containing path separators.
        404 if no register has been archived for the title.
        502 if storage is unreachable.
    """
    title = _sanitize_title_number(title_number)
    try:
        content = await deeds.get(title_deed_path(title))
    except BlobNotFound:
        raise HTTPException(status_code=404, detail=f"Title deed not found: {title}")
    except StorageError as e:
        logger.error(f"Failed to fetch title deed {title}: {e.message}")
        raise HTTPException(status_code=502, detail="Failed to fetch title deed")

    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="{title}.pdf"',
            "Cache-Control": "private, max-age=3600",
        },
    )


@router.get("/{title_number}/link")
async def get_title_deed_link(
    title_number: str,
    deeds: BlobStore = Depends(get_deeds_store),
    _: None = Depends(verify_function_key),
) -> dict:
    title = _sanitize_title_number(title_number)
    path = title_deed_path(title)
    try:
        if not await deeds.exists(path):
            raise HTTPException(status_code=404, detail=f"Title deed not found: {title}")
        url = await deeds.signed_url(path, expiry_seconds=SIGNED_URL_EXPIRY_SECONDS)
    except StorageError as e:
        logger.error(f"Failed to sign title deed {title}: {e.message}")
        raise HTTPException(status_code=502, detail="Failed to create title deed link")

    return {"title_number": title, "url": url, "expires_in": SIGNED_URL_EXPIRY_SECONDS}
