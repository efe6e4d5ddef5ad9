"""
Manual inbox check.

Endpoints:
  POST /check   run one inbox cycle and reconcile the new pairs inline
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from landreg.auth import verify_function_key
from landreg.clients import get_pipeline
from landreg.services.mailbox import MailboxError
from landreg.services.scheduler import DISPATCH_INLINE, InboxPipeline
from landreg.services.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/check")
async def check_inbox(
    pipeline: InboxPipeline = Depends(get_pipeline),
    _: None = Depends(verify_function_key),
) -> dict:
    """
    Ingest unread HMLR emails, declare pairs and process them before
    returning. Results are queued for the compliance notification.

    Raises:
        502 if the mailbox or storage cannot be reached.
    """
    try:
        summary = await pipeline.check_inbox(dispatch_mode=DISPATCH_INLINE)
    except (MailboxError, StorageError) as e:
        logger.error(f"Inbox check failed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)

    return {
        "ingested": summary.cycle.ingested,
        "skipped": summary.cycle.skipped,
        "failed": summary.cycle.failed,
        "pairs": [pair.pair_id for pair in summary.cycle.pairs],
        "results": [result.model_dump(mode="json") for result in summary.results],
    }
