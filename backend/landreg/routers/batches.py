"""
Outbound company landlord batches.

Endpoints:
  POST /company   build the HMLR request workbook and email it
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from landreg.auth import verify_function_key
from landreg.clients import get_batch_submitter
from landreg.models.batch import CompanyBatchRequest, CompanyBatchResponse
from landreg.services.batch_submission import BatchSubmitter
from landreg.services.mailbox import MailboxError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/company", response_model=CompanyBatchResponse)
async def submit_company_batch(
    request: CompanyBatchRequest,
    submitter: BatchSubmitter = Depends(get_batch_submitter),
    _: None = Depends(verify_function_key),
):
    """
    Raises:
        400 if the batch has no records or no HMLR recipient is configured.

    A failed send returns 502 with a CompanyBatchResponse body so the
    caller can record the failure against the batch.
    """
    try:
        return await submitter.submit(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MailboxError as e:
        logger.error(f"Batch {request.batch_name} could not be sent: {e.message}")
        failed = CompanyBatchResponse(
            success=False,
            batch_id=request.batch_id,
            error_message=e.message,
            recipient_email=submitter.hmlr_recipient,
        )
        return JSONResponse(status_code=502, content=failed.model_dump(mode="json"))
