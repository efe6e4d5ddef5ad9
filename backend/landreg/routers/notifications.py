"""
Compliance notifications.

Endpoints:
  POST /compliance   email the summary for one ProcessingResult
"""

from fastapi import APIRouter, Depends, HTTPException

from landreg.auth import verify_function_key
from landreg.clients import get_notifier
from landreg.models.hmlr import ProcessingResult
from landreg.services.notifier import ComplianceNotifier, NotificationError, build_subject

router = APIRouter()


@router.post("/compliance")
async def send_compliance_notification(
    result: ProcessingResult,
    notifier: ComplianceNotifier = Depends(get_notifier),
    _: None = Depends(verify_function_key),
) -> dict:
    try:
        message_id = await notifier.send(result)
    except NotificationError as e:
        status = 503 if e.error_code == "not_configured" else 502
        raise HTTPException(status_code=status, detail=e.message)
    return {"sent": True, "subject": build_subject(result), "message_id": message_id}
