"""
Pair reconciliation endpoints.

Endpoints:
  POST /process           reconcile one declared pair
  POST /process-pending   reconcile every declared pair not claimed elsewhere
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from landreg.auth import verify_function_key
from landreg.clients import get_pipeline, get_reconciler
from landreg.models.hmlr import ProcessingResult, ResponsePair
from landreg.services.reconciler import PairAlreadyClaimed, PairNotFound, ResponseReconciler
from landreg.services.scheduler import InboxPipeline
from landreg.services.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/process", response_model=ProcessingResult)
async def process_pair(
    pair: ResponsePair,
    reconciler: ResponseReconciler = Depends(get_reconciler),
    _: None = Depends(verify_function_key),
) -> ProcessingResult:
    """
    Reconcile a serialized ResponsePair.

    A pair that fails during processing still returns 200 with
    success=false; its messages are moved to the Failed folder.

    Raises:
        404 if the pair declaration no longer exists (already processed).
        409 if another worker holds a live claim on the pair.
        502 if pending storage is unreachable.
    """
    try:
        return await reconciler.reconcile(pair)
    except PairNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PairAlreadyClaimed as e:
        raise HTTPException(status_code=409, detail=e.message)
    except StorageError as e:
        logger.error(f"Pair {pair.pair_id} could not be reconciled: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)


@router.post("/process-pending")
async def process_pending(
    pipeline: InboxPipeline = Depends(get_pipeline),
    _: None = Depends(verify_function_key),
) -> dict:
    try:
        results = await pipeline.process_pending()
    except StorageError as e:
        logger.error(f"Pending pairs could not be listed: {e.message}")
        raise HTTPException(status_code=502, detail=e.message)
    return {
        "processed": len(results),
        "results": [result.model_dump(mode="json") for result in results],
    }
