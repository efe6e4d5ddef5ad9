"""
HMLR Response Pipeline API
FastAPI application that reconciles HM Land Registry search responses
against Salesforce land registry checks.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from landreg import config
from landreg.clients import close_clients, get_pending_store, get_pipeline
from landreg.routers import batches, documents, inbox, notifications, responses, title_deeds

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start the inbox polling loop when enabled and release the shared HTTP
    client on shutdown.
    """
    poller = None
    if config.INBOX_POLLING_ENABLED:
        pipeline = get_pipeline()
        poller = asyncio.create_task(pipeline.run_forever(config.INBOX_POLL_INTERVAL_SECONDS))
    else:
        logger.info("Inbox polling disabled; use POST /api/inbox/check to trigger a cycle")

    try:
        yield
    finally:
        if poller is not None:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller
        await close_clients()


app = FastAPI(
    title="HMLR Response Pipeline",
    description="Reconciles HM Land Registry responses with Salesforce land registry checks",
    version=VERSION,
    lifespan=lifespan,
)

# Include routers
app.include_router(inbox.router, prefix="/api/inbox", tags=["inbox"])
app.include_router(responses.router, prefix="/api/responses", tags=["responses"])
app.include_router(title_deeds.router, prefix="/api/titledeeds", tags=["title-deeds"])
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(batches.router, prefix="/api/batches", tags=["batches"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])


@app.get("/")
async def root():
    return {"message": "HMLR Response Pipeline", "version": VERSION}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/storage")
async def health_storage():
    """
    Test Supabase Storage access.

    Lists storage buckets and verifies the pending and title deed buckets
    exist. Returns 503 if storage is unreachable or a bucket is missing.
    """
    try:
        bucket_names = await get_pending_store().ping()
    except Exception as exc:
        logger.error(f"Storage health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Storage check failed: {str(exc)}",
        )

    missing = [
        name for name in (config.PENDING_BUCKET, config.TITLE_DEEDS_BUCKET)
        if name not in bucket_names
    ]
    if missing:
        raise HTTPException(
            status_code=503,
            detail=f"Storage bucket(s) not found: {', '.join(missing)}",
        )

    return {
        "status": "ok",
        "storage": "reachable",
        "buckets": [config.PENDING_BUCKET, config.TITLE_DEEDS_BUCKET],
    }
