"""
Function key check for the trigger endpoints.

Salesforce and operators call the endpoints with a shared key, either in
the X-Function-Key header or as a ?code= query parameter (the form used in
title deed links stored on check records).
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Query

from landreg import config

logger = logging.getLogger(__name__)


def _expected_key() -> str:
    return config.FUNCTION_KEY


def verify_function_key(
    x_function_key: Optional[str] = Header(None),
    code: Optional[str] = Query(None),
) -> None:
    """
    Raises 401 if the key is missing, unconfigured, or does not match.
    """
    expected = _expected_key()
    if not expected:
        logger.warning("FUNCTION_KEY is not configured; all trigger requests will be rejected")
        raise HTTPException(status_code=401, detail="Function key not configured")

    provided = x_function_key or code
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid function key")
