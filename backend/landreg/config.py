"""
Service configuration.

All settings come from environment variables; a .env file at the backend
root is loaded first so local development does not need exported variables.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Supabase (object storage)
# ---------------------------------------------------------------------------

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

PENDING_BUCKET = os.getenv("PENDING_BUCKET", "pending-hmlr-emails")
TITLE_DEEDS_BUCKET = os.getenv("TITLE_DEEDS_BUCKET", "title-deeds")

# ---------------------------------------------------------------------------
# Mailbox (Microsoft Graph)
# ---------------------------------------------------------------------------

GRAPH_TENANT_ID = os.getenv("GRAPH_TENANT_ID", "")
GRAPH_CLIENT_ID = os.getenv("GRAPH_CLIENT_ID", "")
GRAPH_CLIENT_SECRET = os.getenv("GRAPH_CLIENT_SECRET", "")
GRAPH_BASE_URL = os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0")
GRAPH_LOGIN_URL = os.getenv("GRAPH_LOGIN_URL", "https://login.microsoftonline.com")

MAILBOX_ADDRESS = os.getenv("MAILBOX_ADDRESS", "")
HMLR_SENDER_ADDRESSES = _env_list(
    "HMLR_SENDER_ADDRESSES",
    "data.services@mail.landregistry.gov.uk,noreply@landregistry.gov.uk",
)
PROCESSED_FOLDER_NAME = os.getenv("PROCESSED_FOLDER_NAME", "Processed")
FAILED_FOLDER_NAME = os.getenv("FAILED_FOLDER_NAME", "Failed")

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

PAIRING_WINDOW_HOURS = float(os.getenv("PAIRING_WINDOW_HOURS", "12"))
INBOX_POLL_INTERVAL_SECONDS = int(os.getenv("INBOX_POLL_INTERVAL_SECONDS", "900"))  # 15 minutes
INBOX_POLLING_ENABLED = _env_bool("INBOX_POLLING_ENABLED", "true")

# "queued": pairs are declared and drained by the worker on the next tick.
# "inline": pairs are reconciled inside the inbox cycle that found them.
PAIR_DISPATCH_MODE = os.getenv("PAIR_DISPATCH_MODE", "queued").strip().lower()

RECONCILE_TIMEOUT_SECONDS = float(os.getenv("RECONCILE_TIMEOUT_SECONDS", "180"))
CLAIM_LEASE_SECONDS = int(os.getenv("CLAIM_LEASE_SECONDS", "900"))

# When several open checks share a CustomerRef and none matches on postcode,
# strict mode skips the row instead of taking the first candidate.
STRICT_POSTCODE_MATCH = _env_bool("STRICT_POSTCODE_MATCH")

# ---------------------------------------------------------------------------
# Title deed viewer
# ---------------------------------------------------------------------------

TITLE_DEED_BASE_URL = os.getenv(
    "TITLE_DEED_BASE_URL", "http://localhost:8000/api/titledeeds"
).rstrip("/")
TITLE_DEED_ACCESS_KEY = os.getenv("TITLE_DEED_ACCESS_KEY", "")

# ---------------------------------------------------------------------------
# Salesforce
# ---------------------------------------------------------------------------

SALESFORCE_LOGIN_URL = os.getenv("SALESFORCE_LOGIN_URL", "https://login.salesforce.com").rstrip("/")
SALESFORCE_CLIENT_ID = os.getenv("SALESFORCE_CLIENT_ID", "")
SALESFORCE_CLIENT_SECRET = os.getenv("SALESFORCE_CLIENT_SECRET", "")
SALESFORCE_API_VERSION = os.getenv("SALESFORCE_API_VERSION", "v59.0")
# Used until a token response supplies instance_url.
SALESFORCE_INSTANCE_URL = os.getenv("SALESFORCE_INSTANCE_URL", "").rstrip("/")
SALESFORCE_TOKEN_TTL_SECONDS = int(os.getenv("SALESFORCE_TOKEN_TTL_SECONDS", "3600"))

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# ---------------------------------------------------------------------------
# Outbound email (sent from the shared mailbox through Graph)
# ---------------------------------------------------------------------------

NOTIFY_RECIPIENTS = _env_list("NOTIFY_RECIPIENTS")
NOTIFY_CC = _env_list("NOTIFY_CC")
HMLR_RECIPIENT_EMAIL = os.getenv("HMLR_RECIPIENT_EMAIL", "")

# ---------------------------------------------------------------------------
# Trigger endpoint protection
# ---------------------------------------------------------------------------

FUNCTION_KEY = os.getenv("FUNCTION_KEY", "")
