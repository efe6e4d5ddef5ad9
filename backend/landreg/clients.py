"""
Shared service instances.

Each factory is cached so the app holds one HTTP client, one OAuth session
per provider and one pipeline. Routers take them through Depends(), which
lets tests swap them with app.dependency_overrides.
"""

from datetime import timedelta
from functools import lru_cache

import httpx

from landreg import config
from landreg.services.batch_submission import BatchSubmitter
from landreg.services.case_store import SalesforceCaseStore
from landreg.services.documents import DocumentService
from landreg.services.inbox_watcher import InboxWatcher
from landreg.services.mail_folders import MailFolderService
from landreg.services.mailbox import GRAPH_SCOPE, GraphMailbox
from landreg.services.notifier import ComplianceNotifier
from landreg.services.oauth_session import OAuthSession
from landreg.services.reconciler import ResponseReconciler
from landreg.services.scheduler import InboxPipeline
from landreg.services.storage import BlobStore


@lru_cache(maxsize=1)
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)


@lru_cache(maxsize=1)
def get_pending_store() -> BlobStore:
    return BlobStore(config.PENDING_BUCKET)


@lru_cache(maxsize=1)
def get_deeds_store() -> BlobStore:
    return BlobStore(config.TITLE_DEEDS_BUCKET)


@lru_cache(maxsize=1)
def get_mailbox() -> GraphMailbox:
    http = get_http_client()
    session = OAuthSession(
        http,
        token_url=f"{config.GRAPH_LOGIN_URL}/{config.GRAPH_TENANT_ID}/oauth2/v2.0/token",
        client_id=config.GRAPH_CLIENT_ID,
        client_secret=config.GRAPH_CLIENT_SECRET,
        scope=GRAPH_SCOPE,
    )
    return GraphMailbox(http, session, config.MAILBOX_ADDRESS, config.GRAPH_BASE_URL)


@lru_cache(maxsize=1)
def get_case_store() -> SalesforceCaseStore:
    http = get_http_client()
    session = OAuthSession(
        http,
        token_url=f"{config.SALESFORCE_LOGIN_URL}/services/oauth2/token",
        client_id=config.SALESFORCE_CLIENT_ID,
        client_secret=config.SALESFORCE_CLIENT_SECRET,
        default_ttl_seconds=config.SALESFORCE_TOKEN_TTL_SECONDS,
    )
    return SalesforceCaseStore(
        http,
        session,
        api_version=config.SALESFORCE_API_VERSION,
        instance_url=config.SALESFORCE_INSTANCE_URL,
    )


@lru_cache(maxsize=1)
def get_folder_service() -> MailFolderService:
    return MailFolderService(
        get_mailbox(), config.PROCESSED_FOLDER_NAME, config.FAILED_FOLDER_NAME
    )


@lru_cache(maxsize=1)
def get_watcher() -> InboxWatcher:
    return InboxWatcher(
        get_mailbox(),
        get_pending_store(),
        config.HMLR_SENDER_ADDRESSES,
        pairing_window=timedelta(hours=config.PAIRING_WINDOW_HOURS),
    )


@lru_cache(maxsize=1)
def get_reconciler() -> ResponseReconciler:
    return ResponseReconciler(
        pending_store=get_pending_store(),
        deeds_store=get_deeds_store(),
        case_store=get_case_store(),
        folders=get_folder_service(),
        title_deed_base_url=config.TITLE_DEED_BASE_URL,
        title_deed_access_key=config.TITLE_DEED_ACCESS_KEY,
        strict_postcode_match=config.STRICT_POSTCODE_MATCH,
        timeout_seconds=config.RECONCILE_TIMEOUT_SECONDS,
        claim_lease=timedelta(seconds=config.CLAIM_LEASE_SECONDS),
    )


@lru_cache(maxsize=1)
def get_notifier() -> ComplianceNotifier:
    return ComplianceNotifier(
        get_mailbox(), get_pending_store(), config.NOTIFY_RECIPIENTS, config.NOTIFY_CC
    )


@lru_cache(maxsize=1)
def get_pipeline() -> InboxPipeline:
    return InboxPipeline(
        get_watcher(),
        get_reconciler(),
        get_notifier(),
        dispatch_mode=config.PAIR_DISPATCH_MODE,
    )


@lru_cache(maxsize=1)
def get_batch_submitter() -> BatchSubmitter:
    return BatchSubmitter(get_mailbox(), config.HMLR_RECIPIENT_EMAIL)


@lru_cache(maxsize=1)
def get_document_service() -> DocumentService:
    return DocumentService(get_deeds_store())


_FACTORIES = (
    get_pending_store, get_deeds_store, get_mailbox, get_case_store,
    get_folder_service, get_watcher, get_reconciler, get_notifier,
    get_pipeline, get_batch_submitter, get_document_service,
)


async def close_clients() -> None:
    """Close the shared HTTP client and drop every cached instance."""
    if get_http_client.cache_info().currsize:
        await get_http_client().aclose()
    get_http_client.cache_clear()
    for factory in _FACTORIES:
        factory.cache_clear()
