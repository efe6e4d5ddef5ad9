"""
Shared in-memory fakes for the pipeline's external dependencies.

Tests mock ALL external calls (Supabase, Graph, Salesforce). No network.
"""

import fnmatch
import json
import os
from datetime import datetime, timezone
from typing import Optional

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("INBOX_POLLING_ENABLED", "false")

from landreg.models.hmlr import BulkUpdateResult, CaseRecord, CaseRecordUpdate
from landreg.models.mailbox import MailAttachment, MailboxMessage
from landreg.services.mailbox import MailboxError
from landreg.services.storage import BlobNotFound, StorageError


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class FakeBlobStore:
    """Dict-backed stand-in for BlobStore with the same async surface."""

    def __init__(self, bucket: str = "test-bucket"):
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.fail_on: dict[str, str] = {}  # operation -> glob of paths that raise

    def _maybe_fail(self, operation: str, path: str) -> None:
        pattern = self.fail_on.get(operation)
        if pattern is not None and fnmatch.fnmatch(path, pattern):
            raise StorageError(f"Simulated {operation} failure for {path}")

    async def put(self, path, content, content_type="application/octet-stream"):
        self._maybe_fail("put", path)
        self.objects[path] = content
        return path

    async def put_if_absent(self, path, content, content_type="application/json"):
        self._maybe_fail("put", path)
        if path in self.objects:
            return False
        self.objects[path] = content
        return True

    async def put_json(self, path, data):
        return await self.put(path, json.dumps(data, default=str).encode("utf-8"))

    async def get(self, path):
        self._maybe_fail("get", path)
        if path not in self.objects:
            raise BlobNotFound(path)
        return self.objects[path]

    async def get_json(self, path):
        return json.loads(await self.get(path))

    async def exists(self, path):
        return path in self.objects

    async def list_by_prefix(self, prefix=""):
        prefix = prefix.strip("/")
        if not prefix:
            return sorted(self.objects)
        return sorted(p for p in self.objects if p.startswith(prefix + "/"))

    async def signed_url(self, path, expiry_seconds=3600):
        if path not in self.objects:
            raise BlobNotFound(path)
        return f"https://storage.test/{self.bucket}/{path}?token=signed&expires={expiry_seconds}"

    async def delete(self, paths):
        if isinstance(paths, str):
            paths = [paths]
        for path in paths:
            self._maybe_fail("delete", path)
        removed = 0
        for path in paths:
            if self.objects.pop(path, None) is not None:
                removed += 1
        return removed

    async def delete_prefix(self, prefix):
        return await self.delete(await self.list_by_prefix(prefix))

    async def ping(self):
        return [self.bucket]


# ---------------------------------------------------------------------------
# Mailbox
# ---------------------------------------------------------------------------

class FakeMailbox:
    """Records every Graph call; list_unread serves self.unread."""

    def __init__(self):
        self.unread: list[MailboxMessage] = []
        self.read: list[str] = []
        self.folders: dict[str, str] = {}
        self.moves: list[tuple[str, str]] = []
        self.sent: list[dict] = []
        self.fail_send = False
        self.fail_list = False
        self.fail_mark_read: set[str] = set()

    async def list_unread(self, senders):
        if self.fail_list:
            raise MailboxError("Simulated Graph outage", "network_error")
        allowed = {s.lower() for s in senders}
        return [
            m for m in self.unread
            if m.message_id not in self.read and m.sender_email in allowed
        ]

    async def mark_read(self, message_id):
        if message_id in self.fail_mark_read:
            raise MailboxError(f"Simulated mark-read failure for {message_id}")
        self.read.append(message_id)

    async def find_folder(self, display_name):
        return self.folders.get(display_name)

    async def create_folder(self, display_name):
        folder_id = f"folder-{display_name.lower()}"
        self.folders[display_name] = folder_id
        return folder_id

    async def move_message(self, message_id, folder_id):
        self.moves.append((message_id, folder_id))

    async def send_mail(self, to, subject, html, attachments=None, cc=None):
        if self.fail_send:
            raise MailboxError("Simulated sendMail failure", "http_error")
        self.sent.append({
            "to": to, "subject": subject, "html": html,
            "attachments": attachments or [], "cc": cc or [],
        })
        return f"request-{len(self.sent)}"


# ---------------------------------------------------------------------------
# Salesforce
# ---------------------------------------------------------------------------

class FakeCaseStore:
    """Serves self.records as the open checks; applies every update."""

    def __init__(self, records: Optional[list[CaseRecord]] = None):
        self.records = records or []
        self.updates: list[CaseRecordUpdate] = []
        self.reject_ids: set[str] = set()
        self.queried_refs: list[str] = []

    async def query_submitted_checks(self, customer_refs):
        self.queried_refs = list(customer_refs)
        wanted = {r.strip().upper() for r in customer_refs}
        return [r for r in self.records if (r.landlord_id or "").strip().upper() in wanted]

    async def bulk_update(self, updates):
        self.updates.extend(updates)
        failed = [u.record_id for u in updates if u.record_id in self.reject_ids]
        return BulkUpdateResult(success_count=len(updates) - len(failed), failed_record_ids=failed)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_message(
    message_id: str,
    filename: str,
    received_at: datetime,
    content: bytes = b"data",
    sender: str = "bulkdata@landregistry.gov.uk",
    extra_attachments: Optional[list[MailAttachment]] = None,
) -> MailboxMessage:
    attachments = list(extra_attachments or [])
    if filename:
        attachments.append(MailAttachment(filename=filename, content=content))
    return MailboxMessage(
        message_id=message_id,
        sender_email=sender,
        subject=f"HMLR response {message_id}",
        received_at=received_at,
        attachments=attachments,
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def pending_store():
    return FakeBlobStore("pending-hmlr-emails")


@pytest.fixture
def deeds_store():
    return FakeBlobStore("title-deeds")


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def case_store():
    return FakeCaseStore()
