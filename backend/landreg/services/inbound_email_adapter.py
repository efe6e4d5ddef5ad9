"""
Inbound email adapter.

Normalizes Microsoft Graph message JSON into the provider-agnostic
MailboxMessage model so the inbox watcher never sees Graph field names.

Graph message field assumptions
-------------------------------
Messages are requested with $expand=attachments and carry:

  id                 str   Graph message id
  subject            str
  from               obj   {"emailAddress": {"address": ..., "name": ...}}
  receivedDateTime   str   ISO 8601, UTC ("2025-01-31T09:15:00Z")
  attachments        list  each fileAttachment has:
                               @odata.type   "#microsoft.graph.fileAttachment"
                               name          original filename
                               contentType   MIME type
                               contentBytes  base64-encoded file bytes

Item and reference attachments (forwarded messages, OneDrive links) carry
no contentBytes and are dropped here.
"""

import base64
import binascii
import logging

from landreg.models.mailbox import MailAttachment, MailboxMessage

logger = logging.getLogger(__name__)

_FILE_ATTACHMENT = "#microsoft.graph.fileAttachment"


def _normalize_graph_attachment(att: dict, message_id: str) -> MailAttachment | None:
    odata_type = att.get("@odata.type", _FILE_ATTACHMENT)
    if odata_type != _FILE_ATTACHMENT or "contentBytes" not in att:
        logger.debug(f"Message {message_id}: skipping non-file attachment {att.get('name')!r}")
        return None

    try:
        content = base64.b64decode(att.get("contentBytes") or "", validate=True)
    except (binascii.Error, ValueError):
        logger.warning(f"Message {message_id}: attachment {att.get('name')!r} is not valid base64, skipped")
        return None

    return MailAttachment(
        filename=att.get("name") or "attachment",
        content=content,
        content_type=att.get("contentType") or "application/octet-stream",
    )


def normalize_graph_message(payload: dict) -> MailboxMessage:
    """Convert one Graph message (with expanded attachments) to MailboxMessage."""
    message_id = payload.get("id", "")
    sender = ((payload.get("from") or {}).get("emailAddress") or {}).get("address", "")

    attachments: list[MailAttachment] = []
    for att in payload.get("attachments") or []:
        normalized = _normalize_graph_attachment(att, message_id)
        if normalized is not None:
            attachments.append(normalized)

    return MailboxMessage(
        message_id=message_id,
        sender_email=sender.lower(),
        subject=payload.get("subject"),
        received_at=payload.get("receivedDateTime"),
        attachments=attachments,
    )
