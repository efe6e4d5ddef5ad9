"""
Provider-agnostic mailbox message model.

The Graph adapter maps raw message JSON to these models; the inbox watcher
only ever sees MailboxMessage.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class MailAttachment(BaseModel):
    """A single file attachment, already decoded to raw bytes."""

    filename: str
    content: bytes          # raw bytes; the adapter base64-decodes
    content_type: str = "application/octet-stream"


class MailboxMessage(BaseModel):
    message_id: str
    sender_email: str
    subject: Optional[str] = None
    received_at: datetime
    attachments: list[MailAttachment] = []
