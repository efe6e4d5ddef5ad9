"""
HMLR inbox watcher.

HMLR answers a submission with two separate emails: a results spreadsheet
and a ZIP of title register PDFs. They carry no shared identifier, so
they are paired by arrival time.

Each cycle:
  1. list unread messages from the HMLR sender addresses
  2. classify each by its first recognised attachment; persist the
     attachment and a metadata record to the pending bucket; mark it read
  3. rescan every pending metadata record and declare pairs for unclaimed
     spreadsheet/archive messages received within the pairing window

Pending bucket layout:
  {key}/{attachment}          attachment bytes
  {key}/metadata.json         PendingMessage
  pairs/{pair_id}.json        ResponsePair declaration
  claims/{pair_id}.json       reconciliation claim (see reconciler)
  results/{excel}_{ts}.json   ProcessingResult awaiting notification
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from landreg.models.hmlr import EmailType, PendingMessage, ResponsePair, storage_key
from landreg.models.mailbox import MailboxMessage
from landreg.services.mailbox import GraphMailbox, MailboxError
from landreg.services.storage import BlobStore, StorageError

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
PAIRS_PREFIX = "pairs"
CLAIMS_PREFIX = "claims"
RESULTS_PREFIX = "results"
RESERVED_PREFIXES = {PAIRS_PREFIX, CLAIMS_PREFIX, RESULTS_PREFIX}

_ATTACHMENT_TYPES = {
    ".rpmsg": EmailType.EXCEL_RESULTS,
    ".xlsx": EmailType.EXCEL_RESULTS,
    ".xls": EmailType.EXCEL_RESULTS,
    ".zip": EmailType.TITLE_DEEDS_ZIP,
}


@dataclass
class InboxCycleResult:
    ingested: int = 0
    skipped: int = 0
    failed: int = 0
    pairs: list[ResponsePair] = field(default_factory=list)


def pair_path(pair_id: str) -> str:
    return f"{PAIRS_PREFIX}/{pair_id}.json"


def classify_message(message: MailboxMessage) -> Optional[tuple[EmailType, int]]:
    """
    Type of the message and index of the attachment that decided it.
    The first attachment with a recognised extension wins.
    """
    for index, attachment in enumerate(message.attachments):
        lower = attachment.filename.lower()
        for ext, email_type in _ATTACHMENT_TYPES.items():
            if lower.endswith(ext):
                return email_type, index
    return None


def pair_pending_messages(
    messages: list[PendingMessage],
    window: timedelta,
    claimed_ids: Optional[set[str]] = None,
) -> list[ResponsePair]:
    """
    Pair each unclaimed spreadsheet with the first unclaimed archive received
    within window of it (inclusive). Messages are scanned oldest first.

    A message is used by at most one pair, including pairs declared earlier
    (claimed_ids).
    """
    claimed = set(claimed_ids or ())
    ordered = sorted(messages, key=lambda m: (m.received_at, m.message_id))
    spreadsheets = [m for m in ordered if m.email_type == EmailType.EXCEL_RESULTS]
    archives = [m for m in ordered if m.email_type == EmailType.TITLE_DEEDS_ZIP]

    pairs = []
    for excel in spreadsheets:
        if excel.message_id in claimed:
            continue
        for archive in archives:
            if archive.message_id in claimed:
                continue
            if abs(excel.received_at - archive.received_at) <= window:
                pairs.append(ResponsePair(excel=excel, archive=archive))
                claimed.update((excel.message_id, archive.message_id))
                break
    return pairs


class InboxWatcher:
    def __init__(
        self,
        mailbox: GraphMailbox,
        pending_store: BlobStore,
        senders: list[str],
        pairing_window: timedelta = timedelta(hours=12),
    ):
        self.mailbox = mailbox
        self.pending_store = pending_store
        self.senders = senders
        self.pairing_window = pairing_window

    async def run_cycle(self) -> InboxCycleResult:
        """
        Ingest new messages, then declare any complete pairs.

        Mailbox listing errors propagate and abort the cycle; the next timer
        tick is the retry. A message that fails to persist is left unread so
        it is picked up again.
        """
        result = InboxCycleResult()
        messages = await self.mailbox.list_unread(self.senders)

        for message in messages:
            try:
                pending = await self.ingest(message)
            except (StorageError, MailboxError, ValueError) as e:
                result.failed += 1
                logger.error(f"Failed to ingest message {message.message_id}: {e}")
                continue
            if pending is None:
                result.skipped += 1
            else:
                result.ingested += 1

        result.pairs = await self.find_pairs()
        logger.info(
            f"Inbox cycle: {result.ingested} ingested, {result.skipped} skipped, "
            f"{result.failed} failed, {len(result.pairs)} new pair(s)"
        )
        return result

    async def ingest(self, message: MailboxMessage) -> Optional[PendingMessage]:
        """
        Persist a message's attachment and metadata, then mark it read.

        Returns None (message left unread) when no attachment is recognised.
        """
        classified = classify_message(message)
        if classified is None:
            names = [a.filename for a in message.attachments]
            logger.warning(
                f"Message {message.message_id} ({message.subject!r}) has no recognised attachment: {names}"
            )
            return None

        email_type, index = classified
        attachment = message.attachments[index]
        key = storage_key(message.message_id)
        safe_name = re.sub(r"[^\w\-.]", "_", attachment.filename)
        blob_path = f"{key}/{safe_name}"

        await self.pending_store.put(blob_path, attachment.content, attachment.content_type)

        pending = PendingMessage(
            message_id=message.message_id,
            subject=message.subject,
            sender=message.sender_email,
            received_at=message.received_at,
            email_type=email_type,
            attachment_name=attachment.filename,
            blob_path=blob_path,
        )
        await self.pending_store.put_json(f"{key}/{METADATA_FILE}", pending.model_dump(mode="json"))
        await self.mailbox.mark_read(message.message_id)

        logger.info(
            f"Stored {email_type.value} message {message.message_id} "
            f"({attachment.filename}, {len(attachment.content)} bytes)"
        )
        return pending

    async def load_pending_messages(self) -> tuple[list[PendingMessage], list[ResponsePair]]:
        """All pending metadata records and all existing pair declarations."""
        paths = await self.pending_store.list_by_prefix("")

        messages: list[PendingMessage] = []
        declared: list[ResponsePair] = []
        for path in paths:
            top = path.split("/", 1)[0]
            try:
                if top == PAIRS_PREFIX and path.endswith(".json"):
                    declared.append(ResponsePair.model_validate(await self.pending_store.get_json(path)))
                elif top not in RESERVED_PREFIXES and path.endswith(f"/{METADATA_FILE}"):
                    messages.append(PendingMessage.model_validate(await self.pending_store.get_json(path)))
            except (StorageError, ValueError) as e:
                logger.warning(f"Ignoring unreadable pending record {path}: {e}")
        return messages, declared

    async def find_pairs(self) -> list[ResponsePair]:
        """Declare pairs for unclaimed pending messages; returns only new declarations."""
        messages, declared = await self.load_pending_messages()
        claimed = {mid for pair in declared for mid in pair.message_ids}

        new_pairs = []
        for pair in pair_pending_messages(messages, self.pairing_window, claimed):
            body = pair.model_dump_json().encode("utf-8")
            created = await self.pending_store.put_if_absent(pair_path(pair.pair_id), body)
            if not created:
                logger.info(f"Pair {pair.pair_id} already declared")
                continue
            logger.info(
                f"Declared pair {pair.pair_id}: {pair.excel.attachment_name} + {pair.archive.attachment_name}"
            )
            new_pairs.append(pair)
        return new_pairs
