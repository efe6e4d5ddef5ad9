"""
HMLR response reconciler.

Turns one declared ResponsePair into Salesforce updates:

  1. claim the pair (claims/{pair_id}.json, create-if-absent with a lease)
  2. parse the results spreadsheet and extract the title deeds archive
  3. validate each row; a bad row is recorded and skipped
  4. archive each title register that belongs to a row, build its viewer
     URL and extract the proprietor name
  5. match rows to open checks by CustomerRef, breaking ties on postcode
  6. bulk update the matched checks
  7. store a ProcessingResult for the compliance notifier and mark the
     claim done
  8. delete the transient blobs and file both emails in Processed / Failed

Steps 2-6 run under a deadline. Any exception there fails the whole pair;
steps 7 and 8 run either way. A pair whose claim is done is never
reconciled again; redelivery only retries an unfinished cleanup.
"""

import asyncio
import json
import logging
import os
import socket
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import quote

from landreg.models.hmlr import (
    CaseRecord,
    CaseRecordUpdate,
    CheckStatus,
    ProcessingResult,
    ResponsePair,
    ResponseRow,
)
from landreg.services.archive import extract_title_documents
from landreg.services.case_store import SalesforceCaseStore
from landreg.services.inbox_watcher import CLAIMS_PREFIX, PAIRS_PREFIX, RESULTS_PREFIX, pair_path
from landreg.services.mail_folders import MailFolderService
from landreg.services.proprietor_parser import ProprietorNameExtractor
from landreg.services.response_parser import parse_response_workbook, validate_title_number
from landreg.services.storage import BlobNotFound, BlobStore, StorageError

logger = logging.getLogger(__name__)

# Claim state written once a result is stored; a done claim never expires.
CLAIM_DONE = "done"


class PairNotFound(Exception):
    """The pair declaration is gone: it was already processed and cleaned up."""
    def __init__(self, pair_id: str):
        super().__init__(f"Pair {pair_id} is not declared")
        self.error_code = "pair_not_found"
        self.message = str(self)
        self.pair_id = pair_id


class PairAlreadyProcessed(PairNotFound):
    """The pair was reconciled earlier; only its transient cleanup is outstanding."""
    def __init__(self, pair_id: str):
        super().__init__(pair_id)
        self.error_code = "pair_processed"
        self.message = f"Pair {pair_id} was already processed"


class PairAlreadyClaimed(Exception):
    """Another worker holds a live claim on the pair."""
    def __init__(self, pair_id: str, owner: str):
        super().__init__(f"Pair {pair_id} is already being processed by {owner}")
        self.error_code = "pair_claimed"
        self.message = str(self)
        self.pair_id = pair_id
        self.owner = owner


@dataclass
class PendingUpdate:
    """A validated row on its way to becoming a CaseRecordUpdate."""
    row: ResponseRow
    title_number: str
    title_deed_url: Optional[str] = None
    proprietor_name: Optional[str] = None


def normalize_postcode(postcode: Optional[str]) -> str:
    return (postcode or "").replace(" ", "").upper()


def normalize_reference(reference: Optional[str]) -> str:
    return (reference or "").strip().upper()


def claim_path(pair_id: str) -> str:
    return f"{CLAIMS_PREFIX}/{pair_id}.json"


def title_deed_path(title_number: str) -> str:
    return f"{title_number}/{title_number}.pdf"


def build_title_deed_url(base_url: str, title_number: str, access_key: str = "") -> str:
    url = f"{base_url.rstrip('/')}/{quote(title_number)}"
    if access_key:
        url += f"?code={quote(access_key)}"
    return url


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_bytes(data: dict) -> bytes:
    return json.dumps(data).encode("utf-8")


class ResponseReconciler:
    def __init__(
        self,
        pending_store: BlobStore,
        deeds_store: BlobStore,
        case_store: SalesforceCaseStore,
        folders: MailFolderService,
        name_extractor: Optional[ProprietorNameExtractor] = None,
        title_deed_base_url: str = "",
        title_deed_access_key: str = "",
        strict_postcode_match: bool = False,
        timeout_seconds: float = 180,
        claim_lease: timedelta = timedelta(minutes=15),
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.pending_store = pending_store
        self.deeds_store = deeds_store
        self.case_store = case_store
        self.folders = folders
        self.name_extractor = name_extractor or ProprietorNameExtractor()
        self.title_deed_base_url = title_deed_base_url
        self.title_deed_access_key = title_deed_access_key
        self.strict_postcode_match = strict_postcode_match
        self.timeout_seconds = timeout_seconds
        self.claim_lease = claim_lease
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}"
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def reconcile(self, pair: ResponsePair) -> ProcessingResult:
        """
        Process one pair end to end and return its result.

        Raises:
            PairNotFound: the declaration no longer exists (redelivery after
                          cleanup); nothing is touched
            PairAlreadyProcessed: the pair already has a result; the cleanup
                                  is retried and nothing else is touched
            PairAlreadyClaimed: another worker holds a live claim
        """
        pair_id = pair.pair_id
        if not await self.pending_store.exists(pair_path(pair_id)):
            raise PairNotFound(pair_id)
        try:
            await self._claim(pair_id)
        except PairAlreadyProcessed:
            logger.info(f"Pair {pair_id} already processed; retrying cleanup")
            await self.cleanup(pair)
            raise

        logger.info(f"Processing pair {pair_id}")
        result = ProcessingResult(
            pair_id=pair_id,
            excel_message_id=pair.excel.message_id,
            archive_message_id=pair.archive.message_id,
            email_received_at=pair.excel.received_at,
        )

        try:
            await asyncio.wait_for(self._process(pair, result), timeout=self.timeout_seconds)
            result.success = True
        except asyncio.TimeoutError:
            result.success = False
            result.error_message = f"Processing timed out after {self.timeout_seconds:g}s"
            logger.error(f"Pair {pair_id}: {result.error_message}")
        except Exception as e:
            result.success = False
            result.error_message = getattr(e, "message", None) or str(e)
            logger.exception(f"Pair {pair_id} failed: {result.error_message}")

        result.processed_at = self._clock()
        await self._store_result(result, pair)
        await self._mark_done(pair_id)
        await self.cleanup(pair)
        await self.folders.move_pair(pair.excel.message_id, pair.archive.message_id, result.success)

        logger.info(
            f"Pair {pair_id} done: success={result.success}, rows={result.total_rows}, "
            f"updated={result.updated_records}, skipped={result.skipped_rows}, "
            f"unmatched={result.unmatched_rows}"
        )
        return result

    async def process_pending_pairs(self) -> list[ProcessingResult]:
        """Reconcile every declared pair not currently claimed elsewhere."""
        paths = await self.pending_store.list_by_prefix(PAIRS_PREFIX)
        results = []
        for path in sorted(paths):
            try:
                pair = ResponsePair.model_validate(await self.pending_store.get_json(path))
            except BlobNotFound:
                continue
            except (StorageError, ValueError) as e:
                logger.error(f"Unreadable pair declaration {path}: {e}")
                continue

            try:
                results.append(await self.reconcile(pair))
            except (PairNotFound, PairAlreadyClaimed) as e:
                logger.info(e.message)
        return results

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def _claim(self, pair_id: str) -> None:
        path = claim_path(pair_id)
        now = self._clock()
        body = {"owner": self.owner, "claimed_at": now.isoformat()}

        if await self.pending_store.put_if_absent(path, _json_bytes(body)):
            return

        try:
            existing = await self.pending_store.get_json(path)
            if existing.get("state") == CLAIM_DONE:
                raise PairAlreadyProcessed(pair_id)
            claimed_at = datetime.fromisoformat(existing["claimed_at"])
            holder = existing.get("owner", "unknown")
        except BlobNotFound:
            # Released between our create and read; try once more.
            if await self.pending_store.put_if_absent(path, _json_bytes(body)):
                return
            raise PairAlreadyClaimed(pair_id, "unknown")
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Claim on {pair_id} is unreadable ({e}); taking it over")
            claimed_at, holder = now - self.claim_lease, "unknown"

        if now - claimed_at < self.claim_lease:
            raise PairAlreadyClaimed(pair_id, holder)

        logger.warning(f"Claim on {pair_id} by {holder} expired; taking it over")
        await self.pending_store.put_json(path, body)

    async def _mark_done(self, pair_id: str) -> None:
        body = {"owner": self.owner, "claimed_at": self._clock().isoformat(), "state": CLAIM_DONE}
        try:
            await self.pending_store.put_json(claim_path(pair_id), body)
        except StorageError as e:
            logger.error(f"Could not mark pair {pair_id} as processed: {e.message}")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process(self, pair: ResponsePair, result: ProcessingResult) -> None:
        excel_bytes = await self.pending_store.get(pair.excel.blob_path)
        rows = parse_response_workbook(excel_bytes, pair.excel.attachment_name)
        result.total_rows = len(rows)

        archive_bytes = await self.pending_store.get(pair.archive.blob_path)
        documents = extract_title_documents(archive_bytes)

        pending = self._validate_rows(rows, result)
        for update in pending:
            if update.row.status == CheckStatus.MATCHED:
                result.matched_count += 1
            elif update.row.status == CheckStatus.UNDER_REVIEW:
                result.under_review_count += 1
            else:
                result.no_match_count += 1

        await self._attach_title_deeds(pending, documents, result)

        candidates = await self.case_store.query_submitted_checks(
            [u.row.customer_ref for u in pending]
        )
        updates = self.match_rows(pending, candidates, pair.excel.received_at, result)

        if not updates:
            logger.warning(f"Pair {pair.pair_id}: no rows matched an open check")
            return

        bulk = await self.case_store.bulk_update(updates)
        result.updated_records = bulk.success_count
        result.failed_record_ids = bulk.failed_record_ids
        if bulk.failed_record_ids:
            logger.warning(
                f"Pair {pair.pair_id}: {len(bulk.failed_record_ids)} update(s) rejected: {bulk.failed_record_ids}"
            )

    def _validate_rows(self, rows: list[ResponseRow], result: ProcessingResult) -> list[PendingUpdate]:
        pending = []
        for row in rows:
            try:
                title = validate_title_number(row.title_number)
            except ValueError as e:
                result.skipped_rows += 1
                result.errors.append(f"Row {row.row_number} ({row.customer_ref}): {e}")
                logger.warning(f"Row {row.row_number} skipped: {e}")
                continue
            pending.append(PendingUpdate(row=row, title_number=title))
        return pending

    async def _attach_title_deeds(
        self,
        pending: list[PendingUpdate],
        documents: dict[str, bytes],
        result: ProcessingResult,
    ) -> None:
        by_title: dict[str, list[PendingUpdate]] = defaultdict(list)
        for update in pending:
            if update.title_number:
                by_title[update.title_number].append(update)

        for title_number, pdf_bytes in documents.items():
            owners = by_title.get(title_number)
            if not owners:
                logger.info(f"Title deed {title_number} has no matching row")
                continue

            url = None
            try:
                await self.deeds_store.put(title_deed_path(title_number), pdf_bytes, "application/pdf")
                url = build_title_deed_url(
                    self.title_deed_base_url, title_number, self.title_deed_access_key
                )
            except StorageError as e:
                result.errors.append(f"Title deed {title_number} not archived: {e.message}")
                logger.error(f"Failed to archive title deed {title_number}: {e.message}")

            # pdfplumber is blocking
            name = await asyncio.to_thread(self.name_extractor.extract, pdf_bytes, title_number)

            for update in owners:
                update.title_deed_url = url
                update.proprietor_name = name

    def match_rows(
        self,
        pending: list[PendingUpdate],
        candidates: list[CaseRecord],
        response_date: datetime,
        result: ProcessingResult,
    ) -> list[CaseRecordUpdate]:
        """
        Pick one open check per row. A check is removed from the pool as
        soon as it is matched so no check is updated twice.
        """
        pool: dict[str, list[CaseRecord]] = defaultdict(list)
        for record in candidates:
            pool[normalize_reference(record.landlord_id)].append(record)

        updates = []
        for update in pending:
            row = update.row
            group = pool.get(normalize_reference(row.customer_ref), [])
            record = self._select_candidate(row, group, result)
            if record is None:
                continue
            group.remove(record)

            updates.append(CaseRecordUpdate(
                record_id=record.id,
                status=row.status.value,
                match_type=row.match_type.value,
                title_number=update.title_number or None,
                title_deed_url=update.title_deed_url,
                proprietor_name=update.proprietor_name,
                response_date=response_date,
            ))
            logger.info(
                f"Matched {row.customer_ref} to {record.id}: {row.status.value}, title {update.title_number or '-'}"
            )
        return updates

    def _select_candidate(
        self,
        row: ResponseRow,
        group: list[CaseRecord],
        result: ProcessingResult,
    ) -> Optional[CaseRecord]:
        if not group:
            result.unmatched_rows += 1
            logger.warning(f"No open check for CustomerRef {row.customer_ref!r} (row {row.row_number})")
            return None
        if len(group) == 1:
            return group[0]

        postcode = normalize_postcode(row.postcode)
        if postcode:
            for record in group:
                if normalize_postcode(record.postcode) == postcode:
                    return record

        if self.strict_postcode_match:
            result.skipped_rows += 1
            result.errors.append(
                f"Row {row.row_number} ({row.customer_ref}): {len(group)} open checks and "
                f"none with postcode {row.postcode!r}; left for manual review"
            )
            logger.warning(f"Ambiguous CustomerRef {row.customer_ref}; skipped (strict postcode match)")
            return None

        logger.warning(
            f"{len(group)} open checks for CustomerRef {row.customer_ref} and none with postcode "
            f"{row.postcode!r}; using {group[0].id}"
        )
        return group[0]

    # ------------------------------------------------------------------
    # Result and cleanup
    # ------------------------------------------------------------------

    async def _store_result(self, result: ProcessingResult, pair: ResponsePair) -> None:
        stamp = result.processed_at.strftime("%Y%m%d_%H%M%S")
        path = f"{RESULTS_PREFIX}/{pair.excel.key}_{stamp}.json"
        try:
            await self.pending_store.put_json(path, result.model_dump(mode="json"))
        except StorageError as e:
            logger.error(f"Could not store result for pair {pair.pair_id}: {e.message}")

    async def cleanup(self, pair: ResponsePair) -> None:
        """
        Delete both messages' transient blobs, then the pair declaration and
        claim. If the message blobs cannot be removed the declaration and the
        done claim stay, so the messages are not paired again and the next
        drain retries only this cleanup.
        """
        try:
            for key in (pair.excel.key, pair.archive.key):
                await self.pending_store.delete_prefix(key)
        except StorageError as e:
            logger.error(f"Cleanup of pair {pair.pair_id} incomplete: {e.message}")
            return

        try:
            await self.pending_store.delete([pair_path(pair.pair_id), claim_path(pair.pair_id)])
        except StorageError as e:
            logger.error(f"Could not remove declaration of pair {pair.pair_id}: {e.message}")
