"""
Compliance team notification.

After each pair is reconciled a ProcessingResult is written to
results/ in the pending bucket. dispatch_pending() emails a summary for
each one and deletes it once the email has been accepted.
"""

import html
import logging
from typing import Optional

from landreg.models.hmlr import ProcessingResult
from landreg.services.inbox_watcher import RESULTS_PREFIX
from landreg.services.mailbox import GraphMailbox, MailboxError
from landreg.services.storage import BlobNotFound, BlobStore, StorageError

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    def __init__(self, message: str, error_code: str = "notification_failed"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


_STYLE = """
body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
.container { max-width: 600px; margin: 0 auto; padding: 20px; }
.header { background-color: #003087; color: white; padding: 20px; text-align: center; }
.content { padding: 20px; background-color: #f5f5f5; }
.stat-box { display: inline-block; text-align: center; padding: 15px; margin: 5px; background: white; min-width: 100px; }
.stat-number { font-size: 24px; font-weight: bold; }
.stat-label { font-size: 12px; color: #666; }
.matched { color: #28a745; }
.review { color: #ffc107; }
.nomatch { color: #dc3545; }
.error { background-color: #f8d7da; border: 1px solid #f5c6cb; padding: 10px; }
.footer { text-align: center; padding: 10px; font-size: 12px; color: #666; }
"""


def build_subject(result: ProcessingResult) -> str:
    if result.success:
        return f"HMLR Response Processed - {result.total_rows} Records"
    return "HMLR Response Processing Failed"


def _fmt(value, pattern: str = "%d %b %Y %H:%M") -> str:
    return value.strftime(pattern) if value else "unknown"


def _stat(number: int, label: str, css: str = "") -> str:
    return (
        "<div class='stat-box'>"
        f"<div class='stat-number {css}'>{number}</div>"
        f"<div class='stat-label'>{label}</div>"
        "</div>"
    )


def build_html_body(result: ProcessingResult) -> str:
    parts = [
        "<!DOCTYPE html><html><head><style>", _STYLE, "</style></head><body>",
        "<div class='container'>",
        "<div class='header'><h1>HMLR Response Processed</h1>",
        f"<p>Received: {_fmt(result.email_received_at)}</p></div>",
        "<div class='content'>",
    ]

    if result.success:
        parts.append("<div class='stats'>")
        parts.append(_stat(result.total_rows, "Total Records"))
        parts.append(_stat(result.matched_count, "Matched", "matched"))
        parts.append(_stat(result.under_review_count, "Under Review", "review"))
        parts.append(_stat(result.no_match_count, "No Match", "nomatch"))
        parts.append("</div>")

        if result.under_review_count:
            parts.append("<h3>Action Required</h3>")
            parts.append(
                f"<p>{result.under_review_count} record(s) require manual review. "
                "Please check Salesforce for records with status 'Under Review'.</p>"
            )
        if result.no_match_count:
            parts.append(
                f"<p>{result.no_match_count} record(s) had no property match. "
                "These may need further investigation.</p>"
            )
        if result.unmatched_rows:
            parts.append(
                f"<p>{result.unmatched_rows} row(s) had no open check in Salesforce and were not applied.</p>"
            )
        if result.skipped_rows:
            parts.append(
                "<div class='error'>"
                f"<strong>Warning:</strong> {result.skipped_rows} row(s) were skipped due to errors."
                "<ul>" + "".join(f"<li>{html.escape(e)}</li>" for e in result.errors) + "</ul>"
                "</div>"
            )
        if result.failed_record_ids:
            parts.append(
                "<div class='error'>"
                f"<strong>Warning:</strong> Salesforce rejected {len(result.failed_record_ids)} update(s): "
                f"{html.escape(', '.join(result.failed_record_ids))}"
                "</div>"
            )
    else:
        parts.append(
            "<div class='error'><h3>Processing Failed</h3>"
            f"<p>{html.escape(result.error_message or 'Unknown error')}</p></div>"
        )

    parts.append("</div>")
    parts.append(
        "<div class='footer'>"
        f"<p>Processed at: {_fmt(result.processed_at, '%d %b %Y %H:%M:%S')} UTC</p>"
        "<p>This is an automated message from the Land Registry Compliance System.</p>"
        "</div></div></body></html>"
    )
    return "".join(parts)


class ComplianceNotifier:
    def __init__(
        self,
        mailbox: GraphMailbox,
        pending_store: BlobStore,
        recipients: list[str],
        cc: Optional[list[str]] = None,
    ):
        self.mailbox = mailbox
        self.pending_store = pending_store
        self.recipients = recipients
        self.cc = cc or []

    async def send(self, result: ProcessingResult) -> Optional[str]:
        """
        Email the summary for one result.

        Raises:
            NotificationError: no recipients configured, or the send failed
        """
        if not self.recipients:
            raise NotificationError("NOTIFY_RECIPIENTS is not configured", "not_configured")

        subject = build_subject(result)
        try:
            message_id = await self.mailbox.send_mail(
                to=self.recipients,
                subject=subject,
                html=build_html_body(result),
                cc=self.cc,
            )
        except MailboxError as e:
            raise NotificationError(f"Failed to send notification: {e.message}")

        logger.info(f"Sent '{subject}' to {', '.join(self.recipients)}")
        return message_id

    async def dispatch_pending(self) -> int:
        """
        Send one email per stored result, deleting each result once sent.
        A result whose email fails stays in place for the next run.

        Returns:
            Number of notifications sent.
        """
        sent = 0
        for path in sorted(await self.pending_store.list_by_prefix(RESULTS_PREFIX)):
            try:
                result = ProcessingResult.model_validate(await self.pending_store.get_json(path))
            except BlobNotFound:
                continue
            except ValueError as e:
                logger.error(f"Discarding unreadable result {path}: {e}")
                await self.pending_store.delete(path)
                continue

            try:
                await self.send(result)
            except NotificationError as e:
                logger.error(f"Notification for {path} not sent: {e.message}")
                continue

            try:
                await self.pending_store.delete(path)
            except StorageError as e:
                logger.error(f"Sent notification but could not delete {path}: {e.message}")
            sent += 1
        return sent
