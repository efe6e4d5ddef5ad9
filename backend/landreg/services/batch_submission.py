"""
Outbound company landlord batches to HMLR.

Salesforce posts a batch of company landlord records; they are written to
a workbook in HMLR's input layout and emailed to the HMLR data services
address from the shared mailbox. HMLR's reply comes back through the
inbox watcher.

Public API:
  generate_hmlr_request_workbook(request) -> bytes
  BatchSubmitter.submit(request)          -> CompanyBatchResponse
"""

import html
import io
import logging
import re
from datetime import datetime, timezone
from typing import Callable

import openpyxl
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from landreg.models.batch import CompanyBatchRequest, CompanyBatchResponse
from landreg.services.mailbox import GraphMailbox

logger = logging.getLogger(__name__)

# HMLR bulk search input layout; the results spreadsheet echoes these columns.
REQUEST_COLUMNS = [
    "CustomerRef",
    "Forename",
    "Surname",
    "Company Name Supplied",
    "Input Address one",
    "Input Address two",
    "Input Address three",
    "Input Address four",
    "Input Address five",
    "Input Postcode",
]

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_HEADER_FONT = Font(bold=True, size=11)
_HEADER_FILL = PatternFill(start_color="D3D3D3", end_color="D3D3D3", fill_type="solid")
_MIN_COLUMN_WIDTH = 12
_MAX_COLUMN_WIDTH = 50


def generate_hmlr_request_workbook(request: CompanyBatchRequest) -> bytes:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Land Registry Check"

    ws.append(REQUEST_COLUMNS)
    for col_idx in range(1, len(REQUEST_COLUMNS) + 1):
        cell = ws.cell(row=1, column=col_idx)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL

    for record in request.records:
        ws.append([
            record.customer_ref,
            record.forename,
            record.surname,
            record.company_name,
            record.address1,
            record.address2,
            record.address3,
            record.address4,
            record.address5,
            record.postcode,
        ])

    # openpyxl has no auto-fit; size to the longest value in each column
    for col_idx, column in enumerate(ws.iter_cols(values_only=True), start=1):
        longest = max(len(str(v)) for v in column if v is not None)
        width = min(max(longest + 2, _MIN_COLUMN_WIDTH), _MAX_COLUMN_WIDTH)
        ws.column_dimensions[get_column_letter(col_idx)].width = width

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def build_batch_email_body(request: CompanyBatchRequest, sent_at: datetime) -> str:
    return (
        "<!DOCTYPE html><html><head><style>"
        "body { font-family: Arial, sans-serif; } .footer { color: #666; font-size: 12px; margin-top: 30px; }"
        "</style></head><body>"
        "<h2>Land Registry Ownership Verification Request</h2>"
        f"<p><strong>Batch Reference:</strong> {html.escape(request.batch_name)}</p>"
        f"<p><strong>Number of Records:</strong> {len(request.records)}</p>"
        f"<p><strong>Submission Date:</strong> {sent_at.strftime('%d %B %Y %H:%M')} UTC</p>"
        "<p>Please find attached an Excel file containing company landlord records for ownership verification.</p>"
        "<p>Please process these records and return the results to the sender email address.</p>"
        "<div class='footer'><p>This is an automated message from the Land Registry Compliance System.</p></div>"
        "</body></html>"
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchSubmitter:
    def __init__(
        self,
        mailbox: GraphMailbox,
        hmlr_recipient: str,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.mailbox = mailbox
        self.hmlr_recipient = hmlr_recipient
        self._clock = clock

    async def submit(self, request: CompanyBatchRequest) -> CompanyBatchResponse:
        """
        Generate the request workbook and email it to HMLR.

        Raises:
            ValueError: the batch has no records or no recipient is configured
            MailboxError: the email could not be sent
        """
        if not request.records:
            raise ValueError("Invalid request: no records provided")
        if not self.hmlr_recipient:
            raise ValueError("HMLR_RECIPIENT_EMAIL is not configured")

        logger.info(f"Processing batch {request.batch_name} with {len(request.records)} records")
        workbook = generate_hmlr_request_workbook(request)

        sent_at = self._clock()
        subject = f"TDS Land Registry Check - {request.batch_name} - {sent_at:%Y-%m-%d}"
        safe_batch = re.sub(r"[^\w\-.]", "_", request.batch_name)
        filename = f"TDS_LandRegCheck_{safe_batch}_{sent_at:%Y%m%d_%H%M%S}.xlsx"

        message_id = await self.mailbox.send_mail(
            to=[self.hmlr_recipient],
            subject=subject,
            html=build_batch_email_body(request, sent_at),
            attachments=[(filename, workbook, XLSX_CONTENT_TYPE)],
        )
        logger.info(f"Batch {request.batch_name} sent to {self.hmlr_recipient} ({len(workbook)} bytes)")

        return CompanyBatchResponse(
            success=True,
            batch_id=request.batch_id,
            records_processed=len(request.records),
            email_message_id=message_id,
            sent_at=sent_at,
            recipient_email=self.hmlr_recipient,
        )
