"""
Pydantic models for HMLR responses and their reconciliation.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field


class EmailType(str, Enum):
    EXCEL_RESULTS = "ExcelResults"
    TITLE_DEEDS_ZIP = "TitleDeedsZip"


class CheckStatus(str, Enum):
    SUBMITTED = "Submitted to HMLR"
    MATCHED = "Matched"
    UNDER_REVIEW = "Under Review"
    NO_MATCH = "No Match"


class MatchType(str, Enum):
    PROPERTY_AND_PERSON = "Property and Person Match"
    PROPERTY_ONLY = "Property Only"
    NO_PROPERTY = "No Property Match"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_KEY_SAFE = re.compile(r"[A-Za-z0-9=-]")


def storage_key(message_id: str) -> str:
    """
    Object-path-safe form of a Graph message id.

    Any character outside [A-Za-z0-9=-] is written as "!XX" per UTF-8 byte,
    so distinct ids never share a key and "_" stays free as the pair separator.
    """
    return "".join(
        ch if _KEY_SAFE.fullmatch(ch) else "".join(f"!{b:02X}" for b in ch.encode("utf-8"))
        for ch in message_id
    )


class PendingMessage(BaseModel):
    """An ingested HMLR email whose attachment is waiting in transient storage."""
    message_id: str
    subject: Optional[str] = None
    sender: str = ""
    received_at: datetime
    email_type: EmailType
    attachment_name: str
    blob_path: str  # "{key}/{attachment_name}" in the pending bucket

    @property
    def key(self) -> str:
        return storage_key(self.message_id)


class ResponsePair(BaseModel):
    """One results spreadsheet and one title deeds archive, received close together."""
    excel: PendingMessage
    archive: PendingMessage
    declared_at: datetime = Field(default_factory=_utcnow)

    @computed_field  # type: ignore[misc]
    @property
    def pair_id(self) -> str:
        return f"{self.excel.key}_{self.archive.key}"

    @property
    def message_ids(self) -> List[str]:
        return [self.excel.message_id, self.archive.message_id]


class ResponseRow(BaseModel):
    """
    One row of the HMLR results spreadsheet.

    status and match_type are derived from the two match-result columns:
    an address mismatch always means no property match; an address match
    with a name match is a full match; anything else needs review.
    """
    row_number: int
    customer_ref: str
    forename: str = ""
    surname: str = ""
    company_name: str = ""
    address_lines: List[str] = Field(default_factory=list)
    postcode: str = ""
    address_match_result: str = ""
    title_number: str = ""
    name_match_result: str = ""

    @property
    def address_matched(self) -> bool:
        return self.address_match_result.strip().lower() == "match"

    @property
    def name_matched(self) -> bool:
        return self.name_match_result.strip().lower() == "match"

    @computed_field  # type: ignore[misc]
    @property
    def status(self) -> CheckStatus:
        if not self.address_matched:
            return CheckStatus.NO_MATCH
        if self.name_matched:
            return CheckStatus.MATCHED
        return CheckStatus.UNDER_REVIEW

    @computed_field  # type: ignore[misc]
    @property
    def match_type(self) -> MatchType:
        if not self.address_matched:
            return MatchType.NO_PROPERTY
        if self.name_matched:
            return MatchType.PROPERTY_AND_PERSON
        return MatchType.PROPERTY_ONLY


class CaseRecord(BaseModel):
    """A Land_Registry_Check__c record as returned by SOQL."""
    model_config = {"populate_by_name": True, "extra": "ignore"}

    id: str = Field(alias="Id")
    name: Optional[str] = Field(default=None, alias="Name")
    landlord_id: Optional[str] = Field(default=None, alias="Landlord_ID__c")
    postcode: Optional[str] = Field(default=None, alias="Property_Postcode__c")
    status: Optional[str] = Field(default=None, alias="Status__c")


class CaseRecordUpdate(BaseModel):
    """Field values written back to one check once its HMLR row is matched."""
    model_config = {"populate_by_name": True}

    record_id: str = Field(exclude=True)
    status: Optional[str] = Field(default=None, alias="Status__c")
    match_type: Optional[str] = Field(default=None, alias="Match_Type__c")
    title_number: Optional[str] = Field(default=None, alias="Title_Number__c")
    title_deed_url: Optional[str] = Field(default=None, alias="Title_Deed_URL__c")
    proprietor_name: Optional[str] = Field(default=None, alias="Title_Deed_Proprietor_Name__c")
    response_date: Optional[datetime] = Field(default=None, alias="HMLR_Response_Date__c")

    def to_salesforce(self) -> Dict[str, Any]:
        """Body for a PATCH on the sObject: Salesforce field names, nulls omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BulkUpdateResult(BaseModel):
    success_count: int = 0
    failed_record_ids: List[str] = Field(default_factory=list)


class ProcessingResult(BaseModel):
    """Summary of one reconciled pair, consumed once by the compliance notifier."""
    pair_id: str
    excel_message_id: str
    archive_message_id: str
    success: bool = False
    error_message: Optional[str] = None
    total_rows: int = 0
    matched_count: int = 0
    under_review_count: int = 0
    no_match_count: int = 0
    skipped_rows: int = 0
    unmatched_rows: int = 0
    updated_records: int = 0
    failed_record_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    email_received_at: Optional[datetime] = None
    processed_at: datetime = Field(default_factory=_utcnow)
