"""
Pydantic models for outbound company batch submissions to HMLR.

Salesforce posts camelCase JSON; snake_case names are accepted as well.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CompanyLandlordRecord(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}

    record_id: str = Field(default="", alias="recordId")
    customer_ref: str = Field(default="", alias="customerRef")
    company_name: str = Field(default="", alias="companyName")
    forename: str = ""
    surname: str = ""
    address1: str = ""
    address2: str = ""
    address3: str = ""
    address4: str = ""
    address5: str = ""
    postcode: str = ""


class CompanyBatchRequest(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}

    batch_id: str = Field(default="", alias="batchId")
    batch_name: str = Field(default="", alias="batchName")
    records: List[CompanyLandlordRecord] = Field(default_factory=list)


class CompanyBatchResponse(BaseModel):
    success: bool
    batch_id: str = ""
    records_processed: int = 0
    email_message_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    recipient_email: Optional[str] = None
