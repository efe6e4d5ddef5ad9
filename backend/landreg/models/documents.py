"""
Pydantic models for title deed documents stored against Salesforce checks.

Documents live in the title-deeds bucket at {batch_id}/{record_id}/{title}.pdf.
Salesforce posts camelCase JSON; snake_case names are accepted as well.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class DocumentUploadRequest(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}

    batch_id: str = Field(default="", alias="batchId")
    record_id: str = Field(default="", alias="recordId")
    title_number: str = Field(default="", alias="titleNumber")
    document_base64: str = Field(default="", alias="documentBase64")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    content_type: str = Field(default="application/pdf", alias="contentType")


class DocumentUploadResponse(BaseModel):
    success: bool
    blob_path: str
    file_size_bytes: int
    uploaded_at: datetime


class DocumentAccessRequest(BaseModel):
    """Either blob_path, or batch_id + record_id + title_number."""
    model_config = {"populate_by_name": True, "extra": "ignore"}

    blob_path: Optional[str] = Field(default=None, alias="blobPath")
    batch_id: Optional[str] = Field(default=None, alias="batchId")
    record_id: Optional[str] = Field(default=None, alias="recordId")
    title_number: Optional[str] = Field(default=None, alias="titleNumber")
    expiry_minutes: int = Field(default=60, alias="expiryMinutes")


class DocumentAccessResponse(BaseModel):
    success: bool
    sas_url: str
    blob_path: str
    expires_at: datetime


class DocumentInfo(BaseModel):
    blob_path: str
    file_name: str
    file_size_bytes: int = 0
    uploaded_at: Optional[datetime] = None
    content_type: str = "application/pdf"
    original_file_name: Optional[str] = None


class DocumentListResponse(BaseModel):
    success: bool = True
    documents: List[DocumentInfo] = Field(default_factory=list)
