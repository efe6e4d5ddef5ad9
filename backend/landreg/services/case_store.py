"""
Salesforce REST client for Land_Registry_Check__c records.

Public API:
  SalesforceCaseStore.query(soql)                       -> list[dict]
  SalesforceCaseStore.query_submitted_checks(refs)      -> list[CaseRecord]
  SalesforceCaseStore.bulk_update(updates)              -> BulkUpdateResult
"""

import logging
from typing import Optional

import httpx

from landreg.models.hmlr import BulkUpdateResult, CaseRecord, CaseRecordUpdate, CheckStatus
from landreg.services.oauth_session import AuthenticationError, OAuthSession

logger = logging.getLogger(__name__)

CHECK_OBJECT = "Land_Registry_Check__c"

# Composite API limit on subrequests per call.
COMPOSITE_BATCH_SIZE = 25

# Keeps the IN (...) clause well inside the SOQL length limit.
QUERY_CHUNK_SIZE = 200


class CaseStoreError(Exception):
    def __init__(self, message: str, error_code: str = "case_store_error"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def soql_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def chunked(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class SalesforceCaseStore:
    def __init__(
        self,
        http: httpx.AsyncClient,
        session: OAuthSession,
        api_version: str = "v59.0",
        instance_url: Optional[str] = None,
    ):
        self._http = http
        self._session = session
        self.api_version = api_version
        self._fallback_instance_url = (instance_url or "").rstrip("/")

    async def _headers(self) -> dict:
        try:
            token = await self._session.access_token()
        except AuthenticationError as e:
            raise CaseStoreError(f"Salesforce token unavailable: {e.message}", "auth_failed")
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _instance_url(self) -> str:
        url = self._session.instance_url or self._fallback_instance_url
        if not url:
            raise CaseStoreError("Salesforce instance URL is unknown", "not_configured")
        return url

    def _check_response(self, response: httpx.Response, action: str) -> None:
        if response.status_code == 401:
            self._session.invalidate()
        if response.status_code >= 400:
            raise CaseStoreError(
                f"Salesforce {action} failed: HTTP {response.status_code} {response.text[:500]}",
                "http_error",
            )

    async def query(self, soql: str) -> list[dict]:
        """Run a SOQL query, following nextRecordsUrl until done."""
        headers = await self._headers()
        base = self._instance_url()
        url = f"{base}/services/data/{self.api_version}/query"
        params: Optional[dict] = {"q": soql}
        records: list[dict] = []

        while url:
            try:
                response = await self._http.get(url, params=params, headers=headers)
            except httpx.HTTPError as e:
                raise CaseStoreError(f"Salesforce query failed: {e}", "network_error")
            self._check_response(response, "query")

            payload = response.json()
            records.extend(payload.get("records") or [])
            next_url = None if payload.get("done", True) else payload.get("nextRecordsUrl")
            url = f"{base}{next_url}" if next_url else None
            params = None

        return records

    async def query_submitted_checks(self, customer_refs: list[str]) -> list[CaseRecord]:
        """Open checks (status "Submitted to HMLR") for the given landlord references."""
        refs = sorted({r for r in customer_refs if r})
        if not refs:
            return []

        results: list[CaseRecord] = []
        for chunk in chunked(refs, QUERY_CHUNK_SIZE):
            in_clause = ", ".join(soql_quote(r) for r in chunk)
            soql = (
                "SELECT Id, Name, Landlord_ID__c, Property_Postcode__c, Status__c "
                f"FROM {CHECK_OBJECT} "
                f"WHERE Landlord_ID__c IN ({in_clause}) "
                f"AND Status__c = {soql_quote(CheckStatus.SUBMITTED.value)}"
            )
            for raw in await self.query(soql):
                results.append(CaseRecord.model_validate(raw))

        logger.info(f"Found {len(results)} submitted check(s) for {len(refs)} reference(s)")
        return results

    async def bulk_update(self, updates: list[CaseRecordUpdate]) -> BulkUpdateResult:
        """
        PATCH every update through the composite API, 25 per request, with
        allOrNone=false so one bad record does not roll back its batch.

        A batch whose HTTP call fails counts all of its records as failed;
        the remaining batches still run.
        """
        result = BulkUpdateResult()
        if not updates:
            return result

        base = self._instance_url()
        composite_url = f"{base}/services/data/{self.api_version}/composite"

        for batch in chunked(updates, COMPOSITE_BATCH_SIZE):
            body = {
                "allOrNone": False,
                "compositeRequest": [
                    {
                        "method": "PATCH",
                        "url": f"/services/data/{self.api_version}/sobjects/{CHECK_OBJECT}/{u.record_id}",
                        "referenceId": f"ref{i}",
                        "body": u.to_salesforce(),
                    }
                    for i, u in enumerate(batch)
                ],
            }
            try:
                headers = await self._headers()
                response = await self._http.post(composite_url, json=body, headers=headers)
                self._check_response(response, "composite update")
                sub_responses = response.json().get("compositeResponse") or []
            except (httpx.HTTPError, CaseStoreError) as e:
                logger.error(f"Composite update of {len(batch)} record(s) failed: {e}")
                result.failed_record_ids.extend(u.record_id for u in batch)
                continue

            by_ref = {sub.get("referenceId"): sub for sub in sub_responses}
            for i, update in enumerate(batch):
                sub = by_ref.get(f"ref{i}")
                status = sub.get("httpStatusCode", 0) if sub else 0
                if 200 <= status < 300:
                    result.success_count += 1
                else:
                    result.failed_record_ids.append(update.record_id)
                    logger.warning(
                        f"Update of {update.record_id} rejected: {sub.get('body') if sub else 'no response'}"
                    )

        logger.info(f"Bulk update completed: {result.success_count}/{len(updates)} records updated")
        return result
