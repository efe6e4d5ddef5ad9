"""
Salesforce case store tests.

HTTP is served by httpx.MockTransport; the OAuth session is a stub that
hands out a fixed token.
"""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from landreg.models.hmlr import CaseRecordUpdate
from landreg.services.oauth_session import AuthenticationError
from landreg.services.case_store import (
    COMPOSITE_BATCH_SIZE,
    CaseStoreError,
    SalesforceCaseStore,
    chunked,
    soql_quote,
)

INSTANCE = "https://example.my.salesforce.com"


class StubSession:
    def __init__(self):
        self.instance_url = INSTANCE
        self.invalidated = 0

    async def access_token(self):
        return "sf-token"

    def invalidate(self):
        self.invalidated += 1


def _store(handler) -> tuple[SalesforceCaseStore, StubSession]:
    session = StubSession()
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SalesforceCaseStore(http, session, api_version="v59.0"), session


def _updates(count: int) -> list[CaseRecordUpdate]:
    return [
        CaseRecordUpdate(record_id=f"a{i:03d}", status="Matched", title_number=f"WYK{i}")
        for i in range(count)
    ]


def _composite_ok(request: httpx.Request, failing: set[str] = frozenset()) -> httpx.Response:
    body = json.loads(request.content)
    responses = []
    for sub in body["compositeRequest"]:
        record_id = sub["url"].rsplit("/", 1)[-1]
        if record_id in failing:
            responses.append({
                "referenceId": sub["referenceId"],
                "httpStatusCode": 400,
                "body": [{"errorCode": "FIELD_CUSTOM_VALIDATION_EXCEPTION", "message": "bad"}],
            })
        else:
            responses.append({"referenceId": sub["referenceId"], "httpStatusCode": 204, "body": None})
    return httpx.Response(200, json={"compositeResponse": responses})


class TestBulkUpdate:

    @pytest.mark.asyncio
    async def test_sixty_updates_go_in_three_batches(self):
        batch_sizes = []

        def handler(request):
            body = json.loads(request.content)
            batch_sizes.append(len(body["compositeRequest"]))
            assert body["allOrNone"] is False
            return _composite_ok(request)

        store, _ = _store(handler)
        result = await store.bulk_update(_updates(60))

        assert batch_sizes == [25, 25, 10]
        assert result.success_count == 60
        assert result.failed_record_ids == []

    @pytest.mark.asyncio
    async def test_subrequest_shape(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return _composite_ok(request)

        store, _ = _store(handler)
        await store.bulk_update(_updates(1))

        assert captured["url"] == f"{INSTANCE}/services/data/v59.0/composite"
        assert captured["auth"] == "Bearer sf-token"
        sub = captured["body"]["compositeRequest"][0]
        assert sub["method"] == "PATCH"
        assert sub["url"] == "/services/data/v59.0/sobjects/Land_Registry_Check__c/a000"
        assert sub["referenceId"] == "ref0"
        assert sub["body"] == {"Status__c": "Matched", "Title_Number__c": "WYK0"}

    @pytest.mark.asyncio
    async def test_partial_failure_reports_failed_ids(self):
        store, _ = _store(lambda request: _composite_ok(request, failing={"a003", "a030"}))

        result = await store.bulk_update(_updates(40))

        assert result.success_count == 38
        assert sorted(result.failed_record_ids) == ["a003", "a030"]

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_stop_later_batches(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(500, text="Internal error")
            return _composite_ok(request)

        store, _ = _store(handler)
        result = await store.bulk_update(_updates(30))

        assert calls["n"] == 2
        assert result.success_count == 5
        assert len(result.failed_record_ids) == COMPOSITE_BATCH_SIZE

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self):
        store, session = _store(lambda request: httpx.Response(401, json=[{"errorCode": "INVALID_SESSION_ID"}]))

        result = await store.bulk_update(_updates(2))

        assert session.invalidated == 1
        assert result.failed_record_ids == ["a000", "a001"]

    @pytest.mark.asyncio
    async def test_token_failure_fails_the_batch(self):
        def handler(request):
            raise AssertionError("no request expected without a token")

        store, session = _store(handler)

        async def no_token():
            raise AuthenticationError("invalid_client")

        session.access_token = no_token

        result = await store.bulk_update(_updates(3))

        assert result.success_count == 0
        assert result.failed_record_ids == ["a000", "a001", "a002"]

    @pytest.mark.asyncio
    async def test_token_failure_on_query_raises_case_store_error(self):
        store, session = _store(lambda request: httpx.Response(200, json={"done": True, "records": []}))

        async def no_token():
            raise AuthenticationError("invalid_client")

        session.access_token = no_token

        with pytest.raises(CaseStoreError) as exc_info:
            await store.query("SELECT Id FROM Land_Registry_Check__c")
        assert exc_info.value.error_code == "auth_failed"

    @pytest.mark.asyncio
    async def test_no_updates_makes_no_calls(self):
        def handler(request):
            raise AssertionError("no request expected")

        store, _ = _store(handler)
        result = await store.bulk_update([])
        assert result.success_count == 0


class TestQuery:

    @pytest.mark.asyncio
    async def test_follows_next_records_url(self):
        def handler(request):
            if request.url.path.endswith("/query"):
                return httpx.Response(200, json={
                    "done": False,
                    "nextRecordsUrl": "/services/data/v59.0/query/01gXX-2000",
                    "records": [{"Id": "a01"}],
                })
            assert request.url.path == "/services/data/v59.0/query/01gXX-2000"
            return httpx.Response(200, json={"done": True, "records": [{"Id": "a02"}]})

        store, _ = _store(handler)
        records = await store.query("SELECT Id FROM Land_Registry_Check__c")

        assert [r["Id"] for r in records] == ["a01", "a02"]

    @pytest.mark.asyncio
    async def test_query_submitted_checks_builds_soql(self):
        seen = {}

        def handler(request):
            seen["q"] = parse_qs(urlparse(str(request.url)).query)["q"][0]
            return httpx.Response(200, json={"done": True, "records": [
                {
                    "attributes": {"type": "Land_Registry_Check__c"},
                    "Id": "a01", "Name": "LRC-0001", "Landlord_ID__c": "LL-1001",
                    "Property_Postcode__c": "LS1 1AA", "Status__c": "Submitted to HMLR",
                },
            ]})

        store, _ = _store(handler)
        records = await store.query_submitted_checks(["LL-1001", "O'Brien", "LL-1001", ""])

        assert "FROM Land_Registry_Check__c" in seen["q"]
        assert "Landlord_ID__c IN ('LL-1001', 'O\\'Brien')" in seen["q"]
        assert "Status__c = 'Submitted to HMLR'" in seen["q"]
        assert records[0].id == "a01"
        assert records[0].landlord_id == "LL-1001"
        assert records[0].postcode == "LS1 1AA"

    @pytest.mark.asyncio
    async def test_no_refs_makes_no_calls(self):
        def handler(request):
            raise AssertionError("no request expected")

        store, _ = _store(handler)
        assert await store.query_submitted_checks(["", ""]) == []

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        store, _ = _store(lambda request: httpx.Response(400, json=[{"errorCode": "MALFORMED_QUERY"}]))
        with pytest.raises(CaseStoreError) as exc_info:
            await store.query("SELECT broken")
        assert exc_info.value.error_code == "http_error"

    @pytest.mark.asyncio
    async def test_unknown_instance_url(self):
        session = StubSession()
        session.instance_url = None
        store = SalesforceCaseStore(httpx.AsyncClient(), session)
        with pytest.raises(CaseStoreError) as exc_info:
            await store.query("SELECT Id FROM Account")
        assert exc_info.value.error_code == "not_configured"


def test_soql_quote_escapes():
    assert soql_quote("O'Brien\\") == "'O\\'Brien\\\\'"


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
