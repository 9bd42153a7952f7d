import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.api.quickbooks.client import (
    InvoiceSearchCriteria,
    QuickBooksAPIError,
    QuickBooksAuthError,
    QuickBooksClient,
    QuickBooksConfig,
    consume_oauth_state,
    create_oauth_state,
    purge_oauth_states,
)
from app.api.quickbooks.models import QuickBooksOAuthState
from app.utils.dates import utcnow
from conftest import REALM_ID, qbo_invoice

pytestmark = pytest.mark.asyncio


@pytest.fixture
def qb_client(qb_config, token_store, fake_qbo, fake_auth_client):
    return QuickBooksClient(
        qb_config,
        token_store,
        transport=httpx.MockTransport(fake_qbo.handler),
        auth_client_factory=lambda: fake_auth_client,
    )


@pytest.fixture
def authed_client(qb_client):
    qb_client.set_tokens("access-token", "refresh-token", REALM_ID, "user-1", utcnow() + timedelta(hours=1))
    return qb_client


class TestQuickBooksConfig:
    def test_base_urls(self):
        sandbox = QuickBooksConfig("id", "secret", "http://cb")
        production = QuickBooksConfig("id", "secret", "http://cb", environment="production")
        assert sandbox.api_base_url == "https://sandbox-quickbooks.api.intuit.com"
        assert production.api_base_url == "https://quickbooks.api.intuit.com"

    def test_from_env(self):
        cfg = QuickBooksConfig.from_env()
        assert cfg.client_id == "test-client-id"
        assert cfg.environment == "sandbox"


class TestOAuth:
    async def test_auth_uri_carries_state(self, qb_client):
        url = qb_client.get_auth_uri("state-123")
        params = parse_qs(urlparse(url).query)
        assert params["state"] == ["state-123"]
        assert params["scope"] == ["com.intuit.quickbooks.accounting"]

    async def test_create_token_stores_encrypted_tokens(self, qb_client, fake_qbo, token_store):
        await qb_client.create_token("auth-code", REALM_ID, "user-1")

        token_request = fake_qbo.requests[0]
        body = parse_qs(token_request.content.decode())
        assert body["grant_type"] == ["authorization_code"]
        assert body["code"] == ["auth-code"]
        assert token_request.headers["Authorization"].startswith("Basic ")

        assert qb_client.is_authenticated
        stored = await token_store.get_tokens("user-1")
        assert stored.access_token == "new-access-token"
        assert stored.refresh_token == "new-refresh-token"
        assert stored.realm_id == REALM_ID

    async def test_create_token_failure(self, qb_client, fake_qbo, token_store):
        fake_qbo.token_status = 400
        fake_qbo.token_body = {"error": "invalid_grant"}

        with pytest.raises(QuickBooksAuthError, match="status 400"):
            await qb_client.create_token("bad-code", REALM_ID, "user-1")
        assert await token_store.get_tokens("user-1") is None

    async def test_create_token_without_tokens_in_response(self, qb_client, fake_qbo):
        fake_qbo.token_body = {"token_type": "bearer"}
        with pytest.raises(QuickBooksAuthError, match="did not include tokens"):
            await qb_client.create_token("code", REALM_ID, "user-1")

    async def test_refresh_updates_store(self, qb_client, fake_auth_client, token_store, connect_quickbooks):
        await connect_quickbooks("user-1", expires_in=timedelta(minutes=1))
        assert await qb_client.load_tokens_for_user("user-1") is True

        assert fake_auth_client.refresh_calls == ["stored-refresh-token"]
        assert qb_client.access_token == "refreshed-access-token"
        stored = await token_store.get_tokens("user-1")
        assert stored.access_token == "refreshed-access-token"
        assert stored.refresh_token == "refreshed-refresh-token"
        assert not stored.expires_soon()

    async def test_failed_refresh_drops_tokens(self, qb_client, fake_auth_client, token_store, connect_quickbooks):
        await connect_quickbooks("user-1", expires_in=timedelta(minutes=1))
        fake_auth_client.fail_refresh = True

        assert await qb_client.load_tokens_for_user("user-1") is False
        assert not qb_client.is_authenticated
        assert await token_store.get_tokens("user-1") is None

    async def test_load_fresh_tokens_skips_refresh(self, qb_client, fake_auth_client, connect_quickbooks):
        await connect_quickbooks("user-1")
        assert await qb_client.load_tokens_for_user("user-1") is True
        assert fake_auth_client.refresh_calls == []
        assert qb_client.realm_id == REALM_ID

    async def test_refresh_without_refresh_token(self, qb_client):
        with pytest.raises(QuickBooksAuthError):
            await qb_client.refresh_access_token()

    async def test_disconnect(self, qb_client, token_store, connect_quickbooks):
        await connect_quickbooks("user-1")
        await qb_client.load_tokens_for_user("user-1")

        await qb_client.disconnect_user("user-1")

        assert not qb_client.is_authenticated
        assert await token_store.get_tokens("user-1") is None


class TestOAuthState:
    async def test_state_is_single_use(self, db):
        state = await create_oauth_state(db, "user-1")
        assert await consume_oauth_state(db, state) == "user-1"
        assert await consume_oauth_state(db, state) is None

    async def test_unknown_or_blank_state(self, db):
        assert await consume_oauth_state(db, "forged") is None
        assert await consume_oauth_state(db, None) is None

    async def test_stale_state_rejected_and_purged(self, db):
        db.add(QuickBooksOAuthState(state="old", user_id="user-1", created_at=utcnow() - timedelta(minutes=30)))
        db.add(QuickBooksOAuthState(state="older", user_id="user-2", created_at=utcnow() - timedelta(hours=2)))
        await db.commit()

        assert await consume_oauth_state(db, "old") is None
        assert await purge_oauth_states(db) == 1


class TestRequests:
    async def test_unauthenticated_request(self, qb_client):
        with pytest.raises(QuickBooksAuthError):
            await qb_client.get_company_info()

    async def test_request_headers_and_minor_version(self, authed_client, fake_qbo):
        fake_qbo.add("GET", f"companyinfo/{REALM_ID}", {"CompanyInfo": {"CompanyName": "Sandbox Co"}})

        info = await authed_client.get_company_info()

        assert info == {"CompanyName": "Sandbox Co"}
        request = fake_qbo.requests[-1]
        assert request.headers["Authorization"] == "Bearer access-token"
        assert request.url.params["minorversion"] == "65"
        assert request.url.host == "sandbox-quickbooks.api.intuit.com"

    async def test_fault_in_200_raises(self, authed_client, fake_qbo):
        fake_qbo.add(
            "GET",
            "invoice/999",
            {"Fault": {"Error": [{"Message": "Object Not Found"}], "type": "ValidationFault"}},
        )
        with pytest.raises(QuickBooksAPIError) as exc:
            await authed_client.get_invoice("999")
        assert exc.value.fault["type"] == "ValidationFault"
        assert "Object Not Found" in str(exc.value)

    async def test_http_error_raises(self, authed_client, fake_qbo):
        fake_qbo.add("GET", "invoice/1", lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(QuickBooksAPIError) as exc:
            await authed_client.get_invoice("1")
        assert exc.value.status_code == 503

    async def test_find_invoices_query(self, authed_client, fake_qbo):
        fake_qbo.add("GET", "query", {"QueryResponse": {"Invoice": [qbo_invoice()]}})

        invoices = await authed_client.find_invoices(
            InvoiceSearchCriteria(customer_id="1", status="paid", limit=10)
        )

        assert [inv["Id"] for inv in invoices] == ["130"]
        assert fake_qbo.queries() == [
            "SELECT * FROM Invoice WHERE CustomerRef = '1' AND Balance = 0 MAXRESULTS 10"
        ]

    async def test_empty_query_response(self, authed_client, fake_qbo):
        fake_qbo.add("GET", "query", {"QueryResponse": {}})
        assert await authed_client.get_customers() == []

    async def test_update_fetches_sync_token(self, authed_client, fake_qbo):
        fake_qbo.add("GET", "invoice/130", {"Invoice": {**qbo_invoice(), "SyncToken": "3"}})
        fake_qbo.add("POST", "invoice", lambda request: httpx.Response(200, json={"Invoice": json.loads(request.content)}))

        updated = await authed_client.update_invoice({"Id": "130", "DueDate": "2030-02-01"})

        assert updated["SyncToken"] == "3"
        assert updated["sparse"] is True
        assert updated["DueDate"] == "2030-02-01"

    async def test_void_and_delete_use_operation_param(self, authed_client, fake_qbo):
        fake_qbo.add("GET", "invoice/130", {"Invoice": {**qbo_invoice(), "SyncToken": "2"}})
        fake_qbo.add("POST", "invoice", {"Invoice": {"Id": "130", "status": "Deleted"}})

        await authed_client.void_invoice("130")
        void_request = fake_qbo.requests[-1]
        assert void_request.url.params["operation"] == "void"
        assert json.loads(void_request.content) == {"Id": "130", "SyncToken": "2"}

        result = await authed_client.delete_invoice("130")
        assert fake_qbo.requests[-1].url.params["operation"] == "delete"
        assert result["status"] == "Deleted"

    async def test_send_invoice_pdf(self, authed_client, fake_qbo):
        fake_qbo.add("POST", "invoice/130/send", {"Invoice": {"Id": "130", "EmailStatus": "EmailSent"}})

        await authed_client.send_invoice_pdf("130", "billing@example.com")

        assert fake_qbo.requests[-1].url.params["sendTo"] == "billing@example.com"

    async def test_get_accounts_by_type(self, authed_client, fake_qbo):
        fake_qbo.add("GET", "query", {"QueryResponse": {"Account": [{"Id": "79", "Name": "Sales"}]}})

        accounts = await authed_client.get_accounts("Income")

        assert accounts[0]["Id"] == "79"
        assert fake_qbo.queries()[-1] == (
            "SELECT Id, Name, AccountType FROM Account WHERE AccountType = 'Income'"
        )
