import asyncio
import json
import logging
import secrets
from urllib.parse import quote
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from intuitlib.client import AuthClient
from intuitlib.enums import Scopes
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.utils import qbo_query
from app.utils.dates import normalize_utc, utcnow
from .models import QuickBooksOAuthState
from .token_store import QuickBooksTokenStore, EXPIRY_BUFFER

logger = logging.getLogger(__name__)

TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
MINOR_VERSION = 65
QB_TIMEOUT = 30
OAUTH_STATE_TTL = timedelta(minutes=10)


class QuickBooksAuthError(Exception):
    pass


class QuickBooksAPIError(Exception):
    def __init__(self, message: str, fault: Any = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.fault = fault
        self.status_code = status_code


@dataclass
class QuickBooksConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    environment: str = "sandbox"

    @classmethod
    def from_env(cls) -> "QuickBooksConfig":
        return cls(
            client_id=config.QUICKBOOKS_CLIENT_ID or config.require("QUICKBOOKS_CLIENT_ID"),
            client_secret=config.QUICKBOOKS_CLIENT_SECRET
            or config.require("QUICKBOOKS_CLIENT_SECRET"),
            redirect_uri=config.QUICKBOOKS_REDIRECT_URI
            or config.require("QUICKBOOKS_REDIRECT_URI"),
            environment=config.QUICKBOOKS_ENVIRONMENT,
        )

    @property
    def api_base_url(self) -> str:
        return (
            "https://quickbooks.api.intuit.com"
            if self.environment == "production"
            else "https://sandbox-quickbooks.api.intuit.com"
        )


@dataclass
class InvoiceSearchCriteria:
    customer_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def to_query(self, today: Optional[date] = None) -> str:
        conditions = []
        if self.customer_id:
            conditions.append(qbo_query.condition("CustomerRef", "=", self.customer_id))
        if self.start_date:
            conditions.append(qbo_query.condition("TxnDate", ">=", self.start_date))
        if self.end_date:
            conditions.append(qbo_query.condition("TxnDate", "<=", self.end_date))

        if self.status == "paid":
            conditions.append(qbo_query.condition("Balance", "=", 0))
        elif self.status == "unpaid":
            conditions.append(qbo_query.condition("Balance", ">", 0))
        elif self.status == "overdue":
            today = today or utcnow().date()
            conditions.append(qbo_query.condition("Balance", ">", 0))
            conditions.append(qbo_query.condition("DueDate", "<", today))

        return qbo_query.build_select(
            "Invoice",
            conditions,
            start_position=self.offset + 1 if self.offset else None,
            max_results=self.limit or None,
        )


def qb_headers(access_token: str) -> dict:
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def check_fault(data: Any) -> None:
    if isinstance(data, dict) and data.get("Fault"):
        raise QuickBooksAPIError(
            f"QuickBooks API Error: {json.dumps(data['Fault'])}", fault=data["Fault"]
        )


async def create_oauth_state(db: AsyncSession, user_id: str) -> str:
    state = secrets.token_urlsafe(32)
    db.add(QuickBooksOAuthState(state=state, user_id=user_id, created_at=utcnow()))
    await db.commit()
    return state


async def consume_oauth_state(db: AsyncSession, state: str) -> Optional[str]:
    """Return the user that started the flow, or None if the state is unknown or stale."""
    if not state:
        return None
    result = await db.execute(
        select(QuickBooksOAuthState).where(QuickBooksOAuthState.state == state)
    )
    record = result.scalar_one_or_none()
    if not record:
        return None
    user_id = record.user_id
    created_at = normalize_utc(record.created_at)
    await db.delete(record)
    await db.commit()
    if created_at and utcnow() - created_at > OAUTH_STATE_TTL:
        return None
    return user_id


async def purge_oauth_states(db: AsyncSession) -> int:
    result = await db.execute(
        delete(QuickBooksOAuthState).where(
            QuickBooksOAuthState.created_at < utcnow() - OAUTH_STATE_TTL
        )
    )
    await db.commit()
    return result.rowcount or 0


class QuickBooksClient:
    """
    OAuth handshake plus authenticated calls for one user.

    Instances are cheap and hold per-user state, so build one per request
    rather than sharing it between users.
    """

    def __init__(
        self,
        qb_config: QuickBooksConfig,
        token_store: Optional[QuickBooksTokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        auth_client_factory: Optional[Callable[[], Any]] = None,
    ):
        self.config = qb_config
        self.token_store = token_store
        self.transport = transport
        self._auth_client_factory = auth_client_factory or self._default_auth_client

        self.user_id: Optional[str] = None
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.realm_id: Optional[str] = None
        self.expires_at: Optional[datetime] = None

    def _default_auth_client(self):
        return AuthClient(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            environment=self.config.environment,
            redirect_uri=self.config.redirect_uri,
        )

    def _http(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=QB_TIMEOUT, transport=self.transport, **kwargs)

    # --- OAuth -----------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token and self.realm_id)

    def set_tokens(
        self,
        access_token: str,
        refresh_token: str,
        realm_id: str,
        user_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.realm_id = realm_id
        self.user_id = user_id
        self.expires_at = expires_at

    def get_auth_uri(self, state: str) -> str:
        auth_client = self._auth_client_factory()
        return auth_client.get_authorization_url([Scopes.ACCOUNTING], state_token=state)

    async def create_token(self, auth_code: str, realm_id: str, user_id: str) -> None:
        async with self._http() as client:
            resp = await client.post(
                TOKEN_URL,
                auth=(self.config.client_id, self.config.client_secret),
                headers={"Accept": "application/json"},
                data={
                    "grant_type": "authorization_code",
                    "code": auth_code,
                    "redirect_uri": self.config.redirect_uri,
                },
            )

        if resp.status_code != 200:
            logger.error("QuickBooks token exchange failed with HTTP %s", resp.status_code)
            raise QuickBooksAuthError(
                f"Token exchange failed with status {resp.status_code}: {resp.text}"
            )

        payload = resp.json()
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not access_token or not refresh_token:
            raise QuickBooksAuthError("Token exchange response did not include tokens")

        expires_at = utcnow() + timedelta(seconds=int(payload.get("expires_in", 3600)))
        self.set_tokens(access_token, refresh_token, realm_id, user_id, expires_at)

        if self.token_store:
            await self.token_store.store_tokens(
                user_id, access_token, refresh_token, realm_id, expires_at
            )
        logger.info("Stored QuickBooks tokens for user %s (realm %s)", user_id, realm_id)

    async def refresh_access_token(self) -> None:
        if not self.refresh_token:
            raise QuickBooksAuthError("No refresh token available")

        auth_client = self._auth_client_factory()
        try:
            await asyncio.to_thread(auth_client.refresh, refresh_token=self.refresh_token)
        except Exception as e:
            raise QuickBooksAuthError(f"Token refresh failed: {e}") from e

        self.access_token = auth_client.access_token
        self.refresh_token = auth_client.refresh_token or self.refresh_token
        self.expires_at = utcnow() + timedelta(seconds=int(auth_client.expires_in or 3600))

        if self.token_store and self.user_id:
            await self.token_store.update_tokens(
                self.user_id, self.access_token, self.refresh_token, self.expires_at
            )

    async def load_tokens_for_user(self, user_id: str) -> bool:
        if not self.token_store:
            return False
        tokens = await self.token_store.get_tokens(user_id)
        if not tokens:
            return False

        self.set_tokens(
            tokens.access_token,
            tokens.refresh_token,
            tokens.realm_id,
            user_id,
            tokens.expires_at,
        )
        if tokens.expires_soon(EXPIRY_BUFFER):
            try:
                await self.refresh_access_token()
            except QuickBooksAuthError as e:
                logger.warning("Refresh failed for %s, dropping stored tokens: %s", user_id, e)
                await self.token_store.delete_tokens(user_id)
                self.set_tokens(None, None, None)
                return False
        return True

    async def disconnect_user(self, user_id: str) -> None:
        if self.token_store:
            await self.token_store.delete_tokens(user_id)
        self.set_tokens(None, None, None)
        logger.info("Disconnected QuickBooks for user %s", user_id)

    # --- REST ------------------------------------------------------------

    def _require_auth(self) -> None:
        if not self.is_authenticated:
            raise QuickBooksAuthError(
                "QuickBooks authentication required. Please connect your QuickBooks account first."
            )

    def _url(self, path: str) -> str:
        return f"{self.config.api_base_url}/v3/company/{self.realm_id}/{path}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        self._require_auth()
        params = {**(params or {}), "minorversion": MINOR_VERSION}
        async with self._http(headers=qb_headers(self.access_token)) as client:
            resp = await client.request(method, self._url(path), params=params, json=json_body)

        try:
            data = resp.json()
        except ValueError:
            data = None

        # faults can arrive with a 200
        check_fault(data)
        if resp.status_code >= 400 or data is None:
            raise QuickBooksAPIError(
                f"QuickBooks request failed with status {resp.status_code}",
                status_code=resp.status_code,
            )
        return data

    async def query(self, query: str, entity: str) -> list:
        data = await self.request("GET", "query", params={"query": query})
        return data.get("QueryResponse", {}).get(entity, [])

    async def get_invoice(self, invoice_id: str) -> dict:
        data = await self.request("GET", f"invoice/{quote(str(invoice_id), safe='')}")
        return data.get("Invoice")

    async def find_invoices(self, criteria: Optional[InvoiceSearchCriteria] = None) -> list:
        criteria = criteria or InvoiceSearchCriteria()
        return await self.query(criteria.to_query(), "Invoice")

    async def create_invoice(self, invoice_data: dict) -> dict:
        data = await self.request("POST", "invoice", json_body=invoice_data)
        return data.get("Invoice")

    async def update_invoice(self, invoice_data: dict) -> dict:
        if "SyncToken" not in invoice_data:
            current = await self.get_invoice(invoice_data["Id"])
            invoice_data = {**invoice_data, "SyncToken": current.get("SyncToken")}
        data = await self.request(
            "POST", "invoice", json_body={"sparse": True, **invoice_data}
        )
        return data.get("Invoice")

    async def void_invoice(self, invoice_id: str) -> dict:
        current = await self.get_invoice(invoice_id)
        data = await self.request(
            "POST",
            "invoice",
            params={"operation": "void"},
            json_body={"Id": invoice_id, "SyncToken": current.get("SyncToken")},
        )
        return data.get("Invoice")

    async def delete_invoice(self, invoice_id: str) -> dict:
        current = await self.get_invoice(invoice_id)
        data = await self.request(
            "POST",
            "invoice",
            params={"operation": "delete"},
            json_body={"Id": invoice_id, "SyncToken": current.get("SyncToken")},
        )
        return data.get("Invoice") or {}

    async def send_invoice_pdf(self, invoice_id: str, email_address: str) -> dict:
        return await self.request(
            "POST",
            f"invoice/{quote(str(invoice_id), safe='')}/send",
            params={"sendTo": email_address},
        )

    async def get_company_info(self) -> dict:
        data = await self.request("GET", f"companyinfo/{self.realm_id}")
        return data.get("CompanyInfo")

    async def get_customers(self) -> list:
        return await self.query(qbo_query.build_select("Customer"), "Customer")

    async def get_items(self) -> list:
        return await self.query(qbo_query.build_select("Item"), "Item")

    async def get_accounts(self, account_type: Optional[str] = None) -> list:
        conditions = []
        if account_type:
            conditions.append(qbo_query.condition("AccountType", "=", account_type))
        return await self.query(
            qbo_query.build_select("Account", conditions, fields="Id, Name, AccountType"),
            "Account",
        )
