import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from app.utils import qbo_query
from .client import QuickBooksAPIError, QuickBooksClient
from .token_store import QuickBooksTokenStore, EXPIRY_BUFFER

logger = logging.getLogger(__name__)


@dataclass
class QBOSession:
    user_id: str
    access_token: str
    refresh_token: str
    realm_id: str
    expires_at: datetime
    company_info: Optional[dict] = None


@dataclass
class OperationResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    session: Optional[QBOSession] = None


class QBOSessionManager:
    """
    Refresh-transparent access to a user's QuickBooks company.

    ``get_session`` hides token expiry; every other method returns an
    ``OperationResult`` and never raises.
    """

    def __init__(
        self,
        token_store: QuickBooksTokenStore,
        client_factory: Callable[[], QuickBooksClient],
    ):
        self.token_store = token_store
        self.client_factory = client_factory

    async def get_session(self, user_id: str, _retry: bool = True) -> Optional[QBOSession]:
        try:
            tokens = await self.token_store.get_tokens(user_id)
        except Exception as e:
            logger.error("Error getting QBO session for %s: %s", user_id, e)
            return None
        if not tokens:
            return None

        if tokens.expires_soon(EXPIRY_BUFFER):
            if not _retry:
                return None
            client = self.client_factory()
            client.set_tokens(
                tokens.access_token,
                tokens.refresh_token,
                tokens.realm_id,
                user_id,
                tokens.expires_at,
            )
            try:
                await client.refresh_access_token()
            except Exception as e:
                logger.warning("Error refreshing QBO session for %s: %s", user_id, e)
                return None
            return await self.get_session(user_id, _retry=False)

        return QBOSession(
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            realm_id=tokens.realm_id,
            expires_at=tokens.expires_at,
        )

    def _client_for(self, session: QBOSession) -> QuickBooksClient:
        client = self.client_factory()
        client.set_tokens(
            session.access_token,
            session.refresh_token,
            session.realm_id,
            session.user_id,
            session.expires_at,
        )
        return client

    async def _run(
        self,
        session: QBOSession,
        action: str,
        call: Callable[[QuickBooksClient], Awaitable[Any]],
    ) -> OperationResult:
        try:
            data = await call(self._client_for(session))
        except QuickBooksAPIError as e:
            if e.fault is not None:
                return OperationResult(success=False, error=str(e), session=session)
            return OperationResult(
                success=False, error=f"Failed to {action}: {e}", session=session
            )
        except Exception as e:
            logger.exception("QuickBooks call failed: %s", action)
            return OperationResult(
                success=False, error=f"Failed to {action}: {e}", session=session
            )
        return OperationResult(success=True, data=data, session=session)

    async def get_company_info(self, session: QBOSession) -> OperationResult:
        result = await self._run(session, "get company info", lambda c: c.get_company_info())
        if result.success:
            session.company_info = result.data
        return result

    async def get_invoices(
        self, session: QBOSession, limit: int = 50, offset: int = 0
    ) -> OperationResult:
        return await self._run(
            session,
            "get invoices",
            lambda c: c.query(
                qbo_query.build_select(
                    "Invoice", start_position=offset + 1, max_results=limit
                ),
                "Invoice",
            ),
        )

    async def _first_invoice_where(self, client: QuickBooksClient, field: str, value: str):
        rows = await client.query(
            qbo_query.build_select("Invoice", [qbo_query.condition(field, "=", value)]),
            "Invoice",
        )
        return rows[0] if rows else None

    async def get_invoice_by_id(self, session: QBOSession, invoice_id: str) -> OperationResult:
        return await self._run(
            session,
            "get invoice",
            lambda c: self._first_invoice_where(c, "Id", invoice_id),
        )

    async def get_invoice_by_doc_number(
        self, session: QBOSession, doc_number: str
    ) -> OperationResult:
        return await self._run(
            session,
            "get invoice",
            lambda c: self._first_invoice_where(c, "DocNumber", doc_number),
        )

    async def get_customers(
        self, session: QBOSession, limit: int = 50, offset: int = 0
    ) -> OperationResult:
        return await self._run(
            session,
            "get customers",
            lambda c: c.query(
                qbo_query.build_select(
                    "Customer", start_position=offset + 1, max_results=limit
                ),
                "Customer",
            ),
        )

    async def get_items(
        self, session: QBOSession, limit: int = 50, offset: int = 0
    ) -> OperationResult:
        return await self._run(
            session,
            "get items",
            lambda c: c.query(
                qbo_query.build_select(
                    "Item", start_position=offset + 1, max_results=limit
                ),
                "Item",
            ),
        )

    async def get_default_income_account(self, session: QBOSession) -> OperationResult:
        async def first_income_account(c: QuickBooksClient):
            accounts = await c.get_accounts("Income")
            return accounts[0] if accounts else None

        return await self._run(session, "get income account", first_income_account)

    async def create_customer(self, session: QBOSession, payload: dict) -> OperationResult:
        async def create(c: QuickBooksClient):
            data = await c.request("POST", "customer", json_body=payload)
            return data.get("Customer")

        return await self._run(session, "create customer", create)

    async def create_item(self, session: QBOSession, payload: dict) -> OperationResult:
        async def create(c: QuickBooksClient):
            data = await c.request("POST", "item", json_body=payload)
            return data.get("Item")

        return await self._run(session, "create item", create)

    async def create_invoice(self, session: QBOSession, invoice_data: dict) -> OperationResult:
        return await self._run(
            session, "create invoice", lambda c: c.create_invoice(invoice_data)
        )

    async def update_invoice(
        self, session: QBOSession, invoice_id: str, invoice_data: dict
    ) -> OperationResult:
        return await self._run(
            session,
            "update invoice",
            lambda c: c.update_invoice({**invoice_data, "Id": invoice_id}),
        )

    async def delete_invoice(self, session: QBOSession, invoice_id: str) -> OperationResult:
        return await self._run(
            session, "delete invoice", lambda c: c.delete_invoice(invoice_id)
        )

    async def void_invoice(self, session: QBOSession, invoice_id: str) -> OperationResult:
        return await self._run(session, "void invoice", lambda c: c.void_invoice(invoice_id))

    async def send_invoice_pdf(
        self, session: QBOSession, invoice_id: str, email_address: str
    ) -> OperationResult:
        return await self._run(
            session,
            "send invoice PDF",
            lambda c: c.send_invoice_pdf(invoice_id, email_address),
        )

    async def find_invoices(self, session: QBOSession, criteria) -> OperationResult:
        return await self._run(session, "find invoices", lambda c: c.find_invoices(criteria))
