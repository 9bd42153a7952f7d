import copy
import logging
from typing import Optional

from app.api.quickbooks.client import InvoiceSearchCriteria
from app.api.quickbooks.service import invoice_status
from app.api.quickbooks.session import OperationResult, QBOSession, QBOSessionManager
from app.utils.dates import parse_date, utcnow
from .mock_data import MOCK_INVOICES, MOCK_ITEMS

logger = logging.getLogger(__name__)


class InvoiceBackendError(Exception):
    pass


class InvoiceBackend:
    """
    Where the assistant's invoice tools read and write.

    Records are QuickBooks-shaped dicts (``Id``, ``DocNumber``, ``TotalAmt``,
    ``Balance``, ``CustomerRef``, ``Line``...). Failures raise
    ``InvoiceBackendError``.
    """

    name = "base"

    async def get_invoice(self, invoice_id: str) -> dict:
        raise NotImplementedError

    async def find_invoices(self, criteria: InvoiceSearchCriteria) -> list[dict]:
        raise NotImplementedError

    async def create_invoice(self, invoice_data: dict) -> dict:
        raise NotImplementedError

    async def update_invoice(self, invoice_id: str, invoice_data: dict) -> dict:
        raise NotImplementedError

    async def void_invoice(self, invoice_id: str) -> dict:
        raise NotImplementedError

    async def delete_invoice(self, invoice_id: str) -> dict:
        raise NotImplementedError

    async def send_invoice_pdf(self, invoice_id: str, email_address: str) -> dict:
        raise NotImplementedError

    async def get_customers(self) -> list[dict]:
        raise NotImplementedError

    async def get_items(self) -> list[dict]:
        raise NotImplementedError


def _line_total(lines: list[dict]) -> float:
    return round(sum(float(line.get("Amount") or 0) for line in lines), 2)


class MockInvoiceBackend(InvoiceBackend):
    """In-memory demo company; changes last until the process restarts."""

    name = "mock"

    def __init__(self, invoices: Optional[list[dict]] = None, items: Optional[list[dict]] = None):
        self.invoices = copy.deepcopy(MOCK_INVOICES if invoices is None else invoices)
        self.items = copy.deepcopy(MOCK_ITEMS if items is None else items)

    def _find(self, invoice_id: str) -> dict:
        for invoice in self.invoices:
            if invoice["Id"] == str(invoice_id):
                return invoice
        raise InvoiceBackendError(f"Invoice {invoice_id} not found")

    async def get_invoice(self, invoice_id: str) -> dict:
        return copy.deepcopy(self._find(invoice_id))

    async def find_invoices(self, criteria: InvoiceSearchCriteria) -> list[dict]:
        today = utcnow().date()
        start = parse_date(criteria.start_date)
        end = parse_date(criteria.end_date)

        matches = []
        for invoice in self.invoices:
            if criteria.customer_id and (invoice.get("CustomerRef") or {}).get("value") != criteria.customer_id:
                continue
            txn = parse_date(invoice.get("TxnDate"))
            if start and (txn is None or txn < start):
                continue
            if end and (txn is None or txn > end):
                continue
            if criteria.status and criteria.status != "all":
                status = invoice_status(invoice, today)
                if criteria.status == "unpaid" and status == "paid":
                    continue
                if criteria.status != "unpaid" and status != criteria.status:
                    continue
            matches.append(copy.deepcopy(invoice))

        offset = criteria.offset or 0
        if criteria.limit:
            return matches[offset : offset + criteria.limit]
        return matches[offset:]

    async def create_invoice(self, invoice_data: dict) -> dict:
        next_id = max((int(inv["Id"]) for inv in self.invoices), default=0) + 1
        lines = invoice_data.get("Line") or []
        total = _line_total(lines)
        invoice = {
            **copy.deepcopy(invoice_data),
            "Id": str(next_id),
            "DocNumber": f"INV-{1000 + next_id}",
            "SyncToken": "0",
            "TxnDate": utcnow().date().isoformat(),
            "TotalAmt": total,
            "Balance": total,
        }
        self.invoices.append(invoice)
        logger.info("Mock invoice %s created", invoice["DocNumber"])
        return copy.deepcopy(invoice)

    async def update_invoice(self, invoice_id: str, invoice_data: dict) -> dict:
        invoice = self._find(invoice_id)
        changes = {k: v for k, v in invoice_data.items() if k not in ("Id", "SyncToken", "sparse")}
        invoice.update(copy.deepcopy(changes))
        if "Line" in changes:
            unpaid = float(invoice.get("Balance") or 0) > 0
            invoice["TotalAmt"] = _line_total(invoice["Line"])
            if unpaid:
                invoice["Balance"] = invoice["TotalAmt"]
        invoice["SyncToken"] = str(int(invoice.get("SyncToken") or 0) + 1)
        return copy.deepcopy(invoice)

    async def void_invoice(self, invoice_id: str) -> dict:
        invoice = self._find(invoice_id)
        invoice["TotalAmt"] = 0
        invoice["Balance"] = 0
        invoice["PrivateNote"] = "Voided"
        return copy.deepcopy(invoice)

    async def delete_invoice(self, invoice_id: str) -> dict:
        invoice = self._find(invoice_id)
        self.invoices.remove(invoice)
        return {"Id": invoice["Id"], "status": "Deleted"}

    async def send_invoice_pdf(self, invoice_id: str, email_address: str) -> dict:
        invoice = self._find(invoice_id)
        invoice["EmailStatus"] = "EmailSent"
        invoice["BillEmail"] = {"Address": email_address}
        return copy.deepcopy(invoice)

    async def get_customers(self) -> list[dict]:
        customers = {}
        for invoice in self.invoices:
            ref = invoice.get("CustomerRef") or {}
            if not ref.get("value"):
                continue
            entry = customers.setdefault(
                ref["value"],
                {"Id": ref["value"], "Name": ref.get("name"), "DisplayName": ref.get("name"), "Balance": 0.0},
            )
            entry["Balance"] = round(entry["Balance"] + float(invoice.get("Balance") or 0), 2)
        return list(customers.values())

    async def get_items(self) -> list[dict]:
        return copy.deepcopy(self.items)


class QuickBooksInvoiceBackend(InvoiceBackend):
    """Live company data through the user's QuickBooks session."""

    name = "quickbooks"

    def __init__(self, manager: QBOSessionManager, session: QBOSession):
        self.manager = manager
        self.session = session

    @staticmethod
    def _unwrap(result: OperationResult):
        if not result.success:
            raise InvoiceBackendError(result.error)
        return result.data

    async def get_invoice(self, invoice_id: str) -> dict:
        invoice = self._unwrap(await self.manager.get_invoice_by_id(self.session, invoice_id))
        if not invoice:
            raise InvoiceBackendError(f"Invoice {invoice_id} not found")
        return invoice

    async def find_invoices(self, criteria: InvoiceSearchCriteria) -> list[dict]:
        if criteria.status == "all":
            criteria.status = None
        return self._unwrap(await self.manager.find_invoices(self.session, criteria)) or []

    async def create_invoice(self, invoice_data: dict) -> dict:
        return self._unwrap(await self.manager.create_invoice(self.session, invoice_data))

    async def update_invoice(self, invoice_id: str, invoice_data: dict) -> dict:
        return self._unwrap(
            await self.manager.update_invoice(self.session, invoice_id, invoice_data)
        )

    async def void_invoice(self, invoice_id: str) -> dict:
        return self._unwrap(await self.manager.void_invoice(self.session, invoice_id))

    async def delete_invoice(self, invoice_id: str) -> dict:
        return self._unwrap(await self.manager.delete_invoice(self.session, invoice_id))

    async def send_invoice_pdf(self, invoice_id: str, email_address: str) -> dict:
        return self._unwrap(
            await self.manager.send_invoice_pdf(self.session, invoice_id, email_address)
        )

    async def get_customers(self) -> list[dict]:
        return self._unwrap(await self.manager.get_customers(self.session, limit=1000)) or []

    async def get_items(self) -> list[dict]:
        return self._unwrap(await self.manager.get_items(self.session, limit=1000)) or []
