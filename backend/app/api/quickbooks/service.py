from datetime import date
from typing import Optional

from app.utils.dates import parse_date, utcnow


def invoice_status(invoice: dict, today: Optional[date] = None) -> str:
    today = today or utcnow().date()
    if float(invoice.get("Balance") or 0) == 0:
        return "paid"
    due = parse_date(invoice.get("DueDate"))
    if due and due < today:
        return "overdue"
    return "unpaid"


def summarize_invoice(invoice: dict, today: Optional[date] = None) -> dict:
    return {
        "id": invoice.get("Id"),
        "docNumber": invoice.get("DocNumber"),
        "txnDate": invoice.get("TxnDate"),
        "dueDate": invoice.get("DueDate"),
        "totalAmount": float(invoice.get("TotalAmt") or 0),
        "balance": float(invoice.get("Balance") or 0),
        "customer": (invoice.get("CustomerRef") or {}).get("name") or "Unknown",
        "status": invoice_status(invoice, today),
    }


def _txn_date(invoice: dict) -> Optional[date]:
    value = invoice.get("TxnDate") or (invoice.get("MetaData") or {}).get("CreateTime")
    try:
        return parse_date(value)
    except (TypeError, ValueError):
        return None


def filter_invoices(
    invoices: list[dict],
    customer: str = "",
    status: str = "",
    doc_number: str = "",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> list[dict]:
    """Substring and range filters applied after the vendor query."""
    customer = (customer or "").lower()
    status = (status or "").lower()
    doc_number = (doc_number or "").lower()

    result = []
    for inv in invoices:
        if customer and customer not in str((inv.get("CustomerRef") or {}).get("name") or "").lower():
            continue
        if status:
            paid = float(inv.get("Balance") or 0) == 0
            if status not in ("paid" if paid else "unpaid"):
                continue
        if doc_number and doc_number not in str(inv.get("DocNumber") or "").lower():
            continue
        if date_from or date_to:
            txn = _txn_date(inv)
            if txn is None:
                continue
            if date_from and txn < date_from:
                continue
            if date_to and txn > date_to:
                continue
        result.append(inv)
    return result


def invoice_line_items(invoice: dict) -> list[dict]:
    items = []
    for line in invoice.get("Line") or []:
        if line.get("DetailType") != "SalesItemLineDetail":
            continue
        detail = line.get("SalesItemLineDetail") or {}
        items.append(
            {
                "description": line.get("Description")
                or (detail.get("ItemRef") or {}).get("name")
                or "Item",
                "quantity": detail.get("Qty") or 1,
                "unitPrice": detail.get("UnitPrice") or 0,
                "amount": line.get("Amount") or 0,
            }
        )
    return items


def describe_invoice(invoice: dict, today: Optional[date] = None) -> dict:
    """Summary plus delivery state and line items."""
    return {
        **summarize_invoice(invoice, today),
        "emailStatus": invoice.get("EmailStatus") or "Unknown",
        "printStatus": invoice.get("PrintStatus") or "Unknown",
        "lineItems": invoice_line_items(invoice),
    }
