import logging
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, func, delete, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.utils.dates import utcnow
from . import models as invoices_models
from . import schemas as invoices_schemas

logger = logging.getLogger(__name__)

Invoice = invoices_models.Invoice

NUMBER_ATTEMPTS = 3


class InvoiceNumberConflict(Exception):
    pass


def compute_totals(
    line_items: Sequence[invoices_schemas.LineItem], tax_rate: Optional[float] = None
) -> invoices_schemas.InvoiceTotals:
    """Line amounts, subtotal, tax and total, each rounded to cents."""
    rate = config.INVOICE_TAX_RATE if tax_rate is None else float(tax_rate)
    lines = []
    subtotal = 0.0
    for item in line_items:
        amount = round(float(item.quantity) * float(item.unit_price), 2)
        subtotal += amount
        lines.append(item.model_copy(update={"amount": amount}))
    subtotal = round(subtotal, 2)
    tax = round(subtotal * rate, 2)
    return invoices_schemas.InvoiceTotals(
        line_items=lines,
        subtotal=subtotal,
        tax_rate=rate,
        tax=tax,
        total_amount=round(subtotal + tax, 2),
    )


async def next_invoice_number(db: AsyncSession, team_id: str) -> str:
    """One past the highest sequence used this year; gaps left by deletes are not reused."""
    prefix = f"INV-{utcnow().year}-"
    stmt = select(Invoice.invoice_number).where(
        Invoice.team_id == team_id, Invoice.invoice_number.like(f"{prefix}%")
    )
    highest = 0
    for number in (await db.execute(stmt)).scalars():
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:03d}"


async def create_invoice(
    db: AsyncSession,
    team_id: str,
    created_by: str,
    payload: invoices_schemas.InvoiceCreate,
) -> Invoice:
    totals = compute_totals(payload.line_items, payload.tax_rate)
    for _ in range(NUMBER_ATTEMPTS):
        inv = Invoice(
            team_id=team_id,
            created_by=created_by,
            invoice_number=await next_invoice_number(db, team_id),
            customer_name=payload.customer_name.strip(),
            customer_email=payload.customer_email,
            invoice_date=payload.invoice_date or utcnow().date(),
            due_date=payload.due_date,
            line_items=[item.model_dump() for item in totals.line_items],
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax=totals.tax,
            total_amount=totals.total_amount,
            balance=totals.total_amount,
            status=payload.status.value,
            notes=payload.notes,
            terms=payload.terms,
        )
        db.add(inv)
        try:
            await db.commit()
        except IntegrityError:
            # a concurrent create took the same number
            await db.rollback()
            logger.warning("Invoice number %s taken in team %s, retrying", inv.invoice_number, team_id)
            continue
        await db.refresh(inv)
        return inv
    raise InvoiceNumberConflict(f"Could not allocate an invoice number for team {team_id}")


async def get_invoice(db: AsyncSession, team_id: str, invoice_id: str) -> Optional[Invoice]:
    stmt = select(Invoice).where(Invoice.id == invoice_id, Invoice.team_id == team_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_invoices(
    db: AsyncSession,
    team_id: str,
    status: Optional[str] = None,
    customer: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Invoice], int]:
    stmt = select(Invoice).where(Invoice.team_id == team_id)
    if status:
        stmt = stmt.where(Invoice.status == status)
    if customer:
        stmt = stmt.where(func.lower(Invoice.customer_name).like(f"%{customer.lower()}%"))

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = stmt.order_by(desc(Invoice.created_at)).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def update_invoice(
    db: AsyncSession, invoice: Invoice, payload: invoices_schemas.InvoiceUpdate
) -> Invoice:
    changes = payload.model_dump(exclude_unset=True, exclude={"line_items", "tax_rate", "balance"})
    for key, value in changes.items():
        if key == "status" and value is not None:
            value = invoices_schemas.InvoiceStatus(value).value
        setattr(invoice, key, value)

    fields_set = payload.model_fields_set
    if "line_items" in fields_set or "tax_rate" in fields_set:
        items = payload.line_items
        if items is None:
            items = [invoices_schemas.LineItem(**item) for item in invoice.line_items or []]
        rate = payload.tax_rate if payload.tax_rate is not None else invoice.tax_rate
        totals = compute_totals(items, rate)
        unpaid_in_full = invoice.balance == invoice.total_amount
        invoice.line_items = [item.model_dump() for item in totals.line_items]
        invoice.subtotal = totals.subtotal
        invoice.tax_rate = totals.tax_rate
        invoice.tax = totals.tax
        invoice.total_amount = totals.total_amount
        if unpaid_in_full or invoice.balance > totals.total_amount:
            invoice.balance = totals.total_amount

    if payload.balance is not None:
        invoice.balance = round(payload.balance, 2)

    await db.commit()
    await db.refresh(invoice)
    return invoice


async def delete_invoice(db: AsyncSession, team_id: str, invoice_id: str) -> bool:
    result = await db.execute(
        delete(Invoice).where(Invoice.id == invoice_id, Invoice.team_id == team_id)
    )
    await db.commit()
    return result.rowcount > 0


async def get_invoices_between(
    db: AsyncSession,
    team_id: str,
    start: datetime,
    end: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> list[Invoice]:
    stmt = select(Invoice).where(Invoice.team_id == team_id, Invoice.created_at >= start)
    if end is not None:
        stmt = stmt.where(Invoice.created_at < end)
    if created_by:
        stmt = stmt.where(Invoice.created_by == created_by)
    result = await db.execute(stmt.order_by(desc(Invoice.created_at)))
    return list(result.scalars().all())
