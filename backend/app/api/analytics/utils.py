from collections import defaultdict
from datetime import datetime, timedelta

from app.utils.dates import normalize_utc

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


def get_cutoff_dates(range_key: str, now: datetime):
    """Start of the current window plus the equally long window before it."""
    duration = timedelta(days=RANGE_DAYS[range_key])
    current_start = now - duration
    previous_start = current_start - duration
    return current_start, previous_start


def _amount(value) -> float:
    return float(value or 0)


def compute_invoice_analytics(current, previous) -> dict:
    total_revenue = sum(_amount(inv.total_amount) for inv in current)
    total_invoices = len(current)
    paid = sum(1 for inv in current if _amount(inv.balance) == 0)
    overdue = sum(1 for inv in current if inv.status == "overdue")
    pending = sum(
        1
        for inv in current
        if inv.status == "pending" or (_amount(inv.balance) > 0 and inv.status != "overdue")
    )
    outstanding = sum(_amount(inv.balance) for inv in current)
    average = total_revenue / total_invoices if total_invoices else 0.0

    prev_revenue = sum(_amount(inv.total_amount) for inv in previous)
    if prev_revenue == 0:
        growth = 100.0 if total_revenue > 0 else 0.0
    else:
        growth = (total_revenue - prev_revenue) / prev_revenue * 100

    customers = {}
    for inv in current:
        name = inv.customer_name or "Unknown Customer"
        entry = customers.setdefault(name, {"name": name, "total": 0.0, "count": 0})
        entry["total"] += _amount(inv.total_amount)
        entry["count"] += 1
    top_customers = sorted(customers.values(), key=lambda c: c["total"], reverse=True)[:5]
    for entry in top_customers:
        entry["total"] = round(entry["total"], 2)

    monthly = defaultdict(float)
    for inv in current:
        created = normalize_utc(inv.created_at)
        monthly[(created.year, created.month)] += _amount(inv.total_amount)
    monthly_revenue = [
        {
            "month": datetime(year, month, 1).strftime("%b"),
            "revenue": round(revenue, 2),
        }
        for (year, month), revenue in sorted(monthly.items())
    ]

    return {
        "totalInvoices": total_invoices,
        "totalRevenue": round(total_revenue, 2),
        "paidInvoices": paid,
        "pendingInvoices": pending,
        "overdueInvoices": overdue,
        "outstandingBalance": round(outstanding, 2),
        "averageInvoiceValue": round(average, 2),
        "monthlyGrowth": round(growth, 2),
        "topCustomers": top_customers,
        "monthlyRevenue": monthly_revenue,
    }
