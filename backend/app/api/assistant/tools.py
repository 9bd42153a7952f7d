"""
Functions the chat model may call.

Each ``Tool`` carries a pydantic model for its arguments; ``execute_tool``
validates the raw JSON arguments against it before running the handler, and
every outcome is a plain ``{"success": ..., "data" | "error": ...}`` dict that
can be fed straight back to the model.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, List, Literal, Optional, Type

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, EmailStr, Field, ValidationError

from app.api.quickbooks.client import InvoiceSearchCriteria
from app.api.quickbooks.service import describe_invoice, summarize_invoice
from app.utils.dates import parse_date, utcnow
from app.utils.expression import calculate
from .backends import InvoiceBackend, InvoiceBackendError

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
DEFAULT_DUE_DAYS = 30


@dataclass
class ToolContext:
    backend: InvoiceBackend
    today: Optional[date] = None

    def current_date(self) -> date:
        return self.today or utcnow().date()


# --- argument models -----------------------------------------------------


class InvoiceIdParams(BaseModel):
    invoiceId: str = Field(..., description="The ID of the invoice to retrieve")


class InvoiceSearchParams(BaseModel):
    customerId: Optional[str] = Field(None, description="Filter by customer ID")
    startDate: Optional[date] = Field(None, description="Start date for invoice search (YYYY-MM-DD)")
    endDate: Optional[date] = Field(None, description="End date for invoice search (YYYY-MM-DD)")
    status: Optional[Literal["paid", "unpaid", "overdue", "all"]] = Field(
        None, description="Invoice status filter"
    )
    limit: Optional[int] = Field(None, ge=1, le=1000, description="Maximum number of invoices to return")
    offset: Optional[int] = Field(None, ge=0, description="Number of invoices to skip")


class InvoiceLineParams(BaseModel):
    itemId: str = Field(..., description="Item/Service ID")
    itemName: Optional[str] = Field(None, description="Item/Service name")
    quantity: float = Field(..., description="Quantity of the item")
    unitPrice: float = Field(..., description="Unit price of the item")
    amount: float = Field(..., description="Total amount for this line item")


class CreateInvoiceParams(BaseModel):
    customerId: str = Field(..., description="Customer ID for the invoice")
    customerName: Optional[str] = Field(None, description="Customer name")
    items: List[InvoiceLineParams] = Field(..., description="Line items for the invoice")
    dueDate: Optional[date] = Field(None, description="Due date for the invoice (YYYY-MM-DD)")
    emailAddress: Optional[EmailStr] = Field(None, description="Email address to send invoice to")


class InvoiceUpdates(BaseModel):
    dueDate: Optional[date] = Field(None, description="New due date (YYYY-MM-DD)")
    emailAddress: Optional[EmailStr] = Field(None, description="New email address")
    items: Optional[List[InvoiceLineParams]] = Field(None, description="Updated line items")


class UpdateInvoiceParams(BaseModel):
    invoiceId: str = Field(..., description="ID of the invoice to update")
    updates: InvoiceUpdates = Field(..., description="Fields to update on the invoice")


class EmailInvoiceParams(BaseModel):
    invoiceId: str = Field(..., description="ID of the invoice to email")
    emailAddress: EmailStr = Field(..., description="Email address to send the PDF to")


class DateRangeParams(BaseModel):
    period: Literal["today", "week", "month", "quarter", "year", "custom"] = Field(
        ..., description="Time period for the report"
    )
    startDate: Optional[date] = Field(None, description="Custom start date (YYYY-MM-DD)")
    endDate: Optional[date] = Field(None, description="Custom end date (YYYY-MM-DD)")


class NoParams(BaseModel):
    pass


class CalculatorParams(BaseModel):
    expression: str = Field(
        ...,
        description='Mathematical expression to calculate (e.g., "2 + 2", "15% of 1000")',
    )
    context: Optional[str] = Field(None, description="Additional context about what you are calculating")


class BusinessAdviceParams(BaseModel):
    topic: str = Field(
        ...,
        description='Business topic or question (e.g., "cash flow management", "invoice payment terms")',
    )
    businessType: Optional[str] = Field(None, description='Type of business (e.g., "freelancer", "consultant")')
    specificSituation: Optional[str] = Field(None, description="Specific situation or context for more tailored advice")


class KnowledgeQueryParams(BaseModel):
    query: str = Field(..., description="Question or topic to get information about")
    domain: Optional[str] = Field(None, description='Domain or field (e.g., "finance", "marketing", "legal")')


# --- helpers -------------------------------------------------------------


def get_date_range(
    period: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> tuple[str, str]:
    today = today or utcnow().date()
    if period == "today":
        start, end = today, today
    elif period == "week":
        start, end = today - timedelta(days=7), today
    elif period == "month":
        start = today.replace(day=1)
        end = today.replace(day=calendar.monthrange(today.year, today.month)[1])
    elif period == "quarter":
        start, end = today - relativedelta(months=3), today
    elif period == "year":
        start, end = date(today.year, 1, 1), today
    elif period == "custom":
        return (
            (start_date or today - timedelta(days=30)).isoformat(),
            (end_date or today).isoformat(),
        )
    else:
        start, end = today - timedelta(days=30), today
    return start.isoformat(), end.isoformat()


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _qb_lines(items: List[InvoiceLineParams]) -> list[dict]:
    return [
        {
            "Id": str(index),
            "Amount": item.amount,
            "DetailType": "SalesItemLineDetail",
            "SalesItemLineDetail": {
                "ItemRef": {"value": item.itemId, "name": item.itemName},
                "Qty": item.quantity,
                "UnitPrice": item.unitPrice,
            },
        }
        for index, item in enumerate(items, start=1)
    ]


BUSINESS_ADVICE = {
    "invoice payment terms": {
        "advice": "Optimal payment terms balance cash flow with customer relationships. Consider offering 2/10 Net 30 (2% discount if paid within 10 days, otherwise due in 30 days).",
        "bestPractices": [
            "Clearly state payment terms on all invoices",
            "Offer early payment discounts to incentivize faster payment",
            "Set up automatic late payment reminders",
            "Consider requiring deposits for large projects",
        ],
        "warnings": ["Avoid terms longer than 60 days", "Be consistent across all customers"],
    },
    "cash flow management": {
        "advice": "Effective cash flow management is crucial for business survival. Focus on reducing the time between invoice creation and payment collection.",
        "bestPractices": [
            "Invoice immediately upon delivery",
            "Follow up on overdue invoices within 7 days",
            "Maintain 3-6 months of operating expenses in reserves",
            "Use cash flow forecasting tools",
            "Consider factoring for immediate cash from receivables",
        ],
        "warnings": ["Never ignore aging receivables", "Avoid over-extending credit terms"],
    },
    "customer retention": {
        "advice": "Retaining existing customers costs 5-25x less than acquiring new ones. Focus on exceptional service and clear communication.",
        "bestPractices": [
            "Respond to customer inquiries within 24 hours",
            "Provide detailed, easy-to-understand invoices",
            "Offer multiple payment options",
            "Send thank you notes for prompt payments",
            "Regular check-ins with key customers",
        ],
        "warnings": ["Don't ignore customer complaints", "Avoid surprising customers with unexpected charges"],
    },
}

KNOWLEDGE_BASE = {
    "what is an invoice": {
        "definition": "An invoice is a commercial document issued by a seller to a buyer relating to a sale transaction and indicating the products, quantities, and agreed-upon prices for products or services the seller had provided the buyer.",
        "keyComponents": ["Invoice number", "Date issued", "Payment terms", "Itemized list", "Total amount", "Payment methods"],
        "importance": "Invoices serve as legal proof of sale and are essential for accounting, tax purposes, and cash flow management.",
    },
    "accounts receivable": {
        "definition": "Accounts receivable represents the balance of money due to a firm for goods or services delivered or used but not yet paid for by customers.",
        "management": "Effective AR management includes timely invoicing, credit checks, payment tracking, and collection procedures.",
        "importance": "AR directly impacts cash flow and is a key indicator of business financial health.",
    },
    "payment terms": {
        "definition": "Payment terms specify when payments are due and may include discounts for early payment.",
        "common": ["Net 30 (due in 30 days)", "Net 15", "2/10 Net 30 (2% discount if paid in 10 days)", "Due on receipt"],
        "factors": "Consider industry standards, customer relationships, cash flow needs, and competitive factors.",
    },
}


# --- handlers ------------------------------------------------------------


async def get_invoice(ctx: ToolContext, params: InvoiceIdParams) -> dict:
    invoice = await ctx.backend.get_invoice(params.invoiceId)
    return describe_invoice(invoice, ctx.current_date())


async def list_invoices(ctx: ToolContext, params: InvoiceSearchParams) -> dict:
    limit = params.limit or DEFAULT_LIST_LIMIT
    criteria = InvoiceSearchCriteria(
        customer_id=params.customerId,
        start_date=_iso(params.startDate),
        end_date=_iso(params.endDate),
        status=params.status,
        limit=limit,
        offset=params.offset or 0,
    )
    invoices = await ctx.backend.find_invoices(criteria)
    today = ctx.current_date()
    return {
        "invoices": [summarize_invoice(inv, today) for inv in invoices],
        "count": len(invoices),
        "hasMore": len(invoices) == limit,
    }


async def create_invoice(ctx: ToolContext, params: CreateInvoiceParams) -> dict:
    due = params.dueDate or ctx.current_date() + timedelta(days=DEFAULT_DUE_DAYS)
    invoice = await ctx.backend.create_invoice(
        {
            "CustomerRef": {"value": params.customerId, "name": params.customerName},
            "DueDate": due.isoformat(),
            "Line": _qb_lines(params.items),
        }
    )
    result = {
        "id": invoice.get("Id"),
        "docNumber": invoice.get("DocNumber"),
        "totalAmount": invoice.get("TotalAmt"),
        "customer": (invoice.get("CustomerRef") or {}).get("name"),
        "emailSent": False,
    }
    if params.emailAddress:
        try:
            await ctx.backend.send_invoice_pdf(invoice.get("Id"), params.emailAddress)
        except InvoiceBackendError as e:
            logger.warning("Invoice %s created but not emailed: %s", invoice.get("Id"), e)
            result["emailError"] = str(e)
        else:
            result["emailSent"] = True
    return result


async def update_invoice(ctx: ToolContext, params: UpdateInvoiceParams) -> dict:
    current = await ctx.backend.get_invoice(params.invoiceId)
    data: dict[str, Any] = {"SyncToken": current.get("SyncToken")}
    if params.updates.dueDate:
        data["DueDate"] = params.updates.dueDate.isoformat()
    if params.updates.emailAddress:
        data["BillEmail"] = {"Address": params.updates.emailAddress}
    if params.updates.items:
        data["Line"] = _qb_lines(params.updates.items)

    invoice = await ctx.backend.update_invoice(params.invoiceId, data)
    return {
        "id": invoice.get("Id"),
        "docNumber": invoice.get("DocNumber"),
        "totalAmount": invoice.get("TotalAmt"),
        "message": "Invoice updated successfully",
    }


async def void_invoice(ctx: ToolContext, params: InvoiceIdParams) -> dict:
    await ctx.backend.void_invoice(params.invoiceId)
    return {"id": params.invoiceId, "message": "Invoice has been voided"}


async def delete_invoice(ctx: ToolContext, params: InvoiceIdParams) -> dict:
    await ctx.backend.delete_invoice(params.invoiceId)
    return {"id": params.invoiceId, "message": "Invoice has been deleted permanently"}


async def email_invoice(ctx: ToolContext, params: EmailInvoiceParams) -> dict:
    await ctx.backend.send_invoice_pdf(params.invoiceId, params.emailAddress)
    return {
        "id": params.invoiceId,
        "emailAddress": params.emailAddress,
        "message": f"Invoice PDF sent successfully to {params.emailAddress}",
    }


async def get_invoice_stats(ctx: ToolContext, params: DateRangeParams) -> dict:
    today = ctx.current_date()
    start, end = get_date_range(params.period, params.startDate, params.endDate, today)
    invoices = await ctx.backend.find_invoices(
        InvoiceSearchCriteria(start_date=start, end_date=end)
    )

    total = collected = outstanding = overdue = 0.0
    paid_count = unpaid_count = overdue_count = 0
    for invoice in invoices:
        amount = float(invoice.get("TotalAmt") or 0)
        balance = float(invoice.get("Balance") or 0)
        total += amount
        if balance == 0:
            paid_count += 1
            collected += amount
            continue
        unpaid_count += 1
        outstanding += balance
        due = parse_date(invoice.get("DueDate"))
        if due and due < today:
            overdue_count += 1
            overdue += balance

    return {
        "period": f"{start} to {end}",
        "summary": {
            "totalInvoices": len(invoices),
            "totalRevenue": round(total, 2),
            "collectedRevenue": round(collected, 2),
            "outstandingRevenue": round(outstanding, 2),
            "overdueRevenue": round(overdue, 2),
        },
        "breakdown": {
            "paid": {"count": paid_count, "amount": round(collected, 2)},
            "unpaid": {"count": unpaid_count, "amount": round(outstanding, 2)},
            "overdue": {"count": overdue_count, "amount": round(overdue, 2)},
        },
    }


async def get_customers(ctx: ToolContext, params: NoParams) -> dict:
    customers = await ctx.backend.get_customers()
    return {
        "customers": [
            {
                "id": c.get("Id"),
                "name": c.get("DisplayName") or c.get("Name"),
                "companyName": c.get("CompanyName"),
                "email": (c.get("PrimaryEmailAddr") or {}).get("Address"),
                "phone": (c.get("PrimaryPhone") or {}).get("FreeFormNumber"),
                "balance": c.get("Balance") or 0,
            }
            for c in customers
        ]
    }


async def get_items(ctx: ToolContext, params: NoParams) -> dict:
    items = await ctx.backend.get_items()
    return {
        "items": [
            {
                "id": i.get("Id"),
                "name": i.get("Name"),
                "description": i.get("Description"),
                "unitPrice": i.get("UnitPrice") or 0,
                "type": i.get("Type"),
                "active": i.get("Active"),
            }
            for i in items
        ]
    }


async def calculator(ctx: ToolContext, params: CalculatorParams) -> dict:
    calculation = calculate(params.expression)
    return {
        "expression": params.expression,
        "result": calculation["result"],
        "explanation": calculation["explanation"],
        "context": params.context or "Mathematical calculation",
    }


async def business_advice(ctx: ToolContext, params: BusinessAdviceParams) -> dict:
    advice = BUSINESS_ADVICE.get(params.topic.strip().lower())
    if advice is None:
        advice = {
            "advice": f"For {params.topic}, focus on clear communication, consistent processes, and customer-centric approaches.",
            "bestPractices": [
                "Document all processes and procedures",
                "Maintain open communication with stakeholders",
                "Regular review and optimization of workflows",
                "Invest in proper tools and technology",
            ],
            "warnings": [
                "Stay compliant with relevant regulations",
                "Keep detailed records for all transactions",
            ],
        }
    return {
        "topic": params.topic,
        "businessType": params.businessType or "General Business",
        "advice": advice["advice"],
        "bestPractices": advice["bestPractices"],
        "warnings": advice["warnings"],
        "specificContext": params.specificSituation or "General guidance",
    }


async def knowledge_query(ctx: ToolContext, params: KnowledgeQueryParams) -> dict:
    response = KNOWLEDGE_BASE.get(params.query.strip().lower())
    if response is None:
        if params.domain and "finance" in params.domain.lower():
            response = {
                "answer": f'For financial topics like "{params.query}", it\'s important to consider both theoretical principles and practical applications in your specific business context.',
                "suggestion": "Consider consulting with a financial advisor or accountant for personalized advice.",
                "resources": ["QuickBooks Learning Center", "IRS publications", "Industry-specific financial guides"],
            }
        else:
            response = {
                "answer": f'Regarding "{params.query}", this appears to be a specific question that may require specialized knowledge or current information.',
                "suggestion": "For the most accurate and up-to-date information, consider consulting relevant experts or authoritative sources in this field.",
                "note": "I can help with invoice management, business calculations, and general business advice within my capabilities.",
            }
    return {
        "query": params.query,
        "domain": params.domain or "General",
        "response": response,
        "timestamp": utcnow().isoformat(),
    }


# --- registry ------------------------------------------------------------


@dataclass
class Tool:
    name: str
    description: str
    parameters: Type[BaseModel]
    handler: Callable[[ToolContext, Any], Awaitable[dict]]
    failure: str = ""

    def openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.model_json_schema(),
            },
        }

    async def execute(self, ctx: ToolContext, arguments: Optional[dict]) -> dict:
        try:
            params = self.parameters.model_validate(arguments or {})
        except ValidationError as e:
            return {"success": False, "error": f"Invalid arguments for {self.name}: {e}"}
        try:
            data = await self.handler(ctx, params)
        except InvoiceBackendError as e:
            logger.warning("Tool %s failed: %s", self.name, e)
            return {"success": False, "error": f"{self.failure}: {e}"}
        except Exception as e:
            logger.exception("Tool %s raised", self.name)
            return {"success": False, "error": f"{self.failure}: {e}"}
        return {"success": True, "data": data}


TOOLS = {
    tool.name: tool
    for tool in [
        Tool(
            "getInvoice",
            "Get details of a specific invoice by ID. Use this when the user asks for information about a particular invoice.",
            InvoiceIdParams,
            get_invoice,
            "Failed to retrieve invoice",
        ),
        Tool(
            "listInvoices",
            "List invoices with optional filters. Use this when the user wants to see multiple invoices, search for invoices, or get invoice summaries.",
            InvoiceSearchParams,
            list_invoices,
            "Failed to list invoices",
        ),
        Tool(
            "createInvoice",
            "Create a new invoice. Use this when the user wants to generate a new invoice for a customer.",
            CreateInvoiceParams,
            create_invoice,
            "Failed to create invoice",
        ),
        Tool(
            "updateInvoice",
            "Update an existing invoice. Use this when the user wants to modify invoice details like due date, items, or customer email.",
            UpdateInvoiceParams,
            update_invoice,
            "Failed to update invoice",
        ),
        Tool(
            "voidInvoice",
            "Void an invoice. Use this when the user wants to cancel an invoice without deleting it from records.",
            InvoiceIdParams,
            void_invoice,
            "Failed to void invoice",
        ),
        Tool(
            "deleteInvoice",
            "Delete an invoice permanently. Use this when the user wants to permanently remove an invoice.",
            InvoiceIdParams,
            delete_invoice,
            "Failed to delete invoice",
        ),
        Tool(
            "emailInvoice",
            "Send an invoice PDF via email. Use this when the user wants to email an invoice to a customer or specific email address.",
            EmailInvoiceParams,
            email_invoice,
            "Failed to email invoice",
        ),
        Tool(
            "getInvoiceStats",
            "Get invoice statistics and analytics for a given time period. Use this when the user asks for revenue reports, payment summaries, or invoice analytics.",
            DateRangeParams,
            get_invoice_stats,
            "Failed to get invoice statistics",
        ),
        Tool(
            "getCustomers",
            "Get the list of customers. Use this when the user needs to see available customers or when creating invoices.",
            NoParams,
            get_customers,
            "Failed to get customers",
        ),
        Tool(
            "getItems",
            "Get the list of items/services. Use this when the user needs to see available products or services for creating invoices.",
            NoParams,
            get_items,
            "Failed to get items",
        ),
        Tool(
            "calculator",
            "Perform mathematical calculations including basic arithmetic and percentages. Use this for any numerical computation the user requests.",
            CalculatorParams,
            calculator,
            "Calculation error",
        ),
        Tool(
            "businessAdvice",
            "Provide business advice, best practices, and recommendations on invoice management, cash flow, customer relations and similar topics.",
            BusinessAdviceParams,
            business_advice,
            "Failed to provide business advice",
        ),
        Tool(
            "knowledgeQuery",
            "Answer general knowledge questions and explain concepts. Use this for any question that doesn't require the other specific tools.",
            KnowledgeQueryParams,
            knowledge_query,
            "Failed to process knowledge query",
        ),
    ]
}


def openai_tool_schemas() -> list[dict]:
    return [tool.openai_schema() for tool in TOOLS.values()]


async def execute_tool(name: str, arguments: Optional[dict], ctx: ToolContext) -> dict:
    tool = TOOLS.get(name)
    if tool is None:
        return {"success": False, "error": f"Unknown tool: {name}"}
    return await tool.execute(ctx, arguments)
