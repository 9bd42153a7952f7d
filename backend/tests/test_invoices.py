from datetime import date

import pytest
from sqlalchemy import select

from app.api.audit.models import AuditLog
from app.api.invoices import crud as invoices_crud
from app.api.invoices.schemas import InvoiceCreate, InvoiceUpdate, LineItem
from app.utils.dates import utcnow
from conftest import auth_headers

pytestmark = pytest.mark.asyncio

LINES = [
    {"description": "Design work", "quantity": 2, "unit_price": 100},
    {"description": "Hosting", "quantity": 1, "unit_price": 50.5},
]


@pytest.fixture
async def team(make_team):
    return await make_team(
        members={"acct-1": "accountant", "viewer-1": "viewer", "helper-1": "assistant"}
    )


class TestComputeTotals:
    def test_totals(self):
        totals = invoices_crud.compute_totals([LineItem(**line) for line in LINES], 0.08)

        assert [item.amount for item in totals.line_items] == [200.0, 50.5]
        assert totals.subtotal == 250.5
        assert totals.tax == 20.04
        assert totals.total_amount == 270.54

    def test_client_amounts_are_ignored(self):
        totals = invoices_crud.compute_totals(
            [LineItem(description="x", quantity=3, unit_price=10, amount=9999)], 0
        )
        assert totals.line_items[0].amount == 30
        assert totals.total_amount == 30

    def test_default_rate(self):
        totals = invoices_crud.compute_totals([LineItem(quantity=1, unit_price=100)])
        assert totals.tax_rate == 0.08
        assert totals.total_amount == 108

    def test_rounding_to_cents(self):
        totals = invoices_crud.compute_totals([LineItem(quantity=3, unit_price=0.333)], 0.075)
        assert totals.subtotal == 1.0
        assert totals.tax == 0.07
        assert totals.total_amount == 1.07

    def test_no_lines(self):
        totals = invoices_crud.compute_totals([], 0.08)
        assert totals.subtotal == 0 and totals.total_amount == 0


class TestInvoiceCrud:
    async def test_numbering_is_per_team(self, db, make_team):
        first_team = await make_team(owner_id="a")
        second_team = await make_team(owner_id="b")
        payload = InvoiceCreate(customer_name="Acme", line_items=LINES)

        one = await invoices_crud.create_invoice(db, first_team.id, "a", payload)
        two = await invoices_crud.create_invoice(db, first_team.id, "a", payload)
        other = await invoices_crud.create_invoice(db, second_team.id, "b", payload)

        year = utcnow().year
        assert one.invoice_number == f"INV-{year}-001"
        assert two.invoice_number == f"INV-{year}-002"
        assert other.invoice_number == f"INV-{year}-001"

    async def test_numbering_after_delete(self, db, team):
        payload = InvoiceCreate(customer_name="Acme")
        first = await invoices_crud.create_invoice(db, team.id, "owner-1", payload)
        await invoices_crud.create_invoice(db, team.id, "owner-1", payload)
        await invoices_crud.delete_invoice(db, team.id, first.id)

        third = await invoices_crud.create_invoice(db, team.id, "owner-1", payload)

        assert third.invoice_number == f"INV-{utcnow().year}-003"

    async def test_numbering_past_three_digits(self, db, team):
        year = utcnow().year
        payload = InvoiceCreate(customer_name="Acme")
        for number in (f"INV-{year}-999", f"INV-{year}-1000"):
            invoice = await invoices_crud.create_invoice(db, team.id, "owner-1", payload)
            invoice.invoice_number = number
            await db.commit()

        assert await invoices_crud.next_invoice_number(db, team.id) == f"INV-{year}-1001"

    async def test_taken_number_is_retried(self, db, team, monkeypatch):
        year = utcnow().year
        payload = InvoiceCreate(customer_name="Acme")
        await invoices_crud.create_invoice(db, team.id, "owner-1", payload)
        numbers = [f"INV-{year}-001", f"INV-{year}-002"]

        async def racing_number(db, team_id):
            return numbers.pop(0)

        monkeypatch.setattr(invoices_crud, "next_invoice_number", racing_number)

        invoice = await invoices_crud.create_invoice(db, team.id, "owner-1", payload)

        assert invoice.invoice_number == f"INV-{year}-002"
        assert numbers == []

    async def test_conflict_after_retries(self, db, team, monkeypatch):
        payload = InvoiceCreate(customer_name="Acme")
        taken = (await invoices_crud.create_invoice(db, team.id, "owner-1", payload)).invoice_number

        async def always_taken(db, team_id):
            return taken

        monkeypatch.setattr(invoices_crud, "next_invoice_number", always_taken)

        with pytest.raises(invoices_crud.InvoiceNumberConflict):
            await invoices_crud.create_invoice(db, team.id, "owner-1", payload)
        _, total = await invoices_crud.list_invoices(db, team.id)
        assert total == 1

    async def test_new_invoice_balance_equals_total(self, db, team):
        invoice = await invoices_crud.create_invoice(
            db, team.id, "owner-1", InvoiceCreate(customer_name=" Acme ", line_items=LINES, tax_rate=0.1)
        )

        assert invoice.customer_name == "Acme"
        assert invoice.total_amount == 275.55
        assert invoice.balance == invoice.total_amount
        assert invoice.status == "draft"
        assert invoice.invoice_date == utcnow().date()

    async def test_update_recomputes_unpaid_balance(self, db, team):
        invoice = await invoices_crud.create_invoice(
            db, team.id, "owner-1", InvoiceCreate(customer_name="Acme", line_items=LINES, tax_rate=0)
        )

        updated = await invoices_crud.update_invoice(
            db, invoice, InvoiceUpdate(line_items=[LineItem(quantity=1, unit_price=80)])
        )

        assert updated.subtotal == 80
        assert updated.total_amount == 80
        assert updated.balance == 80

    async def test_update_keeps_partial_payment(self, db, team):
        invoice = await invoices_crud.create_invoice(
            db, team.id, "owner-1", InvoiceCreate(customer_name="Acme", line_items=LINES, tax_rate=0)
        )
        invoice = await invoices_crud.update_invoice(db, invoice, InvoiceUpdate(balance=100))

        updated = await invoices_crud.update_invoice(db, invoice, InvoiceUpdate(tax_rate=0.1))

        assert updated.total_amount == 275.55
        assert updated.balance == 100

    async def test_update_caps_balance_at_total(self, db, team):
        invoice = await invoices_crud.create_invoice(
            db, team.id, "owner-1", InvoiceCreate(customer_name="Acme", line_items=LINES, tax_rate=0)
        )
        invoice = await invoices_crud.update_invoice(db, invoice, InvoiceUpdate(balance=200))

        updated = await invoices_crud.update_invoice(
            db, invoice, InvoiceUpdate(line_items=[LineItem(quantity=1, unit_price=50)])
        )

        assert updated.total_amount == 50
        assert updated.balance == 50

    async def test_list_filters(self, db, team):
        for name, status in [("Acme", "paid"), ("Acme West", "pending"), ("Globex", "pending")]:
            await invoices_crud.create_invoice(
                db, team.id, "owner-1", InvoiceCreate(customer_name=name, status=status)
            )

        invoices, total = await invoices_crud.list_invoices(db, team.id, customer="acme")
        assert total == 2
        assert {inv.customer_name for inv in invoices} == {"Acme", "Acme West"}

        invoices, total = await invoices_crud.list_invoices(db, team.id, status="pending", limit=1)
        assert total == 2
        assert len(invoices) == 1


class TestInvoiceRoutes:
    async def test_create_and_get(self, client, db, team):
        response = await client.post(
            f"/api/invoices?teamId={team.id}",
            json={
                "customer_name": "Acme",
                "customer_email": "ap@acme.com",
                "due_date": "2030-01-31",
                "line_items": LINES,
                "tax_rate": 0.08,
            },
            headers=auth_headers("acct-1"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Invoice created successfully"
        invoice = body["data"]
        assert invoice["total_amount"] == 270.54
        assert invoice["balance"] == 270.54
        assert invoice["due_date"] == "2030-01-31"
        assert invoice["created_by"] == "acct-1"

        fetched = await client.get(f"/api/invoices/{invoice['id']}?teamId={team.id}", headers=auth_headers("viewer-1"))
        assert fetched.json()["data"]["invoice_number"] == invoice["invoice_number"]

        log = (await db.execute(select(AuditLog))).scalar_one()
        assert (log.action, log.target_id) == ("invoice:create", invoice["id"])

    async def test_create_after_delete(self, client, team):
        url = f"/api/invoices?teamId={team.id}"
        headers = auth_headers("owner-1")
        first = (await client.post(url, json={"customer_name": "Acme"}, headers=headers)).json()["data"]
        await client.post(url, json={"customer_name": "Acme"}, headers=headers)
        await client.delete(f"/api/invoices/{first['id']}?teamId={team.id}", headers=headers)

        response = await client.post(url, json={"customer_name": "Acme"}, headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["invoice_number"] == f"INV-{utcnow().year}-003"

    async def test_number_conflict_is_409(self, client, team, monkeypatch):
        async def conflict(*args, **kwargs):
            raise invoices_crud.InvoiceNumberConflict("no number")

        monkeypatch.setattr(invoices_crud, "create_invoice", conflict)

        response = await client.post(
            f"/api/invoices?teamId={team.id}", json={"customer_name": "Acme"}, headers=auth_headers("owner-1")
        )

        assert response.status_code == 409
        assert response.json() == {"success": False, "error": "Invoice number conflict, please retry"}

    async def test_validation(self, client, team):
        response = await client.post(
            f"/api/invoices?teamId={team.id}",
            json={"customer_name": "Acme", "line_items": [{"quantity": -1, "unit_price": 5}]},
            headers=auth_headers("owner-1"),
        )
        assert response.status_code == 400
        assert "quantity" in response.json()["error"]

    async def test_viewer_and_assistant_cannot_create(self, client, team):
        for user in ("viewer-1", "helper-1"):
            response = await client.post(
                f"/api/invoices?teamId={team.id}", json={"customer_name": "Acme"}, headers=auth_headers(user)
            )
            assert response.status_code == 403

    async def test_list(self, client, db, team):
        await invoices_crud.create_invoice(db, team.id, "owner-1", InvoiceCreate(customer_name="Acme"))
        await invoices_crud.create_invoice(
            db, team.id, "owner-1", InvoiceCreate(customer_name="Globex", status="paid")
        )

        response = await client.get(f"/api/invoices?teamId={team.id}&status=paid", headers=auth_headers("viewer-1"))

        body = response.json()
        assert body["total"] == 1
        assert body["data"][0]["customer_name"] == "Globex"

    async def test_other_team_invoice_is_404(self, client, db, team, make_team):
        other = await make_team(owner_id="someone-else", name="Other")
        invoice = await invoices_crud.create_invoice(
            db, other.id, "someone-else", InvoiceCreate(customer_name="Secret")
        )

        response = await client.get(f"/api/invoices/{invoice.id}?teamId={team.id}", headers=auth_headers("owner-1"))
        assert response.status_code == 404

        response = await client.get(f"/api/invoices/{invoice.id}?teamId={other.id}", headers=auth_headers("owner-1"))
        assert response.status_code == 403

    async def test_update(self, client, db, team):
        invoice = await invoices_crud.create_invoice(
            db, team.id, "owner-1", InvoiceCreate(customer_name="Acme", line_items=LINES, tax_rate=0)
        )

        response = await client.put(
            f"/api/invoices/{invoice.id}?teamId={team.id}",
            json={"status": "pending", "due_date": str(date(2031, 5, 1))},
            headers=auth_headers("acct-1"),
        )

        data = response.json()["data"]
        assert data["status"] == "pending"
        assert data["due_date"] == "2031-05-01"
        assert data["total_amount"] == 250.5

    async def test_delete_requires_admin(self, client, db, team):
        invoice = await invoices_crud.create_invoice(db, team.id, "owner-1", InvoiceCreate(customer_name="Acme"))
        url = f"/api/invoices/{invoice.id}?teamId={team.id}"

        assert (await client.delete(url, headers=auth_headers("acct-1"))).status_code == 403

        response = await client.delete(url, headers=auth_headers("owner-1"))
        assert response.json() == {"success": True, "message": "Invoice deleted successfully"}
        assert (await client.get(url, headers=auth_headers("owner-1"))).status_code == 404
        assert (await client.delete(url, headers=auth_headers("owner-1"))).status_code == 404
