from datetime import date

import pytest

from app.api.quickbooks.client import InvoiceSearchCriteria
from app.utils import qbo_query


class TestEscaping:
    def test_single_quotes_are_doubled(self):
        assert qbo_query.quote("Amy's Bird Sanctuary") == "'Amy''s Bird Sanctuary'"

    def test_backslash_escaped_before_quotes(self):
        assert qbo_query.escape("a\\'b") == "a\\\\''b"

    def test_control_characters_removed(self):
        assert qbo_query.escape("line\nbreak\x00") == "linebreak"

    def test_injection_attempt_stays_inside_literal(self):
        clause = qbo_query.condition("DocNumber", "=", "1' OR '1'='1")
        assert clause == "DocNumber = '1'' OR ''1''=''1'"

    def test_dates_are_formatted(self):
        assert qbo_query.quote(date(2026, 3, 9)) == "'2026-03-09'"


class TestConditions:
    def test_numbers_are_unquoted(self):
        assert qbo_query.condition("Balance", ">", 0) == "Balance > 0"
        assert qbo_query.condition("TotalAmt", ">=", 12.5) == "TotalAmt >= 12.5"

    def test_strings_are_quoted(self):
        assert qbo_query.condition("Id", "=", "130") == "Id = '130'"

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            qbo_query.condition("Id", "; DROP", "1")

    def test_bad_field_rejected(self):
        with pytest.raises(ValueError):
            qbo_query.condition("Id = '1' OR Id", "=", "2")


class TestBuildSelect:
    def test_plain_select(self):
        assert qbo_query.build_select("Customer") == "SELECT * FROM Customer"

    def test_full_select(self):
        query = qbo_query.build_select(
            "Invoice",
            ["Balance > 0", "CustomerRef = '5'"],
            order_by="TxnDate DESC",
            start_position=11,
            max_results=10,
        )
        assert query == (
            "SELECT * FROM Invoice WHERE Balance > 0 AND CustomerRef = '5' "
            "ORDERBY TxnDate DESC STARTPOSITION 11 MAXRESULTS 10"
        )

    def test_max_results_is_capped(self):
        assert qbo_query.build_select("Item", max_results=5000).endswith("MAXRESULTS 1000")

    def test_start_position_is_one_based(self):
        assert "STARTPOSITION 1" in qbo_query.build_select("Item", start_position=0)


class TestInvoiceSearchCriteria:
    def test_no_filters(self):
        assert InvoiceSearchCriteria().to_query() == "SELECT * FROM Invoice"

    def test_paid(self):
        assert InvoiceSearchCriteria(status="paid").to_query() == (
            "SELECT * FROM Invoice WHERE Balance = 0"
        )

    def test_overdue_uses_today(self):
        query = InvoiceSearchCriteria(status="overdue").to_query(today=date(2026, 10, 17))
        assert query == "SELECT * FROM Invoice WHERE Balance > 0 AND DueDate < '2026-10-17'"

    def test_customer_dates_and_paging(self):
        query = InvoiceSearchCriteria(
            customer_id="58",
            start_date="2026-01-01",
            end_date="2026-03-31",
            status="unpaid",
            limit=20,
            offset=40,
        ).to_query()
        assert query == (
            "SELECT * FROM Invoice WHERE CustomerRef = '58' AND TxnDate >= '2026-01-01' "
            "AND TxnDate <= '2026-03-31' AND Balance > 0 STARTPOSITION 41 MAXRESULTS 20"
        )

    def test_all_status_adds_nothing(self):
        assert InvoiceSearchCriteria(status="all").to_query() == "SELECT * FROM Invoice"
