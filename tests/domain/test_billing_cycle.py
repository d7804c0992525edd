"""
BillingCycleCalculator: invoice placement around the closing day,
closing/due dates, and bill status.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ledger_kernel.domain.billing_cycle import (
    BillingCycleCalculator,
    add_months,
    clamp_day,
    parse_invoice_month,
)


class TestInvoicePlacement:
    """Closing day 5, due day 15: the card closes in the label month."""

    calc = BillingCycleCalculator(closing_day=5, due_day=15)

    def test_purchase_on_closing_day_stays_in_current_invoice(self):
        assert self.calc.invoice_month_for(date(2025, 3, 5)) == "2025-03"

    def test_purchase_one_day_after_closing_moves_to_next_invoice(self):
        assert self.calc.invoice_month_for(date(2025, 3, 6)) == "2025-04"

    def test_december_rolls_into_next_year(self):
        assert self.calc.invoice_month_for(date(2025, 12, 20)) == "2026-01"

    def test_static_helper_matches_instance(self):
        assert BillingCycleCalculator.compute_invoice_month(date(2025, 3, 6), 5, 15) == "2025-04"

    def test_closing_and_due_dates(self):
        assert self.calc.closing_date("2025-04") == date(2025, 4, 5)
        assert self.calc.due_date("2025-04") == date(2025, 4, 15)


class TestDueBeforeClosing:
    """Closing day 25, due day 5: the card closes the month before the label."""

    calc = BillingCycleCalculator(closing_day=25, due_day=5)

    def test_purchase_on_closing_day(self):
        assert self.calc.invoice_month_for(date(2025, 3, 25)) == "2025-04"

    def test_purchase_after_closing_day(self):
        assert self.calc.invoice_month_for(date(2025, 3, 26)) == "2025-05"

    def test_closing_date_is_in_previous_month(self):
        assert self.calc.closing_date("2025-04") == date(2025, 3, 25)
        assert self.calc.due_date("2025-04") == date(2025, 4, 5)

    def test_last_closed_invoice(self):
        assert self.calc.last_closed_invoice(date(2025, 4, 1)) == "2025-04"
        assert self.calc.last_closed_invoice(date(2025, 3, 25)) == "2025-03"


class TestShortMonths:

    def test_closing_day_31_clamps_in_february(self):
        calc = BillingCycleCalculator(closing_day=31, due_day=10)
        assert calc.invoice_month_for(date(2025, 2, 28)) == "2025-03"
        assert calc.closing_date("2025-03") == date(2025, 2, 28)

    def test_clamp_day_leap_year(self):
        assert clamp_day(2024, 2, 31) == date(2024, 2, 29)


class TestStatus:

    calc = BillingCycleCalculator(closing_day=5, due_day=15)

    def test_is_closed_only_after_closing_date(self):
        assert not self.calc.is_closed("2025-03", date(2025, 3, 5))
        assert self.calc.is_closed("2025-03", date(2025, 3, 6))

    def test_last_closed_invoice_before_and_after_closing(self):
        assert self.calc.last_closed_invoice(date(2025, 3, 5)) == "2025-02"
        assert self.calc.last_closed_invoice(date(2025, 3, 10)) == "2025-03"

    def test_bill_status_partially_paid(self):
        status = self.calc.bill_status("2025-03", total_due=10000, total_paid=4000, today=date(2025, 3, 10))
        assert status.is_closed
        assert not status.is_paid
        assert status.remaining == 6000
        assert status.minimum_payment == 900
        assert status.late_fee == 0

    def test_bill_paid_exactly(self):
        status = self.calc.bill_status("2025-03", 10000, 10000, date(2025, 3, 10))
        assert status.is_paid
        assert status.minimum_payment == 0

    def test_minimum_payment_rounds_half_up(self):
        calc = BillingCycleCalculator(5, 15, minimum_payment_rate=Decimal("0.15"))
        assert calc.minimum_payment(10) == 2  # 1.5 -> 2
        assert calc.minimum_payment(0) == 0


class TestValidation:

    @pytest.mark.parametrize("closing_day,due_day", [(0, 10), (32, 10), (5, 0), (5, 32)])
    def test_days_outside_1_31_rejected(self, closing_day, due_day):
        with pytest.raises(ValueError):
            BillingCycleCalculator(closing_day, due_day)

    @pytest.mark.parametrize("label", ["2025-13", "2025-1", "abc", "2025-00"])
    def test_bad_invoice_month_label(self, label):
        with pytest.raises(ValueError):
            parse_invoice_month(label)


class TestPlacementProperties:

    @given(
        st.dates(min_value=date(2000, 1, 1), max_value=date(2100, 12, 31)),
        st.integers(min_value=1, max_value=31),
        st.integers(min_value=1, max_value=31),
    )
    def test_purchase_is_never_billed_on_an_invoice_already_closed(self, purchase, closing_day, due_day):
        calc = BillingCycleCalculator(closing_day, due_day)
        invoice = calc.invoice_month_for(purchase)
        assert calc.closing_date(invoice) >= purchase

    @given(
        st.dates(min_value=date(2000, 1, 1), max_value=date(2100, 12, 31)),
        st.integers(min_value=1, max_value=31),
        st.integers(min_value=1, max_value=31),
    )
    def test_invoice_is_at_most_two_months_ahead(self, purchase, closing_day, due_day):
        calc = BillingCycleCalculator(closing_day, due_day)
        year, month = parse_invoice_month(calc.invoice_month_for(purchase))
        latest = add_months(purchase.year, purchase.month, 2)
        assert (purchase.year, purchase.month) <= (year, month) <= latest
