"""
BillingCycleCalculator -- credit-card invoice placement and bill status.

Responsibility:
    Maps a purchase date plus a card's closing and due days to the invoice
    month ("YYYY-MM") the purchase is billed on, and derives the closing
    date, due date, and open/closed/paid status of an invoice.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  "Today" is always
    passed in by the caller (from an injected Clock).

Invariants enforced:
    - A purchase dated on or before the closing day belongs to the cycle
      that closes in its own calendar month; one day later belongs to the
      next cycle.
    - The invoice is labeled by the month its due date falls in.  When
      due_day <= closing_day the card closes in the month before the label,
      otherwise in the same month.
    - Every status derivation uses closing_date()/due_date() from this
      module, so "closed" means the same thing everywhere.
    - Paid means cumulative payments >= total due, with no tolerance.

Failure modes:
    - ValueError on a closing/due day outside 1..31 or a malformed
      invoice month label.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from ledger_kernel.domain.dtos import BillStatus

DEFAULT_MINIMUM_PAYMENT_RATE = Decimal("0.15")


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    """Shift a (year, month) pair by count months."""
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, pulling day back to the month's last day if needed."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def format_invoice_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def parse_invoice_month(value: str) -> tuple[int, int]:
    """Parse "YYYY-MM" into (year, month)."""
    try:
        year_str, month_str = value.split("-")
        year, month = int(year_str), int(month_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid invoice month: {value!r}") from None
    if len(year_str) != 4 or len(month_str) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Invalid invoice month: {value!r}")
    return year, month


def _check_day(name: str, day: int) -> None:
    if not 1 <= day <= 31:
        raise ValueError(f"{name} must be between 1 and 31, got {day}")


class BillingCycleCalculator:
    """
    Billing-cycle arithmetic for one card configuration.

    Contract:
        Instantiated per credit account with its closing_day and due_day.

    Guarantees:
        - Deterministic: same inputs always give the same invoice month.
        - minimum_payment and late_fee on BillStatus are display-only.
    """

    def __init__(
        self,
        closing_day: int,
        due_day: int,
        minimum_payment_rate: Decimal = DEFAULT_MINIMUM_PAYMENT_RATE,
    ):
        _check_day("closing_day", closing_day)
        _check_day("due_day", due_day)
        self.closing_day = closing_day
        self.due_day = due_day
        self.minimum_payment_rate = minimum_payment_rate

    @property
    def closes_before_due_month(self) -> bool:
        """True when the card closes in the month before the invoice label."""
        return self.due_day <= self.closing_day

    @staticmethod
    def compute_invoice_month(purchase_date: date, closing_day: int, due_day: int) -> str:
        """Invoice month for a purchase, as "YYYY-MM"."""
        return BillingCycleCalculator(closing_day, due_day).invoice_month_for(purchase_date)

    def invoice_month_for(self, purchase_date: date) -> str:
        cycle = (purchase_date.year, purchase_date.month)
        if purchase_date.day > self.closing_day:
            cycle = add_months(*cycle, 1)
        if self.closes_before_due_month:
            return format_invoice_month(*add_months(*cycle, 1))
        return format_invoice_month(*cycle)

    def _cycle_month(self, invoice_month: str) -> tuple[int, int]:
        year, month = parse_invoice_month(invoice_month)
        if self.closes_before_due_month:
            return add_months(year, month, -1)
        return year, month

    def closing_date(self, invoice_month: str) -> date:
        return clamp_day(*self._cycle_month(invoice_month), self.closing_day)

    def due_date(self, invoice_month: str) -> date:
        return clamp_day(*parse_invoice_month(invoice_month), self.due_day)

    def is_closed(self, invoice_month: str, today: date) -> bool:
        return today > self.closing_date(invoice_month)

    def current_invoice(self, today: date) -> str:
        """The invoice still accepting purchases dated today."""
        return self.invoice_month_for(today)

    def last_closed_invoice(self, as_of: date) -> str:
        """The most recent invoice whose closing date is before as_of."""
        cycle = (as_of.year, as_of.month)
        if clamp_day(*cycle, self.closing_day) >= as_of:
            cycle = add_months(*cycle, -1)
        if self.closes_before_due_month:
            cycle = add_months(*cycle, 1)
        return format_invoice_month(*cycle)

    def minimum_payment(self, amount_due: int) -> int:
        if amount_due <= 0:
            return 0
        return int(
            (Decimal(amount_due) * self.minimum_payment_rate).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )

    def bill_status(
        self,
        invoice_month: str,
        total_due: int,
        total_paid: int,
        today: date,
    ) -> BillStatus:
        """
        Derive the status of one invoice.

        Args:
            invoice_month: "YYYY-MM" label.
            total_due: Net charges billed on the invoice, in cents.
            total_paid: Cumulative payments credited to the invoice.
            today: Current date from an injected clock.
        """
        is_paid = total_due <= 0 or total_paid >= total_due
        return BillStatus(
            invoice_month=invoice_month,
            closing_date=self.closing_date(invoice_month),
            due_date=self.due_date(invoice_month),
            total_due=total_due,
            total_paid=total_paid,
            is_closed=self.is_closed(invoice_month, today),
            is_paid=is_paid,
            minimum_payment=0 if is_paid else self.minimum_payment(total_due - total_paid),
            late_fee=0,
        )
