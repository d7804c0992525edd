"""
Recurrence -- date and amount schedules for fixed series and installment plans.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Monthly occurrences keep the start day-of-month, pulled back to the
      last day of shorter months (Jan 31 -> Feb 28 -> Mar 31).
    - Installment amounts are integers that sum exactly to the total.
"""

from __future__ import annotations

from datetime import date

from ledger_kernel.domain.billing_cycle import add_months, clamp_day


def monthly_dates(start: date, count: int) -> list[date]:
    """count dates, one per month, starting at start."""
    return [
        clamp_day(*add_months(start.year, start.month, offset), start.day)
        for offset in range(count)
    ]


def fixed_series_dates(start: date, extra_years: int = 1) -> list[date]:
    """
    Occurrence dates for a fixed series.

    Runs from start's month through December of start.year + extra_years.
    """
    count = (12 - start.month + 1) + 12 * extra_years
    return monthly_dates(start, count)


def year_of_occurrences(anchor: date, year: int) -> list[date]:
    """January through December of year on anchor's day-of-month."""
    return [clamp_day(year, month, anchor.day) for month in range(1, 13)]


def split_installments(total: int, count: int) -> list[int]:
    """
    Split total cents into count installments.

    Leftover cents go to the earliest installments, one each.

    Raises:
        ValueError: count < 1 or total < count (an installment would be 0).
    """
    if count < 1:
        raise ValueError(f"Installment count must be positive: {count}")
    if total < count:
        raise ValueError(f"Cannot split {total} into {count} non-zero installments")
    base, remainder = divmod(total, count)
    return [base + 1 if i < remainder else base for i in range(count)]
