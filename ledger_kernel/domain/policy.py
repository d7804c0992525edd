"""
Ledger policy -- the tunable rules the kernel applies.

Responsibility:
    Immutable value objects for the chart of accounts, input limits and
    derived-quantity rates.  ledger_config builds these from YAML; the
    defaults here match the shipped configuration set so the kernel is
    usable without it (tests, scripts).

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The kernel never reads config
    files itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from ledger_kernel.domain.values import AccountKind, LedgerCategory

_DEFAULT_ASSET_CODES: Mapping[str, str] = MappingProxyType({
    AccountKind.MEAL_VOUCHER.value: "1.01.01",
    AccountKind.CHECKING.value: "1.01.02",
    AccountKind.SAVINGS.value: "1.01.03",
    AccountKind.INVESTMENT.value: "1.01.04",
})


@dataclass(frozen=True)
class ChartOfAccounts:
    """
    Ledger codes used when deriving journal lines.

    Contract:
        asset_codes maps every non-credit AccountKind value to an asset
        code.  Credit accounts post to credit_liability_code.  Income and
        expense categories without their own ledger_code post to the
        default revenue/expense code.
    """

    asset_codes: Mapping[str, str] = field(default_factory=lambda: _DEFAULT_ASSET_CODES)
    credit_liability_code: str = "2.01.01"
    default_revenue_code: str = "4.01.99"
    default_expense_code: str = "5.01.99"
    fallback_asset_code: str = "1.01.01"

    def line_for_account(self, account_kind: str) -> tuple[str, LedgerCategory]:
        """Ledger code and category for a user account of this kind."""
        if account_kind == AccountKind.CREDIT:
            return self.credit_liability_code, LedgerCategory.LIABILITY
        return (
            self.asset_codes.get(AccountKind(account_kind).value, self.fallback_asset_code),
            LedgerCategory.ASSET,
        )


@dataclass(frozen=True)
class InputLimits:
    """Bounds applied by the input schemas."""

    max_amount: int = 1_000_000_000
    max_description_length: int = 200
    max_installments: int = 72


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Everything configurable about the kernel's behavior.

    Attributes:
        fixed_series_extra_years: A fixed series runs from its start month
            through December of start year + this many years.
        minimum_payment_rate: Display-only share of an open bill.
        enforce_credit_limit: Reject completed credit-card expenses that
            exceed the card's remaining limit.
    """

    chart: ChartOfAccounts = field(default_factory=ChartOfAccounts)
    limits: InputLimits = field(default_factory=InputLimits)
    minimum_payment_rate: Decimal = Decimal("0.15")
    fixed_series_extra_years: int = 1
    enforce_credit_limit: bool = True
