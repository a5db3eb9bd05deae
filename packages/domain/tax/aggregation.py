"""
Tax Aggregation Engine - Schedule C summary from transactions + deductions

summarize() is a pure function of its inputs: no I/O, no clock, and the
result does not depend on input order (grouping and summing commute).

Steps:
1. Optional quarter filter on transactions (deductions are annual, never filtered)
2. Deductible amount per transaction (travel 100%, meals 50% of percent, else percent)
3. Gross income / total expenses over completed + auto_sorted rows only
4. Category breakdown (incl. deduction types) and Schedule C line breakdown
5. Self-employment tax and estimated payments

Rounding: SE components and payments are rounded half-up to cents;
deductible amounts and breakdowns keep exact decimals.
"""
import datetime as dt
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from packages.common.errors import ConfigurationError, ValidationFailure
from packages.common.schemas.transaction import (
    FINALIZED_STATUSES,
    HUNDRED,
    MEAL_LIMIT_PERCENT,
    Deduction,
    Transaction,
    TransactionKind,
    TransactionStatus,
)

logger = structlog.get_logger()

ZERO = Decimal("0")
CENT = Decimal("0.01")

# IRS Schedule SE constants
SE_NET_EARNINGS_FACTOR = Decimal("0.9235")
SOCIAL_SECURITY_RATE = Decimal("0.124")
MEDICARE_RATE = Decimal("0.029")

UNCATEGORIZED = "Uncategorized"
UNASSIGNED_LINE = "unassigned"

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class SelfEmploymentTax(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    net_earnings: Money = Field(..., alias="netEarnings")
    social_security: Money = Field(..., alias="socialSecurity")
    medicare: Money
    total: Money
    deductible_half: Money = Field(..., alias="deductibleHalf")
    wage_base: Money = Field(..., alias="wageBase")


class TaxSummary(BaseModel):
    """Derived view of one owner's tax year (or one quarter of it)"""
    model_config = ConfigDict(populate_by_name=True)

    quarter: Optional[int] = None
    gross_income: Money = Field(..., alias="grossIncome")
    total_expenses: Money = Field(..., alias="totalExpenses")
    net_profit: Money = Field(..., alias="netProfit")
    category_breakdown: Dict[str, Money] = Field(default_factory=dict, alias="categoryBreakdown")
    line_breakdown: Dict[str, Money] = Field(default_factory=dict, alias="lineBreakdown")
    self_employment_tax: SelfEmploymentTax = Field(..., alias="selfEmploymentTax")
    tax_rate: Money = Field(..., alias="taxRate")
    estimated_tax_for_period: Money = Field(..., alias="estimatedTaxForPeriod")
    estimated_annual_tax: Money = Field(..., alias="estimatedAnnualTax")
    estimated_quarterly_payment: Money = Field(..., alias="estimatedQuarterlyPayment")
    effective_tax_rate: Money = Field(..., alias="effectiveTaxRate")
    transaction_count: int = Field(0, alias="transactionCount")
    deduction_count: int = Field(0, alias="deductionCount")


def quarter_of(date: dt.date) -> int:
    return (date.month - 1) // 3 + 1


def filter_by_quarter(transactions: Iterable[Transaction], quarter: Optional[int]) -> List[Transaction]:
    """Keep transactions dated in calendar quarter 1-4 (all when quarter is None)"""
    if quarter is None:
        return list(transactions)
    if quarter not in (1, 2, 3, 4):
        raise ValidationFailure("quarter must be 1, 2, 3 or 4")
    return [t for t in transactions if quarter_of(t.date) == quarter]


def deductible_amount(txn: Transaction) -> Decimal:
    """
    Portion of a transaction's amount that counts as a deduction.

    Personal rows and rows with a percent <= 0 contribute zero; travel counts
    in full (even when also a meal); other meals count at half of
    amount × percent.
    """
    pct = txn.stored_deduction_percent
    if txn.status == TransactionStatus.PERSONAL or pct <= ZERO:
        return ZERO
    amount = abs(txn.amount)
    if txn.is_travel:
        return amount
    share = amount * pct / HUNDRED
    if txn.is_meal:
        return share * MEAL_LIMIT_PERCENT / HUNDRED
    return share


def _is_finalized(txn: Transaction) -> bool:
    return txn.status in FINALIZED_STATUSES


def filter_deductible(transactions: Iterable[Transaction]) -> List[Transaction]:
    """Finalized expense rows with a positive deductible amount (audit list)"""
    return [
        t for t in transactions
        if t.kind == TransactionKind.EXPENSE and _is_finalized(t) and deductible_amount(t) > ZERO
    ]


def net_business_income(transactions: Iterable[Transaction]) -> Decimal:
    """Finalized income minus finalized deductible expenses (no calculator deductions)"""
    total = ZERO
    for txn in transactions:
        if not _is_finalized(txn):
            continue
        if txn.kind == TransactionKind.INCOME:
            total += abs(txn.amount)
        else:
            total -= deductible_amount(txn)
    return total


def schedule_se(net_profit: Decimal, wage_base: Optional[Decimal]) -> SelfEmploymentTax:
    """
    Schedule SE self-employment tax.

    Net earnings are floored at zero, so a loss owes no SE tax.

    Raises:
        ConfigurationError: wage base missing or not positive
    """
    if wage_base is None or wage_base <= ZERO:
        raise ConfigurationError("Social Security wage base must be configured and positive")

    net_earnings = to_cents(max(net_profit, ZERO) * SE_NET_EARNINGS_FACTOR)
    social_security = to_cents(min(net_earnings, wage_base) * SOCIAL_SECURITY_RATE)
    medicare = to_cents(net_earnings * MEDICARE_RATE)
    total = social_security + medicare
    return SelfEmploymentTax(
        net_earnings=net_earnings,
        social_security=social_security,
        medicare=medicare,
        total=total,
        deductible_half=to_cents(total / 2),
        wage_base=wage_base,
    )


def summarize(
    transactions: Iterable[Transaction],
    deductions: Iterable[Deduction],
    tax_rate: Optional[Decimal],
    wage_base: Optional[Decimal],
    quarter: Optional[int] = None,
) -> TaxSummary:
    """
    Fold transactions and calculator deductions into a TaxSummary.

    Args:
        transactions: Rows for one owner and tax year (any status)
        deductions: Calculator deductions for the same tax year
        tax_rate: Marginal income tax rate as a fraction (0.24)
        wage_base: Social Security wage base for the tax year
        quarter: Optional calendar quarter 1-4

    Raises:
        ConfigurationError: negative/missing tax rate or bad wage base
        ValidationFailure: quarter outside 1-4
    """
    if tax_rate is None or tax_rate < ZERO:
        raise ConfigurationError("Tax rate must be configured and not negative")

    window = filter_by_quarter(transactions, quarter)
    deductions = list(deductions)

    gross_income = ZERO
    card_expenses = ZERO
    category_breakdown: Dict[str, Decimal] = {}
    line_breakdown: Dict[str, Decimal] = {}

    for txn in window:
        if not _is_finalized(txn):
            continue
        if txn.kind == TransactionKind.INCOME:
            gross_income += abs(txn.amount)
            continue

        amount = deductible_amount(txn)
        if amount <= ZERO:
            continue
        card_expenses += amount
        category = txn.category or UNCATEGORIZED
        category_breakdown[category] = category_breakdown.get(category, ZERO) + amount
        line = txn.schedule_c_line or UNASSIGNED_LINE
        line_breakdown[line] = line_breakdown.get(line, ZERO) + amount

    # Calculator deductions: annual, unfiltered, no Schedule C line
    deduction_total = ZERO
    for deduction in deductions:
        deduction_total += deduction.amount
        category_breakdown[deduction.type] = category_breakdown.get(deduction.type, ZERO) + deduction.amount

    total_expenses = card_expenses + deduction_total
    net_profit = gross_income - total_expenses

    se = schedule_se(net_profit, wage_base)

    income_tax_base = max(net_profit - se.deductible_half, ZERO)
    period_tax = to_cents(max(income_tax_base * tax_rate + se.total, ZERO))
    if quarter is None:
        annual_tax = period_tax
        quarterly_payment = to_cents(period_tax / 4)
    else:
        annual_tax = period_tax * 4
        quarterly_payment = period_tax

    effective_rate = ZERO
    if gross_income > ZERO:
        effective_rate = (period_tax / gross_income).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)

    summary = TaxSummary(
        quarter=quarter,
        gross_income=gross_income,
        total_expenses=total_expenses,
        net_profit=net_profit,
        category_breakdown=dict(sorted(category_breakdown.items())),
        line_breakdown=dict(sorted(line_breakdown.items())),
        self_employment_tax=se,
        tax_rate=tax_rate,
        estimated_tax_for_period=period_tax,
        estimated_annual_tax=annual_tax,
        estimated_quarterly_payment=quarterly_payment,
        effective_tax_rate=effective_rate,
        transaction_count=len(window),
        deduction_count=len(deductions),
    )

    logger.debug("tax_summary_computed",
                 quarter=quarter,
                 transactions=len(window),
                 deductions=len(deductions),
                 net_profit=str(net_profit))
    return summary
