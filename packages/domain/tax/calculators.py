"""
Deduction calculators - pure functions returning unsaved Deduction drafts

Each calculator stores its inputs in `metadata` so the UI can re-open the
calculation. Tax savings are an estimate: amount × marginal rate.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from packages.common.errors import ConfigurationError, ValidationFailure
from packages.common.schemas.transaction import Deduction

CENT = Decimal("0.01")

HOME_OFFICE_RATE_PER_SQFT = Decimal("5")
HOME_OFFICE_MAX_SQFT = Decimal("300")
QBI_RATE = Decimal("0.20")

MILEAGE = "mileage"
HOME_OFFICE = "home_office"
QBI = "qbi"


def tax_savings(amount: Decimal, tax_rate: Decimal) -> Decimal:
    """Estimated savings, rounded half-up to cents"""
    if tax_rate < 0:
        raise ValidationFailure("tax rate must not be negative")
    return (amount * tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)


def mileage_deduction(
    owner_id: UUID,
    tax_year: int,
    miles: Decimal,
    tax_rate: Decimal,
    rate_per_mile: Optional[Decimal],
) -> Deduction:
    """Standard mileage rate: miles × IRS rate for the year"""
    if rate_per_mile is None:
        raise ConfigurationError(f"No mileage rate configured for {tax_year}")
    if miles < 0:
        raise ValidationFailure("miles must not be negative")
    amount = (miles * rate_per_mile).quantize(CENT, rounding=ROUND_HALF_UP)
    return Deduction(
        owner_id=owner_id,
        type=MILEAGE,
        tax_year=tax_year,
        amount=amount,
        tax_savings=tax_savings(amount, tax_rate),
        metadata={"miles": str(miles), "rate_per_mile": str(rate_per_mile)},
    )


def home_office_deduction(
    owner_id: UUID,
    tax_year: int,
    square_feet: Decimal,
    tax_rate: Decimal,
) -> Deduction:
    """Simplified method: $5 per square foot, capped at 300 square feet"""
    if square_feet < 0:
        raise ValidationFailure("square feet must not be negative")
    counted = min(square_feet, HOME_OFFICE_MAX_SQFT)
    amount = (counted * HOME_OFFICE_RATE_PER_SQFT).quantize(CENT, rounding=ROUND_HALF_UP)
    return Deduction(
        owner_id=owner_id,
        type=HOME_OFFICE,
        tax_year=tax_year,
        amount=amount,
        tax_savings=tax_savings(amount, tax_rate),
        metadata={"square_feet": str(square_feet), "method": "simplified"},
    )


def qbi_deduction(
    owner_id: UUID,
    tax_year: int,
    qualified_income: Decimal,
    tax_rate: Decimal,
) -> Deduction:
    """Qualified business income: 20% of positive net business income"""
    amount = max(qualified_income, Decimal("0")) * QBI_RATE
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    return Deduction(
        owner_id=owner_id,
        type=QBI,
        tax_year=tax_year,
        amount=amount,
        tax_savings=tax_savings(amount, tax_rate),
        metadata={"qualified_income": str(qualified_income)},
    )
