"""
Transaction, auto-sort rule and deduction schemas (Pydantic models)

These are the shapes every repository returns and every domain module
consumes. Money is always Decimal; ids are UUIDs.
"""
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

HUNDRED = Decimal("100")
MEAL_LIMIT_PERCENT = Decimal("50")
MAX_ABS_AMOUNT = Decimal("10000000")


class TransactionKind(str, Enum):
    """Direction of money"""
    EXPENSE = "expense"
    INCOME = "income"


class TransactionStatus(str, Enum):
    """Review workflow states"""
    PENDING = "pending"
    COMPLETED = "completed"
    AUTO_SORTED = "auto_sorted"
    PERSONAL = "personal"


# Rows in these states count toward tax totals
FINALIZED_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.AUTO_SORTED})


class Transaction(BaseModel):
    """One financial event imported from a bank feed or entered by hand"""
    model_config = ConfigDict(from_attributes=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    tax_year: int

    # Facts
    date: dt.date
    vendor: str
    vendor_normalized: Optional[str] = Field(None, description="Vendor fingerprint")
    amount: Decimal = Field(..., description="Signed amount; expenses are usually negative")
    description: Optional[str] = None
    kind: TransactionKind = TransactionKind.EXPENSE

    # Classification (null until classified)
    category: Optional[str] = None
    schedule_c_line: Optional[str] = None
    ai_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    ai_reasoning: Optional[str] = None
    ai_suggestions: List[str] = Field(default_factory=list)
    is_meal: Optional[bool] = None
    is_travel: Optional[bool] = None
    deduction_percent: Optional[Decimal] = Field(default=HUNDRED, ge=0, le=100)

    # Workflow
    status: TransactionStatus = TransactionStatus.PENDING
    quick_label: Optional[str] = None
    business_purpose: Optional[str] = None
    notes: Optional[str] = None
    auto_sort_rule_id: Optional[UUID] = None
    source: Optional[str] = None

    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def stored_deduction_percent(self) -> Decimal:
        """Stored percent with the 100% default for rows that never had one"""
        return HUNDRED if self.deduction_percent is None else self.deduction_percent

    @computed_field
    @property
    def effective_deduction_percent(self) -> Decimal:
        """
        Share of the amount that ends up deductible, for display.

        Non-travel meals are shown at half the stored percent; the stored
        value itself is never rewritten for meals.
        """
        if self.status == TransactionStatus.PERSONAL:
            return Decimal("0")
        pct = self.stored_deduction_percent
        if self.is_meal and not self.is_travel:
            return pct * MEAL_LIMIT_PERCENT / HUNDRED
        return pct


class TransactionUpdate(BaseModel):
    """
    Partial correction of a transaction.

    Only fields the caller actually sent are applied (exclude_unset).
    """
    quick_label: Optional[str] = Field(None, max_length=500)
    business_purpose: Optional[str] = Field(None, max_length=2000)
    notes: Optional[str] = Field(None, max_length=2000)
    status: Optional[TransactionStatus] = None
    deduction_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    category: Optional[str] = Field(None, max_length=200)
    schedule_c_line: Optional[str] = Field(None, max_length=50)
    date: Optional[dt.date] = None
    vendor: Optional[str] = Field(None, max_length=500)
    amount: Optional[Decimal] = Field(None, gt=-MAX_ABS_AMOUNT, lt=MAX_ABS_AMOUNT)
    description: Optional[str] = Field(None, max_length=2000)
    kind: Optional[TransactionKind] = None


class TransactionRow(BaseModel):
    """Already-parsed import row (file parsing happens upstream)"""
    date: dt.date
    vendor: str = Field(..., max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    amount: Decimal = Field(..., gt=-MAX_ABS_AMOUNT, lt=MAX_ABS_AMOUNT)
    kind: TransactionKind = TransactionKind.EXPENSE
    category: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)


class AutoSortRule(BaseModel):
    """Persisted vendor fingerprint → classification decision"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    vendor_pattern: str = Field(..., min_length=1)
    kind: TransactionKind = TransactionKind.EXPENSE
    quick_label: str
    business_purpose: Optional[str] = None
    category: Optional[str] = None
    deduction_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class Deduction(BaseModel):
    """Calculator-originated deduction (QBI, mileage, home office, ...)"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    type: str = Field(..., min_length=1, max_length=200)
    tax_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal
    tax_savings: Decimal = Decimal("0")
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[dt.datetime] = None
