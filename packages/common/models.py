"""
SQLAlchemy ORM tables

Mirrors infra/db/migrations/versions/001_initial_schema.py. Repositories
convert rows to the Pydantic schemas in packages.common.schemas.transaction.
"""
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    Uuid,
)

from packages.common.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class TransactionRecord(Base):
    __tablename__ = "transactions"

    id = Column(Uuid, primary_key=True)
    owner_id = Column(Uuid, nullable=False)
    tax_year = Column(Integer, nullable=False)

    date = Column(Date, nullable=False)
    vendor = Column(String(500), nullable=False)
    vendor_normalized = Column(String(64))
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text)
    kind = Column(String(16), nullable=False, default="expense")

    category = Column(String(200))
    schedule_c_line = Column(String(50))
    ai_confidence = Column(Float)
    ai_reasoning = Column(Text)
    ai_suggestions = Column(JSON)
    is_meal = Column(Boolean)
    is_travel = Column(Boolean)
    deduction_percent = Column(Numeric(5, 2), default=100)

    status = Column(String(16), nullable=False, default="pending")
    quick_label = Column(String(500))
    business_purpose = Column(Text)
    notes = Column(Text)
    auto_sort_rule_id = Column(Uuid)
    source = Column(String(50))

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_transactions_owner_year_status", "owner_id", "tax_year", "status"),
        Index("idx_transactions_owner_vendor", "owner_id", "vendor_normalized"),
    )


class AutoSortRuleRecord(Base):
    __tablename__ = "auto_sort_rules"

    id = Column(Uuid, primary_key=True)
    owner_id = Column(Uuid, nullable=False)
    vendor_pattern = Column(String(64), nullable=False)
    kind = Column(String(16), nullable=False, default="expense")
    quick_label = Column(String(500), nullable=False)
    business_purpose = Column(Text)
    category = Column(String(200))
    deduction_percent = Column(Numeric(5, 2))
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("owner_id", "vendor_pattern", name="uq_auto_sort_rules_owner_vendor"),
    )


class DeductionRecord(Base):
    __tablename__ = "deductions"

    id = Column(Uuid, primary_key=True)
    owner_id = Column(Uuid, nullable=False)
    type = Column(String(200), nullable=False)
    tax_year = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    tax_savings = Column(Numeric(12, 2), nullable=False, default=0)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_deductions_owner_year", "owner_id", "tax_year"),
    )


class TaxYearSettingsRecord(Base):
    __tablename__ = "tax_year_settings"

    owner_id = Column(Uuid, primary_key=True)
    tax_year = Column(Integer, primary_key=True)
    tax_rate = Column(Numeric(5, 4), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)


class ClassificationCacheRecord(Base):
    __tablename__ = "classification_cache"

    lookup_hash = Column(String(64), primary_key=True)
    vendor_normalized = Column(String(64), nullable=False)
    kind = Column(String(16), nullable=False)
    result = Column(JSON, nullable=False)
    times_seen = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    last_seen = Column(DateTime, nullable=False, default=_utcnow)
