"""
SQLAlchemy repositories

One session per operation through DatabaseSessionManager.session(), which
commits on success and rolls back on error. Bulk auto-sort is a single
UPDATE statement, so each matching row changes completely or not at all.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError

from packages.common.database import DatabaseSessionManager
from packages.common.models import (
    AutoSortRuleRecord,
    DeductionRecord,
    TaxYearSettingsRecord,
    TransactionRecord,
)
from packages.common.repositories.base import (
    AutoSortRuleRepository,
    DeductionRepository,
    TaxYearSettingsRepository,
    TransactionRepository,
    TransactionScope,
)
from packages.common.schemas.transaction import (
    AutoSortRule,
    Deduction,
    Transaction,
    TransactionStatus,
)
from packages.domain.categorization.schemas import ClassificationResult

logger = structlog.get_logger()

# Columns save() is allowed to overwrite
_MUTABLE_COLUMNS = (
    "tax_year", "date", "vendor", "vendor_normalized", "amount", "description", "kind",
    "category", "schedule_c_line", "ai_confidence", "ai_reasoning", "ai_suggestions",
    "is_meal", "is_travel", "deduction_percent", "status", "quick_label",
    "business_purpose", "notes", "auto_sort_rule_id", "source",
)


def _to_transaction(record: TransactionRecord) -> Transaction:
    return Transaction.model_validate({
        **{column: getattr(record, column) for column in _MUTABLE_COLUMNS},
        "id": record.id,
        "owner_id": record.owner_id,
        "ai_suggestions": record.ai_suggestions or [],
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    })


def _column_values(txn: Transaction) -> dict:
    values = {column: getattr(txn, column) for column in _MUTABLE_COLUMNS}
    values["kind"] = txn.kind.value
    values["status"] = txn.status.value
    values["ai_suggestions"] = list(txn.ai_suggestions)
    return values


class SqlTransactionRepository(TransactionRepository):

    def __init__(self, sessions: DatabaseSessionManager):
        self._sessions = sessions

    async def get(self, owner_id, transaction_id):
        async with self._sessions.session() as db:
            record = await db.get(TransactionRecord, transaction_id)
            if record is None or record.owner_id != owner_id:
                return None
            return _to_transaction(record)

    async def get_many(self, owner_id, transaction_ids):
        if not transaction_ids:
            return []
        async with self._sessions.session() as db:
            result = await db.execute(
                select(TransactionRecord).where(
                    TransactionRecord.owner_id == owner_id,
                    TransactionRecord.id.in_(list(transaction_ids)),
                )
            )
            by_id = {record.id: _to_transaction(record) for record in result.scalars()}
        # Preserve the caller's order
        return [by_id[i] for i in transaction_ids if i in by_id]

    async def add_many(self, transactions):
        now = datetime.utcnow()
        async with self._sessions.session() as db:
            for txn in transactions:
                db.add(TransactionRecord(
                    id=txn.id,
                    owner_id=txn.owner_id,
                    created_at=now,
                    updated_at=now,
                    **_column_values(txn),
                ))
        logger.info("transactions_inserted", count=len(transactions))
        return [t.model_copy(update={"created_at": now, "updated_at": now}) for t in transactions]

    async def save(self, transaction):
        now = datetime.utcnow()
        async with self._sessions.session() as db:
            await db.execute(
                update(TransactionRecord)
                .where(
                    TransactionRecord.id == transaction.id,
                    TransactionRecord.owner_id == transaction.owner_id,
                )
                .values(updated_at=now, **_column_values(transaction))
            )
        return transaction.model_copy(update={"updated_at": now})

    async def apply_classification(self, transaction_id, result: ClassificationResult):
        async with self._sessions.session() as db:
            await db.execute(
                update(TransactionRecord)
                .where(TransactionRecord.id == transaction_id)
                .values(
                    category=result.category,
                    schedule_c_line=result.schedule_c_line,
                    ai_confidence=result.confidence,
                    ai_reasoning=result.reasoning,
                    ai_suggestions=list(result.quick_labels),
                    is_meal=result.is_meal,
                    is_travel=result.is_travel,
                    updated_at=datetime.utcnow(),
                )
            )

    @staticmethod
    def _scope_clause(scope: TransactionScope, vendor_normalized: str):
        return and_(
            TransactionRecord.owner_id == scope.owner_id,
            TransactionRecord.tax_year == scope.tax_year,
            TransactionRecord.kind == scope.kind.value,
            TransactionRecord.status == TransactionStatus.PENDING.value,
            TransactionRecord.vendor_normalized == vendor_normalized,
        )

    async def find_pending_by_vendor(self, scope, vendor_normalized, exclude_id=None):
        query = select(TransactionRecord).where(self._scope_clause(scope, vendor_normalized))
        if exclude_id is not None:
            query = query.where(TransactionRecord.id != exclude_id)
        query = query.order_by(TransactionRecord.date, TransactionRecord.id)
        async with self._sessions.session() as db:
            result = await db.execute(query)
            return [_to_transaction(record) for record in result.scalars()]

    async def bulk_auto_sort(self, scope, vendor_normalized, rule: AutoSortRule, schedule_c_line=None):
        values = {
            "status": TransactionStatus.AUTO_SORTED.value,
            "quick_label": rule.quick_label,
            "business_purpose": rule.business_purpose,
            "auto_sort_rule_id": rule.id,
            "updated_at": datetime.utcnow(),
        }
        if rule.category is not None:
            values["category"] = rule.category
        if schedule_c_line is not None:
            values["schedule_c_line"] = schedule_c_line
        if rule.deduction_percent is not None:
            values["deduction_percent"] = rule.deduction_percent

        async with self._sessions.session() as db:
            result = await db.execute(
                update(TransactionRecord)
                .where(self._scope_clause(scope, vendor_normalized))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def list_for_year(self, owner_id, tax_year):
        async with self._sessions.session() as db:
            result = await db.execute(
                select(TransactionRecord)
                .where(
                    TransactionRecord.owner_id == owner_id,
                    TransactionRecord.tax_year == tax_year,
                )
                .order_by(TransactionRecord.date, TransactionRecord.id)
            )
            return [_to_transaction(record) for record in result.scalars()]

    async def list_unclassified(self, owner_id=None, limit=100):
        query = select(TransactionRecord).where(
            TransactionRecord.status == TransactionStatus.PENDING.value,
            TransactionRecord.category.is_(None),
        )
        if owner_id is not None:
            query = query.where(TransactionRecord.owner_id == owner_id)
        query = query.order_by(TransactionRecord.created_at, TransactionRecord.id).limit(limit)
        async with self._sessions.session() as db:
            result = await db.execute(query)
            return [_to_transaction(record) for record in result.scalars()]


class SqlAutoSortRuleRepository(AutoSortRuleRepository):

    def __init__(self, sessions: DatabaseSessionManager):
        self._sessions = sessions

    @staticmethod
    def _to_rule(record: AutoSortRuleRecord) -> AutoSortRule:
        return AutoSortRule.model_validate(record)

    async def _write(self, rule: AutoSortRule) -> AutoSortRule:
        now = datetime.utcnow()
        async with self._sessions.session() as db:
            result = await db.execute(
                select(AutoSortRuleRecord).where(
                    AutoSortRuleRecord.owner_id == rule.owner_id,
                    AutoSortRuleRecord.vendor_pattern == rule.vendor_pattern,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = AutoSortRuleRecord(
                    id=rule.id,
                    owner_id=rule.owner_id,
                    vendor_pattern=rule.vendor_pattern,
                    created_at=now,
                )
                db.add(record)
            record.kind = rule.kind.value
            record.quick_label = rule.quick_label
            record.business_purpose = rule.business_purpose
            record.category = rule.category
            record.deduction_percent = rule.deduction_percent
            record.updated_at = now
            await db.flush()
            return self._to_rule(record)

    async def upsert(self, rule):
        try:
            return await self._write(rule)
        except IntegrityError:
            # Concurrent insert for the same vendor won; overwrite it
            logger.info("auto_sort_rule_upsert_retry",
                        owner_id=str(rule.owner_id),
                        vendor_pattern=rule.vendor_pattern)
            return await self._write(rule)

    async def get_for_vendor(self, owner_id, vendor_pattern):
        async with self._sessions.session() as db:
            result = await db.execute(
                select(AutoSortRuleRecord).where(
                    AutoSortRuleRecord.owner_id == owner_id,
                    AutoSortRuleRecord.vendor_pattern == vendor_pattern,
                )
            )
            record = result.scalar_one_or_none()
            return self._to_rule(record) if record else None


class SqlDeductionRepository(DeductionRepository):

    def __init__(self, sessions: DatabaseSessionManager):
        self._sessions = sessions

    @staticmethod
    def _to_deduction(record: DeductionRecord) -> Deduction:
        return Deduction(
            id=record.id,
            owner_id=record.owner_id,
            type=record.type,
            tax_year=record.tax_year,
            amount=record.amount,
            tax_savings=record.tax_savings,
            metadata=record.extra,
            created_at=record.created_at,
        )

    async def add(self, deduction):
        now = datetime.utcnow()
        async with self._sessions.session() as db:
            db.add(DeductionRecord(
                id=deduction.id,
                owner_id=deduction.owner_id,
                type=deduction.type,
                tax_year=deduction.tax_year,
                amount=deduction.amount,
                tax_savings=deduction.tax_savings,
                extra=deduction.metadata,
                created_at=now,
            ))
        return deduction.model_copy(update={"created_at": now})

    async def list_for_year(self, owner_id, tax_year):
        async with self._sessions.session() as db:
            result = await db.execute(
                select(DeductionRecord)
                .where(
                    DeductionRecord.owner_id == owner_id,
                    DeductionRecord.tax_year == tax_year,
                )
                .order_by(DeductionRecord.type, DeductionRecord.id)
            )
            return [self._to_deduction(record) for record in result.scalars()]

    async def delete(self, owner_id, deduction_type, tax_year):
        async with self._sessions.session() as db:
            result = await db.execute(
                delete(DeductionRecord).where(
                    DeductionRecord.owner_id == owner_id,
                    DeductionRecord.type == deduction_type,
                    DeductionRecord.tax_year == tax_year,
                )
            )
            return result.rowcount or 0


class SqlTaxYearSettingsRepository(TaxYearSettingsRepository):

    def __init__(self, sessions: DatabaseSessionManager):
        self._sessions = sessions

    async def get_tax_rate(self, owner_id, tax_year) -> Optional[Decimal]:
        async with self._sessions.session() as db:
            record = await db.get(TaxYearSettingsRecord, (owner_id, tax_year))
            return Decimal(record.tax_rate) if record else None

    async def set_tax_rate(self, owner_id, tax_year, tax_rate):
        async with self._sessions.session() as db:
            record = await db.get(TaxYearSettingsRecord, (owner_id, tax_year))
            if record is None:
                db.add(TaxYearSettingsRecord(
                    owner_id=owner_id,
                    tax_year=tax_year,
                    tax_rate=tax_rate,
                    updated_at=datetime.utcnow(),
                ))
            else:
                record.tax_rate = tax_rate
                record.updated_at = datetime.utcnow()
