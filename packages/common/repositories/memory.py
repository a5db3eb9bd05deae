"""
In-memory repositories

Used by the test suite and by the API when USE_MOCK_DATA is set. Rows are
stored as model copies so callers never share mutable state with the store.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple
from uuid import UUID

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


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self, transactions: Optional[Sequence[Transaction]] = None):
        self._rows: Dict[UUID, Transaction] = {}
        for txn in transactions or []:
            self._rows[txn.id] = txn.model_copy(deep=True)
        self.classification_writes = 0

    async def get(self, owner_id, transaction_id):
        row = self._rows.get(transaction_id)
        if row is None or row.owner_id != owner_id:
            return None
        return row.model_copy(deep=True)

    async def get_many(self, owner_id, transaction_ids):
        found = []
        for transaction_id in transaction_ids:
            row = await self.get(owner_id, transaction_id)
            if row is not None:
                found.append(row)
        return found

    async def add_many(self, transactions):
        now = datetime.utcnow()
        stored = []
        for txn in transactions:
            row = txn.model_copy(update={"created_at": now, "updated_at": now}, deep=True)
            self._rows[row.id] = row
            stored.append(row.model_copy(deep=True))
        return stored

    async def save(self, transaction):
        row = transaction.model_copy(update={"updated_at": datetime.utcnow()}, deep=True)
        self._rows[row.id] = row
        return row.model_copy(deep=True)

    async def apply_classification(self, transaction_id, result: ClassificationResult):
        row = self._rows.get(transaction_id)
        if row is None:
            return
        self._rows[transaction_id] = row.model_copy(update={
            "category": result.category,
            "schedule_c_line": result.schedule_c_line,
            "ai_confidence": result.confidence,
            "ai_reasoning": result.reasoning,
            "ai_suggestions": list(result.quick_labels),
            "is_meal": result.is_meal,
            "is_travel": result.is_travel,
            "updated_at": datetime.utcnow(),
        })
        self.classification_writes += 1

    def _in_scope(self, row: Transaction, scope: TransactionScope, vendor_normalized: str) -> bool:
        return (
            row.owner_id == scope.owner_id
            and row.tax_year == scope.tax_year
            and row.kind == scope.kind
            and row.status == TransactionStatus.PENDING
            and row.vendor_normalized == vendor_normalized
        )

    async def find_pending_by_vendor(self, scope, vendor_normalized, exclude_id=None):
        matches = [
            row.model_copy(deep=True)
            for row in self._rows.values()
            if self._in_scope(row, scope, vendor_normalized) and row.id != exclude_id
        ]
        return sorted(matches, key=lambda t: (t.date, str(t.id)))

    async def bulk_auto_sort(self, scope, vendor_normalized, rule: AutoSortRule, schedule_c_line=None):
        now = datetime.utcnow()
        updated = 0
        for row_id, row in list(self._rows.items()):
            if not self._in_scope(row, scope, vendor_normalized):
                continue
            changes = {
                "status": TransactionStatus.AUTO_SORTED,
                "quick_label": rule.quick_label,
                "business_purpose": rule.business_purpose,
                "auto_sort_rule_id": rule.id,
                "updated_at": now,
            }
            if rule.category is not None:
                changes["category"] = rule.category
            if schedule_c_line is not None:
                changes["schedule_c_line"] = schedule_c_line
            if rule.deduction_percent is not None:
                changes["deduction_percent"] = rule.deduction_percent
            self._rows[row_id] = row.model_copy(update=changes)
            updated += 1
        return updated

    async def list_for_year(self, owner_id, tax_year):
        rows = [
            row.model_copy(deep=True)
            for row in self._rows.values()
            if row.owner_id == owner_id and row.tax_year == tax_year
        ]
        return sorted(rows, key=lambda t: (t.date, str(t.id)))

    async def list_unclassified(self, owner_id=None, limit=100):
        rows = [
            row for row in self._rows.values()
            if row.status == TransactionStatus.PENDING
            and row.category is None
            and (owner_id is None or row.owner_id == owner_id)
        ]
        rows.sort(key=lambda t: (t.created_at or datetime.min, str(t.id)))
        return [row.model_copy(deep=True) for row in rows[:limit]]


class InMemoryAutoSortRuleRepository(AutoSortRuleRepository):

    def __init__(self):
        self._rules: Dict[Tuple[UUID, str], AutoSortRule] = {}

    async def upsert(self, rule):
        key = (rule.owner_id, rule.vendor_pattern)
        now = datetime.utcnow()
        existing = self._rules.get(key)
        if existing is not None:
            stored = rule.model_copy(update={
                "id": existing.id,
                "created_at": existing.created_at,
                "updated_at": now,
            })
        else:
            stored = rule.model_copy(update={"created_at": now, "updated_at": now})
        self._rules[key] = stored
        return stored.model_copy()

    async def get_for_vendor(self, owner_id, vendor_pattern):
        rule = self._rules.get((owner_id, vendor_pattern))
        return rule.model_copy() if rule else None

    def __len__(self):
        return len(self._rules)


class InMemoryDeductionRepository(DeductionRepository):

    def __init__(self):
        self._rows: Dict[UUID, Deduction] = {}

    async def add(self, deduction):
        row = deduction.model_copy(update={"created_at": datetime.utcnow()}, deep=True)
        self._rows[row.id] = row
        return row.model_copy(deep=True)

    async def list_for_year(self, owner_id, tax_year):
        rows = [
            row.model_copy(deep=True)
            for row in self._rows.values()
            if row.owner_id == owner_id and row.tax_year == tax_year
        ]
        return sorted(rows, key=lambda d: (d.type, str(d.id)))

    async def delete(self, owner_id, deduction_type, tax_year):
        doomed = [
            row_id for row_id, row in self._rows.items()
            if row.owner_id == owner_id and row.type == deduction_type and row.tax_year == tax_year
        ]
        for row_id in doomed:
            del self._rows[row_id]
        return len(doomed)


class InMemoryTaxYearSettingsRepository(TaxYearSettingsRepository):

    def __init__(self):
        self._rates: Dict[Tuple[UUID, int], Decimal] = {}

    async def get_tax_rate(self, owner_id, tax_year):
        return self._rates.get((owner_id, tax_year))

    async def set_tax_rate(self, owner_id, tax_year, tax_rate):
        self._rates[(owner_id, tax_year)] = tax_rate
