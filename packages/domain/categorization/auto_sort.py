"""
Auto-Sort Rule Engine - turn one user decision into a reusable vendor rule

apply_rule() is two logical steps:
1. Upsert the rule for (owner, fingerprint); a later call overwrites it
2. Bulk-update every pending transaction in scope with that fingerprint

The steps are not one store transaction. If the process dies between
them the rule exists but some rows are still pending; reconcile() closes
that gap whenever a remaining row is classified or corrected.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from packages.common.errors import ValidationFailure
from packages.common.metrics import AUTO_SORTED_TRANSACTIONS
from packages.common.repositories.base import (
    AutoSortRuleRepository,
    TransactionRepository,
    TransactionScope,
)
from packages.common.schemas.transaction import (
    AutoSortRule,
    Transaction,
    TransactionStatus,
)
from packages.domain.categorization.category_table import CategoryTable, category_table
from packages.domain.categorization.vendor_normalizer import normalize_vendor

logger = structlog.get_logger()


@dataclass
class AutoSortResult:
    updated_count: int
    rule: AutoSortRule


def fill_from_rule(
    txn: Transaction,
    rule: AutoSortRule,
    schedule_c_line: Optional[str] = None,
    keep: Iterable[str] = (),
) -> Transaction:
    """
    Copy a rule's decision onto a pending transaction.

    Fields named in `keep` were set explicitly by the caller and are left
    alone; null rule fields never overwrite the row.
    """
    keep = set(keep)
    changes = {"auto_sort_rule_id": rule.id}
    candidates = {
        "quick_label": rule.quick_label,
        "business_purpose": rule.business_purpose,
        "category": rule.category,
        "schedule_c_line": schedule_c_line,
        "deduction_percent": rule.deduction_percent,
    }
    for field, value in candidates.items():
        if field not in keep and value is not None:
            changes[field] = value
    if "status" not in keep:
        changes["status"] = TransactionStatus.AUTO_SORTED
    return txn.model_copy(update=changes)


class AutoSortRuleEngine:
    """
    Persists "apply to all similar" decisions and applies them.

    Usage:
        engine = AutoSortRuleEngine(transactions, rules)
        result = await engine.apply_rule(
            vendor_normalized="starbucks",
            quick_label="Client coffee",
            business_purpose="Meeting with clients",
            scope=TransactionScope(owner_id, 2024),
        )
        print(result.updated_count)
    """

    def __init__(
        self,
        transactions: TransactionRepository,
        rules: AutoSortRuleRepository,
        table: Optional[CategoryTable] = None,
    ):
        self.transactions = transactions
        self.rules = rules
        self.table = table or category_table

    async def apply_rule(
        self,
        vendor_normalized: str,
        quick_label: str,
        business_purpose: Optional[str],
        scope: TransactionScope,
        category: Optional[str] = None,
        deduction_percent: Optional[Decimal] = None,
    ) -> AutoSortResult:
        """
        Upsert the rule, then auto-sort every matching pending transaction.

        Returns:
            AutoSortResult; updated_count is what the store actually changed
            and may be zero, which still leaves the rule persisted.
        """
        fingerprint = normalize_vendor(vendor_normalized or "")
        if not fingerprint:
            raise ValidationFailure("vendorNormalized is required")
        if not quick_label or not quick_label.strip():
            raise ValidationFailure("quickLabel is required")
        if deduction_percent is not None and not Decimal("0") <= deduction_percent <= Decimal("100"):
            raise ValidationFailure("deductionPercent must be between 0 and 100")

        rule = await self.rules.upsert(AutoSortRule(
            owner_id=scope.owner_id,
            vendor_pattern=fingerprint,
            kind=scope.kind,
            quick_label=quick_label.strip(),
            business_purpose=business_purpose,
            category=category,
            deduction_percent=deduction_percent,
        ))
        logger.info("auto_sort_rule_saved",
                    owner_id=str(scope.owner_id),
                    rule_id=str(rule.id),
                    vendor=fingerprint)

        updated = await self.transactions.bulk_auto_sort(
            scope, fingerprint, rule, schedule_c_line=self.line_for(rule),
        )
        AUTO_SORTED_TRANSACTIONS.labels(path="bulk").inc(updated)

        logger.info("auto_sort_applied",
                    owner_id=str(scope.owner_id),
                    tax_year=scope.tax_year,
                    kind=scope.kind.value,
                    vendor=fingerprint,
                    updated_count=updated)
        return AutoSortResult(updated_count=updated, rule=rule)

    def line_for(self, rule: AutoSortRule) -> Optional[str]:
        return self.table.line_for(rule.category) if rule.category else None

    async def rule_for(self, txn: Transaction) -> Optional[AutoSortRule]:
        """Rule the bulk update would have applied to this row, if any"""
        if not txn.vendor_normalized:
            return None
        rule = await self.rules.get_for_vendor(txn.owner_id, txn.vendor_normalized)
        # Rules only finish rows of the kind they were created for
        if rule is None or rule.kind != txn.kind:
            return None
        return rule

    async def reconcile(self, txn: Transaction) -> Optional[Transaction]:
        """
        Apply an existing rule to a transaction that is still pending.

        Returns the saved transaction, or None when nothing applied.
        """
        if txn.status != TransactionStatus.PENDING:
            return None
        rule = await self.rule_for(txn)
        if rule is None:
            return None

        # Re-read: the row may have been classified since the caller fetched it
        current = await self.transactions.get(txn.owner_id, txn.id)
        if current is None or current.status != TransactionStatus.PENDING:
            return None

        saved = await self.transactions.save(fill_from_rule(current, rule, self.line_for(rule)))
        AUTO_SORTED_TRANSACTIONS.labels(path="reconcile").inc()
        logger.info("auto_sort_reconciled",
                    transaction_id=str(txn.id),
                    rule_id=str(rule.id),
                    vendor=txn.vendor_normalized)
        return saved
