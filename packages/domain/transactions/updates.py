"""
Transaction corrections and imports

Pure helpers: they build the new Transaction value and leave persistence
to the caller. Corrections never revert status implicitly.
"""
from typing import Optional, Set, Tuple
from uuid import UUID

import structlog

from packages.common.errors import ValidationFailure
from packages.common.schemas.transaction import (
    Transaction,
    TransactionRow,
    TransactionStatus,
    TransactionUpdate,
)
from packages.domain.categorization.category_table import category_table
from packages.domain.categorization.vendor_normalizer import normalize_vendor

logger = structlog.get_logger()

# Sent as null these would leave the row without a required fact
_NON_NULLABLE = ("date", "vendor", "amount", "kind", "status")


def fingerprint_for(vendor: Optional[str]) -> Optional[str]:
    """Vendor fingerprint, or None for a blank vendor"""
    if not vendor or not vendor.strip():
        return None
    return normalize_vendor(vendor) or None


def apply_update(txn: Transaction, update: TransactionUpdate) -> Tuple[Transaction, Set[str]]:
    """
    Apply the fields the caller actually sent.

    - vendor recomputes the fingerprint
    - date recomputes the tax year
    - status personal forces deduction_percent to 0
    - a known category without an explicit line takes the table's line

    Returns:
        (updated transaction, names of the fields the caller set)
    """
    changes = update.model_dump(exclude_unset=True)
    for field in _NON_NULLABLE:
        if field in changes and changes[field] is None:
            raise ValidationFailure(f"{field} cannot be null")

    if "vendor" in changes:
        changes["vendor_normalized"] = fingerprint_for(changes["vendor"])
    if "date" in changes:
        changes["tax_year"] = changes["date"].year
    if "category" in changes and "schedule_c_line" not in changes and changes["category"]:
        line = category_table.line_for(changes["category"])
        if line is not None:
            changes["schedule_c_line"] = line

    status = changes.get("status", txn.status)
    if status == TransactionStatus.PERSONAL and (
        "status" in changes or "deduction_percent" in changes
    ):
        changes["deduction_percent"] = 0

    explicit = set(update.model_fields_set)
    updated = Transaction.model_validate({**txn.model_dump(), **changes})
    logger.debug("transaction_update_applied",
                 transaction_id=str(txn.id),
                 fields=sorted(explicit))
    return updated, explicit


def new_transaction(owner_id: UUID, row: TransactionRow, tax_year: Optional[int] = None) -> Transaction:
    """Pending transaction from an already-parsed import row"""
    category = row.category.strip() if row.category else None
    return Transaction(
        owner_id=owner_id,
        tax_year=tax_year or row.date.year,
        date=row.date,
        vendor=row.vendor,
        vendor_normalized=fingerprint_for(row.vendor),
        amount=row.amount,
        description=row.description,
        kind=row.kind,
        category=category or None,
        schedule_c_line=category_table.line_for(category) if category else None,
        notes=row.notes,
        status=TransactionStatus.PENDING,
        source="import",
    )
