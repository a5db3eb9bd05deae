"""
Repository interfaces

Every method is a single unit of work against the store. Implementations
must not hold a session open between calls: the classification stream can
outlive the request that started it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from packages.common.schemas.transaction import (
    AutoSortRule,
    Deduction,
    Transaction,
    TransactionKind,
)
from packages.domain.categorization.schemas import ClassificationResult


@dataclass(frozen=True)
class TransactionScope:
    """(owner, tax year, kind) slice used by similarity and auto-sort"""
    owner_id: UUID
    tax_year: int
    kind: TransactionKind = TransactionKind.EXPENSE


class TransactionRepository(ABC):

    @abstractmethod
    async def get(self, owner_id: UUID, transaction_id: UUID) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def get_many(self, owner_id: UUID, transaction_ids: Sequence[UUID]) -> List[Transaction]:
        """Rows owned by owner_id among the ids; missing ids are skipped"""

    @abstractmethod
    async def add_many(self, transactions: Sequence[Transaction]) -> List[Transaction]:
        ...

    @abstractmethod
    async def save(self, transaction: Transaction) -> Transaction:
        """Overwrite every mutable column of an existing row"""

    @abstractmethod
    async def apply_classification(self, transaction_id: UUID, result: ClassificationResult) -> None:
        """Copy a classification onto the row; status and percent are untouched"""

    @abstractmethod
    async def find_pending_by_vendor(
        self,
        scope: TransactionScope,
        vendor_normalized: str,
        exclude_id: Optional[UUID] = None,
    ) -> List[Transaction]:
        ...

    @abstractmethod
    async def bulk_auto_sort(
        self,
        scope: TransactionScope,
        vendor_normalized: str,
        rule: AutoSortRule,
        schedule_c_line: Optional[str] = None,
    ) -> int:
        """
        Set every pending row in scope with this fingerprint to auto_sorted.

        Each row's label, purpose, category, line, percent and status
        change together; a rule field left null keeps the row's value.
        Returns the number of rows updated.
        """

    @abstractmethod
    async def list_for_year(self, owner_id: UUID, tax_year: int) -> List[Transaction]:
        ...

    @abstractmethod
    async def list_unclassified(self, owner_id: Optional[UUID] = None, limit: int = 100) -> List[Transaction]:
        """Pending rows whose category is still null, oldest first"""


class AutoSortRuleRepository(ABC):

    @abstractmethod
    async def upsert(self, rule: AutoSortRule) -> AutoSortRule:
        """One rule per (owner, vendor_pattern); a later write overwrites"""

    @abstractmethod
    async def get_for_vendor(self, owner_id: UUID, vendor_pattern: str) -> Optional[AutoSortRule]:
        ...


class DeductionRepository(ABC):

    @abstractmethod
    async def add(self, deduction: Deduction) -> Deduction:
        ...

    @abstractmethod
    async def list_for_year(self, owner_id: UUID, tax_year: int) -> List[Deduction]:
        ...

    @abstractmethod
    async def delete(self, owner_id: UUID, deduction_type: str, tax_year: int) -> int:
        ...


class TaxYearSettingsRepository(ABC):

    @abstractmethod
    async def get_tax_rate(self, owner_id: UUID, tax_year: int) -> Optional[Decimal]:
        ...

    @abstractmethod
    async def set_tax_rate(self, owner_id: UUID, tax_year: int, tax_rate: Decimal) -> None:
        ...
