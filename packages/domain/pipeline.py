"""
Pipeline Orchestrator - façade over classification, similarity, auto-sort
and tax aggregation

This is the only object the API and the worker talk to. It validates
requests up front (nothing reaches the reasoning service or the store for a
malformed request), loads what each engine needs through the repositories,
and hands back domain values or event streams.
"""
from decimal import Decimal
from typing import AsyncIterator, List, Optional, Sequence
from uuid import UUID

import structlog

from packages.common.config import Settings, get_settings
from packages.common.errors import ConfigurationError, NotFoundError, ValidationFailure
from packages.common.repositories.base import (
    AutoSortRuleRepository,
    DeductionRepository,
    TaxYearSettingsRepository,
    TransactionRepository,
    TransactionScope,
)
from packages.common.schemas.transaction import (
    Deduction,
    Transaction,
    TransactionKind,
    TransactionRow,
    TransactionStatus,
    TransactionUpdate,
)
from packages.domain.categorization.auto_sort import (
    AutoSortResult,
    AutoSortRuleEngine,
    fill_from_rule,
)
from packages.domain.categorization.classification_engine import ClassificationEngine
from packages.domain.categorization.schemas import ClassificationEvent
from packages.domain.categorization.similarity import SimilarityMatcher
from packages.domain.categorization.vendor_normalizer import normalize_vendor
from packages.domain.tax.aggregation import TaxSummary, net_business_income, summarize
from packages.domain.transactions.updates import apply_update, new_transaction

logger = structlog.get_logger()

MAX_CLASSIFY_IDS = 1000
MAX_IMPORT_ROWS = 5000


def parse_ids(raw_ids: Sequence[str]) -> List[UUID]:
    """Validate and de-duplicate transaction ids, keeping order"""
    if not raw_ids:
        raise ValidationFailure("transactionIds must not be empty")
    if len(raw_ids) > MAX_CLASSIFY_IDS:
        raise ValidationFailure(f"At most {MAX_CLASSIFY_IDS} transactionIds per request")
    ids: List[UUID] = []
    for raw in raw_ids:
        try:
            value = raw if isinstance(raw, UUID) else UUID(str(raw))
        except ValueError:
            raise ValidationFailure(f"Invalid transaction id: {str(raw)[:64]}") from None
        if value not in ids:
            ids.append(value)
    return ids


class PipelineOrchestrator:
    """
    Usage:
        pipeline = build_pipeline(settings)
        async for event in await pipeline.classify(owner_id, ["..."]):
            ...
        summary = await pipeline.summary(owner_id, 2024, quarter=1)
    """

    def __init__(
        self,
        transactions: TransactionRepository,
        rules: AutoSortRuleRepository,
        deductions: DeductionRepository,
        tax_settings: TaxYearSettingsRepository,
        engine: ClassificationEngine,
        rule_engine: AutoSortRuleEngine,
        settings: Optional[Settings] = None,
    ):
        self.transactions = transactions
        self.rules = rules
        self.deductions = deductions
        self.tax_settings = tax_settings
        self.engine = engine
        self.rule_engine = rule_engine
        self.matcher = SimilarityMatcher(transactions)
        self.settings = settings or get_settings()

    # ---- Classification ---------------------------------------------------------------

    async def classify(self, owner_id: UUID, raw_ids: Sequence[str]) -> AsyncIterator[ClassificationEvent]:
        """
        Validate ids and start classification.

        Raises ValidationFailure before any external call when an id is
        malformed or does not belong to the owner; otherwise returns the
        event stream.
        """
        ids = parse_ids(raw_ids)
        found = await self.transactions.get_many(owner_id, ids)
        if len(found) != len(ids):
            known = {t.id for t in found}
            missing = [str(i) for i in ids if i not in known]
            raise ValidationFailure(f"Unknown transaction ids: {', '.join(missing[:5])}")

        logger.info("classify_requested", owner_id=str(owner_id), count=len(found))
        return self.engine.classify(found)

    async def classify_unclassified(
        self,
        owner_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> List[ClassificationEvent]:
        """Retry pending rows whose category is still null; drains the stream"""
        pending = await self.transactions.list_unclassified(owner_id=owner_id, limit=limit)
        logger.info("classification_retry_started",
                    owner_id=str(owner_id) if owner_id else None,
                    count=len(pending))
        return await self.engine.drain(pending)

    # ---- Similarity / auto-sort -------------------------------------------------------

    async def find_similar(
        self,
        owner_id: UUID,
        vendor: str,
        tax_year: int,
        kind: TransactionKind = TransactionKind.EXPENSE,
        exclude_id: Optional[UUID] = None,
    ) -> List[Transaction]:
        # Accept raw vendor text or a fingerprint; normalizing is idempotent
        fingerprint = normalize_vendor(vendor or "")
        return await self.matcher.find_similar(
            fingerprint, exclude_id, TransactionScope(owner_id, tax_year, kind),
        )

    async def apply_auto_sort(
        self,
        owner_id: UUID,
        vendor_normalized: str,
        quick_label: str,
        business_purpose: Optional[str],
        tax_year: int,
        category: Optional[str] = None,
        deduction_percent: Optional[Decimal] = None,
        kind: TransactionKind = TransactionKind.EXPENSE,
    ) -> AutoSortResult:
        return await self.rule_engine.apply_rule(
            vendor_normalized=vendor_normalized,
            quick_label=quick_label,
            business_purpose=business_purpose,
            scope=TransactionScope(owner_id, tax_year, kind),
            category=category,
            deduction_percent=deduction_percent,
        )

    # ---- Corrections / import ---------------------------------------------------------

    async def update_transaction(
        self,
        owner_id: UUID,
        transaction_id: UUID,
        update: TransactionUpdate,
    ) -> Transaction:
        """
        Apply a user correction.

        A row that is still pending after the correction picks up an
        existing auto-sort rule for its vendor: fields the caller did not
        send come from the rule.
        """
        txn = await self.transactions.get(owner_id, transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")

        updated, explicit = apply_update(txn, update)

        if updated.status == TransactionStatus.PENDING:
            rule = await self.rule_engine.rule_for(updated)
            if rule is not None:
                updated = fill_from_rule(updated, rule, self.rule_engine.line_for(rule), keep=explicit)
                logger.info("auto_sort_reconciled",
                            transaction_id=str(transaction_id),
                            rule_id=str(rule.id),
                            status=updated.status.value)

        saved = await self.transactions.save(updated)
        logger.info("transaction_updated",
                    owner_id=str(owner_id),
                    transaction_id=str(transaction_id),
                    status=saved.status.value)
        return saved

    async def import_rows(
        self,
        owner_id: UUID,
        rows: Sequence[TransactionRow],
        tax_year: Optional[int] = None,
    ) -> List[UUID]:
        """Persist parsed rows as pending transactions; returns their ids"""
        if not rows:
            raise ValidationFailure("rows must not be empty")
        if len(rows) > MAX_IMPORT_ROWS:
            raise ValidationFailure(f"At most {MAX_IMPORT_ROWS} rows per import")
        if tax_year is not None and not 2000 <= tax_year <= 2100:
            raise ValidationFailure("taxYear must be between 2000 and 2100")

        created = await self.transactions.add_many(
            [new_transaction(owner_id, row, tax_year) for row in rows]
        )
        logger.info("transactions_imported", owner_id=str(owner_id), count=len(created))
        return [t.id for t in created]

    # ---- Deductions / settings --------------------------------------------------------

    async def add_deduction(self, deduction: Deduction) -> Deduction:
        saved = await self.deductions.add(deduction)
        logger.info("deduction_saved",
                    owner_id=str(deduction.owner_id),
                    type=deduction.type,
                    tax_year=deduction.tax_year)
        return saved

    async def list_deductions(self, owner_id: UUID, tax_year: int) -> List[Deduction]:
        return await self.deductions.list_for_year(owner_id, tax_year)

    async def delete_deductions(self, owner_id: UUID, deduction_type: str, tax_year: int) -> int:
        return await self.deductions.delete(owner_id, deduction_type, tax_year)

    async def tax_rate_for(self, owner_id: UUID, tax_year: int) -> Decimal:
        """Owner's stored rate for the year, else DEFAULT_TAX_RATE"""
        rate = await self.tax_settings.get_tax_rate(owner_id, tax_year)
        if rate is None:
            rate = self.settings.default_tax_rate
        if rate is None:
            raise ConfigurationError(f"No tax rate configured for {tax_year}")
        return rate

    async def set_tax_rate(self, owner_id: UUID, tax_year: int, tax_rate: Decimal) -> None:
        if not Decimal("0") <= tax_rate <= Decimal("1"):
            raise ValidationFailure("Tax rate must be between 0 and 1")
        await self.tax_settings.set_tax_rate(owner_id, tax_year, tax_rate)
        logger.info("tax_rate_saved", owner_id=str(owner_id), tax_year=tax_year)

    # ---- Reporting --------------------------------------------------------------------

    async def summary(self, owner_id: UUID, tax_year: int, quarter: Optional[int] = None) -> TaxSummary:
        """Recomputed on every call from the current store state"""
        transactions = await self.transactions.list_for_year(owner_id, tax_year)
        deductions = await self.deductions.list_for_year(owner_id, tax_year)
        tax_rate = await self.tax_rate_for(owner_id, tax_year)
        wage_base = self.settings.wage_base_for(tax_year)
        if wage_base is None:
            raise ConfigurationError(f"No Social Security wage base configured for {tax_year}")
        return summarize(transactions, deductions, tax_rate, wage_base, quarter=quarter)

    async def business_income(self, owner_id: UUID, tax_year: int) -> Decimal:
        """Gross income minus card-sorted expenses; calculator deductions excluded"""
        transactions = await self.transactions.list_for_year(owner_id, tax_year)
        return net_business_income(transactions)


def build_pipeline(
    settings: Optional[Settings] = None,
    sessions=None,
    classifier=None,
    cache=None,
) -> PipelineOrchestrator:
    """
    Wire repositories, cache, classifier and engines.

    USE_MOCK_DATA selects the in-memory repositories; otherwise `sessions`
    (an initialized DatabaseSessionManager) backs the SQL ones.
    """
    from packages.common.classification_cache import (
        InMemoryClassificationCache,
        SqlClassificationCache,
    )
    from packages.common.repositories import memory, sql
    from packages.domain.categorization.transaction_classifier import TransactionClassifier

    settings = settings or get_settings()

    if settings.use_mock_data:
        transactions = memory.InMemoryTransactionRepository()
        rules = memory.InMemoryAutoSortRuleRepository()
        deductions = memory.InMemoryDeductionRepository()
        tax_settings = memory.InMemoryTaxYearSettingsRepository()
    else:
        if sessions is None:
            raise ConfigurationError("Database session manager required unless USE_MOCK_DATA is set")
        transactions = sql.SqlTransactionRepository(sessions)
        rules = sql.SqlAutoSortRuleRepository(sessions)
        deductions = sql.SqlDeductionRepository(sessions)
        tax_settings = sql.SqlTaxYearSettingsRepository(sessions)

    if cache is None:
        if settings.use_mock_data or settings.classification_cache_backend == "memory":
            cache = InMemoryClassificationCache()
        else:
            cache = SqlClassificationCache(sessions)

    rule_engine = AutoSortRuleEngine(transactions, rules)
    engine = ClassificationEngine(
        classifier or TransactionClassifier(settings=settings),
        cache,
        transactions,
        rule_engine=rule_engine,
        settings=settings,
    )
    return PipelineOrchestrator(
        transactions, rules, deductions, tax_settings, engine, rule_engine, settings=settings,
    )
