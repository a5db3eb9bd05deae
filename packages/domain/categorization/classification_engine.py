"""
Classification Engine - batched, cached, streaming transaction classification

Flow for classify(transactions):
1. Cache pass: every transaction whose (fingerprint, rounded amount, kind)
   key is cached is persisted and reported immediately, no model call
2. Miss pass: remaining transactions run in batches of `batch_size`;
   members of a batch call the model concurrently, batches run one after
   another, so at most `batch_size` calls are ever in flight
3. Every finished transaction emits `progress`, then `success` or `error`
4. One terminal `done` event with total, successful and cached counts

Each result is written to the transaction row as soon as it exists. The
work runs in a background task feeding a queue: a consumer that stops
reading does not cancel it, and nothing already written is rolled back.
"""
import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Set

import structlog

from packages.common.classification_cache import ClassificationCache, cache_key
from packages.common.config import Settings, get_settings
from packages.common.errors import ClassificationError
from packages.common.metrics import (
    CLASSIFICATION_CACHE_HITS,
    CLASSIFICATION_FAILURES,
    CLASSIFIER_CALLS,
)
from packages.common.repositories.base import TransactionRepository
from packages.common.schemas.transaction import Transaction
from packages.domain.categorization.auto_sort import AutoSortRuleEngine
from packages.domain.categorization.schemas import (
    ClassificationEvent,
    ClassificationResult,
    DoneEvent,
    ErrorEvent,
    ProgressEvent,
    SuccessEvent,
)
from packages.domain.categorization.transaction_classifier import TransactionClassifier

logger = structlog.get_logger()


@dataclass
class _Outcome:
    txn: Transaction
    result: Optional[ClassificationResult] = None
    error: Optional[str] = None
    cached: bool = False


class ClassificationEngine:
    """
    Orchestrates cache lookups, model calls, persistence and events.

    Usage:
        engine = ClassificationEngine(classifier, cache, transactions)
        async for event in engine.classify(pending):
            print(event.to_ndjson())
    """

    def __init__(
        self,
        classifier: TransactionClassifier,
        cache: ClassificationCache,
        transactions: TransactionRepository,
        rule_engine: Optional[AutoSortRuleEngine] = None,
        batch_size: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.classifier = classifier
        self.cache = cache
        self.transactions = transactions
        self.rule_engine = rule_engine
        self.batch_size = batch_size or settings.classify_batch_size
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._background: Set[asyncio.Task] = set()

    async def classify(self, transactions: Sequence[Transaction]) -> AsyncIterator[ClassificationEvent]:
        """
        Classify transactions, yielding events in the order they are produced.

        Completion order inside a batch is not input order.
        """
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._run(list(transactions), queue))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        while True:
            event = await queue.get()
            yield event
            if isinstance(event, DoneEvent):
                return

    async def drain(self, transactions: Sequence[Transaction]) -> List[ClassificationEvent]:
        """Run classify() to completion and collect every event"""
        return [event async for event in self.classify(transactions)]

    async def wait_idle(self):
        """Wait for background runs whose consumers went away"""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _run(self, transactions: List[Transaction], queue: asyncio.Queue):
        total = len(transactions)
        completed = 0
        successful = 0
        cached_count = 0

        logger.info("classification_started", total=total, batch_size=self.batch_size)

        async def emit(outcome: _Outcome):
            nonlocal completed, successful, cached_count
            completed += 1
            await queue.put(ProgressEvent(completed=completed, total=total, current=outcome.txn.vendor))
            if outcome.result is None:
                CLASSIFICATION_FAILURES.inc()
                await queue.put(ErrorEvent(message=outcome.error or "Classification failed",
                                           id=str(outcome.txn.id)))
                return
            successful += 1
            if outcome.cached:
                cached_count += 1
            await queue.put(self._success_event(outcome))

        try:
            # Pass 1: cache hits
            misses: List[Transaction] = []
            for txn in transactions:
                key = self._key(txn)
                result = None
                if key is not None:
                    try:
                        result = await self.cache.get(key)
                    except Exception as e:
                        logger.warning("cache_lookup_failed",
                                       transaction_id=str(txn.id),
                                       error=str(e))
                if result is None:
                    misses.append(txn)
                    continue
                CLASSIFICATION_CACHE_HITS.inc()
                await emit(await self._persist(txn, result, cached=True))

            # Pass 2: model calls, batch by batch
            for start in range(0, len(misses), self.batch_size):
                batch = misses[start:start + self.batch_size]
                logger.debug("classification_batch_started",
                             batch_start=start,
                             batch_size=len(batch))
                for finished in asyncio.as_completed([self._classify_miss(t) for t in batch]):
                    await emit(await finished)
        finally:
            logger.info("classification_complete",
                        total=total,
                        successful=successful,
                        cached=cached_count,
                        failed=completed - successful)
            await queue.put(DoneEvent(total=total, successful=successful, cached_count=cached_count))

    @staticmethod
    def _key(txn: Transaction) -> Optional[str]:
        # Blank fingerprints would merge unrelated merchants, never cache them
        if not txn.vendor_normalized:
            return None
        return cache_key(txn.vendor_normalized, txn.amount, txn.kind.value)

    async def _classify_miss(self, txn: Transaction) -> _Outcome:
        try:
            result = await self.classifier.classify(txn)
        except ClassificationError as e:
            CLASSIFIER_CALLS.labels(outcome="error").inc()
            logger.warning("classification_failed",
                           transaction_id=str(txn.id),
                           reason=e.reason,
                           transient=e.transient)
            return _Outcome(txn=txn, error=e.reason)
        except Exception as e:
            CLASSIFIER_CALLS.labels(outcome="error").inc()
            logger.error("classification_failed",
                         transaction_id=str(txn.id),
                         error=str(e),
                         exc_info=True)
            return _Outcome(txn=txn, error="Classification failed")

        CLASSIFIER_CALLS.labels(outcome="success").inc()
        outcome = await self._persist(txn, result, cached=False)

        key = self._key(txn)
        if key is not None and outcome.result is not None:
            try:
                await self.cache.put(key, txn.vendor_normalized, txn.kind.value, result)
            except Exception as e:
                logger.warning("cache_store_failed",
                               transaction_id=str(txn.id),
                               error=str(e))
        return outcome

    async def _persist(self, txn: Transaction, result: ClassificationResult, cached: bool) -> _Outcome:
        """Write the result to the row, then let an existing rule finish it"""
        try:
            await self.transactions.apply_classification(txn.id, result)
        except Exception as e:
            logger.error("classification_persist_failed",
                         transaction_id=str(txn.id),
                         error=str(e),
                         exc_info=True)
            return _Outcome(txn=txn, error="Could not save classification")

        classified = txn.model_copy(update={
            "category": result.category,
            "schedule_c_line": result.schedule_c_line,
            "ai_confidence": result.confidence,
            "ai_reasoning": result.reasoning,
            "ai_suggestions": list(result.quick_labels),
            "is_meal": result.is_meal,
            "is_travel": result.is_travel,
        })

        if self.rule_engine is not None:
            try:
                reconciled = await self.rule_engine.reconcile(classified)
            except Exception as e:
                logger.error("auto_sort_reconcile_failed",
                             transaction_id=str(txn.id),
                             error=str(e),
                             exc_info=True)
                reconciled = None
            if reconciled is not None:
                classified = reconciled

        return _Outcome(txn=classified, result=result, cached=cached)

    @staticmethod
    def _success_event(outcome: _Outcome) -> SuccessEvent:
        txn = outcome.txn
        result = outcome.result
        return SuccessEvent(
            id=str(txn.id),
            category=txn.category or result.category,
            line=txn.schedule_c_line,
            confidence=result.confidence,
            quick_labels=list(result.quick_labels),
            deduction_pct=float(txn.stored_deduction_percent),
            is_meal=result.is_meal,
            is_travel=result.is_travel,
            cached=outcome.cached,
        )
