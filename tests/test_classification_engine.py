from decimal import Decimal

import pytest

from packages.common.classification_cache import cache_key
from packages.common.errors import ClassificationError
from packages.common.schemas.transaction import TransactionKind, TransactionStatus
from packages.domain.categorization.classification_engine import ClassificationEngine
from packages.domain.categorization.schemas import (
    DoneEvent,
    ErrorEvent,
    ProgressEvent,
    SuccessEvent,
)

from tests.factories import FakeClassifier, make_transaction, meal_result

pytestmark = pytest.mark.anyio


async def _seed(transactions, *txns):
    return await transactions.add_many(list(txns))


def _of(events, kind):
    return [e for e in events if isinstance(e, kind)]


async def test_empty_input_emits_only_done(engine, classifier):
    events = await engine.drain([])
    assert events == [DoneEvent(total=0, successful=0, cached_count=0)]
    assert classifier.calls == []


async def test_every_transaction_gets_progress_then_outcome(engine, transactions, owner_id):
    txns = await _seed(
        transactions,
        make_transaction(owner_id),
        make_transaction(owner_id, vendor="Office Depot 551", amount="-42.10"),
        make_transaction(owner_id, vendor="Delta Air Lines", amount="-380.00"),
    )
    events = await engine.drain(txns)

    assert isinstance(events[-1], DoneEvent)
    assert _of(events, DoneEvent) == [events[-1]]
    assert events[-1].total == 3 and events[-1].successful == 3

    progress = _of(events, ProgressEvent)
    assert [p.completed for p in progress] == [1, 2, 3]
    for i, event in enumerate(events[:-1]):
        if isinstance(event, ProgressEvent):
            assert isinstance(events[i + 1], (SuccessEvent, ErrorEvent))


async def test_results_are_persisted(engine, transactions, owner_id):
    [txn] = await _seed(transactions, make_transaction(owner_id))
    events = await engine.drain([txn])

    [success] = _of(events, SuccessEvent)
    assert success.id == str(txn.id)
    assert success.category == "Meals"
    assert success.line == "24b"
    assert success.deduction_pct == 100.0
    assert not success.cached

    stored = await transactions.get(owner_id, txn.id)
    assert stored.category == "Meals"
    assert stored.is_meal
    assert stored.ai_suggestions == ["Client coffee", "Team meeting"]
    assert stored.status == TransactionStatus.PENDING


async def test_cache_hit_skips_the_model(engine, classifier, cache, transactions, owner_id):
    await cache.put(cache_key("starbucks", Decimal("7.00"), "expense"), "starbucks", "expense", meal_result())
    [txn] = await _seed(transactions, make_transaction(owner_id, amount="-6.75"))

    events = await engine.drain([txn])

    assert classifier.calls == []
    [success] = _of(events, SuccessEvent)
    assert success.cached
    assert events[-1].cached_count == 1
    assert (await transactions.get(owner_id, txn.id)).category == "Meals"


async def test_second_run_is_served_from_cache(engine, classifier, transactions, owner_id, other_owner_id):
    [first] = await _seed(transactions, make_transaction(owner_id))
    await engine.drain([first])

    [second] = await _seed(transactions, make_transaction(other_owner_id, amount="-7.20", tax_year=2025))
    events = await engine.drain([second])

    assert len(classifier.calls) == 1
    assert events[-1].cached_count == 1


async def test_blank_fingerprint_is_never_cached(engine, classifier, cache, transactions, owner_id):
    [txn] = await _seed(transactions, make_transaction(owner_id, vendor="", vendor_normalized=None))
    await engine.drain([txn])
    await engine.drain([txn])
    assert len(classifier.calls) == 2
    assert await cache.size() == 0


async def test_one_failure_does_not_stop_the_stream(cache, transactions, settings, owner_id):
    classifier = FakeClassifier({
        "starbucks": meal_result(),
        "mysteryvendor": ClassificationError("Classification response was malformed"),
        "brokenvendor": RuntimeError("socket closed"),
    })
    engine = ClassificationEngine(classifier, cache, transactions, settings=settings)
    txns = await _seed(
        transactions,
        make_transaction(owner_id, vendor="Mystery Vendor"),
        make_transaction(owner_id),
        make_transaction(owner_id, vendor="Broken Vendor"),
    )

    events = await engine.drain(txns)

    errors = {e.id: e.message for e in _of(events, ErrorEvent)}
    assert errors[str(txns[0].id)] == "Classification response was malformed"
    assert errors[str(txns[2].id)] == "Classification failed"
    assert "socket" not in errors[str(txns[2].id)]
    assert events[-1] == DoneEvent(total=3, successful=1, cached_count=0)
    assert (await transactions.get(owner_id, txns[0].id)).category is None


async def test_concurrency_is_bounded_by_batch_size(cache, transactions, settings, owner_id):
    classifier = FakeClassifier(delay=0.02)
    engine = ClassificationEngine(classifier, cache, transactions, batch_size=3, settings=settings)
    txns = await _seed(transactions, *[
        make_transaction(owner_id, vendor=f"Vendor {name}") for name in "abcdefgh"
    ])

    events = await engine.drain(txns)

    assert classifier.max_in_flight <= 3
    assert len(classifier.calls) == 8
    assert events[-1].successful == 8


async def test_persist_failure_becomes_error_event(cache, transactions, settings, owner_id):
    class FailingWrites(type(transactions)):
        async def apply_classification(self, transaction_id, result):
            raise RuntimeError("database is gone")

    store = FailingWrites()
    [txn] = await store.add_many([make_transaction(owner_id)])
    engine = ClassificationEngine(FakeClassifier({"starbucks": meal_result()}), cache, store, settings=settings)

    events = await engine.drain([txn])

    [error] = _of(events, ErrorEvent)
    assert error.message == "Could not save classification"
    assert await cache.size() == 0


async def test_existing_rule_finishes_a_classified_row(engine, pipeline, transactions, owner_id):
    await pipeline.apply_auto_sort(owner_id, "starbucks", "Client coffee", "Client meetings", 2024,
                                   deduction_percent=Decimal("80"))
    [txn] = await _seed(transactions, make_transaction(owner_id))

    events = await engine.drain([txn])

    [success] = _of(events, SuccessEvent)
    assert success.deduction_pct == 80.0
    stored = await transactions.get(owner_id, txn.id)
    assert stored.status == TransactionStatus.AUTO_SORTED
    assert stored.quick_label == "Client coffee"
    assert stored.category == "Meals"


async def test_abandoned_consumer_does_not_cancel_work(engine, transactions, owner_id):
    txns = await _seed(transactions, *[
        make_transaction(owner_id, vendor=f"Vendor {name}") for name in "abcd"
    ])

    stream = engine.classify(txns)
    first = await stream.__anext__()
    assert isinstance(first, ProgressEvent)
    await stream.aclose()

    await engine.wait_idle()
    stored = [await transactions.get(owner_id, t.id) for t in txns]
    assert all(t.category == "Other expenses" for t in stored)


def test_events_serialize_as_camel_case_ndjson():
    line = DoneEvent(total=2, successful=1, cached_count=1).to_ndjson()
    assert line.endswith("\n")
    assert '"cachedCount":1' in line
    assert '"type":"done"' in line
    success = SuccessEvent(id="x", category="Meals", confidence=0.9, deduction_pct=100.0, quick_labels=["a"])
    assert '"quickLabels":["a"]' in success.to_ndjson()
    assert '"deductionPct":100.0' in success.to_ndjson()


def test_rejects_non_positive_batch_size(classifier, cache, transactions, settings):
    with pytest.raises(ValueError):
        ClassificationEngine(classifier, cache, transactions, batch_size=-1, settings=settings)


async def test_expense_rule_does_not_finish_an_income_row(engine, pipeline, transactions, owner_id):
    await pipeline.apply_auto_sort(owner_id, "amazon", "Office supplies", None, 2024, category="Supplies")
    [refund] = await _seed(transactions, make_transaction(
        owner_id, vendor="AMAZON.COM*ZZ99", amount="25.00", kind=TransactionKind.INCOME,
    ))

    await engine.drain([refund])

    stored = await transactions.get(owner_id, refund.id)
    assert stored.status == TransactionStatus.PENDING
    assert stored.quick_label is None
    assert stored.auto_sort_rule_id is None
    assert stored.category == "Other expenses"
