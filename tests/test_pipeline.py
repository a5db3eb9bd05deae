import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from packages.common.config import Settings
from packages.common.errors import ConfigurationError, NotFoundError, ValidationFailure
from packages.common.schemas.transaction import (
    TransactionKind,
    TransactionRow,
    TransactionStatus,
    TransactionUpdate,
)
from packages.domain.categorization.schemas import DoneEvent
from packages.domain.pipeline import MAX_CLASSIFY_IDS, build_pipeline, parse_ids
from packages.domain.transactions.updates import apply_update

from tests.factories import FakeClassifier, make_transaction, meal_result

pytestmark = pytest.mark.anyio


def test_parse_ids_dedupes_in_order():
    a, b = uuid4(), uuid4()
    assert parse_ids([str(a), str(b), str(a)]) == [a, b]


@pytest.mark.parametrize("raw", [
    [],
    ["not-a-uuid"],
    [str(uuid4()) for _ in range(MAX_CLASSIFY_IDS + 1)],
])
def test_parse_ids_rejects(raw):
    with pytest.raises(ValidationFailure):
        parse_ids(raw)


async def test_classify_rejects_foreign_ids_before_any_call(pipeline, classifier, transactions, other_owner_id, owner_id):
    [theirs] = await transactions.add_many([make_transaction(other_owner_id)])
    with pytest.raises(ValidationFailure):
        await pipeline.classify(owner_id, [str(theirs.id)])
    assert classifier.calls == []


async def test_classify_streams_to_done(pipeline, transactions, owner_id):
    [txn] = await transactions.add_many([make_transaction(owner_id)])
    events = [e async for e in await pipeline.classify(owner_id, [str(txn.id)])]
    assert isinstance(events[-1], DoneEvent)
    assert events[-1].successful == 1


async def test_personal_forces_zero_percent(pipeline, transactions, owner_id):
    [txn] = await transactions.add_many([
        make_transaction(owner_id, status=TransactionStatus.COMPLETED, deduction_percent=Decimal("100")),
    ])
    updated = await pipeline.update_transaction(owner_id, txn.id, TransactionUpdate(status=TransactionStatus.PERSONAL))
    assert updated.deduction_percent == 0

    summary = await pipeline.summary(owner_id, 2024)
    assert summary.total_expenses == 0


def test_personal_wins_over_explicit_percent():
    txn = make_transaction(status=TransactionStatus.PERSONAL)
    updated, explicit = apply_update(txn, TransactionUpdate(deduction_percent=Decimal("80")))
    assert updated.deduction_percent == 0
    assert explicit == {"deduction_percent"}


@pytest.mark.parametrize("fields, expected", [
    (dict(is_meal=True), Decimal("50")),
    (dict(is_meal=True, deduction_percent=Decimal("80")), Decimal("40")),
    (dict(is_meal=True, is_travel=True), Decimal("100")),
    (dict(is_meal=True, status=TransactionStatus.PERSONAL), Decimal("0")),
    (dict(deduction_percent=None), Decimal("100")),
])
def test_effective_deduction_percent(fields, expected):
    txn = make_transaction(**fields)
    assert txn.effective_deduction_percent == expected
    assert Decimal(txn.model_dump(mode="json")["effective_deduction_percent"]) == expected


def test_update_recomputes_derived_fields():
    txn = make_transaction()
    updated, _ = apply_update(txn, TransactionUpdate(vendor="Amazon.com*CD34", date=dt.date(2025, 1, 2), category="supplies"))
    assert updated.vendor_normalized == "amazon"
    assert updated.tax_year == 2025
    assert updated.schedule_c_line == "22"


def test_update_rejects_null_required_fields():
    with pytest.raises(ValidationFailure):
        apply_update(make_transaction(), TransactionUpdate(amount=None))


async def test_update_unknown_transaction(pipeline, owner_id):
    with pytest.raises(NotFoundError):
        await pipeline.update_transaction(owner_id, uuid4(), TransactionUpdate(notes="x"))


async def test_pending_correction_picks_up_rule_but_keeps_explicit_fields(pipeline, transactions, owner_id):
    await pipeline.apply_auto_sort(owner_id, "starbucks", "Client coffee", "Meetings", 2024,
                                   deduction_percent=Decimal("80"))
    [txn] = await transactions.add_many([make_transaction(owner_id)])

    updated = await pipeline.update_transaction(owner_id, txn.id, TransactionUpdate(notes="client lunch", quick_label="Mine"))

    assert updated.status == TransactionStatus.AUTO_SORTED
    assert updated.quick_label == "Mine"
    assert updated.deduction_percent == Decimal("80")
    assert updated.notes == "client lunch"


async def test_correction_ignores_rule_for_the_other_kind(pipeline, transactions, owner_id):
    await pipeline.apply_auto_sort(owner_id, "amazon", "Office supplies", None, 2024, category="Supplies")
    [refund] = await transactions.add_many([make_transaction(
        owner_id, vendor="AMAZON.COM*ZZ99", amount="25.00", kind=TransactionKind.INCOME,
    )])

    updated = await pipeline.update_transaction(owner_id, refund.id, TransactionUpdate(notes="refund"))

    assert updated.status == TransactionStatus.PENDING
    assert updated.quick_label is None
    assert updated.category is None


async def test_changing_kind_to_match_the_rule_picks_it_up(pipeline, transactions, owner_id):
    await pipeline.apply_auto_sort(owner_id, "amazon", "Office supplies", None, 2024, category="Supplies")
    [txn] = await transactions.add_many([make_transaction(
        owner_id, vendor="AMAZON.COM*ZZ99", amount="25.00", kind=TransactionKind.INCOME,
    )])

    updated = await pipeline.update_transaction(owner_id, txn.id, TransactionUpdate(kind=TransactionKind.EXPENSE))

    assert updated.status == TransactionStatus.AUTO_SORTED
    assert updated.category == "Supplies"


async def test_find_similar_accepts_raw_vendor(pipeline, transactions, owner_id):
    a, b = await transactions.add_many([
        make_transaction(owner_id, vendor="AMAZON.COM*AB12"),
        make_transaction(owner_id, vendor="Amazon.com*CD34"),
    ])
    found = await pipeline.find_similar(owner_id, "AMAZON.COM*AB12", 2024, exclude_id=a.id)
    assert [t.id for t in found] == [b.id]


async def test_import_rows_creates_pending(pipeline, owner_id):
    ids = await pipeline.import_rows(owner_id, [
        TransactionRow(date=dt.date(2024, 3, 1), vendor="STARBUCKS #4521", amount=Decimal("-6.75")),
        TransactionRow(date=dt.date(2024, 3, 2), vendor="Delta", amount=Decimal("-380"), category="Travel"),
    ])
    [first, second] = [await pipeline.transactions.get(owner_id, i) for i in ids]
    assert first.status == TransactionStatus.PENDING
    assert first.vendor_normalized == "starbucks"
    assert second.schedule_c_line == "24a"


async def test_classify_unclassified_retries_only_null_categories(pipeline, transactions, classifier, owner_id):
    await transactions.add_many([
        make_transaction(owner_id),
        make_transaction(owner_id, vendor="Office Depot", category="Supplies"),
    ])
    events = await pipeline.classify_unclassified(owner_id)
    assert events[-1].total == 1
    assert len(classifier.calls) == 1


async def test_tax_rate_defaults_and_overrides(pipeline, owner_id):
    assert await pipeline.tax_rate_for(owner_id, 2024) == Decimal("0.24")
    await pipeline.set_tax_rate(owner_id, 2024, Decimal("0.32"))
    assert await pipeline.tax_rate_for(owner_id, 2024) == Decimal("0.32")
    with pytest.raises(ValidationFailure):
        await pipeline.set_tax_rate(owner_id, 2024, Decimal("1.5"))


async def test_summary_without_wage_base_is_configuration_error(pipeline, owner_id):
    with pytest.raises(ConfigurationError):
        await pipeline.summary(owner_id, 2031)


async def test_business_income_excludes_deductions(pipeline, transactions, owner_id):
    from packages.domain.tax import calculators

    await transactions.add_many([
        make_transaction(owner_id, vendor="Client", amount="2000", kind="income", status=TransactionStatus.COMPLETED),
        make_transaction(owner_id, amount="-500", status=TransactionStatus.COMPLETED),
    ])
    await pipeline.add_deduction(calculators.home_office_deduction(owner_id, 2024, Decimal("100"), Decimal("0.24")))
    assert await pipeline.business_income(owner_id, 2024) == Decimal("1500")


def test_build_pipeline_uses_memory_in_mock_mode():
    settings = Settings(USE_MOCK_DATA=True, ENVIRONMENT="test")
    pipeline = build_pipeline(settings, classifier=FakeClassifier({"starbucks": meal_result()}))
    assert type(pipeline.transactions).__name__ == "InMemoryTransactionRepository"


def test_build_pipeline_needs_sessions_outside_mock_mode():
    with pytest.raises(ConfigurationError):
        build_pipeline(Settings(USE_MOCK_DATA=False, ENVIRONMENT="test"))
