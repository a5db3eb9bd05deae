import datetime as dt
from decimal import Decimal

import pytest

from packages.common.errors import ValidationFailure
from packages.common.repositories.base import TransactionScope
from packages.common.schemas.transaction import TransactionKind, TransactionStatus
from packages.domain.categorization.similarity import SimilarityMatcher

from tests.factories import make_transaction

pytestmark = pytest.mark.anyio


async def test_amazon_variants_are_similar(transactions, owner_id):
    a, b = await transactions.add_many([
        make_transaction(owner_id, vendor="AMAZON.COM*AB12", amount="-19.99"),
        make_transaction(owner_id, vendor="Amazon.com*CD34", amount="-54.00"),
    ])
    matcher = SimilarityMatcher(transactions)
    scope = TransactionScope(owner_id, 2024)

    assert [t.id for t in await matcher.find_similar(a.vendor_normalized, a.id, scope)] == [b.id]
    assert [t.id for t in await matcher.find_similar(b.vendor_normalized, b.id, scope)] == [a.id]


async def test_similarity_is_scoped(transactions, owner_id, other_owner_id):
    [anchor, *_] = await transactions.add_many([
        make_transaction(owner_id),
        make_transaction(other_owner_id),
        make_transaction(owner_id, date=dt.date(2023, 12, 30)),
        make_transaction(owner_id, kind=TransactionKind.INCOME),
        make_transaction(owner_id, status=TransactionStatus.COMPLETED),
        make_transaction(owner_id, status=TransactionStatus.PERSONAL),
    ])
    matcher = SimilarityMatcher(transactions)
    assert await matcher.find_similar("starbucks", anchor.id, TransactionScope(owner_id, 2024)) == []


async def test_blank_fingerprint_matches_nothing(transactions, owner_id):
    await transactions.add_many([make_transaction(owner_id, vendor="", vendor_normalized=None)])
    matcher = SimilarityMatcher(transactions)
    assert await matcher.find_similar("", None, TransactionScope(owner_id, 2024)) == []
    assert await matcher.find_similar(None, None, TransactionScope(owner_id, 2024)) == []


async def test_apply_rule_updates_pending_matches(rule_engine, transactions, owner_id):
    pending = await transactions.add_many([
        make_transaction(owner_id),
        make_transaction(owner_id, vendor="Starbucks Store 881", amount="-4.50"),
    ])
    [done] = await transactions.add_many([
        make_transaction(owner_id, status=TransactionStatus.COMPLETED, quick_label="Team lunch"),
    ])

    result = await rule_engine.apply_rule(
        vendor_normalized="starbucks",
        quick_label="Client coffee",
        business_purpose="Client meetings",
        scope=TransactionScope(owner_id, 2024),
        category="Meals",
    )

    assert result.updated_count == 2
    for txn in pending:
        stored = await transactions.get(owner_id, txn.id)
        assert stored.status == TransactionStatus.AUTO_SORTED
        assert stored.quick_label == "Client coffee"
        assert stored.schedule_c_line == "24b"
        assert stored.auto_sort_rule_id == result.rule.id
    untouched = await transactions.get(owner_id, done.id)
    assert untouched.quick_label == "Team lunch"


async def test_zero_matches_still_persists_rule(rule_engine, rules, owner_id):
    result = await rule_engine.apply_rule("Blue Bottle Coffee", "Coffee", None, TransactionScope(owner_id, 2024))
    assert result.updated_count == 0
    stored = await rules.get_for_vendor(owner_id, "bluebottlecoffee")
    assert stored.id == result.rule.id


async def test_second_rule_overwrites_first(rule_engine, rules, owner_id):
    scope = TransactionScope(owner_id, 2024)
    first = await rule_engine.apply_rule("starbucks", "Client coffee", None, scope)
    second = await rule_engine.apply_rule("starbucks", "Personal treat", "n/a", scope,
                                          deduction_percent=Decimal("0"))
    assert len(rules) == 1
    assert second.rule.id == first.rule.id
    assert (await rules.get_for_vendor(owner_id, "starbucks")).quick_label == "Personal treat"


@pytest.mark.parametrize("vendor, label, pct", [
    ("   ", "Coffee", None),
    ("starbucks", "  ", None),
    ("starbucks", "Coffee", Decimal("150")),
])
async def test_invalid_rule_is_rejected_before_any_write(rule_engine, rules, owner_id, vendor, label, pct):
    with pytest.raises(ValidationFailure):
        await rule_engine.apply_rule(vendor, label, None, TransactionScope(owner_id, 2024), deduction_percent=pct)
    assert len(rules) == 0


async def test_reconcile_only_touches_pending_rows(rule_engine, transactions, owner_id):
    await rule_engine.apply_rule("starbucks", "Client coffee", None, TransactionScope(owner_id, 2024))
    [pending, completed] = await transactions.add_many([
        make_transaction(owner_id),
        make_transaction(owner_id, status=TransactionStatus.COMPLETED),
    ])

    reconciled = await rule_engine.reconcile(pending)
    assert reconciled.status == TransactionStatus.AUTO_SORTED
    assert await rule_engine.reconcile(completed) is None


async def test_rule_remembers_its_kind(rule_engine, rules, owner_id):
    scope = TransactionScope(owner_id, 2024, TransactionKind.INCOME)
    result = await rule_engine.apply_rule("stripe", "Client payment", None, scope)
    assert result.rule.kind == TransactionKind.INCOME
    assert (await rules.get_for_vendor(owner_id, "stripe")).kind == TransactionKind.INCOME


async def test_reconcile_requires_matching_kind(rule_engine, transactions, owner_id):
    await rule_engine.apply_rule("amazon", "Office supplies", None, TransactionScope(owner_id, 2024),
                                 category="Supplies")
    [income, expense] = await transactions.add_many([
        make_transaction(owner_id, vendor="AMAZON.COM*ZZ99", amount="25.00", kind=TransactionKind.INCOME),
        make_transaction(owner_id, vendor="AMAZON.COM*ZZ98", amount="-25.00"),
    ])

    assert await rule_engine.rule_for(income) is None
    assert await rule_engine.reconcile(income) is None
    assert (await transactions.get(owner_id, income.id)).status == TransactionStatus.PENDING

    reconciled = await rule_engine.reconcile(expense)
    assert reconciled.status == TransactionStatus.AUTO_SORTED
    assert reconciled.category == "Supplies"
