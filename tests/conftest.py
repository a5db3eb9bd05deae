"""
Shared fixtures: in-memory repositories, a scripted classifier and a
wired pipeline. Async tests run on asyncio through the anyio plugin.
"""
from decimal import Decimal

import pytest

from packages.common.classification_cache import InMemoryClassificationCache
from packages.common.config import Settings
from packages.common.repositories import memory
from packages.domain.categorization.auto_sort import AutoSortRuleEngine
from packages.domain.categorization.classification_engine import ClassificationEngine
from packages.domain.pipeline import PipelineOrchestrator

from tests.factories import OTHER_OWNER_ID, OWNER_ID, FakeClassifier, meal_result


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings():
    return Settings(
        USE_MOCK_DATA=True,
        ENVIRONMENT="test",
        ANTHROPIC_API_KEY=None,
        CLASSIFY_BATCH_SIZE=2,
        CLASSIFIER_BACKOFF_SECONDS=0,
        DEFAULT_TAX_RATE=Decimal("0.24"),
    )


@pytest.fixture
def owner_id():
    return OWNER_ID


@pytest.fixture
def other_owner_id():
    return OTHER_OWNER_ID


@pytest.fixture
def transactions():
    return memory.InMemoryTransactionRepository()


@pytest.fixture
def rules():
    return memory.InMemoryAutoSortRuleRepository()


@pytest.fixture
def cache():
    return InMemoryClassificationCache()


@pytest.fixture
def classifier():
    return FakeClassifier({"starbucks": meal_result()})


@pytest.fixture
def rule_engine(transactions, rules):
    return AutoSortRuleEngine(transactions, rules)


@pytest.fixture
def engine(classifier, cache, transactions, rule_engine, settings):
    return ClassificationEngine(classifier, cache, transactions, rule_engine=rule_engine, settings=settings)


@pytest.fixture
def pipeline(transactions, rules, engine, rule_engine, settings):
    return PipelineOrchestrator(
        transactions,
        rules,
        memory.InMemoryDeductionRepository(),
        memory.InMemoryTaxYearSettingsRepository(),
        engine,
        rule_engine,
        settings=settings,
    )
