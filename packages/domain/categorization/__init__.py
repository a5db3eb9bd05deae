"""
Categorization Module - Schedule C classification, similarity and auto-sort

Flow per transaction:
1. Vendor fingerprint (vendor_normalizer) + rounded amount + kind → cache key
2. Cache hit → stored result, no reasoning-service call
3. Cache miss → TransactionClassifier (Anthropic), canonicalized against the
   category table, persisted, then cached
4. Pending rows whose vendor has an auto-sort rule pick it up right away

Similar pending transactions share a fingerprint; applying an auto-sort rule
saves it and bulk-updates every matching pending row in one statement.
"""

from packages.domain.categorization.category_table import (
    CategoryInfo,
    CategoryTable,
    ScheduleCCategory,
    category_table,
)
from packages.domain.categorization.schemas import (
    CategorizationSource,
    ClassificationEvent,
    ClassificationResult,
    DoneEvent,
    ErrorEvent,
    ProgressEvent,
    SuccessEvent,
)
from packages.domain.categorization.vendor_normalizer import normalize_vendor

__all__ = [
    'CategoryInfo',
    'CategoryTable',
    'ScheduleCCategory',
    'category_table',
    'CategorizationSource',
    'ClassificationEvent',
    'ClassificationResult',
    'DoneEvent',
    'ErrorEvent',
    'ProgressEvent',
    'SuccessEvent',
    'normalize_vendor',
]
