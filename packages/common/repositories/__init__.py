"""
Repositories - narrow, typed access to the transaction store

base.py declares the interfaces; sql.py implements them with SQLAlchemy,
memory.py with plain dicts for tests and USE_MOCK_DATA.
"""
from packages.common.repositories.base import (
    AutoSortRuleRepository,
    DeductionRepository,
    TaxYearSettingsRepository,
    TransactionRepository,
    TransactionScope,
)

__all__ = [
    'AutoSortRuleRepository',
    'DeductionRepository',
    'TaxYearSettingsRepository',
    'TransactionRepository',
    'TransactionScope',
]
