"""
Tax Module - Schedule C aggregation and deduction calculators

Everything here is pure: callers load transactions, deductions and the
tax-year configuration, then hand them to summarize().
"""

from packages.domain.tax.aggregation import (
    SelfEmploymentTax,
    TaxSummary,
    deductible_amount,
    filter_by_quarter,
    filter_deductible,
    net_business_income,
    schedule_se,
    summarize,
)

__all__ = [
    'SelfEmploymentTax',
    'TaxSummary',
    'deductible_amount',
    'filter_by_quarter',
    'filter_deductible',
    'net_business_income',
    'schedule_se',
    'summarize',
]
