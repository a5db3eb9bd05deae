"""
Reports API - Schedule C tax summary and per-year tax settings

The summary is recomputed on every request from the current transactions
and deductions; nothing is cached.
"""
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies import get_owner_id, get_pipeline
from packages.domain.pipeline import PipelineOrchestrator
from packages.domain.tax.aggregation import TaxSummary

logger = structlog.get_logger()
router = APIRouter(prefix="/reports", tags=["reports"])


class TaxYearSettingsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tax_year: int = Field(..., alias="taxYear", ge=2000, le=2100)
    tax_rate: Decimal = Field(..., alias="taxRate", ge=0, le=1)


@router.get("/summary", response_model=TaxSummary)
async def tax_summary(
    tax_year: int = Query(..., alias="taxYear", ge=2000, le=2100),
    quarter: Optional[int] = Query(None, ge=1, le=4),
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> TaxSummary:
    """
    Tax summary for a year, or for one calendar quarter of it.

    With a quarter, estimatedQuarterlyPayment is the figure for that window
    and estimatedAnnualTax is the window annualized (× 4).
    """
    summary = await pipeline.summary(owner_id, tax_year, quarter=quarter)
    logger.info("tax_summary_served", tax_year=tax_year, quarter=quarter)
    return summary


@router.get("/tax-year-settings", response_model=TaxYearSettingsBody)
async def get_tax_year_settings(
    tax_year: int = Query(..., alias="taxYear", ge=2000, le=2100),
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> TaxYearSettingsBody:
    """Stored rate for the year, or the configured default"""
    rate = await pipeline.tax_rate_for(owner_id, tax_year)
    return TaxYearSettingsBody(tax_year=tax_year, tax_rate=rate)


@router.put("/tax-year-settings", response_model=TaxYearSettingsBody)
async def put_tax_year_settings(
    body: TaxYearSettingsBody,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> TaxYearSettingsBody:
    await pipeline.set_tax_rate(owner_id, body.tax_year, body.tax_rate)
    return body
