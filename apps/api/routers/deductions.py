"""
Deductions API - calculator-originated deductions (mileage, home office, QBI)

Saved deductions are annual: the tax summary adds them to total expenses
and to the category breakdown, never to a Schedule C line.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies import get_owner_id, get_pipeline
from packages.common.schemas.transaction import Deduction, MAX_ABS_AMOUNT
from packages.domain.pipeline import PipelineOrchestrator
from packages.domain.tax import calculators

logger = structlog.get_logger()
router = APIRouter(prefix="/deductions", tags=["deductions"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DeductionCreate(_CamelModel):
    type: str = Field(..., min_length=1, max_length=200)
    tax_year: int = Field(..., alias="taxYear", ge=2000, le=2100)
    amount: Decimal = Field(..., gt=-MAX_ABS_AMOUNT, lt=MAX_ABS_AMOUNT)
    tax_savings: Decimal = Field(Decimal("0"), alias="taxSavings", gt=-MAX_ABS_AMOUNT, lt=MAX_ABS_AMOUNT)
    metadata: Optional[Dict[str, Any]] = None


class MileageRequest(_CamelModel):
    tax_year: int = Field(..., alias="taxYear", ge=2000, le=2100)
    miles: Decimal = Field(..., ge=0, le=1_000_000)
    save: bool = False


class HomeOfficeRequest(_CamelModel):
    tax_year: int = Field(..., alias="taxYear", ge=2000, le=2100)
    square_feet: Decimal = Field(..., alias="squareFeet", ge=0, le=100_000)
    save: bool = False


class QbiRequest(_CamelModel):
    tax_year: int = Field(..., alias="taxYear", ge=2000, le=2100)
    qualified_income: Optional[Decimal] = Field(None, alias="qualifiedIncome")
    save: bool = False


@router.post("", response_model=Deduction, status_code=201)
async def create_deduction(
    body: DeductionCreate,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> Deduction:
    return await pipeline.add_deduction(Deduction(
        owner_id=owner_id,
        type=body.type,
        tax_year=body.tax_year,
        amount=body.amount,
        tax_savings=body.tax_savings,
        metadata=body.metadata,
    ))


@router.get("", response_model=List[Deduction])
async def list_deductions(
    tax_year: int = Query(..., alias="taxYear", ge=2000, le=2100),
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> List[Deduction]:
    return await pipeline.list_deductions(owner_id, tax_year)


@router.delete("")
async def delete_deductions(
    type: str = Query(..., min_length=1, max_length=200),
    tax_year: int = Query(..., alias="taxYear", ge=2000, le=2100),
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> dict:
    deleted = await pipeline.delete_deductions(owner_id, type, tax_year)
    logger.info("deductions_deleted", type=type, tax_year=tax_year, deleted=deleted)
    return {"deleted": deleted}


async def _finish(pipeline: PipelineOrchestrator, draft: Deduction, save: bool) -> Deduction:
    """Optionally persist a calculator draft, replacing the year's previous one"""
    if not save:
        return draft
    await pipeline.delete_deductions(draft.owner_id, draft.type, draft.tax_year)
    return await pipeline.add_deduction(draft)


@router.post("/calculate/mileage", response_model=Deduction)
async def calculate_mileage(
    body: MileageRequest,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> Deduction:
    """Standard mileage rate for the year × business miles"""
    tax_rate = await pipeline.tax_rate_for(owner_id, body.tax_year)
    draft = calculators.mileage_deduction(
        owner_id, body.tax_year, body.miles, tax_rate,
        rate_per_mile=pipeline.settings.mileage_rate_for(body.tax_year),
    )
    return await _finish(pipeline, draft, body.save)


@router.post("/calculate/home-office", response_model=Deduction)
async def calculate_home_office(
    body: HomeOfficeRequest,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> Deduction:
    """Simplified method ($5/sq ft, max 300 sq ft)"""
    tax_rate = await pipeline.tax_rate_for(owner_id, body.tax_year)
    draft = calculators.home_office_deduction(owner_id, body.tax_year, body.square_feet, tax_rate)
    return await _finish(pipeline, draft, body.save)


@router.post("/calculate/qbi", response_model=Deduction)
async def calculate_qbi(
    body: QbiRequest,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> Deduction:
    """
    20% of qualified business income.

    Without qualifiedIncome, uses gross income minus card-sorted expenses
    for the year (calculator deductions excluded, so QBI never feeds itself).
    """
    tax_rate = await pipeline.tax_rate_for(owner_id, body.tax_year)
    qualified = body.qualified_income
    if qualified is None:
        qualified = await pipeline.business_income(owner_id, body.tax_year)
    draft = calculators.qbi_deduction(owner_id, body.tax_year, qualified, tax_rate)
    return await _finish(pipeline, draft, body.save)
