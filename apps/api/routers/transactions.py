"""
Transactions API - classification stream, similarity, auto-sort, corrections

POST /classify answers with newline-delimited JSON: one event object per
line (`progress`, `success`, `error`, then exactly one `done`). Request
validation happens before the stream starts, so a bad id is a plain 400.
"""
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from apps.api.dependencies import get_owner_id, get_pipeline
from apps.api.tasks import queue_classification_retry
from packages.common.errors import ValidationFailure
from packages.common.schemas.transaction import (
    Transaction,
    TransactionKind,
    TransactionRow,
    TransactionStatus,
    TransactionUpdate,
)
from packages.domain.pipeline import MAX_CLASSIFY_IDS, MAX_IMPORT_ROWS, PipelineOrchestrator

logger = structlog.get_logger()
router = APIRouter(prefix="/transactions", tags=["transactions"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ClassifyRequest(_CamelModel):
    transaction_ids: List[str] = Field(..., alias="transactionIds", max_length=MAX_CLASSIFY_IDS)


class RetryRequest(_CamelModel):
    limit: int = Field(100, ge=1, le=1000)


class AutoSortRequest(_CamelModel):
    vendor_normalized: str = Field(..., alias="vendorNormalized", min_length=1, max_length=500)
    quick_label: str = Field(..., alias="quickLabel", min_length=1, max_length=500)
    business_purpose: Optional[str] = Field(None, alias="businessPurpose", max_length=2000)
    category: Optional[str] = Field(None, max_length=200)
    deduction_percent: Optional[Decimal] = Field(None, alias="deductionPercent", ge=0, le=100)
    tax_year: int = Field(..., alias="taxYear", ge=2000, le=2100)
    kind: TransactionKind = TransactionKind.EXPENSE


class AutoSortResponse(_CamelModel):
    updated_count: int = Field(..., alias="updatedCount")
    rule_id: UUID = Field(..., alias="ruleId")


class ImportRequest(_CamelModel):
    rows: List[TransactionRow] = Field(..., min_length=1, max_length=MAX_IMPORT_ROWS)
    tax_year: Optional[int] = Field(None, alias="taxYear", ge=2000, le=2100)


class ImportResponse(_CamelModel):
    imported: int
    ids: List[UUID]


@router.post("/classify")
async def classify_transactions(
    body: ClassifyRequest,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> StreamingResponse:
    """
    Classify transactions and stream progress as NDJSON.

    Abandoning the response does not stop classification; finished results
    are already saved.
    """
    events = await pipeline.classify(owner_id, body.transaction_ids)

    async def ndjson():
        async for event in events:
            yield event.to_ndjson()

    return StreamingResponse(ndjson(), media_type=NDJSON_MEDIA_TYPE)


@router.post("/classify/retry", status_code=202)
async def retry_unclassified(
    body: RetryRequest,
    owner_id: UUID = Depends(get_owner_id),
) -> dict:
    """Queue a background pass over this owner's still-unclassified rows"""
    task_id = queue_classification_retry(owner_id=str(owner_id), limit=body.limit)
    logger.info("classification_retry_queued", task_id=task_id, limit=body.limit)
    return {"taskId": task_id, "status": "queued"}


@router.get("/similar", response_model=List[Transaction])
async def similar_transactions(
    vendor: str = Query(..., min_length=1, max_length=500, description="Raw vendor or fingerprint"),
    tax_year: int = Query(..., alias="taxYear", ge=2000, le=2100),
    exclude_id: Optional[UUID] = Query(None, alias="excludeId"),
    status: TransactionStatus = Query(TransactionStatus.PENDING),
    kind: TransactionKind = Query(TransactionKind.EXPENSE),
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> List[Transaction]:
    """Pending transactions sharing the vendor fingerprint"""
    if status != TransactionStatus.PENDING:
        raise ValidationFailure("Similar transactions are only searched among pending rows")
    return await pipeline.find_similar(owner_id, vendor, tax_year, kind=kind, exclude_id=exclude_id)


@router.post("/auto-sort", response_model=AutoSortResponse)
async def apply_auto_sort(
    body: AutoSortRequest,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> AutoSortResponse:
    """Save a vendor rule and apply it to every matching pending transaction"""
    result = await pipeline.apply_auto_sort(
        owner_id=owner_id,
        vendor_normalized=body.vendor_normalized,
        quick_label=body.quick_label,
        business_purpose=body.business_purpose,
        tax_year=body.tax_year,
        category=body.category,
        deduction_percent=body.deduction_percent,
        kind=body.kind,
    )
    return AutoSortResponse(updated_count=result.updated_count, rule_id=result.rule.id)


@router.patch("/{transaction_id}", response_model=Transaction)
async def update_transaction(
    transaction_id: UUID,
    body: TransactionUpdate,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> Transaction:
    return await pipeline.update_transaction(owner_id, transaction_id, body)


@router.post("/import", response_model=ImportResponse, status_code=201)
async def import_transactions(
    body: ImportRequest,
    owner_id: UUID = Depends(get_owner_id),
    pipeline: PipelineOrchestrator = Depends(get_pipeline),
) -> ImportResponse:
    """Persist already-parsed rows as pending; call /classify with the ids next"""
    ids = await pipeline.import_rows(owner_id, body.rows, tax_year=body.tax_year)
    return ImportResponse(imported=len(ids), ids=ids)
