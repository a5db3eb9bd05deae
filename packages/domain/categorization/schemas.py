"""
Data schemas for categorization module

ClassificationResult is what the reasoning service (or the cache) produces
for one transaction. The event models below are the closed set of messages
the classification stream emits; the API serializes each one as a single
NDJSON line with camelCase keys.
"""
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CategorizationSource(str, Enum):
    """Source of categorization decision"""
    CACHE = "cache"           # Found in classification_cache
    AI = "ai"                 # Reasoning service call


class ClassificationResult(BaseModel):
    """
    Structured classification for one transaction.

    Ephemeral: the engine copies these fields onto the Transaction row.
    """
    category: str = Field(..., min_length=1, max_length=200)
    schedule_c_line: Optional[str] = Field(None, max_length=50, description="Schedule C line id, e.g. '24b'")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Model confidence score")
    reasoning: Optional[str] = None
    quick_labels: List[str] = Field(default_factory=list, description="3-4 one-click label suggestions")
    is_meal: bool = False
    is_travel: bool = False

    source: CategorizationSource = CategorizationSource.AI

    @field_validator("quick_labels")
    @classmethod
    def trim_labels(cls, v):
        """Drop blanks and duplicates, keep at most four"""
        seen = []
        for label in v:
            label = label.strip()
            if label and label not in seen:
                seen.append(label)
        return seen[:4]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "category": "Meals",
                "schedule_c_line": "24b",
                "confidence": 0.92,
                "reasoning": "Coffee shop purchase, likely a client meeting",
                "quick_labels": ["Client coffee", "Team meeting", "Working session"],
                "is_meal": True,
                "is_travel": False,
                "source": "ai",
            }
        }
    )


# ---- Stream events ------------------------------------------------------------------------

class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_ndjson(self) -> str:
        return self.model_dump_json(by_alias=True) + "\n"


class ProgressEvent(_Event):
    """Emitted after each transaction finishes, before its success/error event"""
    type: Literal["progress"] = "progress"
    completed: int
    total: int
    current: str = Field(..., description="Vendor just processed")


class SuccessEvent(_Event):
    type: Literal["success"] = "success"
    id: str
    category: str
    line: Optional[str] = None
    confidence: float
    quick_labels: List[str] = Field(default_factory=list, alias="quickLabels")
    deduction_pct: float = Field(..., alias="deductionPct")
    is_meal: bool = Field(False, alias="isMeal")
    is_travel: bool = Field(False, alias="isTravel")
    cached: bool = False


class ErrorEvent(_Event):
    """Per-item failure; the stream continues"""
    type: Literal["error"] = "error"
    message: str
    id: Optional[str] = None


class DoneEvent(_Event):
    """Terminal event, exactly one per classify call"""
    type: Literal["done"] = "done"
    total: int
    successful: int
    cached_count: int = Field(..., alias="cachedCount")


ClassificationEvent = Annotated[
    Union[ProgressEvent, SuccessEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]
