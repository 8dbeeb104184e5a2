"""Content-addressed audit records for LLM call attempts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fossil_router.analytics.interfaces import utc_now

FOSSIL_TYPE = "llm-validation"
DEFAULT_TAGS = ("llm", "validation", "traceable")


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class FossilStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class FossilValidation(_CamelModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    quality_score: float = 0.0
    security_issues: List[str] = Field(default_factory=list)
    performance_issues: List[str] = Field(default_factory=list)


class FossilPreprocessing(_CamelModel):
    success: bool = True
    changes: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class FossilQuality(_CamelModel):
    overall: float = 0.0
    clarity: float = 0.0
    specificity: float = 0.0
    completeness: float = 0.0


class FossilMetadata(_CamelModel):
    """Copy of the owning usage metric so a fossil reads on its own."""

    model: str
    context: str
    purpose: str
    value_score: float
    validation_time: float = 0.0
    preprocessing_time: float = 0.0
    total_time: float = 0.0
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0


class FossilRecord(_CamelModel):
    type: str = FOSSIL_TYPE
    timestamp: datetime = Field(default_factory=utc_now)
    commit_ref: str = "unknown"
    input_hash: str
    call_id: str
    session_id: str
    input: Dict[str, Any] = Field(default_factory=dict)
    validation: FossilValidation = Field(default_factory=FossilValidation)
    preprocessing: Optional[FossilPreprocessing] = None
    quality: FossilQuality = Field(default_factory=FossilQuality)
    metadata: FossilMetadata
    fossil_id: str
    status: FossilStatus = FossilStatus.APPROVED
    tags: List[str] = Field(default_factory=lambda: list(DEFAULT_TAGS))

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def make_fossil_id(timestamp: datetime, call_id: str) -> str:
    return f"{FOSSIL_TYPE}-{int(timestamp.timestamp() * 1000)}-{call_id}"
