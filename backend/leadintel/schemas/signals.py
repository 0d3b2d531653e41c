"""
Pydantic schemas for buying signals and model classifications.
"""

from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any

from leadintel.schemas.enums import SignalCategory


class DetectedSignal(BaseModel):
    """A signal as produced by detection or read back from storage"""
    signal_type: str
    signal_strength: float = Field(ge=0.0, le=1.0)
    evidence: str = ""
    source: str = "rule_based"
    details: Dict[str, Any] = Field(default_factory=dict)
    event_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============================================================================
# MODEL OUTPUT (validated at the classifier boundary)
# ============================================================================

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ModelSignal(CamelModel):
    signal_type: str
    signal_strength: float = Field(ge=0.0, le=1.0)
    evidence: str = "Detected by model analysis"


class ModelSignalList(CamelModel):
    signals: List[ModelSignal] = Field(default_factory=list)


class MarketSignalClassification(CamelModel):
    """Relevance of one market event to a client's hypotheses"""
    hypothesis_index: Optional[int] = None
    relevance_score: float = Field(ge=0.0, le=1.0)
    signal_category: SignalCategory
    affected_segments: List[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("signal_category", mode="before")
    @classmethod
    def lowercase_category(cls, v):
        return v.lower() if isinstance(v, str) else v


class ExposureJudgment(CamelModel):
    """Whether one company is exposed to a market event"""
    company_index: int
    affected: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class ExposureBatch(CamelModel):
    judgments: List[ExposureJudgment] = Field(default_factory=list)
