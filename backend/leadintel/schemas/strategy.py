"""
Pydantic schemas for enrichment strategies.

Field aliases are camelCase because that is the JSON shape the strategy
model is asked to produce and the shape stored in the cache.
"""

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ProviderPlanStep(CamelModel):
    provider: str
    priority: int
    reason: str = ""
    capabilities: List[str] = Field(default_factory=list)  # empty = any capability


class SignalPriority(CamelModel):
    signal_type: str
    weight: float = Field(ge=0.0, le=1.0)


class ScoringWeights(CamelModel):
    """Composite score weights; expected, but not required, to sum to 1"""
    icp_fit: float = Field(default=0.35, ge=0.0)
    signals: float = Field(default=0.30, ge=0.0)
    originality: float = Field(default=0.20, ge=0.0)
    cost_efficiency: float = Field(default=0.15, ge=0.0)

    def normalized(self) -> "ScoringWeights":
        """Divide each weight by the total; all-zero falls back to defaults"""
        total = self.icp_fit + self.signals + self.originality + self.cost_efficiency
        if total <= 0:
            return ScoringWeights()
        return ScoringWeights(
            icp_fit=self.icp_fit / total,
            signals=self.signals / total,
            originality=self.originality / total,
            cost_efficiency=self.cost_efficiency / total,
        )

    def as_dict(self) -> Dict[str, float]:
        return {
            "icp_fit": self.icp_fit,
            "signals": self.signals,
            "originality": self.originality,
            "cost_efficiency": self.cost_efficiency,
        }


class StrategyData(CamelModel):
    """Cached plan for building one client/ICP/persona list"""
    provider_plan: List[ProviderPlanStep]
    signal_priorities: List[SignalPriority] = Field(default_factory=list)
    originality_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    scoring_weights: ScoringWeights
    max_budget_per_company: Optional[float] = None
    reasoning: str = ""

    @field_validator("provider_plan")
    @classmethod
    def provider_plan_not_empty(cls, v):
        if not v:
            raise ValueError("providerPlan must list at least one provider")
        return v

    def signal_priority_map(self) -> Dict[str, float]:
        return {p.signal_type: p.weight for p in self.signal_priorities}


class ModelScoringWeights(ScoringWeights):
    """Weights as returned by the strategy model: all four are required"""
    icp_fit: float = Field(ge=0.0)
    signals: float = Field(ge=0.0)
    originality: float = Field(ge=0.0)
    cost_efficiency: float = Field(ge=0.0)


class ModelStrategy(StrategyData):
    """Raw strategy model reply; a partial weight set is malformed output"""
    scoring_weights: ModelScoringWeights

    def to_strategy(self) -> StrategyData:
        """Plain StrategyData with the weights normalized to sum to 1"""
        return StrategyData(
            **self.model_dump(exclude={"scoring_weights"}),
            scoring_weights=self.scoring_weights.normalized(),
        )
