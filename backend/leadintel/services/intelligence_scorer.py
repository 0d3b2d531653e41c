# backend/leadintel/services/intelligence_scorer.py
"""
Intelligence Scorer - composite score for list ranking

    score = w_icp * icp_fit
          + w_signal * signal_score
          + w_originality * originality
          + w_cost * cost_efficiency

Weights come from the cached strategy and are renormalized to sum to 1.
Companies below the intelligence floor never enter a list.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

from leadintel.config import settings
from leadintel.schemas.icp import IcpFilters
from leadintel.schemas.signals import DetectedSignal
from leadintel.schemas.strategy import ScoringWeights, SignalPriority
from leadintel.services.icp_scorer import score_company_fit
from leadintel.services.provider_knowledge import (
    SIGNAL_DEFINITIONS,
    get_provider_originality_weight,
)
from leadintel.services.timeliness import apply_timeliness

logger = logging.getLogger(__name__)


def normalize_weights(weights: Optional[Union[ScoringWeights, Dict]]) -> ScoringWeights:
    if weights is None:
        return ScoringWeights()
    if isinstance(weights, dict):
        weights = ScoringWeights(**weights)
    return weights.normalized()


def _priority_map(priorities: Optional[Iterable]) -> Dict[str, float]:
    result = {}
    for p in priorities or []:
        if isinstance(p, SignalPriority):
            result[p.signal_type] = p.weight
        else:
            result[p["signal_type"]] = p["weight"]
    return result


def compute_signal_score(
    signals: List[DetectedSignal],
    signal_priorities: Optional[Iterable] = None,
    now: Optional[datetime] = None
) -> float:
    """
    Priority-weighted average of unexpired signal strengths.

    Priority: strategy weight, else the signal definition default, else 0.5.
    Signals carrying an event date are discounted by its timeliness band.
    """
    priorities = _priority_map(signal_priorities)

    weighted_sum = 0.0
    total_weight = 0.0
    for signal in signals:
        if now is not None and signal.expires_at is not None and signal.expires_at <= now:
            continue

        definition = SIGNAL_DEFINITIONS.get(signal.signal_type)
        priority = priorities.get(
            signal.signal_type,
            definition.default_weight if definition else 0.5
        )

        strength = signal.signal_strength
        event_date = signal.event_date or signal.details.get("event_date")
        if event_date:
            strength = apply_timeliness(strength, event_date, reference=now)

        weighted_sum += strength * priority
        total_weight += priority

    if total_weight <= 0:
        return 0.0
    return min(weighted_sum / total_weight, 1.0)


def compute_originality(sources: List[Dict]) -> float:
    """Mean originality of the providers that contributed the record"""
    if not sources:
        return 0.5
    total = sum(get_provider_originality_weight(s.get("source", "")) for s in sources)
    return min(total / len(sources), 1.0)


def compute_cost_efficiency(total_cost_credits: Union[Decimal, float], provider_count: int) -> float:
    """1 credit per provider is the expected baseline"""
    cost = float(total_cost_credits or 0)
    if cost <= 0:
        return 1.0
    if provider_count <= 0:
        return 0.5
    return min(provider_count / cost, 1.0)


@dataclass
class IntelligenceScore:
    intelligence_score: float
    icp_fit_score: float
    signal_score: float
    originality_score: float
    cost_efficiency_score: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)
    excluded: bool = False

    def to_dict(self) -> Dict:
        return {
            "intelligence_score": self.intelligence_score,
            "icp_fit_score": self.icp_fit_score,
            "signal_score": self.signal_score,
            "originality_score": self.originality_score,
            "cost_efficiency_score": self.cost_efficiency_score,
            "breakdown": self.breakdown,
            "reasons": self.reasons,
        }


class IntelligenceScorer:
    """Stateless apart from the configured floor"""

    def __init__(self, floor: Optional[float] = None):
        self.floor = floor if floor is not None else settings.INTELLIGENCE_SCORE_FLOOR

    def score_company(
        self,
        company: Any,
        icp_filters: Union[IcpFilters, Dict],
        signals: List[DetectedSignal],
        sources: Optional[List[Dict]] = None,
        total_cost_credits: Union[Decimal, float] = 0,
        weights: Optional[Union[ScoringWeights, Dict]] = None,
        signal_priorities: Optional[Iterable] = None,
        now: Optional[datetime] = None
    ) -> IntelligenceScore:
        if sources is None:
            sources = getattr(company, "sources", None) or []
        w = normalize_weights(weights)
        reasons: List[str] = []

        fit = score_company_fit(company, icp_filters)
        reasons.extend(fit.reasons)

        signal_score = compute_signal_score(signals, signal_priorities, now=now)
        if signals:
            strongest = max(signals, key=lambda s: s.signal_strength)
            definition = SIGNAL_DEFINITIONS.get(strongest.signal_type)
            label = definition.display_name if definition else strongest.signal_type
            reasons.append(f"{len(signals)} buying signal(s) detected")
            reasons.append(f"Strongest: {label} ({strongest.signal_strength * 100:.0f}%)")

        originality = compute_originality(sources)
        if originality > 0.7:
            reasons.append("High originality: found via niche providers")
        elif originality < 0.3:
            reasons.append("Low originality: found via common providers")

        cost_efficiency = compute_cost_efficiency(total_cost_credits, len(sources))

        # Hard exclusion vetoes the whole composite
        if fit.excluded:
            composite = 0.0
        else:
            composite = (
                fit.score * w.icp_fit
                + signal_score * w.signals
                + originality * w.originality
                + cost_efficiency * w.cost_efficiency
            )

        return IntelligenceScore(
            intelligence_score=round(composite, 2),
            icp_fit_score=fit.score,
            signal_score=round(signal_score, 4),
            originality_score=round(originality, 4),
            cost_efficiency_score=round(cost_efficiency, 4),
            breakdown={
                **fit.breakdown,
                "signal_score": round(signal_score, 4),
                "originality_score": round(originality, 4),
                "cost_efficiency_score": round(cost_efficiency, 4),
            },
            reasons=reasons,
            excluded=fit.excluded,
        )

    def passes_floor(self, score: Union[IntelligenceScore, float]) -> bool:
        value = score.intelligence_score if isinstance(score, IntelligenceScore) else score
        return value >= self.floor
