# backend/leadintel/services/icp_scorer.py
"""
ICP Fit Scorer - scores a company against an ICP's filters

Pure and deterministic:
- Hard exclusions (industry, keyword, domain) veto to 0 before anything else
- Each configured dimension with entity data contributes score * weight
- Dimensions the entity has no data for are skipped, not penalized
- Nothing scoreable -> neutral 0.5
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import logging

from leadintel.schemas.icp import IcpFilters
from leadintel.scorers import get_scorer

logger = logging.getLogger(__name__)


NEUTRAL_SCORE = 0.5
NO_DATA_REASON = "No scoreable data for configured filters; neutral score"

DIMENSION_WEIGHTS = {
    "industry": 3,
    "employee_count": 2,
    "geography": 2,
    "revenue": 2,
    "tech_stack": 2,
    "funding": 1,
    "founded_year": 1,
}

# Canonical country name -> accepted spellings (lowercase)
COUNTRY_ALIASES = {
    "united states": {"us", "usa", "u.s.", "u.s.a.", "united states of america", "america"},
    "united kingdom": {"uk", "gb", "great britain", "england", "u.k."},
    "united arab emirates": {"uae", "u.a.e."},
    "germany": {"de", "deutschland"},
    "netherlands": {"nl", "the netherlands", "holland"},
    "canada": {"ca"},
    "australia": {"au"},
    "france": {"fr"},
    "india": {"in"},
    "south korea": {"korea", "republic of korea", "kr"},
}

_ALIAS_LOOKUP = {
    alias: canonical
    for canonical, aliases in COUNTRY_ALIASES.items()
    for alias in aliases | {canonical}
}


def normalize_country(value: str) -> str:
    key = value.strip().lower()
    return _ALIAS_LOOKUP.get(key, key)


@dataclass
class FitScore:
    """Result of scoring an entity against ICP filters"""
    score: float  # 0-1, rounded to 2 places
    breakdown: Dict[str, float] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)
    excluded: bool = False

    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "breakdown": self.breakdown,
            "reasons": self.reasons,
            "excluded": self.excluded,
        }


def _get(entity: Any, name: str):
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


def _exclusion_reason(entity: Any, filters: IcpFilters) -> Optional[str]:
    industry = (_get(entity, "industry") or "").lower()
    for excluded in filters.exclude_industries:
        if excluded and industry and excluded.lower() in industry:
            return f"excluded: industry '{_get(entity, 'industry')}' matches '{excluded}'"

    text = " ".join(
        t for t in (_get(entity, "name"), _get(entity, "description")) if t
    ).lower()
    for keyword in filters.exclude_keywords:
        if keyword and keyword.lower() in text:
            return f"excluded: keyword '{keyword}'"

    domain = (_get(entity, "domain") or "").lower()
    if domain:
        for excluded in filters.exclude_domains:
            excluded = excluded.lower().lstrip(".")
            if domain == excluded or domain.endswith("." + excluded):
                return f"excluded: domain '{domain}'"

    return None


def _build_scorers(filters: IcpFilters) -> Dict[str, tuple]:
    """dimension -> (entity attribute, scorer), only for configured filters"""
    scorers: Dict[str, tuple] = {}

    if filters.industries:
        scorers["industry"] = ("industry", get_scorer("match", {"targets": filters.industries}))
    if filters.employee_count_min is not None or filters.employee_count_max is not None:
        scorers["employee_count"] = ("employee_count", get_scorer("range", {
            "min": filters.employee_count_min,
            "max": filters.employee_count_max,
        }))
    if filters.countries:
        scorers["geography"] = ("country", get_scorer("match", {
            "targets": filters.countries,
            "exact": True,
            "normalize": normalize_country,
        }))
    if filters.revenue_min is not None or filters.revenue_max is not None:
        scorers["revenue"] = ("annual_revenue", get_scorer("range", {
            "min": filters.revenue_min,
            "max": filters.revenue_max,
            "out_of_range_score": 0.3,
        }))
    if filters.tech_stack:
        scorers["tech_stack"] = ("tech_stack", get_scorer("overlap", {"targets": filters.tech_stack}))
    if filters.funding_stages:
        scorers["funding"] = ("latest_funding_stage", get_scorer("match", {"targets": filters.funding_stages}))
    if filters.founded_after is not None or filters.founded_before is not None:
        scorers["founded_year"] = ("founded_year", get_scorer("range", {
            "min": filters.founded_after,
            "max": filters.founded_before,
        }))

    return scorers


def score_company_fit(entity: Any, filters: Union[IcpFilters, Dict]) -> FitScore:
    """Score a company-like object (model, unified record or dict)"""
    if isinstance(filters, dict):
        filters = IcpFilters(**filters)

    reason = _exclusion_reason(entity, filters)
    if reason:
        return FitScore(score=0.0, reasons=[reason], excluded=True)

    breakdown: Dict[str, float] = {}
    reasons: List[str] = []
    total_weight = 0
    total_score = 0.0

    for dimension, (attribute, scorer) in _build_scorers(filters).items():
        value = _get(entity, attribute)
        score = scorer.calculate_score(value)
        if score is None:
            continue

        weight = DIMENSION_WEIGHTS[dimension]
        breakdown[dimension] = round(score, 4)
        total_weight += weight
        total_score += score * weight
        if score > 0:
            reasons.append(f"{dimension}: {scorer.get_explanation(value, score)}")

    if total_weight == 0:
        return FitScore(score=NEUTRAL_SCORE, breakdown=breakdown, reasons=[NO_DATA_REASON])

    return FitScore(
        score=round(total_score / total_weight, 2),
        breakdown=breakdown,
        reasons=reasons,
    )
