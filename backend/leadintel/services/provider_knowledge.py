# backend/leadintel/services/provider_knowledge.py
"""
Static knowledge about data providers and signal types.

Kept in code (not the database) so it versions with the scoring logic that
reads it.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from leadintel.config import settings


@dataclass(frozen=True)
class ProviderProfile:
    name: str
    display_name: str
    commonality_score: float  # 0-1: how saturated this provider's data is across SDR tools
    strong_industries: List[str] = field(default_factory=list)
    best_operations: List[str] = field(default_factory=list)  # ranked by effectiveness
    detectable_signals: List[str] = field(default_factory=list)
    cost_tier: str = "medium"  # low | medium | high
    data_freshness_days: int = 30


@dataclass(frozen=True)
class SignalDefinition:
    display_name: str
    default_weight: float
    decay_days: int
    description: str


PROVIDER_PROFILES: Dict[str, ProviderProfile] = {
    "apollo": ProviderProfile(
        "apollo", "Apollo.io", 0.95,
        ["technology", "saas", "software", "fintech", "healthcare"],
        ["people_search", "company_search", "people_enrich", "company_enrich"],
        ["hiring_surge", "recent_funding", "tech_adoption"], "low", 30,
    ),
    "leadmagic": ProviderProfile(
        "leadmagic", "LeadMagic", 0.4,
        ["technology", "ecommerce", "marketing"],
        ["email_find", "company_enrich", "people_enrich"],
        ["tech_adoption"], "low", 14,
    ),
    "prospeo": ProviderProfile(
        "prospeo", "Prospeo", 0.3,
        ["technology", "consulting", "professional_services"],
        ["email_find", "email_verify", "people_search"],
        [], "low", 7,
    ),
    "exa": ProviderProfile(
        "exa", "Exa.ai", 0.1,
        ["technology", "ai_ml", "biotech", "cleantech", "deep_tech"],
        ["company_search", "company_enrich"],
        ["expansion", "new_product_launch", "recent_funding", "leadership_change"], "medium", 1,
    ),
    "tavily": ProviderProfile(
        "tavily", "Tavily", 0.1,
        ["technology", "media", "finance", "healthcare"],
        ["company_search", "company_enrich"],
        ["recent_funding", "expansion", "new_product_launch", "leadership_change"], "medium", 1,
    ),
    "apify": ProviderProfile(
        "apify", "Apify", 0.2,
        ["technology", "ecommerce", "retail", "media"],
        ["company_enrich", "people_enrich"],
        ["hiring_surge", "tech_adoption", "expansion"], "low", 1,
    ),
    "parallel": ProviderProfile(
        "parallel", "Parallel.ai", 0.15,
        ["technology", "finance", "consulting"],
        ["company_enrich", "people_enrich"],
        ["tech_adoption", "hiring_surge"], "medium", 7,
    ),
    "valyu": ProviderProfile(
        "valyu", "Valyu", 0.05,
        ["technology", "ai_ml", "research", "academia"],
        ["company_search", "company_enrich"],
        ["new_product_launch", "expansion"], "low", 3,
    ),
    "diffbot": ProviderProfile(
        "diffbot", "Diffbot", 0.15,
        ["technology", "enterprise", "manufacturing", "finance"],
        ["company_enrich", "people_enrich", "company_search", "email_find"],
        ["leadership_change", "hiring_surge", "recent_funding", "tech_adoption", "expansion"], "high", 7,
    ),
    "browserbase": ProviderProfile(
        "browserbase", "Browserbase", 0.02,
        ["technology", "ecommerce", "retail"],
        ["company_enrich"],
        ["tech_adoption", "new_product_launch"], "medium", 0,
    ),
    "agentql": ProviderProfile(
        "agentql", "AgentQL", 0.02,
        ["technology", "saas"],
        ["company_enrich"],
        ["tech_adoption"], "low", 0,
    ),
    "firecrawl": ProviderProfile(
        "firecrawl", "Firecrawl", 0.05,
        ["technology", "saas", "ecommerce"],
        ["company_search", "company_enrich"],
        ["tech_adoption", "new_product_launch"], "medium", 0,
    ),
    "scrapegraph": ProviderProfile(
        "scrapegraph", "ScrapeGraphAI", 0.02,
        ["technology", "saas"],
        ["company_search", "company_enrich"],
        ["tech_adoption"], "medium", 0,
    ),
}


SIGNAL_DEFINITIONS: Dict[str, SignalDefinition] = {
    "recent_funding": SignalDefinition(
        "Recent Funding", 0.9, 180, "Company received funding in the last 6 months"),
    "hiring_surge": SignalDefinition(
        "Hiring Surge", 0.8, 90, "Significant increase in job postings or headcount"),
    "leadership_change": SignalDefinition(
        "Leadership Change", 0.85, 120, "New C-suite or VP-level hire detected"),
    "tech_adoption": SignalDefinition(
        "Technology Adoption", 0.7, 90, "Company adopted new technology relevant to client offering"),
    "expansion": SignalDefinition(
        "Geographic Expansion", 0.75, 120, "Company expanding to new markets or opening new offices"),
    "new_product_launch": SignalDefinition(
        "New Product/Service", 0.65, 90, "Company launched a new product or service line"),
    "pain_point_detected": SignalDefinition(
        "Pain Point Detected", 0.95, 60, "Model detected a pain point matching client solution"),
    "competitive_displacement": SignalDefinition(
        "Competitive Displacement", 0.9, 90, "Company may be looking to switch from a competitor"),
    "market_signal": SignalDefinition(
        "Market Signal", 0.8, 90, "Company is exposed to a relevant market event"),
}

COST_TIER_BONUS = {"low": 1.0, "medium": 0.5, "high": 0.0}


def get_provider_originality_weight(provider_name: str) -> float:
    """1 = very unique data, 0 = everyone has it; unknown providers 0.5"""
    profile = PROVIDER_PROFILES.get(provider_name)
    if profile is None:
        return 0.5
    return 1 - profile.commonality_score


def get_signal_decay_days(signal_type: str, default: Optional[int] = None) -> int:
    """Catalog decay for known signal types, DEFAULT_SIGNAL_TTL_DAYS otherwise"""
    definition = SIGNAL_DEFINITIONS.get(signal_type)
    if definition:
        return definition.decay_days
    return default if default is not None else settings.DEFAULT_SIGNAL_TTL_DAYS


def rank_providers_for_context(
    industry: str,
    operation: str,
    available_providers: List[str]
) -> List[str]:
    """Order providers by fit for an industry + operation (best first)"""
    industry = (industry or "").lower()

    def score(name: str) -> float:
        profile = PROVIDER_PROFILES.get(name)
        if profile is None:
            return 0.0

        total = 0.0
        if any(i in industry for i in profile.strong_industries):
            total += 3
        if operation in profile.best_operations:
            total += 2 - profile.best_operations.index(operation) * 0.3
        total += (1 - profile.commonality_score) * 1.5
        total += COST_TIER_BONUS.get(profile.cost_tier, 0.0)
        return total

    # sorted() is stable: ties keep the caller's order
    return sorted(available_providers, key=score, reverse=True)
