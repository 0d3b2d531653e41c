# backend/leadintel/services/strategy_cache.py
"""
Strategy generation and caching

A strategy is the model's plan for building one client/ICP/persona list:
provider order, signal priorities and composite score weights. Generating
one is slow and costs tokens, so results are cached for STRATEGY_TTL_HOURS
under sha256("{client_id}:{icp_id}:{persona_id or 'none'}").

Concurrent generators for the same key both insert; the first insert wins
and the second is ignored.
"""

import hashlib
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadintel.config import settings
from leadintel.exceptions import NotFoundError
from leadintel.models import ICP, Client, ClientProfile, Persona, Strategy, utcnow
from leadintel.schemas.enums import Capability
from leadintel.schemas.strategy import (
    ModelStrategy, ProviderPlanStep, ScoringWeights, SignalPriority, StrategyData
)
from leadintel.services.llm_classifier import LLMClassifier
from leadintel.services.performance_tracker import PerformanceTracker, ProviderStats
from leadintel.services.provider_orchestrator import WaterfallOptions
from leadintel.services.provider_knowledge import (
    PROVIDER_PROFILES, SIGNAL_DEFINITIONS, rank_providers_for_context
)

logger = logging.getLogger(__name__)


STRATEGY_PROMPT = """You are a strategist for a B2B data enrichment platform. Analyze the client's situation and determine the optimal strategy for building a prospect list.

Select and prioritize providers to:
1. Maximize data quality and completeness
2. Prioritize original data (leads less likely to be in every SDR's outbox)
3. Detect strong buying signals and intent
4. Minimize costs while maintaining quality

Return ONLY valid JSON matching this schema:
{
  "providerPlan": [{"provider": "provider_name", "priority": 1, "reason": "why", "capabilities": []}],
  "signalPriorities": [{"signalType": "signal_name", "weight": 0.0-1.0}],
  "originalityWeight": 0.0-1.0,
  "scoringWeights": {"icpFit": 0.0-1.0, "signals": 0.0-1.0, "originality": 0.0-1.0, "costEfficiency": 0.0-1.0},
  "maxBudgetPerCompany": number,
  "reasoning": "Brief explanation of strategy"
}

Rules:
- scoringWeights must sum to 1.0
- providerPlan should include 3-6 providers, ordered by priority
- Only include providers from the available list
- For commodity industries (e.g., SaaS selling to SaaS), increase originalityWeight"""

MAX_STRATEGY_PROVIDERS = 4


def compute_context_hash(client_id, icp_id, persona_id=None) -> str:
    key = f"{client_id}:{icp_id}:{persona_id or 'none'}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


class StrategyCache:
    """Strategy rows keyed by (client_id, context_hash) with a TTL"""

    def __init__(self, session_factory: async_sessionmaker, ttl_hours: Optional[int] = None):
        self.session_factory = session_factory
        self.ttl_hours = ttl_hours or settings.STRATEGY_TTL_HOURS

    async def get(self, client_id: UUID, context_hash: str, now: Optional[datetime] = None) -> Optional[StrategyData]:
        now = now or utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(Strategy)
                .where(Strategy.client_id == client_id)
                .where(Strategy.context_hash == context_hash)
                .where(Strategy.expires_at > now)
                .limit(1)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None
        return StrategyData.model_validate(row.strategy)

    async def put(
        self,
        client_id: UUID,
        icp_id: UUID,
        persona_id: Optional[UUID],
        context_hash: str,
        strategy: StrategyData,
        now: Optional[datetime] = None
    ):
        """Insert-ignore; an expired row for the key is replaced"""
        now = now or utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(Strategy)
                    .where(Strategy.client_id == client_id)
                    .where(Strategy.context_hash == context_hash)
                    .where(Strategy.expires_at <= now)
                )

                dialect = session.get_bind().dialect.name
                insert = pg_insert if dialect == "postgresql" else sqlite_insert
                stmt = insert(Strategy).values(
                    client_id=client_id,
                    icp_id=icp_id,
                    persona_id=persona_id,
                    context_hash=context_hash,
                    strategy=strategy.model_dump(by_alias=True),
                    generated_at=now,
                    expires_at=now + timedelta(hours=self.ttl_hours),
                ).on_conflict_do_nothing(index_elements=["client_id", "context_hash"])
                await session.execute(stmt)


def build_default_strategy(industry: Optional[str], available_providers: List[str]) -> StrategyData:
    """Deterministic plan from static provider knowledge"""
    ranked = rank_providers_for_context(industry or "", Capability.COMPANY_SEARCH.value, available_providers)
    return StrategyData(
        provider_plan=[
            ProviderPlanStep(provider=name, priority=i + 1, reason="Ranked by provider knowledge")
            for i, name in enumerate(ranked)
        ] or [ProviderPlanStep(provider="apollo", priority=1, reason="Fallback")],
        signal_priorities=[
            SignalPriority(signal_type=signal_type, weight=definition.default_weight)
            for signal_type, definition in SIGNAL_DEFINITIONS.items()
        ],
        originality_weight=0.5,
        scoring_weights=ScoringWeights(),
        reasoning="Default strategy: model strategy unavailable",
    )


def provider_order(
    strategy: StrategyData,
    capability: Capability,
    registered: Optional[List[str]] = None
) -> Optional[List[str]]:
    """
    Provider override for one capability, or None to keep registry priority.

    Plan steps without capabilities apply to every capability.
    """
    capability = Capability(capability)
    names = []
    for step in sorted(strategy.provider_plan, key=lambda s: s.priority):
        if step.capabilities and capability.value not in step.capabilities:
            continue
        if registered is not None and step.provider not in registered:
            continue
        if step.provider not in names:
            names.append(step.provider)
    return names or None


def strategy_options(
    strategy: StrategyData,
    capability: Capability,
    registered: Optional[List[str]] = None,
    job_id: Optional[UUID] = None
) -> WaterfallOptions:
    """
    Waterfall options for a strategy-driven call: plan order, at most
    MAX_STRATEGY_PROVIDERS attempts, and the per-company budget on
    single-entity capabilities.
    """
    capability = Capability(capability)
    order = provider_order(strategy, capability, registered)
    budget = strategy.max_budget_per_company
    return WaterfallOptions(
        provider_override=order,
        max_providers=min(len(order), MAX_STRATEGY_PROVIDERS) if order else None,
        max_cost=Decimal(str(budget)) if budget and not capability.is_list else None,
        job_id=job_id,
    )


class StrategyGenerator:
    """Generate-or-load strategies for list building"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        classifier: Optional[LLMClassifier],
        performance_tracker: PerformanceTracker,
        cache: StrategyCache,
        available_providers: Optional[List[str]] = None
    ):
        self.session_factory = session_factory
        self.classifier = classifier
        self.performance_tracker = performance_tracker
        self.cache = cache
        self.available_providers = available_providers or list(PROVIDER_PROFILES.keys())

    async def generate_strategy(
        self,
        client_id: UUID,
        icp_id: UUID,
        persona_id: Optional[UUID] = None,
        now: Optional[datetime] = None
    ) -> StrategyData:
        context_hash = compute_context_hash(client_id, icp_id, persona_id)

        cached = await self.cache.get(client_id, context_hash, now=now)
        if cached is not None:
            logger.info(f"♻️  Using cached strategy for ICP {icp_id}")
            return cached

        async with self.session_factory() as session:
            icp = await session.get(ICP, icp_id)
            if icp is None:
                raise NotFoundError("ICP", icp_id)
            client = await session.get(Client, client_id)
            profile = (await session.execute(
                select(ClientProfile).where(ClientProfile.client_id == client_id)
            )).scalar_one_or_none()
            persona = await session.get(Persona, persona_id) if persona_id else None

        stats = await self.performance_tracker.get_provider_stats(client_id)
        industry = (profile.industry if profile else None) or (client.industry if client else None)

        strategy = None
        if self.classifier is not None:
            logger.info(f"🧠 Generating strategy for ICP {icp_id}")
            prompt = self.build_context_prompt(client, profile, icp.filters or {}, persona, stats)
            strategy = await self.classifier.classify(STRATEGY_PROMPT, prompt, ModelStrategy, temperature=0.3)

        if strategy is None:
            logger.warning(f"⚠️  Strategy model unavailable for ICP {icp_id}, using default plan")
            return build_default_strategy(industry, self.available_providers)

        strategy = strategy.to_strategy()
        await self.cache.put(client_id, icp_id, persona_id, context_hash, strategy, now=now)
        return strategy

    def build_context_prompt(
        self,
        client: Optional[Client],
        profile: Optional[ClientProfile],
        filters: Dict,
        persona: Optional[Persona],
        stats: List[ProviderStats]
    ) -> str:
        sections = ["## Client", f"Name: {client.name if client else 'Unknown'}"]
        if client and client.industry:
            sections.append(f"Industry: {client.industry}")
        if profile:
            if profile.products:
                sections.append(f"Products: {', '.join(profile.products)}")
            if profile.target_market:
                sections.append(f"Target market: {profile.target_market}")
            if profile.value_proposition:
                sections.append(f"Value prop: {profile.value_proposition}")
            if profile.competitors:
                sections.append(f"Competitors: {', '.join(profile.competitors)}")

        sections.append("\n## Ideal Customer Profile")
        if filters.get("industries"):
            sections.append(f"Industries: {', '.join(filters['industries'])}")
        if filters.get("employee_count_min") or filters.get("employee_count_max"):
            sections.append(
                f"Company size: {filters.get('employee_count_min') or 1}-"
                f"{filters.get('employee_count_max') or '10000+'} employees"
            )
        for key, label in (
            ("countries", "Countries"),
            ("tech_stack", "Tech stack"),
            ("funding_stages", "Funding stages"),
            ("keywords", "Keywords"),
        ):
            if filters.get(key):
                sections.append(f"{label}: {', '.join(filters[key])}")

        if persona is not None:
            sections.append("\n## Target Persona")
            if persona.title_patterns:
                sections.append(f"Title patterns: {', '.join(persona.title_patterns)}")
            if persona.seniority_levels:
                sections.append(f"Seniority: {', '.join(persona.seniority_levels)}")
            if persona.departments:
                sections.append(f"Departments: {', '.join(persona.departments)}")

        sections.append("\n## Available Data Providers")
        for name in self.available_providers:
            p = PROVIDER_PROFILES.get(name)
            if p is None:
                continue
            sections.append(f"\n### {p.display_name} ({name})")
            sections.append(f"- Best for: {', '.join(p.best_operations)}")
            sections.append(f"- Strong industries: {', '.join(p.strong_industries)}")
            sections.append(f"- Commonality: {p.commonality_score * 100:.0f}% (higher = more saturated data)")
            sections.append(f"- Cost tier: {p.cost_tier}")
            sections.append(f"- Detectable signals: {', '.join(p.detectable_signals) or 'none'}")

        if stats:
            sections.append("\n## Historical Performance (this client, last 30 days)")
            for s in stats:
                sections.append(
                    f"- {s.provider_name}: avg quality {s.avg_quality * 100:.0f}%, "
                    f"avg {s.avg_fields_populated:.1f} fields, {s.call_count} calls"
                )

        sections.append("\n## Available Signal Types")
        for signal_type, definition in SIGNAL_DEFINITIONS.items():
            sections.append(f"- {signal_type}: {definition.description} (default weight: {definition.default_weight})")

        return "\n".join(sections)
