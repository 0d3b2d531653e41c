# tests/services/test_strategy_cache.py
"""
Tests for strategy generation and caching

Coverage:
- Context hash
- Cache hit avoids a second model call; TTL expiry regenerates
- Scoring weights normalized before caching
- Malformed output / no classifier → default strategy, never cached
- A reply missing any scoring weight is malformed
- Insert-ignore on concurrent puts
- provider_order and waterfall options per capability

Run with: pytest backend/tests/services/test_strategy_cache.py -v
"""

import hashlib
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest

from leadintel.exceptions import MalformedModelOutputError, NotFoundError
from leadintel.models import Strategy
from leadintel.schemas.strategy import ModelStrategy, ProviderPlanStep, ScoringWeights, StrategyData
from leadintel.services.llm_classifier import LLMClassifier, parse_model_output
from leadintel.services.performance_tracker import PerformanceRecord, PerformanceTracker, ProviderStats
from leadintel.services.strategy_cache import (
    STRATEGY_PROMPT,
    StrategyCache,
    StrategyGenerator,
    build_default_strategy,
    compute_context_hash,
    provider_order,
    strategy_options,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)

PROVIDERS = ["apollo", "leadmagic", "prospeo"]


def model_strategy(**kwargs):
    kwargs.setdefault("provider_plan", [
        ProviderPlanStep(provider="apollo", priority=1, capabilities=["company_search"]),
        ProviderPlanStep(provider="prospeo", priority=2),
        ProviderPlanStep(provider="leadmagic", priority=3, capabilities=["email_find"]),
    ])
    kwargs.setdefault("scoring_weights", {"icp_fit": 1, "signals": 1, "originality": 1, "cost_efficiency": 1})
    kwargs.setdefault("reasoning", "Niche market, favour originality")
    return ModelStrategy(**kwargs)


@pytest.fixture
def cache(session_factory):
    return StrategyCache(session_factory, ttl_hours=24)


@pytest.fixture
def tracker(session_factory):
    return PerformanceTracker(session_factory)


@pytest.fixture
def generator(session_factory, classifier, tracker, cache):
    return StrategyGenerator(session_factory, classifier, tracker, cache, available_providers=PROVIDERS)


@pytest.fixture
async def icp(factory, client):
    return await factory.icp(client, filters={"industries": ["fintech"], "employee_count_min": 50})


# ============================================================================
# TEST: CONTEXT HASH
# ============================================================================

class TestContextHash:

    def test_full_sha256_of_key(self):
        client_id, icp_id = uuid4(), uuid4()

        expected = hashlib.sha256(f"{client_id}:{icp_id}:none".encode()).hexdigest()

        assert compute_context_hash(client_id, icp_id) == expected
        assert len(expected) == 64

    def test_persona_changes_hash(self):
        client_id, icp_id = uuid4(), uuid4()
        assert compute_context_hash(client_id, icp_id) != compute_context_hash(client_id, icp_id, uuid4())


# ============================================================================
# TEST: CACHE
# ============================================================================

class TestStrategyCache:

    async def test_put_then_get(self, cache, client, icp):
        await cache.put(client.id, icp.id, None, "abc", model_strategy(), now=NOW)

        cached = await cache.get(client.id, "abc", now=NOW + timedelta(hours=1))

        assert cached.reasoning == "Niche market, favour originality"
        assert cached.provider_plan[0].capabilities == ["company_search"]

    async def test_expired_row_is_a_miss(self, cache, client, icp):
        await cache.put(client.id, icp.id, None, "abc", model_strategy(), now=NOW)

        assert await cache.get(client.id, "abc", now=NOW + timedelta(hours=24)) is None

    async def test_first_insert_wins(self, cache, factory, client, icp):
        await cache.put(client.id, icp.id, None, "abc", model_strategy(reasoning="first"), now=NOW)
        await cache.put(client.id, icp.id, None, "abc", model_strategy(reasoning="second"), now=NOW)

        assert (await cache.get(client.id, "abc", now=NOW)).reasoning == "first"
        assert len(await factory.all(Strategy)) == 1

    async def test_expired_row_is_replaced(self, cache, factory, client, icp):
        await cache.put(client.id, icp.id, None, "abc", model_strategy(reasoning="old"), now=NOW)
        later = NOW + timedelta(hours=30)

        await cache.put(client.id, icp.id, None, "abc", model_strategy(reasoning="new"), now=later)

        assert (await cache.get(client.id, "abc", now=later)).reasoning == "new"
        assert len(await factory.all(Strategy)) == 1

    async def test_keys_are_per_client(self, cache, factory, client, icp):
        other = await factory.client()
        await cache.put(client.id, icp.id, None, "abc", model_strategy(), now=NOW)

        assert await cache.get(other.id, "abc", now=NOW) is None


# ============================================================================
# TEST: GENERATOR
# ============================================================================

class TestStrategyGenerator:

    async def test_generates_and_caches(self, generator, classifier, factory, client, icp):
        classifier.classify.return_value = model_strategy()

        first = await generator.generate_strategy(client.id, icp.id, now=NOW)
        second = await generator.generate_strategy(client.id, icp.id, now=NOW + timedelta(hours=1))

        assert classifier.classify.await_count == 1
        assert classifier.classify.await_args.args[0] == STRATEGY_PROMPT
        assert classifier.classify.await_args.kwargs["temperature"] == 0.3
        assert first.model_dump() == second.model_dump()

        rows = await factory.all(Strategy)
        assert len(rows) == 1
        assert rows[0].context_hash == compute_context_hash(client.id, icp.id)
        assert rows[0].expires_at == NOW + timedelta(hours=24)

    async def test_weights_are_normalized(self, generator, classifier, client, icp):
        classifier.classify.return_value = model_strategy()

        strategy = await generator.generate_strategy(client.id, icp.id, now=NOW)

        assert strategy.scoring_weights == ScoringWeights(
            icp_fit=0.25, signals=0.25, originality=0.25, cost_efficiency=0.25
        )

    async def test_expired_strategy_is_regenerated(self, generator, classifier, client, icp):
        classifier.classify.return_value = model_strategy()

        await generator.generate_strategy(client.id, icp.id, now=NOW)
        await generator.generate_strategy(client.id, icp.id, now=NOW + timedelta(hours=25))

        assert classifier.classify.await_count == 2

    async def test_malformed_output_uses_default_uncached(self, generator, classifier, factory, client, icp):
        classifier.classify.return_value = None

        strategy = await generator.generate_strategy(client.id, icp.id, now=NOW)
        await generator.generate_strategy(client.id, icp.id, now=NOW)

        assert strategy.reasoning.startswith("Default strategy")
        assert sorted(step.provider for step in strategy.provider_plan) == sorted(PROVIDERS)
        assert classifier.classify.await_count == 2
        assert await factory.all(Strategy) == []

    async def test_asks_for_complete_weights(self, generator, classifier, client, icp):
        classifier.classify.return_value = model_strategy()

        await generator.generate_strategy(client.id, icp.id, now=NOW)

        assert classifier.classify.await_args.args[2] is ModelStrategy

    async def test_partial_weights_use_default_uncached(self, session_factory, tracker, cache, factory, client, icp):
        partial = '{"providerPlan": [{"provider": "apollo", "priority": 1}], "scoringWeights": {"icpFit": 1.0}}'
        openai_client = Mock()
        openai_client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=partial))]
        ))
        classifier = LLMClassifier(openai_client, model="large-model", fast_model="small-model", timeout=5)
        generator = StrategyGenerator(session_factory, classifier, tracker, cache, available_providers=PROVIDERS)

        strategy = await generator.generate_strategy(client.id, icp.id, now=NOW)

        assert strategy.reasoning.startswith("Default strategy")
        assert openai_client.chat.completions.create.await_count == 2
        assert await factory.all(Strategy) == []

    async def test_without_classifier(self, session_factory, tracker, cache, factory, client, icp):
        generator = StrategyGenerator(session_factory, None, tracker, cache, available_providers=PROVIDERS)

        strategy = await generator.generate_strategy(client.id, icp.id, now=NOW)

        assert strategy.scoring_weights == ScoringWeights()
        assert await factory.all(Strategy) == []

    async def test_persona_gets_its_own_entry(self, generator, classifier, factory, client, icp):
        persona = await factory.persona(client, title_patterns=["CFO"])
        classifier.classify.return_value = model_strategy()

        await generator.generate_strategy(client.id, icp.id, now=NOW)
        await generator.generate_strategy(client.id, icp.id, persona.id, now=NOW)

        assert classifier.classify.await_count == 2
        assert "Title patterns: CFO" in classifier.classify.await_args.args[1]
        assert len(await factory.all(Strategy)) == 2

    async def test_prompt_includes_performance_history(self, generator, classifier, tracker, client, icp):
        await tracker.record_performance(PerformanceRecord(
            provider_name="apollo", client_id=client.id, operation="company_search",
            quality_score=0.8, fields_populated=12,
        ))
        classifier.classify.return_value = model_strategy()

        await generator.generate_strategy(client.id, icp.id, now=NOW)

        prompt = classifier.classify.await_args.args[1]
        assert "## Historical Performance" in prompt
        assert "- apollo: avg quality 80%, avg 12.0 fields, 1 calls" in prompt

    async def test_unknown_icp(self, generator, client):
        with pytest.raises(NotFoundError):
            await generator.generate_strategy(client.id, uuid4(), now=NOW)


class TestBuildContextPrompt:

    async def test_sections(self, generator, factory, client):
        profile = await factory.profile(
            client, industry="Fintech", products=["Ledger API"], competitors=["Stripe"],
            value_proposition="Close the books daily",
        )
        persona = await factory.persona(client, title_patterns=["VP Finance"], seniority_levels=["vp"])
        stats = [ProviderStats("prospeo", 0.5, 300.0, 4.0, 1.0, 2, 1.0)]

        prompt = generator.build_context_prompt(
            client, profile,
            {"industries": ["fintech"], "employee_count_min": 50, "countries": ["US", "DE"]},
            persona, stats,
        )

        assert "Products: Ledger API" in prompt
        assert "Competitors: Stripe" in prompt
        assert "Company size: 50-10000+ employees" in prompt
        assert "Countries: US, DE" in prompt
        assert "Seniority: vp" in prompt
        assert "(apollo)" in prompt
        assert "(diffbot)" not in prompt
        assert "- prospeo: avg quality 50%, avg 4.0 fields, 2 calls" in prompt
        assert "- market_signal:" in prompt

    def test_minimal_context(self, generator):
        prompt = generator.build_context_prompt(None, None, {}, None, [])

        assert prompt.startswith("## Client\nName: Unknown")
        assert "## Target Persona" not in prompt
        assert "## Historical Performance" not in prompt


# ============================================================================
# TEST: PROVIDER ORDER
# ============================================================================

class TestProviderOrder:

    def test_capability_specific_steps(self):
        strategy = model_strategy()

        assert provider_order(strategy, "company_search") == ["apollo", "prospeo"]
        assert provider_order(strategy, "email_find") == ["prospeo", "leadmagic"]

    def test_unregistered_providers_dropped(self):
        strategy = model_strategy()

        assert provider_order(strategy, "email_find", registered=["leadmagic"]) == ["leadmagic"]
        assert provider_order(strategy, "people_search", registered=["apollo"]) is None

    def test_default_strategy_ranks_available_providers(self):
        strategy = build_default_strategy("fintech", [])

        assert [s.provider for s in strategy.provider_plan] == ["apollo"]

    def test_options_follow_plan(self):
        strategy = model_strategy(max_budget_per_company=2.5)

        search = strategy_options(strategy, "company_search")
        enrich = strategy_options(strategy, "company_enrich", registered=["prospeo", "apollo"])

        assert search.provider_override == ["apollo", "prospeo"]
        assert search.max_providers == 2
        assert search.max_cost is None
        assert enrich.provider_override == ["prospeo"]
        assert enrich.max_cost == Decimal("2.5")

    def test_options_cap_attempts(self):
        strategy = model_strategy(provider_plan=[
            ProviderPlanStep(provider=f"p{i}", priority=i) for i in range(1, 7)
        ])

        options = strategy_options(strategy, "company_enrich")

        assert options.provider_override == ["p1", "p2", "p3", "p4", "p5", "p6"]
        assert options.max_providers == 4
        assert options.max_cost is None

    def test_options_without_matching_steps(self):
        options = strategy_options(model_strategy(), "people_search", registered=["apollo"])

        assert options.provider_override is None
        assert options.max_providers is None


class TestModelStrategy:

    def test_missing_weight_is_malformed(self):
        content = '{"providerPlan": [{"provider": "apollo", "priority": 1}], "scoringWeights": {"icpFit": 1.0}}'

        with pytest.raises(MalformedModelOutputError):
            parse_model_output(content, ModelStrategy)

    def test_missing_weights_object_is_malformed(self):
        with pytest.raises(MalformedModelOutputError):
            parse_model_output('{"providerPlan": [{"provider": "apollo", "priority": 1}]}', ModelStrategy)

    def test_complete_reply_normalizes(self):
        content = (
            '{"providerPlan": [{"provider": "apollo", "priority": 1}], '
            '"scoringWeights": {"icpFit": 2, "signals": 1, "originality": 1, "costEfficiency": 0}}'
        )

        strategy = parse_model_output(content, ModelStrategy).to_strategy()

        assert type(strategy) is StrategyData
        assert strategy.scoring_weights == ScoringWeights(icp_fit=0.5, signals=0.25, originality=0.25, cost_efficiency=0.0)
        assert strategy.provider_plan[0].provider == "apollo"
