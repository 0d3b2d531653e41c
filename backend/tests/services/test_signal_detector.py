# tests/services/test_signal_detector.py
"""
Tests for company signal detection

Coverage:
- Rule-based signals (funding, tech adoption, hiring surge, expansion)
- Model signals: filtering by type and strength, short descriptions skipped
- Persistence: re-detection replaces detector output only
- Read-time expiry in get_active_signals

Run with: pytest backend/tests/services/test_signal_detector.py -v
"""

from datetime import datetime, timedelta

import pytest

from leadintel.config import settings
from leadintel.models import CompanySignal
from leadintel.schemas.signals import DetectedSignal, ModelSignal, ModelSignalList
from leadintel.services.signal_detector import (
    ClientContext,
    SignalDetector,
    detect_rule_based_signals,
    load_client_context,
    signal_display_name,
)

NOW = datetime(2025, 6, 1, 9, 0, 0)

LONG_DESCRIPTION = (
    "Acme builds payment infrastructure for marketplaces and recently announced "
    "a partnership with two European banks."
)


def by_type(signals):
    return {s.signal_type: s for s in signals}


# ============================================================================
# TEST: RULE-BASED
# ============================================================================

class TestRuleBasedSignals:

    def test_funding(self):
        signals = by_type(detect_rule_based_signals({
            "latest_funding_stage": "Series B",
            "total_funding": 25_000_000,
            "latest_funding_date": "2025-03-10",
        }))

        funding = signals["recent_funding"]
        assert funding.signal_strength == 0.7
        assert funding.event_date == datetime(2025, 3, 10)
        assert "Series B" in funding.evidence

    def test_funding_without_date(self):
        funding = by_type(detect_rule_based_signals({"total_funding": 1_000_000}))["recent_funding"]
        assert funding.event_date is None

    def test_tech_adoption_needs_client_products(self):
        company = {"tech_stack": ["Salesforce", "Slack", "HubSpot"]}

        assert detect_rule_based_signals(company) == []

        context = ClientContext(products=["Salesforce CRM connector", "HubSpot"])
        tech = by_type(detect_rule_based_signals(company, context))["tech_adoption"]
        assert tech.signal_strength == pytest.approx(0.8)
        assert tech.details["matched_tech"] == ["Salesforce", "HubSpot"]

    def test_hiring_surge(self):
        signals = by_type(detect_rule_based_signals({
            "employee_count": 240,
            "employee_range": "201-500+",
            "description": "We are hiring across engineering and growing fast",
        }))
        assert signals["hiring_surge"].signal_strength == pytest.approx(0.9)

    def test_no_hiring_surge_for_small_companies(self):
        signals = detect_rule_based_signals({
            "employee_count": 40,
            "employee_range": "11-50+",
            "description": "hiring and growing",
        })
        assert "hiring_surge" not in by_type(signals)

    def test_expansion_needs_location_and_wording(self):
        company = {
            "address": "1 Market St",
            "country": "US",
            "description": "Acme opened a new office in Lisbon",
        }
        assert by_type(detect_rule_based_signals(company))["expansion"].signal_strength == 0.7

        company["address"] = None
        assert "expansion" not in by_type(detect_rule_based_signals(company))

    def test_bare_company_has_no_signals(self):
        assert detect_rule_based_signals({"name": "Bare"}) == []


# ============================================================================
# TEST: MODEL SIGNALS
# ============================================================================

class TestModelSignals:

    async def test_filters_types_and_strength(self, session_factory, classifier):
        classifier.classify.return_value = ModelSignalList(signals=[
            ModelSignal(signal_type="pain_point_detected", signal_strength=0.85, evidence="Manual reconciliation"),
            ModelSignal(signal_type="recent_funding", signal_strength=0.9),
            ModelSignal(signal_type="expansion", signal_strength=0.3),
        ])
        detector = SignalDetector(session_factory, classifier)

        signals = await detector.detect_model_signals({"name": "Acme", "description": LONG_DESCRIPTION})

        assert [s.signal_type for s in signals] == ["pain_point_detected"]
        assert signals[0].source == "llm_analysis"
        assert classifier.classify.await_args.kwargs["fast"] is True

    async def test_short_description_skips_model(self, session_factory, classifier):
        detector = SignalDetector(session_factory, classifier)

        assert await detector.detect_model_signals({"name": "Acme", "description": "Payments."}) == []
        classifier.classify.assert_not_awaited()

    async def test_failed_classification_yields_nothing(self, session_factory, classifier):
        classifier.classify.return_value = None
        detector = SignalDetector(session_factory, classifier)

        assert await detector.detect_model_signals({"name": "Acme", "description": LONG_DESCRIPTION}) == []

    async def test_without_classifier(self, session_factory):
        detector = SignalDetector(session_factory)
        assert await detector.detect_model_signals({"description": LONG_DESCRIPTION}) == []


# ============================================================================
# TEST: PERSISTENCE
# ============================================================================

class TestPersistence:

    @pytest.fixture
    async def funded_company(self, factory, client):
        return await factory.company(
            client,
            latest_funding_stage="Series A",
            total_funding=5_000_000,
            latest_funding_date=datetime(2025, 5, 1),
        )

    async def test_detect_signals_persists_with_decay(self, session_factory, factory, client, funded_company):
        detector = SignalDetector(session_factory)

        signals = await detector.detect_signals(client.id, funded_company, now=NOW)

        rows = await factory.all(CompanySignal)
        assert [s.signal_type for s in signals] == ["recent_funding"]
        assert len(rows) == 1
        assert rows[0].source == "rule_based"
        assert rows[0].expires_at == NOW + timedelta(days=180)
        assert rows[0].signal_data["details"]["event_date"] == "2025-05-01T00:00:00"

    async def test_redetection_replaces_previous_output(self, session_factory, factory, client, funded_company):
        detector = SignalDetector(session_factory)

        await detector.detect_signals(client.id, funded_company, now=NOW)
        await detector.detect_signals(client.id, funded_company, now=NOW)

        assert len(await factory.all(CompanySignal)) == 1

    async def test_redetection_keeps_other_sources(self, session_factory, factory, client, funded_company):
        await factory.signal(client, funded_company, source="manual")
        detector = SignalDetector(session_factory)

        await detector.detect_signals(client.id, funded_company, now=NOW)
        await detector.detect_signals(client.id, funded_company, now=NOW)

        sources = sorted(r.source for r in await factory.all(CompanySignal))
        assert sources == ["manual", "rule_based"]

    async def test_active_signals_exclude_expired(self, session_factory, factory, client, funded_company):
        await factory.signal(client, funded_company, signal_type="hiring_surge", expires_at=NOW - timedelta(seconds=1))
        await factory.signal(client, funded_company, signal_type="expansion", expires_at=NOW + timedelta(days=1))
        await factory.signal(client, funded_company, signal_type="tech_adoption", expires_at=None)
        detector = SignalDetector(session_factory)

        active = await detector.get_active_signals(client.id, [funded_company.id], now=NOW)

        assert sorted(s.signal_type for s in active[funded_company.id]) == ["expansion", "tech_adoption"]

    async def test_active_signals_round_trip(self, session_factory, client, funded_company):
        detector = SignalDetector(session_factory)
        await detector.add_signal(client.id, funded_company.id, DetectedSignal(
            signal_type="recent_funding",
            signal_strength=0.7,
            evidence="Series A",
            event_date=datetime(2025, 5, 1),
        ), now=NOW)

        signal = (await detector.get_active_signals(client.id, [funded_company.id], now=NOW))[funded_company.id][0]

        assert signal.evidence == "Series A"
        assert signal.event_date == datetime(2025, 5, 1)
        assert signal.expires_at == NOW + timedelta(days=180)

    async def test_uncatalogued_type_uses_configured_ttl(self, session_factory, client, funded_company, monkeypatch):
        monkeypatch.setattr(settings, "DEFAULT_SIGNAL_TTL_DAYS", 45)
        detector = SignalDetector(session_factory)
        await detector.add_signal(client.id, funded_company.id, DetectedSignal(
            signal_type="office_move", signal_strength=0.5, source="manual",
        ), now=NOW)

        signal = (await detector.get_active_signals(client.id, [funded_company.id], now=NOW))[funded_company.id][0]

        assert signal.expires_at == NOW + timedelta(days=45)

    async def test_companies_without_signals_are_absent(self, session_factory, factory, client):
        quiet = await factory.company(client)
        detector = SignalDetector(session_factory)

        assert await detector.get_active_signals(client.id, [quiet.id], now=NOW) == {}
        assert await detector.get_active_signals(client.id, [], now=NOW) == {}


class TestClientContext:

    async def test_loads_profile(self, session_factory, factory, client):
        await factory.profile(client, industry="Fintech", products=["Ledger API"], competitors=["Stripe"])

        async with session_factory() as session:
            context = await load_client_context(session, client.id)

        assert context.products == ["Ledger API"]
        assert context.competitors == ["Stripe"]

    async def test_missing_profile(self, session_factory, client):
        async with session_factory() as session:
            assert await load_client_context(session, client.id) is None


def test_signal_display_name():
    assert signal_display_name("hiring_surge") == "Hiring Surge"
    assert signal_display_name("custom") == "custom"
