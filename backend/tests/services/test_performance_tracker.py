# tests/services/test_performance_tracker.py
"""
Tests for provider performance tracking

Run with: pytest backend/tests/services/test_performance_tracker.py -v
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from leadintel.models import ProviderPerformance, utcnow
from leadintel.services.performance_tracker import PerformanceRecord, PerformanceTracker


@pytest.fixture
def tracker(session_factory):
    return PerformanceTracker(session_factory)


def record(client, provider="apollo", operation="company_enrich", **kwargs):
    return PerformanceRecord(provider_name=provider, client_id=client.id, operation=operation, **kwargs)


class TestProviderStats:

    async def test_aggregates_per_provider(self, tracker, client):
        await tracker.record_performance(record(
            client, quality_score=0.8, response_time_ms=200, fields_populated=10, cost_credits=Decimal("1")
        ))
        await tracker.record_performance(record(client, success=False, response_time_ms=400, cost_credits=Decimal("1")))
        await tracker.record_performance(record(client, "leadmagic", "email_find", quality_score=0.6))

        stats = await tracker.get_provider_stats(client.id)

        assert [s.provider_name for s in stats] == ["apollo", "leadmagic"]
        apollo = stats[0]
        assert apollo.call_count == 2
        assert apollo.success_rate == 0.5
        assert apollo.avg_quality == pytest.approx(0.8)
        assert apollo.avg_response_time_ms == pytest.approx(300)
        assert apollo.avg_cost == pytest.approx(1.0)

    async def test_to_dict(self, tracker, client):
        await tracker.record_performance(record(client, quality_score=0.8123, fields_populated=7))

        summary = (await tracker.get_provider_stats(client.id))[0].to_dict()

        assert summary["provider"] == "apollo"
        assert summary["avg_quality"] == 0.812
        assert summary["success_rate"] == 1.0

    async def test_lookback_window(self, tracker, factory, client):
        await factory.add(ProviderPerformance(
            provider_name="prospeo", client_id=client.id, operation="email_verify",
            created_at=utcnow() - timedelta(days=40),
        ))
        await tracker.record_performance(record(client))

        assert [s.provider_name for s in await tracker.get_provider_stats(client.id)] == ["apollo"]
        assert len(await tracker.get_provider_stats(client.id, lookback_days=60)) == 2

    async def test_operation_filter(self, tracker, client):
        await tracker.record_performance(record(client, operation="company_enrich"))
        await tracker.record_performance(record(client, operation="people_search"))

        stats = await tracker.get_provider_stats(client.id, operation="people_search")

        assert stats[0].call_count == 1

    async def test_scoped_to_client(self, tracker, factory, client):
        other = await factory.client()
        await tracker.record_performance(record(other))

        assert await tracker.get_provider_stats(client.id) == []


class TestRecordPerformance:

    async def test_database_errors_are_swallowed(self, client):
        failing = Mock(side_effect=OperationalError("INSERT", {}, Exception("database is locked")))
        tracker = PerformanceTracker(failing)

        await tracker.record_performance(record(client))

        failing.assert_called_once()
