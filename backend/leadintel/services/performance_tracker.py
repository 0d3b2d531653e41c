# backend/leadintel/services/performance_tracker.py
"""
Provider performance tracking

Best-effort: a failure to record never fails the enrichment that produced
it. Stats feed strategy generation; nothing here reorders providers.
"""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadintel.models import ProviderPerformance, utcnow

logger = logging.getLogger(__name__)


@dataclass
class PerformanceRecord:
    provider_name: str
    client_id: UUID
    operation: str
    success: bool = True
    quality_score: Optional[float] = None
    response_time_ms: Optional[int] = None
    fields_populated: Optional[int] = None
    cost_credits: Optional[Decimal] = None


@dataclass
class ProviderStats:
    provider_name: str
    avg_quality: float
    avg_response_time_ms: float
    avg_fields_populated: float
    avg_cost: float
    call_count: int
    success_rate: float

    def to_dict(self) -> Dict:
        return {
            "provider": self.provider_name,
            "avg_quality": round(self.avg_quality, 3),
            "avg_response_time_ms": round(self.avg_response_time_ms),
            "avg_fields_populated": round(self.avg_fields_populated, 1),
            "avg_cost": round(self.avg_cost, 4),
            "call_count": self.call_count,
            "success_rate": round(self.success_rate, 3),
        }


class PerformanceTracker:

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record_performance(self, record: PerformanceRecord):
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(ProviderPerformance(
                        provider_name=record.provider_name,
                        client_id=record.client_id,
                        operation=record.operation,
                        success=record.success,
                        quality_score=record.quality_score,
                        response_time_ms=record.response_time_ms,
                        fields_populated=record.fields_populated,
                        cost_credits=record.cost_credits,
                        created_at=utcnow()
                    ))
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ Failed to record performance for {record.provider_name}: {e}")

    async def get_provider_stats(
        self,
        client_id: UUID,
        lookback_days: int = 30,
        operation: Optional[str] = None
    ) -> List[ProviderStats]:
        """Per-provider averages over the lookback window, most used first"""
        since = utcnow() - timedelta(days=lookback_days)

        query = (
            select(
                ProviderPerformance.provider_name,
                func.avg(ProviderPerformance.quality_score),
                func.avg(ProviderPerformance.response_time_ms),
                func.avg(ProviderPerformance.fields_populated),
                func.avg(ProviderPerformance.cost_credits),
                func.count(ProviderPerformance.id),
                func.sum(cast(ProviderPerformance.success, Integer)),
            )
            .where(ProviderPerformance.client_id == client_id)
            .where(ProviderPerformance.created_at >= since)
            .group_by(ProviderPerformance.provider_name)
            .order_by(func.count(ProviderPerformance.id).desc())
        )
        if operation:
            query = query.where(ProviderPerformance.operation == operation)

        async with self.session_factory() as session:
            rows = (await session.execute(query)).all()

        stats = []
        for name, quality, response_ms, fields, cost, count, successes in rows:
            stats.append(ProviderStats(
                provider_name=name,
                avg_quality=float(quality or 0),
                avg_response_time_ms=float(response_ms or 0),
                avg_fields_populated=float(fields or 0),
                avg_cost=float(cost or 0),
                call_count=int(count),
                success_rate=float(successes or 0) / count if count else 0.0,
            ))
        return stats
