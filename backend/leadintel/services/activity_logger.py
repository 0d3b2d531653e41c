# backend/leadintel/services/activity_logger.py
"""
Activity Logger - audit rows for pipeline stage changes
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from leadintel.models import StageTransition, utcnow


class ActivityLogger:
    """Logs company stage transitions inside the caller's session"""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_uuid(value):
        """Safely convert to UUID"""
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    def log_stage_transition(
        self,
        company_id,
        client_id,
        from_stage: Optional[str],
        to_stage: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None
    ) -> StageTransition:
        """Log a stage transition"""
        transition = StageTransition(
            client_id=self._to_uuid(client_id),
            company_id=self._to_uuid(company_id),
            from_stage=from_stage,
            to_stage=to_stage,
            reason=reason,
            details=details or {},
            created_at=utcnow()
        )
        self.session.add(transition)
        return transition

    def log_promotion(self, company_id, client_id, from_stage: str, to_stage: str,
                      signals_count: int, aggregate_score: float):
        return self.log_stage_transition(
            company_id=company_id, client_id=client_id,
            from_stage=from_stage, to_stage=to_stage, reason="signals_qualified",
            details={"signals_count": signals_count, "aggregate_score": aggregate_score}
        )

    def log_reset(self, company_id, client_id, list_id=None):
        return self.log_stage_transition(
            company_id=company_id, client_id=client_id,
            from_stage="qualified", to_stage="active_segment", reason="re_evaluation_reset",
            details={"list_id": str(list_id)} if list_id else {}
        )

    def log_market_exposure(self, company_id, client_id, market_signal_id,
                            confidence: float, reasoning: str):
        return self.log_stage_transition(
            company_id=company_id, client_id=client_id,
            from_stage="tam", to_stage="active_segment", reason="market_signal_exposure",
            details={
                "market_signal_id": str(market_signal_id),
                "confidence": confidence,
                "reasoning": reasoning,
            }
        )
