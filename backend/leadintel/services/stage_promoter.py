# backend/leadintel/services/stage_promoter.py
"""
Pipeline Stage Promoter

    tam → active_segment → qualified → ready_to_approach → in_sequence → converted

- tam → active_segment is driven by market events (MarketSignalProcessor)
- active_segment → qualified is driven here, by company signals
- later stages are manual and forward-only

Re-evaluating a list is idempotent: qualified companies are reset to
active_segment first, then every active_segment company is judged afresh
against its current (unexpired) signals.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadintel.config import settings
from leadintel.exceptions import InvalidStageTransitionError, NotFoundError
from leadintel.models import ICP, Company, Contact, ListMember, ProspectList, utcnow
from leadintel.schemas.enums import PipelineStage, can_advance
from leadintel.schemas.signals import DetectedSignal
from leadintel.schemas.strategy import StrategyData
from leadintel.services.activity_logger import ActivityLogger
from leadintel.services.batch_processor import BatchProcessor
from leadintel.services.intelligence_scorer import IntelligenceScorer, compute_signal_score
from leadintel.services.persona_signal_detector import (
    PersonaSignalDetector, compute_fit_score, compute_signal_score as compute_contact_signal_score
)
from leadintel.services.signal_detector import SignalDetector, load_client_context

logger = logging.getLogger(__name__)


# Market signals gate tam → active_segment; they do not count again for qualification
NON_QUALIFYING_SIGNAL_TYPES = {"market_signal"}


@dataclass
class PromotionThresholds:
    single_signal: float = 0.8
    pair_signal: float = 0.7
    aggregate_score: float = 0.6

    @classmethod
    def from_settings(cls) -> "PromotionThresholds":
        return cls(
            single_signal=settings.QUALIFY_SINGLE_SIGNAL,
            pair_signal=settings.QUALIFY_PAIR_SIGNAL,
            aggregate_score=settings.QUALIFY_AGGREGATE_SCORE,
        )


def qualifies(signals: List[DetectedSignal], aggregate_score: float, thresholds: PromotionThresholds) -> bool:
    """Any strong signal, two good ones, or a strong aggregate"""
    if any(s.signal_strength >= thresholds.single_signal for s in signals):
        return True
    if sum(1 for s in signals if s.signal_strength >= thresholds.pair_signal) >= 2:
        return True
    return aggregate_score >= thresholds.aggregate_score


class PipelineStagePromoter:
    """Moves companies through the funnel and keeps list scores current"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        signal_detector: SignalDetector,
        scorer: Optional[IntelligenceScorer] = None,
        persona_detector: Optional[PersonaSignalDetector] = None,
        thresholds: Optional[PromotionThresholds] = None,
        window_size: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.signal_detector = signal_detector
        self.scorer = scorer or IntelligenceScorer()
        self.persona_detector = persona_detector or PersonaSignalDetector(session_factory)
        self.thresholds = thresholds or PromotionThresholds.from_settings()
        self.window_size = window_size or settings.ENRICHMENT_BATCH_SIZE

    # ========================================================================
    # active_segment → qualified
    # ========================================================================

    async def run_company_signals(
        self,
        list_id: UUID,
        strategy: Optional[StrategyData] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, int]:
        now = now or utcnow()

        async with self.session_factory() as session:
            prospect_list = await session.get(ProspectList, list_id)
            if prospect_list is None:
                raise NotFoundError("List", list_id)
            client_id = prospect_list.client_id

            icp_filters: Dict = {}
            if prospect_list.icp_id:
                icp = await session.get(ICP, prospect_list.icp_id)
                if icp is not None:
                    icp_filters = icp.filters or {}

            context = await load_client_context(session, client_id)

        reset = await self._reset_qualified(list_id, client_id)

        async with self.session_factory() as session:
            members = (await session.execute(
                select(ListMember.id, ListMember.company_id)
                .join(Company, ListMember.company_id == Company.id)
                .where(ListMember.list_id == list_id)
                .where(ListMember.removed_at.is_(None))
                .where(ListMember.contact_id.is_(None))
                .where(Company.pipeline_stage == PipelineStage.ACTIVE_SEGMENT.value)
            )).all()

        if not members:
            logger.info(f"ℹ️  No active_segment members in list {list_id}")
            return {"processed": 0, "qualified": 0, "reset": reset, "signals_detected": 0, "failed": 0}

        logger.info(f"🔍 Running company signals on {len(members)} member(s) of list {list_id}")

        async def evaluate(member):
            return await self._evaluate_member(
                client_id, member.id, member.company_id, icp_filters, context, strategy, now
            )

        processor = BatchProcessor(window_size=self.window_size)
        outcomes = await processor.process_in_windows(members, evaluate)

        qualified = 0
        signals_detected = 0
        failed = 0
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                failed += 1
                continue
            detected, promoted = outcome
            signals_detected += detected
            qualified += int(promoted)

        logger.info(
            f"✅ List {list_id}: {len(members)} processed, {qualified} qualified, "
            f"{reset} reset, {failed} failed"
        )
        return {
            "processed": len(members),
            "qualified": qualified,
            "reset": reset,
            "signals_detected": signals_detected,
            "failed": failed,
        }

    async def _reset_qualified(self, list_id: UUID, client_id: UUID) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                companies = (await session.execute(
                    select(Company)
                    .join(ListMember, ListMember.company_id == Company.id)
                    .where(ListMember.list_id == list_id)
                    .where(ListMember.removed_at.is_(None))
                    .where(ListMember.contact_id.is_(None))
                    .where(Company.pipeline_stage == PipelineStage.QUALIFIED.value)
                    .with_for_update()
                )).scalars().all()

                activity = ActivityLogger(session)
                for company in companies:
                    company.pipeline_stage = PipelineStage.ACTIVE_SEGMENT.value
                    activity.log_reset(company.id, client_id, list_id)

        if companies:
            logger.info(f"↩️  Reset {len(companies)} qualified company(ies) to active_segment")
        return len(companies)

    async def _evaluate_member(
        self,
        client_id: UUID,
        member_id: UUID,
        company_id: UUID,
        icp_filters: Dict,
        context,
        strategy: Optional[StrategyData],
        now: datetime
    ) -> tuple:
        async with self.session_factory() as session:
            company = await session.get(Company, company_id)

        detected = await self.signal_detector.detect_signals(client_id, company, context, now=now)

        active = await self.signal_detector.get_active_signals(client_id, [company_id], now=now)
        signals = [
            s for s in active.get(company_id, [])
            if s.signal_type not in NON_QUALIFYING_SIGNAL_TYPES
        ]

        priorities = strategy.signal_priorities if strategy else None
        score = self.scorer.score_company(
            company,
            icp_filters,
            signals,
            total_cost_credits=company.enrichment_cost_credits or 0,
            weights=strategy.scoring_weights if strategy else None,
            signal_priorities=priorities,
            now=now,
        )
        aggregate = compute_signal_score(signals, priorities, now=now)
        promote = qualifies(signals, aggregate, self.thresholds)

        async with self.session_factory() as session:
            async with session.begin():
                member = await session.get(ListMember, member_id)
                member.icp_fit_score = score.icp_fit_score
                member.signal_score = score.signal_score
                member.originality_score = score.originality_score
                member.intelligence_score = score.intelligence_score
                if score.reasons:
                    member.added_reason = "; ".join(score.reasons[:5])

                current = await session.get(Company, company_id, with_for_update=True)
                current.signal_score = round(aggregate, 2)
                current.originality_score = score.originality_score

                if promote and current.pipeline_stage == PipelineStage.ACTIVE_SEGMENT.value:
                    current.pipeline_stage = PipelineStage.QUALIFIED.value
                    ActivityLogger(session).log_promotion(
                        company_id, client_id,
                        PipelineStage.ACTIVE_SEGMENT.value, PipelineStage.QUALIFIED.value,
                        signals_count=len(signals), aggregate_score=round(aggregate, 2)
                    )
                else:
                    promote = False

        if promote:
            logger.info(f"⬆️  {company.name} qualified ({len(signals)} signals, aggregate {aggregate:.2f})")
        return len(detected), promote

    # ========================================================================
    # MANUAL STAGES
    # ========================================================================

    async def advance_stage(
        self,
        company_id: UUID,
        to_stage,
        reason: str = "manual",
        details: Optional[Dict[str, Any]] = None
    ) -> Company:
        """Forward-only move; staying in place is a no-op"""
        to_stage = PipelineStage(to_stage)

        async with self.session_factory() as session:
            async with session.begin():
                company = await session.get(Company, company_id, with_for_update=True)
                if company is None:
                    raise NotFoundError("Company", company_id)

                from_stage = PipelineStage(company.pipeline_stage)
                if not can_advance(from_stage, to_stage):
                    raise InvalidStageTransitionError(from_stage.value, to_stage.value)
                if from_stage == to_stage:
                    return company

                company.pipeline_stage = to_stage.value
                ActivityLogger(session).log_stage_transition(
                    company.id, company.client_id, from_stage.value, to_stage.value, reason, details
                )

        logger.info(f"➡️  {company.name}: {from_stage.value} → {to_stage.value} ({reason})")
        return company

    # ========================================================================
    # CONTACTS
    # ========================================================================

    async def score_contact(
        self,
        client_id: UUID,
        contact: Contact,
        persona: Any,
        now: Optional[datetime] = None
    ) -> Dict[str, float]:
        signals = await self.persona_detector.detect_signals(client_id, contact, persona, now=now)
        persona_fit = round(compute_fit_score(signals), 2)
        signal_score = round(compute_contact_signal_score(signals), 2)

        async with self.session_factory() as session:
            async with session.begin():
                stored = await session.get(Contact, contact.id)
                if stored is not None:
                    stored.persona_fit_score = persona_fit
                    stored.signal_score = signal_score

        return {"persona_fit": persona_fit, "signal_score": signal_score}
