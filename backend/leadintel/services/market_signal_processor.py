# backend/leadintel/services/market_signal_processor.py
"""
Market Signal Processor - tam → active_segment

1. Classify each unprocessed market event against the client's active
   hypotheses (relevance, category, affected segments)
2. For relevant events, pre-filter TAM companies by segment keywords
3. Ask the model, in small batches, which candidates are actually exposed
4. Promote exposed companies and attach a market_signal to each

A failed exposure batch means "not affected" for every company in it; a
failed classification marks the event processed with zero relevance so it
is not retried forever.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadintel.config import settings
from leadintel.models import (
    Company, CompanySignal, MarketSignal, SignalHypothesis, utcnow
)
from leadintel.schemas.enums import PipelineStage, SignalCategory
from leadintel.schemas.signals import (
    DetectedSignal, ExposureBatch, MarketSignalClassification
)
from leadintel.services.activity_logger import ActivityLogger
from leadintel.services.llm_classifier import LLMClassifier
from leadintel.services.provider_knowledge import get_signal_decay_days
from leadintel.services.signal_detector import SignalDetector

logger = logging.getLogger(__name__)


MARKET_SIGNAL_SOURCE = "market_signal_processor"

CLASSIFICATION_PROMPT = """You are a market signal classifier. Given a market signal (headline + summary) and a set of active hypotheses, determine:

1. Which hypothesis (if any) this signal best matches
2. A relevance score (0.00-1.00) for how strongly this signal relates to the matched hypothesis
3. The signal category (regulatory, economic, industry, competitive)
4. Which market segments are affected

If no hypothesis matches well, set hypothesisIndex to -1 and still classify the category and relevance.

Return ONLY valid JSON:
{
  "hypothesisIndex": number,
  "relevanceScore": number,
  "signalCategory": "regulatory"|"economic"|"industry"|"competitive",
  "affectedSegments": string[],
  "reasoning": string
}"""

EXPOSURE_PROMPT = """You judge whether companies are materially exposed to a market event.

For every company listed, decide if the event affects its business and how confident you are.

Return ONLY valid JSON:
{"judgments": [{"companyIndex": number, "affected": boolean, "confidence": 0.0-1.0, "reasoning": string}]}"""


@dataclass
class MarketProcessingResult:
    processed: int = 0
    relevant: int = 0
    promoted: int = 0

    def to_dict(self) -> Dict:
        return {"processed": self.processed, "relevant": self.relevant, "promoted": self.promoted}


def matches_segments(company: Company, segments: List[str]) -> bool:
    text = " ".join(filter(None, [company.industry, company.sub_industry, company.description])).lower()
    return any(segment.lower() in text for segment in segments)


class MarketSignalProcessor:
    """Classifies market events and promotes exposed TAM companies"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        classifier: LLMClassifier,
        signal_detector: Optional[SignalDetector] = None,
        relevance_threshold: Optional[float] = None,
        confidence_threshold: Optional[float] = None,
        batch_size: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.classifier = classifier
        self.signal_detector = signal_detector or SignalDetector(session_factory)
        self.relevance_threshold = (
            relevance_threshold if relevance_threshold is not None
            else settings.MARKET_RELEVANCE_THRESHOLD
        )
        self.confidence_threshold = (
            confidence_threshold if confidence_threshold is not None
            else settings.EXPOSURE_CONFIDENCE_THRESHOLD
        )
        self.batch_size = batch_size or settings.EXPOSURE_BATCH_SIZE

    # ========================================================================
    # INGEST / FEED
    # ========================================================================

    async def ingest_signal(
        self,
        client_id: UUID,
        headline: str,
        summary: Optional[str] = None,
        source_url: Optional[str] = None,
        source_name: Optional[str] = None,
        published_at: Optional[datetime] = None
    ) -> MarketSignal:
        async with self.session_factory() as session:
            async with session.begin():
                signal = MarketSignal(
                    client_id=client_id,
                    headline=headline,
                    summary=summary,
                    source_url=source_url,
                    source_name=source_name,
                    published_at=published_at,
                    processed=False,
                )
                session.add(signal)
        return signal

    async def get_signal_feed(
        self,
        client_id: UUID,
        category: Optional[str] = None,
        processed: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Dict:
        conditions = [MarketSignal.client_id == client_id]
        if category in {c.value for c in SignalCategory}:
            conditions.append(MarketSignal.signal_category == category)
        if processed is not None:
            conditions.append(MarketSignal.processed == processed)

        async with self.session_factory() as session:
            result = await session.execute(
                select(MarketSignal)
                .where(*conditions)
                .order_by(desc(MarketSignal.created_at))
                .limit(limit)
                .offset(offset)
            )
            signals = result.scalars().all()
            total = await session.scalar(select(func.count()).select_from(MarketSignal).where(*conditions))

        return {"signals": signals, "total": int(total or 0)}

    # ========================================================================
    # CLASSIFICATION
    # ========================================================================

    async def process_unclassified_signals(
        self,
        client_id: UUID,
        batch_size: int = 50,
        now: Optional[datetime] = None
    ) -> MarketProcessingResult:
        now = now or utcnow()
        result = MarketProcessingResult()

        async with self.session_factory() as session:
            pending = (await session.execute(
                select(MarketSignal)
                .where(MarketSignal.client_id == client_id)
                .where(MarketSignal.processed.is_(False))
                .order_by(MarketSignal.created_at)
                .limit(batch_size)
            )).scalars().all()

            hypotheses = (await session.execute(
                select(SignalHypothesis)
                .where(SignalHypothesis.client_id == client_id)
                .where(SignalHypothesis.status == "active")
                .order_by(SignalHypothesis.priority)
            )).scalars().all()

        if not pending:
            logger.info(f"ℹ️  No unprocessed market signals for client {client_id}")
            return result

        logger.info(f"📰 Classifying {len(pending)} market signal(s)")

        if hypotheses:
            hypotheses_context = "\n".join(
                f"[{i}] {h.hypothesis} (category: {h.signal_category})"
                for i, h in enumerate(hypotheses)
            )
        else:
            hypotheses_context = "No hypotheses defined. Classify the signal by category only."

        for signal in pending:
            user_message = "\n".join(filter(None, [
                "## Signal",
                f"Headline: {signal.headline}",
                f"Summary: {signal.summary}" if signal.summary else None,
                f"Source: {signal.source_name}" if signal.source_name else None,
                "",
                "## Active Hypotheses",
                hypotheses_context,
            ]))

            classification = await self.classifier.classify(
                CLASSIFICATION_PROMPT, user_message, MarketSignalClassification, fast=True
            )
            result.processed += 1

            if classification is None:
                logger.error(f"❌ Could not classify market signal {signal.id}")
                await self._mark_processed(signal.id, None, None, now)
                continue

            index = classification.hypothesis_index
            hypothesis = hypotheses[index] if index is not None and 0 <= index < len(hypotheses) else None
            await self._mark_processed(signal.id, classification, hypothesis, now)

            if classification.relevance_score >= self.relevance_threshold and classification.affected_segments:
                result.relevant += 1
                result.promoted += await self.promote_exposed_companies(
                    client_id, signal, classification, hypothesis.id if hypothesis else None, now=now
                )

        logger.info(
            f"✅ Market signals: {result.processed} processed, "
            f"{result.relevant} relevant, {result.promoted} companies promoted"
        )
        return result

    async def _mark_processed(
        self,
        signal_id: UUID,
        classification: Optional[MarketSignalClassification],
        hypothesis: Optional[SignalHypothesis],
        now: datetime
    ):
        async with self.session_factory() as session:
            async with session.begin():
                signal = await session.get(MarketSignal, signal_id)
                signal.processed = True
                signal.processed_at = now
                if classification is None:
                    signal.relevance_score = 0.0
                    return
                signal.relevance_score = round(classification.relevance_score, 2)
                signal.signal_category = classification.signal_category.value
                signal.affected_segments = classification.affected_segments
                signal.hypothesis_id = hypothesis.id if hypothesis else None
                signal.analysis = {"reasoning": classification.reasoning}

    # ========================================================================
    # EXPOSURE & PROMOTION
    # ========================================================================

    async def promote_exposed_companies(
        self,
        client_id: UUID,
        signal: MarketSignal,
        classification: MarketSignalClassification,
        hypothesis_id: Optional[UUID] = None,
        now: Optional[datetime] = None
    ) -> int:
        now = now or utcnow()

        async with self.session_factory() as session:
            tam = (await session.execute(
                select(Company)
                .where(Company.client_id == client_id)
                .where(Company.pipeline_stage == PipelineStage.TAM.value)
                .order_by(Company.created_at)
            )).scalars().all()

        candidates = [c for c in tam if matches_segments(c, classification.affected_segments)]
        if not candidates:
            logger.debug(f"No TAM companies match segments {classification.affected_segments}")
            return 0

        promoted = 0
        for start in range(0, len(candidates), self.batch_size):
            batch = candidates[start:start + self.batch_size]
            exposed = await self._judge_exposure(signal, batch)
            for company, judgment in exposed:
                if await self._promote(client_id, company, signal, classification, judgment, hypothesis_id, now):
                    promoted += 1

        logger.info(f"⬆️  Promoted {promoted}/{len(candidates)} candidate(s) to active_segment")
        return promoted

    async def _judge_exposure(self, signal: MarketSignal, batch: List[Company]) -> list:
        lines = [
            "## Market event",
            f"Headline: {signal.headline}",
            f"Summary: {signal.summary or ''}",
            "",
            "## Companies",
        ]
        for i, company in enumerate(batch):
            description = (company.description or "")[:300]
            lines.append(f"[{i}] {company.name} | {company.industry or 'Unknown industry'} | {description}")

        verdict = await self.classifier.classify(EXPOSURE_PROMPT, "\n".join(lines), ExposureBatch, fast=True)
        if verdict is None:
            logger.error(f"❌ Exposure batch failed for market signal {signal.id}; treating {len(batch)} as not affected")
            return []

        exposed = []
        for judgment in verdict.judgments:
            if not 0 <= judgment.company_index < len(batch):
                continue
            if judgment.affected and judgment.confidence >= self.confidence_threshold:
                exposed.append((batch[judgment.company_index], judgment))
        return exposed

    async def _promote(self, client_id, company, signal, classification, judgment, hypothesis_id, now) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                current = await session.get(Company, company.id, with_for_update=True)
                if current is None or current.pipeline_stage != PipelineStage.TAM.value:
                    return False

                current.pipeline_stage = PipelineStage.ACTIVE_SEGMENT.value
                await self.signal_detector.add_signal(
                    client_id,
                    company.id,
                    DetectedSignal(
                        signal_type="market_signal",
                        signal_strength=round(classification.relevance_score, 2),
                        evidence=f"Exposed to market event: {signal.headline}",
                        source=MARKET_SIGNAL_SOURCE,
                        details={
                            "market_signal_id": str(signal.id),
                            "hypothesis_id": str(hypothesis_id) if hypothesis_id else None,
                            "confidence": judgment.confidence,
                        },
                        expires_at=now + timedelta(days=get_signal_decay_days("market_signal")),
                    ),
                    session=session,
                    now=now,
                )
                ActivityLogger(session).log_market_exposure(
                    company.id, client_id, signal.id, judgment.confidence, judgment.reasoning
                )
                await session.flush()

                strengths = (await session.execute(
                    select(CompanySignal.signal_strength)
                    .where(CompanySignal.company_id == company.id)
                    .where(or_(CompanySignal.expires_at.is_(None), CompanySignal.expires_at > now))
                )).scalars().all()
                if strengths:
                    current.signal_score = round(sum(strengths) / len(strengths), 2)
        return True
