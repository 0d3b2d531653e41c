# backend/leadintel/services/signal_detector.py
"""
Company Signal Detector

Two sources of buying signals:
1. Rule-based, from structured company fields (funding, tech overlap,
   growth indicators, expansion wording)
2. Model-based, from the company description (only when there is enough
   text to analyze)

Signals expire; expiry is evaluated when signals are read, never swept.
Re-running detection for a company replaces what the detector wrote before,
so identical inputs always leave the same signal set behind.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadintel.models import ClientProfile, CompanySignal, utcnow
from leadintel.schemas.signals import DetectedSignal, ModelSignalList
from leadintel.services.llm_classifier import LLMClassifier
from leadintel.services.provider_knowledge import SIGNAL_DEFINITIONS, get_signal_decay_days
from leadintel.services.timeliness import parse_event_date

logger = logging.getLogger(__name__)


RULE_SOURCE = "rule_based"
MODEL_SOURCE = "llm_analysis"
DETECTOR_SOURCES = (RULE_SOURCE, MODEL_SOURCE)

MIN_DESCRIPTION_LENGTH = 50
MIN_MODEL_SIGNAL_STRENGTH = 0.5
MODEL_SIGNAL_TYPES = {
    "pain_point_detected",
    "competitive_displacement",
    "expansion",
    "new_product_launch",
}
EXPANSION_KEYWORDS = ("new office", "expansion", "new market", "opened")
GROWTH_KEYWORDS = ("hiring", "growing", "expanding")

SIGNAL_SYSTEM_PROMPT = """Analyze this company data and detect buying signals that suggest the company may need or be ready to purchase B2B services.

Return JSON of the form:
{"signals": [{
  "signalType": "pain_point_detected" | "competitive_displacement" | "expansion" | "new_product_launch",
  "signalStrength": 0.0-1.0,
  "evidence": "Brief explanation of why this is a signal"
}]}

Only include signals with signalStrength >= 0.5. Return {"signals": []} if no strong signals are detected. Return ONLY valid JSON."""


@dataclass
class ClientContext:
    """What the client sells, used to judge relevance"""
    products: List[str] = field(default_factory=list)
    industry: Optional[str] = None
    competitors: List[str] = field(default_factory=list)


async def load_client_context(session: AsyncSession, client_id: UUID) -> Optional[ClientContext]:
    result = await session.execute(select(ClientProfile).where(ClientProfile.client_id == client_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        return None
    return ClientContext(
        products=profile.products or [],
        industry=profile.industry,
        competitors=profile.competitors or [],
    )


def _get(entity: Any, name: str):
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


def detect_rule_based_signals(company: Any, context: Optional[ClientContext] = None) -> List[DetectedSignal]:
    signals: List[DetectedSignal] = []
    description = (_get(company, "description") or "").lower()

    # Funding
    funding_stage = _get(company, "latest_funding_stage")
    total_funding = _get(company, "total_funding")
    if funding_stage or total_funding:
        signals.append(DetectedSignal(
            signal_type="recent_funding",
            signal_strength=0.7,
            evidence=f"Funding stage: {funding_stage or 'Unknown'}, Total: ${total_funding or 'Unknown'}",
            source=RULE_SOURCE,
            event_date=parse_event_date(_get(company, "latest_funding_date")),
        ))

    # Tech overlapping what the client sells
    tech_stack = _get(company, "tech_stack") or []
    if tech_stack and context and context.products:
        relevant = [
            tech for tech in tech_stack
            if any(
                tech.lower() in product.lower() or product.lower() in tech.lower()
                for product in context.products
            )
        ]
        if relevant:
            signals.append(DetectedSignal(
                signal_type="tech_adoption",
                signal_strength=min(0.6 + len(relevant) * 0.1, 1.0),
                evidence=f"Uses related tech: {', '.join(relevant)}",
                source=RULE_SOURCE,
                details={"matched_tech": relevant},
            ))

    # Hiring surge
    employee_count = _get(company, "employee_count") or 0
    if employee_count > 50:
        indicators = int("+" in (_get(company, "employee_range") or ""))
        indicators += sum(1 for kw in GROWTH_KEYWORDS if kw in description)
        if indicators >= 2:
            signals.append(DetectedSignal(
                signal_type="hiring_surge",
                signal_strength=min(0.6 + indicators * 0.1, 1.0),
                evidence=f"Employee count: {employee_count}, {indicators} growth indicators",
                source=RULE_SOURCE,
            ))

    # Expansion
    if _get(company, "address") and _get(company, "country"):
        if any(kw in description for kw in EXPANSION_KEYWORDS):
            signals.append(DetectedSignal(
                signal_type="expansion",
                signal_strength=0.7,
                evidence="Expansion indicators in company description",
                source=RULE_SOURCE,
            ))

    return signals


def _company_prompt(company: Any, context: Optional[ClientContext]) -> str:
    lines = [f"Company: {_get(company, 'name')}"]
    if _get(company, "industry"):
        lines.append(f"Industry: {_get(company, 'industry')}")
    if _get(company, "description"):
        lines.append(f"Description: {_get(company, 'description')[:500]}")
    if _get(company, "employee_count"):
        lines.append(f"Employees: {_get(company, 'employee_count')}")
    if _get(company, "tech_stack"):
        lines.append(f"Tech stack: {', '.join(_get(company, 'tech_stack'))}")
    if _get(company, "latest_funding_stage"):
        lines.append(f"Funding: {_get(company, 'latest_funding_stage')}")
    if context and context.products:
        lines.append(f"\nClient sells: {', '.join(context.products)}")
    if context and context.industry:
        lines.append(f"Client industry: {context.industry}")
    return "\n".join(lines)


class SignalDetector:
    """Detects, persists and reads back company signals"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        classifier: Optional[LLMClassifier] = None
    ):
        self.session_factory = session_factory
        self.classifier = classifier

    async def detect_model_signals(
        self,
        company: Any,
        context: Optional[ClientContext] = None
    ) -> List[DetectedSignal]:
        description = _get(company, "description") or ""
        if self.classifier is None or len(description) <= MIN_DESCRIPTION_LENGTH:
            return []

        result = await self.classifier.classify(
            SIGNAL_SYSTEM_PROMPT,
            _company_prompt(company, context),
            ModelSignalList,
            fast=True
        )
        if result is None:
            return []

        return [
            DetectedSignal(
                signal_type=s.signal_type,
                signal_strength=s.signal_strength,
                evidence=s.evidence,
                source=MODEL_SOURCE,
            )
            for s in result.signals
            if s.signal_type in MODEL_SIGNAL_TYPES and s.signal_strength >= MIN_MODEL_SIGNAL_STRENGTH
        ]

    async def detect_signals(
        self,
        client_id: UUID,
        company: Any,
        context: Optional[ClientContext] = None,
        now: Optional[datetime] = None
    ) -> List[DetectedSignal]:
        """Detect and persist signals for one stored company"""
        signals = detect_rule_based_signals(company, context)
        signals.extend(await self.detect_model_signals(company, context))

        await self.replace_signals(client_id, company.id, signals, now=now)
        logger.info(f"📡 {len(signals)} signal(s) detected for {_get(company, 'name')}")
        return signals

    async def replace_signals(
        self,
        client_id: UUID,
        company_id: UUID,
        signals: List[DetectedSignal],
        now: Optional[datetime] = None,
        sources: Iterable[str] = DETECTOR_SOURCES
    ):
        now = now or utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(CompanySignal)
                    .where(CompanySignal.company_id == company_id)
                    .where(CompanySignal.source.in_(list(sources)))
                )
                for signal in signals:
                    self._add(session, client_id, company_id, signal, now)

    async def add_signal(
        self,
        client_id: UUID,
        company_id: UUID,
        signal: DetectedSignal,
        session: Optional[AsyncSession] = None,
        now: Optional[datetime] = None
    ):
        """Append one signal, inside the caller's transaction when given"""
        now = now or utcnow()
        if session is not None:
            self._add(session, client_id, company_id, signal, now)
            return
        async with self.session_factory() as own_session:
            async with own_session.begin():
                self._add(own_session, client_id, company_id, signal, now)

    @staticmethod
    def _add(session: AsyncSession, client_id: UUID, company_id: UUID, signal: DetectedSignal, now: datetime):
        expires_at = signal.expires_at or now + timedelta(days=get_signal_decay_days(signal.signal_type))
        details = dict(signal.details)
        if signal.event_date:
            details["event_date"] = signal.event_date.isoformat()
        session.add(CompanySignal(
            company_id=company_id,
            client_id=client_id,
            signal_type=signal.signal_type,
            signal_strength=signal.signal_strength,
            signal_data={"evidence": signal.evidence, "details": details},
            source=signal.source,
            detected_at=now,
            expires_at=expires_at,
        ))

    async def get_active_signals(
        self,
        client_id: UUID,
        company_ids: List[UUID],
        now: Optional[datetime] = None
    ) -> Dict[UUID, List[DetectedSignal]]:
        """Unexpired signals per company; companies without signals are absent"""
        if not company_ids:
            return {}
        now = now or utcnow()

        async with self.session_factory() as session:
            result = await session.execute(
                select(CompanySignal)
                .where(CompanySignal.client_id == client_id)
                .where(CompanySignal.company_id.in_(company_ids))
                .where(or_(CompanySignal.expires_at.is_(None), CompanySignal.expires_at > now))
            )
            rows = result.scalars().all()

        signals: Dict[UUID, List[DetectedSignal]] = {}
        for row in rows:
            data = row.signal_data or {}
            details = data.get("details") or {}
            signals.setdefault(row.company_id, []).append(DetectedSignal(
                signal_type=row.signal_type,
                signal_strength=row.signal_strength,
                evidence=data.get("evidence") or "",
                source=row.source or RULE_SOURCE,
                details=details,
                event_date=details.get("event_date"),
                expires_at=row.expires_at,
            ))
        return signals


def signal_display_name(signal_type: str) -> str:
    definition = SIGNAL_DEFINITIONS.get(signal_type)
    return definition.display_name if definition else signal_type
