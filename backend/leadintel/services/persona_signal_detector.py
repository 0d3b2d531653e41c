# backend/leadintel/services/persona_signal_detector.py
"""
Persona Signal Detector

Person-level signals for a contact against a target persona:
- fit signals: title_match, seniority_match
- event signals: job_change (new in role), tenure_signal (recent promotion)

Fit and event signals are scored separately so a well-matched contact with
no recent career movement still ranks on fit alone.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from leadintel.config import settings
from leadintel.models import ContactSignal, utcnow
from leadintel.schemas.signals import DetectedSignal, ModelSignalList
from leadintel.services.llm_classifier import LLMClassifier
from leadintel.services.timeliness import parse_event_date

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30

FIT_WEIGHTS = {"title_match": 0.60, "seniority_match": 0.40}
EVENT_WEIGHTS = {"job_change": 0.65, "tenure_signal": 0.35}
UNLISTED_WEIGHT = 0.1

MODEL_SIGNAL_TYPES = {"job_change", "title_match", "seniority_match", "tenure_signal"}

CAREER_ANALYSIS_PROMPT = """Analyze this contact's career trajectory against the target persona and detect person-specific buying signals.

Return JSON of the form:
{"signals": [{
  "signalType": "job_change" | "title_match" | "seniority_match" | "tenure_signal",
  "signalStrength": 0.0-1.0,
  "evidence": "Brief explanation of why this is a signal"
}]}

Only include signals with signalStrength >= 0.5. Return ONLY valid JSON."""


def _get(entity: Any, name: str, default=None):
    if isinstance(entity, dict):
        return entity.get(name, default)
    value = getattr(entity, name, default)
    return default if value is None else value


def _record_field(record: Any, snake: str, camel: str):
    """Employment records arrive as snake_case dicts, camelCase dicts or models"""
    if isinstance(record, dict):
        return record.get(snake, record.get(camel))
    return getattr(record, snake, None)


def _months_since(start, now: datetime) -> Optional[float]:
    started = parse_event_date(start)
    if started is None:
        return None
    return (now - started).days / DAYS_PER_MONTH


def title_matches(title: str, pattern: str) -> bool:
    """Case-insensitive; '*' is a wildcard, otherwise containment either way"""
    title_lower = title.lower()
    pattern_lower = pattern.lower()
    if "*" in pattern_lower:
        regex = "^" + ".*".join(re.escape(part) for part in pattern_lower.split("*")) + "$"
        return re.match(regex, title_lower) is not None
    return pattern_lower in title_lower or title_lower in pattern_lower


def detect_rule_based_signals(contact: Any, persona: Any, now: Optional[datetime] = None) -> List[DetectedSignal]:
    now = now or utcnow()
    signals: List[DetectedSignal] = []

    title = _get(contact, "title")
    title_patterns = _get(persona, "title_patterns", []) or []
    if title and title_patterns:
        matched = next((p for p in title_patterns if title_matches(title, p)), None)
        if matched:
            is_exact = title.lower() == matched.lower()
            signals.append(DetectedSignal(
                signal_type="title_match",
                signal_strength=0.9 if is_exact else 0.6,
                evidence=f'Title "{title}" matches persona pattern "{matched}"',
                details={"matched_pattern": matched, "contact_title": title},
            ))

    seniority = _get(contact, "seniority")
    seniority_levels = _get(persona, "seniority_levels", []) or []
    if seniority and any(level.lower() == seniority.lower() for level in seniority_levels):
        signals.append(DetectedSignal(
            signal_type="seniority_match",
            signal_strength=0.6,
            evidence=f'Seniority "{seniority}" matches target levels',
            details={"contact_seniority": seniority, "target_levels": seniority_levels},
        ))

    history = _get(contact, "employment_history", []) or []
    current = next((e for e in history if _record_field(e, "is_current", "isCurrent")), None)
    current_start = _record_field(current, "start_date", "startDate") if current else None

    # New in role
    months_in_role = _months_since(current_start, now) if current_start else None
    if months_in_role is not None and months_in_role < 6:
        signals.append(DetectedSignal(
            signal_type="job_change",
            signal_strength=0.8 if months_in_role < 3 else 0.7,
            evidence=f"Started current role {round(months_in_role)} months ago",
            details={"months_in_role": round(months_in_role), "start_date": current_start},
            event_date=parse_event_date(current_start),
        ))

    # Promotion within the same company
    if len(history) > 1 and current is not None:
        previous = next((e for e in history if not _record_field(e, "is_current", "isCurrent")), None)
        if previous is not None and _record_field(current, "company", "company") == _record_field(previous, "company", "company"):
            current_title = _record_field(current, "title", "title")
            previous_title = _record_field(previous, "title", "title")
            if current_title != previous_title and months_in_role is not None and months_in_role < 12:
                signals.append(DetectedSignal(
                    signal_type="tenure_signal",
                    signal_strength=0.8 if months_in_role < 6 else 0.6,
                    evidence=f'Recently promoted from "{previous_title}" to "{current_title}"',
                    details={
                        "previous_title": previous_title,
                        "current_title": current_title,
                        "months_since_promotion": round(months_in_role),
                    },
                    event_date=parse_event_date(current_start),
                ))

    return signals


def _weighted_score(signals: List[DetectedSignal], weights: Dict[str, float]) -> float:
    weighted_sum = 0.0
    total_weight = 0.0
    for signal in signals:
        weight = weights.get(signal.signal_type, UNLISTED_WEIGHT)
        weighted_sum += signal.signal_strength * weight
        total_weight += weight
    return min(weighted_sum / total_weight, 1.0) if total_weight > 0 else 0.0


def compute_fit_score(signals: List[DetectedSignal]) -> float:
    """Static attribute match (title, seniority), 0-1"""
    return _weighted_score([s for s in signals if s.signal_type in FIT_WEIGHTS], FIT_WEIGHTS)


def compute_signal_score(signals: List[DetectedSignal]) -> float:
    """Career event signals (job change, promotion), 0-1"""
    return _weighted_score([s for s in signals if s.signal_type not in FIT_WEIGHTS], EVENT_WEIGHTS)


class PersonaSignalDetector:
    """Detects and persists contact signals"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        classifier: Optional[LLMClassifier] = None
    ):
        self.session_factory = session_factory
        self.classifier = classifier

    async def detect_model_signals(self, contact: Any, persona: Any) -> List[DetectedSignal]:
        history = _get(contact, "employment_history", []) or []
        if self.classifier is None or len(history) <= 1:
            return []

        lines = [
            f"Target Persona: {_get(persona, 'name', '')}",
            f"Title Patterns: {', '.join(_get(persona, 'title_patterns', []) or [])}",
            f"Seniority: {', '.join(_get(persona, 'seniority_levels', []) or [])}",
            f"Departments: {', '.join(_get(persona, 'departments', []) or [])}",
            "",
            "## Contact",
            f"Title: {_get(contact, 'title', 'Unknown')}",
            f"Seniority: {_get(contact, 'seniority', 'Unknown')}",
            f"Department: {_get(contact, 'department', 'Unknown')}",
            "Employment History:",
        ]
        for record in history:
            start = _record_field(record, "start_date", "startDate")
            end = _record_field(record, "end_date", "endDate") or "present"
            span = f" ({start} - {end})" if start else ""
            lines.append(
                f"  - {_record_field(record, 'title', 'title')} at {_record_field(record, 'company', 'company')}{span}"
            )

        result = await self.classifier.classify(
            CAREER_ANALYSIS_PROMPT, "\n".join(lines), ModelSignalList, fast=True
        )
        if result is None:
            return []

        return [
            DetectedSignal(
                signal_type=s.signal_type,
                signal_strength=s.signal_strength,
                evidence=s.evidence,
                source="llm_analysis",
            )
            for s in result.signals
            if s.signal_type in MODEL_SIGNAL_TYPES and s.signal_strength >= 0.5
        ]

    async def detect_signals(
        self,
        client_id: UUID,
        contact: Any,
        persona: Any,
        now: Optional[datetime] = None
    ) -> List[DetectedSignal]:
        """Detect, then replace the contact's stored signals"""
        now = now or utcnow()
        signals = detect_rule_based_signals(contact, persona, now=now)
        signals.extend(await self.detect_model_signals(contact, persona))

        if signals:
            await self._persist(client_id, contact.id, signals, now)
        return signals

    async def _persist(self, client_id: UUID, contact_id: UUID, signals: List[DetectedSignal], now: datetime):
        expires_at = now + timedelta(days=settings.DEFAULT_SIGNAL_TTL_DAYS)
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(ContactSignal)
                    .where(ContactSignal.contact_id == contact_id)
                    .where(ContactSignal.client_id == client_id)
                )
                for s in signals:
                    session.add(ContactSignal(
                        contact_id=contact_id,
                        client_id=client_id,
                        signal_type=s.signal_type,
                        signal_strength=round(s.signal_strength, 2),
                        signal_data={"evidence": s.evidence, "details": s.details},
                        source=s.source,
                        detected_at=now,
                        expires_at=expires_at,
                    ))
        logger.debug(f"💾 Stored {len(signals)} signal(s) for contact {contact_id}")
