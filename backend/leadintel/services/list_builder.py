# backend/leadintel/services/list_builder.py
"""
List Builder

Builds a prospect list from the client's stored companies:

1. ICP fit pre-filter (ICP_FIT_FLOOR); excluded companies score 0 and drop out
2. Unexpired signals per company, detecting for companies that have none
3. Composite intelligence score with the strategy's weights
4. Keep companies at or above INTELLIGENCE_SCORE_FLOOR, best first
5. With a persona, add each kept company's matching contacts as well

Refresh soft-removes every member and builds again; members that come back
are revived rather than duplicated.

Discovery fills the store first: an ICP company search, then enrichment of
the best new fits, both through the provider waterfall in the order the
strategy's provider plan gives.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadintel.config import settings
from leadintel.exceptions import NotConfiguredError, NotFoundError
from leadintel.models import ICP, Company, Contact, ListMember, Persona, ProspectList, utcnow
from leadintel.schemas.enums import Capability
from leadintel.schemas.icp import IcpFilters
from leadintel.schemas.providers import CompanySearchParams, UnifiedCompany
from leadintel.schemas.strategy import StrategyData
from leadintel.services.enrichment_pipeline import EnrichmentPipeline, normalize_domain
from leadintel.services.icp_scorer import score_company_fit
from leadintel.services.intelligence_scorer import IntelligenceScore, IntelligenceScorer
from leadintel.services.persona_signal_detector import title_matches
from leadintel.services.signal_detector import SignalDetector, load_client_context
from leadintel.services.strategy_cache import StrategyGenerator, strategy_options

logger = logging.getLogger(__name__)


OVER_FETCH_FACTOR = 3
DEFAULT_LIST_LIMIT = 1000

# Discovery scores provider search results, which already matched the query
DEFAULT_DISCOVERY_LIMIT = 100
DISCOVERY_FIT_FLOOR = 0.3
MAX_ENRICH_PER_DISCOVERY = 20


def contact_matches_persona(contact: Contact, persona: Persona) -> bool:
    """Every configured persona dimension must match"""
    if persona.title_patterns:
        if not contact.title or not any(title_matches(contact.title, p) for p in persona.title_patterns):
            return False
    if persona.seniority_levels:
        levels = {s.lower() for s in persona.seniority_levels}
        if not contact.seniority or contact.seniority.lower() not in levels:
            return False
    if persona.departments:
        department = (contact.department or "").lower()
        if not department or not any(d.lower() in department for d in persona.departments):
            return False
    return True


def build_search_params(filters, limit: int) -> CompanySearchParams:
    """ICP filters to a company search, over-fetching for dedup and fit filtering"""
    if not isinstance(filters, IcpFilters):
        filters = IcpFilters.model_validate(filters or {})
    return CompanySearchParams(
        industries=filters.industries,
        employee_count_min=filters.employee_count_min,
        employee_count_max=filters.employee_count_max,
        countries=filters.countries,
        keywords=filters.keywords,
        limit=limit * 2,
    )


class ListBuilder:
    """ICP + signal driven list construction"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        signal_detector: Optional[SignalDetector] = None,
        scorer: Optional[IntelligenceScorer] = None,
        strategy_generator: Optional[StrategyGenerator] = None,
        fit_floor: Optional[float] = None,
        pipeline: Optional[EnrichmentPipeline] = None
    ):
        self.session_factory = session_factory
        self.signal_detector = signal_detector
        self.scorer = scorer or IntelligenceScorer()
        self.strategy_generator = strategy_generator
        self.fit_floor = fit_floor if fit_floor is not None else settings.ICP_FIT_FLOOR
        self.pipeline = pipeline

    async def create_list(
        self,
        client_id: UUID,
        name: str,
        icp_id: Optional[UUID] = None,
        persona_id: Optional[UUID] = None
    ) -> ProspectList:
        async with self.session_factory() as session:
            async with session.begin():
                prospect_list = ProspectList(
                    client_id=client_id,
                    name=name,
                    icp_id=icp_id,
                    persona_id=persona_id,
                    type="contact" if persona_id else "company",
                )
                session.add(prospect_list)
        return prospect_list

    async def build_list(
        self,
        list_id: UUID,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
        strategy: Optional[StrategyData] = None
    ) -> Dict[str, int]:
        now = now or utcnow()
        limit = limit or DEFAULT_LIST_LIMIT

        async with self.session_factory() as session:
            prospect_list = await session.get(ProspectList, list_id)
            if prospect_list is None:
                raise NotFoundError("List", list_id)
            if prospect_list.icp_id is None:
                raise NotFoundError("ICP", None)
            icp = await session.get(ICP, prospect_list.icp_id)
            if icp is None:
                raise NotFoundError("ICP", prospect_list.icp_id)
            persona = await session.get(Persona, prospect_list.persona_id) if prospect_list.persona_id else None
            client_id = prospect_list.client_id

            companies = (await session.execute(
                select(Company)
                .where(Company.client_id == client_id)
                .order_by(Company.created_at)
                .limit(limit * OVER_FETCH_FACTOR)
            )).scalars().all()

            existing = set((await session.execute(
                select(ListMember.company_id)
                .where(ListMember.list_id == list_id)
                .where(ListMember.removed_at.is_(None))
                .where(ListMember.contact_id.is_(None))
            )).scalars().all())

            context = await load_client_context(session, client_id)

        filters = icp.filters or {}
        candidates = []
        for company in companies:
            if company.id in existing:
                continue
            fit = score_company_fit(company, filters)
            if fit.score >= self.fit_floor:
                candidates.append(company)

        logger.info(
            f"📋 List {list_id}: {len(candidates)} candidate(s) past ICP fit "
            f"({len(companies)} loaded, {len(existing)} already members)"
        )

        if strategy is None:
            strategy = await self._strategy_for(prospect_list, now)

        signals = await self._signals_for(client_id, candidates, context, now)

        scored = []
        for company in candidates:
            score = self.scorer.score_company(
                company,
                filters,
                signals.get(company.id, []),
                total_cost_credits=company.enrichment_cost_credits or 0,
                weights=strategy.scoring_weights if strategy else None,
                signal_priorities=strategy.signal_priorities if strategy else None,
                now=now,
            )
            if self.scorer.passes_floor(score):
                scored.append((company, score))

        scored.sort(key=lambda pair: pair[1].intelligence_score, reverse=True)
        scored = scored[:limit]

        contacts_added = 0
        async with self.session_factory() as session:
            async with session.begin():
                for company, score in scored:
                    await self._add_member(session, list_id, company.id, None, score, "; ".join(score.reasons), now)
                    if persona is not None:
                        contacts_added += await self._add_contacts(session, list_id, client_id, company, persona, score, now)

        await self._update_counts(list_id)
        logger.info(f"✅ List {list_id} built: {len(scored)} companies, {contacts_added} contacts added")
        return {"companies_added": len(scored), "contacts_added": contacts_added}

    async def refresh_list(self, list_id: UUID, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                prospect_list = await session.get(ProspectList, list_id)
                if prospect_list is None:
                    raise NotFoundError("List", list_id)
                members = (await session.execute(
                    select(ListMember)
                    .where(ListMember.list_id == list_id)
                    .where(ListMember.removed_at.is_(None))
                )).scalars().all()
                for member in members:
                    member.removed_at = now

        result = await self.build_list(list_id, now=now)

        async with self.session_factory() as session:
            async with session.begin():
                prospect_list = await session.get(ProspectList, list_id)
                prospect_list.last_refreshed_at = now

        logger.info(f"🔄 List {list_id} refreshed")
        return result

    async def discover_companies(
        self,
        list_id: UUID,
        limit: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Dict:
        """
        Populate a list from the providers instead of stored companies.

        Searches with the list's ICP, stores companies not seen before,
        enriches the best-fitting new ones and then builds the list. With a
        strategy generator the search and enrichment waterfalls follow the
        strategy's provider plan, capped at MAX_STRATEGY_PROVIDERS, and
        enrichment stays within max_budget_per_company.
        """
        if self.pipeline is None:
            raise NotConfiguredError("enrichment_pipeline")
        now = now or utcnow()
        limit = limit or DEFAULT_DISCOVERY_LIMIT

        async with self.session_factory() as session:
            prospect_list = await session.get(ProspectList, list_id)
            if prospect_list is None:
                raise NotFoundError("List", list_id)
            icp = await session.get(ICP, prospect_list.icp_id) if prospect_list.icp_id else None
            if icp is None:
                raise NotFoundError("ICP", prospect_list.icp_id)
            client_id = prospect_list.client_id
            known_domains = {
                d.lower() for d in (await session.execute(
                    select(Company.domain)
                    .where(Company.client_id == client_id)
                    .where(Company.domain.is_not(None))
                )).scalars().all()
            }

        strategy = await self._strategy_for(prospect_list, now)
        orchestrator = self.pipeline.orchestrator
        registered = [r.name for r in orchestrator.catalog()]
        search_options = strategy_options(strategy, Capability.COMPANY_SEARCH, registered) if strategy else None
        enrich_options = strategy_options(strategy, Capability.COMPANY_ENRICH, registered) if strategy else None

        filters = icp.filters or {}
        found = await orchestrator.search_companies(client_id, build_search_params(filters, limit), search_options)
        logger.info(
            f"🔎 Discovery for list {list_id}: {len(found.result)} companies from "
            f"{', '.join(found.providers_used) or 'no providers'}"
        )

        fits = []
        stored = 0
        for data in found.result:
            if not isinstance(data, UnifiedCompany):
                data = UnifiedCompany.model_validate(data)
            domain = normalize_domain(data.domain or data.website_url or "")
            if not domain:
                logger.debug(f"Skipping discovered company without a domain: {data.name}")
                continue
            if domain in known_domains:
                continue
            company = await self.pipeline.upsert_company(client_id, domain, data, found.providers_used)
            known_domains.add(domain)
            stored += 1
            fit = score_company_fit(company, filters)
            if fit.score >= DISCOVERY_FIT_FLOOR:
                fits.append((domain, fit.score))

        fits.sort(key=lambda pair: pair[1], reverse=True)
        to_enrich = [domain for domain, _ in fits[:min(MAX_ENRICH_PER_DISCOVERY, limit)]]

        enriched = 0
        if to_enrich:
            summary = await self.pipeline.enrich_companies(client_id, to_enrich, options=enrich_options)
            enriched = summary["enriched"]

        result = await self.build_list(list_id, limit=limit, now=now, strategy=strategy)
        logger.info(f"✅ Discovery for list {list_id}: {stored} new, {enriched} enriched")
        return {
            "companies_discovered": len(found.result),
            "companies_stored": stored,
            "companies_enriched": enriched,
            "providers_used": found.providers_used,
            "search_cost": str(found.total_cost),
            **result,
        }

    async def _strategy_for(self, prospect_list: ProspectList, now: datetime) -> Optional[StrategyData]:
        if self.strategy_generator is None or prospect_list.icp_id is None:
            return None
        return await self.strategy_generator.generate_strategy(
            prospect_list.client_id, prospect_list.icp_id, prospect_list.persona_id, now=now
        )

    async def _signals_for(self, client_id: UUID, companies: List[Company], context, now: datetime) -> Dict:
        if self.signal_detector is None or not companies:
            return {}

        signals = await self.signal_detector.get_active_signals(client_id, [c.id for c in companies], now=now)
        for company in companies:
            if company.id not in signals:
                signals[company.id] = await self.signal_detector.detect_signals(client_id, company, context, now=now)
        return signals

    @staticmethod
    async def _add_member(
        session: AsyncSession,
        list_id: UUID,
        company_id: Optional[UUID],
        contact_id: Optional[UUID],
        score: IntelligenceScore,
        reason: str,
        now: datetime
    ) -> bool:
        """Insert, or revive a soft-removed row; False when already an active member"""
        query = select(ListMember).where(ListMember.list_id == list_id)
        query = query.where(ListMember.company_id == company_id) if company_id else query.where(ListMember.company_id.is_(None))
        query = query.where(ListMember.contact_id == contact_id) if contact_id else query.where(ListMember.contact_id.is_(None))
        member = (await session.execute(query.limit(1))).scalar_one_or_none()

        if member is not None and member.removed_at is None:
            return False
        if member is None:
            member = ListMember(list_id=list_id, company_id=company_id, contact_id=contact_id)
            session.add(member)

        member.removed_at = None
        member.added_at = now
        member.icp_fit_score = score.icp_fit_score
        member.signal_score = score.signal_score
        member.originality_score = score.originality_score
        member.intelligence_score = score.intelligence_score
        member.added_reason = reason
        await session.flush()
        return True

    async def _add_contacts(self, session, list_id, client_id, company, persona, score, now) -> int:
        contacts = (await session.execute(
            select(Contact)
            .where(Contact.client_id == client_id)
            .where(Contact.company_id == company.id)
        )).scalars().all()

        added = 0
        for contact in contacts:
            if not contact_matches_persona(contact, persona):
                continue
            reason = f"{'; '.join(score.reasons[:3])} | Title: {contact.title}"
            if await self._add_member(session, list_id, company.id, contact.id, score, reason, now):
                added += 1
        return added

    async def _update_counts(self, list_id: UUID):
        async with self.session_factory() as session:
            async with session.begin():
                rows = (await session.execute(
                    select(ListMember.company_id, ListMember.contact_id)
                    .where(ListMember.list_id == list_id)
                    .where(ListMember.removed_at.is_(None))
                )).all()
                company_total = len({r.company_id for r in rows if r.company_id is not None and r.contact_id is None})
                contact_total = len({r.contact_id for r in rows if r.contact_id is not None})

                prospect_list = await session.get(ProspectList, list_id)
                prospect_list.company_count = company_total
                prospect_list.contact_count = contact_total
                prospect_list.member_count = company_total + contact_total
