# backend/leadintel/services/enrichment_pipeline.py
"""
Enrichment Pipeline

Turns raw domains into stored, enriched companies and discovers contacts
for them:

1. company_enrich waterfall per domain
2. upsert by (client_id, domain), appending provenance to `sources`
3. people_search for the company, email_find when missing, email_verify
4. upsert contacts by LinkedIn URL, then work email

Items run in windows of ENRICHMENT_BATCH_SIZE. A failed item is recorded on
the job and never stops its siblings; the job only fails when every item
failed.
"""

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadintel.config import settings
from leadintel.exceptions import InsufficientCreditsError, NotFoundError
from leadintel.models import Company, Contact, Job, Persona, utcnow
from leadintel.schemas.enums import EmailVerificationStatus, JobStatus
from leadintel.schemas.providers import (
    EmailFindParams, PeopleSearchParams, UnifiedCompany, UnifiedContact
)
from leadintel.services.batch_processor import BatchProcessor
from leadintel.services.provider_orchestrator import ProviderOrchestrator, WaterfallOptions
from leadintel.services.timeliness import parse_event_date

logger = logging.getLogger(__name__)


COMPANY_FIELDS = [
    "name", "linkedin_url", "website_url", "industry", "sub_industry",
    "description", "employee_count", "employee_range", "annual_revenue",
    "revenue_range", "founded_year", "total_funding", "latest_funding_stage",
    "city", "state", "country", "address",
]

CONTACT_FIELDS = [
    "first_name", "last_name", "full_name", "linkedin_url", "title",
    "seniority", "department", "work_email", "personal_email", "phone",
    "city", "country",
]


def normalize_domain(domain: str) -> str:
    domain = (domain or "").strip().lower()
    for prefix in ("https://", "http://"):
        if domain.startswith(prefix):
            domain = domain[len(prefix):]
    if domain.startswith("www."):
        domain = domain[4:]
    return domain.split("/")[0]


def _source_records(providers: List[str], fields: List[str], now: datetime) -> List[Dict]:
    return [
        {"source": p, "fetched_at": now.isoformat(), "fields_provided": fields}
        for p in providers
    ]


def _populated(model, names: List[str]) -> List[str]:
    return [n for n in names if getattr(model, n, None) not in (None, "", [])]


class EnrichmentPipeline:
    """Company enrichment and contact discovery with job tracking"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        orchestrator: ProviderOrchestrator,
        window_size: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator
        self.window_size = window_size or settings.ENRICHMENT_BATCH_SIZE

    # ========================================================================
    # JOBS
    # ========================================================================

    async def create_job(self, client_id: UUID, job_type: str, input_data: Optional[Dict] = None) -> Job:
        async with self.session_factory() as session:
            async with session.begin():
                job = Job(
                    client_id=client_id,
                    type=job_type,
                    status=JobStatus.PENDING.value,
                    input=input_data or {},
                    errors=[],
                )
                session.add(job)
        return job

    async def get_job(self, job_id: UUID) -> Job:
        async with self.session_factory() as session:
            job = await session.get(Job, job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def _start_job(self, job_id: UUID, total: int):
        async with self.session_factory() as session:
            async with session.begin():
                job = await session.get(Job, job_id)
                if job is None:
                    raise NotFoundError("Job", job_id)
                job.status = JobStatus.RUNNING.value
                job.started_at = utcnow()
                job.total_items = total
                job.processed_items = 0
                job.failed_items = 0
                job.errors = []

    async def _update_progress(self, job_id: UUID, processed: int, failed: int, errors: List[Dict]):
        async with self.session_factory() as session:
            async with session.begin():
                job = await session.get(Job, job_id)
                job.processed_items = processed
                job.failed_items = failed
                job.errors = list(errors)

    async def _finish_job(self, job_id: UUID, total: int, processed: int, failed: int,
                          errors: List[Dict], output: Dict):
        status = JobStatus.FAILED if total > 0 and failed == total else JobStatus.COMPLETED
        async with self.session_factory() as session:
            async with session.begin():
                job = await session.get(Job, job_id)
                job.status = status.value
                job.processed_items = processed
                job.failed_items = failed
                job.errors = list(errors)
                job.output = output
                job.completed_at = utcnow()

        icon = "✅" if status == JobStatus.COMPLETED else "❌"
        logger.info(f"{icon} Job {job_id} {status.value}: {processed} processed, {failed} failed")

    async def _run_job(self, job_id: UUID, items: List[Any], process_func, describe=str) -> Dict:
        """Window the items, track per-item errors, return counts"""
        await self._start_job(job_id, len(items))
        errors: List[Dict] = []
        counts = {"processed": 0, "failed": 0, "insufficient_credits": False}
        offset = {"value": 0}

        async def on_window_complete(window_num, total_windows, window_results):
            window_items = items[offset["value"]:offset["value"] + len(window_results)]
            offset["value"] += len(window_results)
            for item, result in zip(window_items, window_results):
                if isinstance(result, Exception):
                    counts["failed"] += 1
                    if isinstance(result, InsufficientCreditsError):
                        counts["insufficient_credits"] = True
                    errors.append({
                        "item": describe(item),
                        "error": str(result),
                        "timestamp": utcnow().isoformat(),
                    })
                else:
                    counts["processed"] += 1
            await self._update_progress(job_id, counts["processed"], counts["failed"], errors)

        processor = BatchProcessor(window_size=self.window_size)
        results = await processor.process_in_windows(items, process_func, on_window_complete)
        counts["results"] = results
        counts["errors"] = errors
        return counts

    # ========================================================================
    # COMPANIES
    # ========================================================================

    async def enrich_companies(
        self,
        client_id: UUID,
        domains: List[str],
        job_id: Optional[UUID] = None,
        options: Optional[WaterfallOptions] = None
    ) -> Dict:
        """Enrich and upsert each domain; returns the job summary"""
        unique_domains = list(dict.fromkeys(d for d in (normalize_domain(x) for x in domains) if d))
        if job_id is None:
            job = await self.create_job(client_id, "company_enrichment", {"domains": unique_domains})
            job_id = job.id

        logger.info(f"🚀 Enriching {len(unique_domains)} domain(s) for client {client_id}")

        async def enrich_one(domain: str) -> Company:
            return await self.enrich_company(client_id, domain, job_id=job_id, options=options)

        counts = await self._run_job(job_id, unique_domains, enrich_one)

        companies = [r for r in counts["results"] if isinstance(r, Company)]
        total_cost = sum((c.enrichment_cost_credits or Decimal("0") for c in companies), Decimal("0"))
        summary = {
            "job_id": str(job_id),
            "total": len(unique_domains),
            "enriched": counts["processed"],
            "failed": counts["failed"],
            "insufficient_credits": counts["insufficient_credits"],
            "company_ids": [str(c.id) for c in companies],
        }
        await self._finish_job(
            job_id, len(unique_domains), counts["processed"], counts["failed"], counts["errors"],
            {**summary, "total_cost": str(total_cost)}
        )
        return summary

    async def enrich_company(
        self,
        client_id: UUID,
        domain: str,
        job_id: Optional[UUID] = None,
        options: Optional[WaterfallOptions] = None
    ) -> Company:
        domain = normalize_domain(domain)
        outcome = await self.orchestrator.enrich_company(
            client_id, domain=domain, options=replace(options or WaterfallOptions(), job_id=job_id)
        )
        if not outcome.success:
            raise LookupError(f"No provider returned data for {domain}")

        data = outcome.result
        if not isinstance(data, UnifiedCompany):
            data = UnifiedCompany.model_validate(data)
        return await self.upsert_company(client_id, domain, data, outcome.providers_used, outcome.total_cost)

    async def upsert_company(
        self,
        client_id: UUID,
        domain: str,
        data: UnifiedCompany,
        providers_used: List[str],
        cost: Decimal = Decimal("0")
    ) -> Company:
        now = utcnow()
        fields = _populated(data, COMPANY_FIELDS + ["tech_stack"])

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Company)
                    .where(Company.client_id == client_id)
                    .where(Company.domain == domain)
                    .with_for_update()
                )
                company = result.scalar_one_or_none()
                if company is None:
                    company = Company(
                        client_id=client_id,
                        domain=domain,
                        name=data.name or domain,
                        sources=[],
                        tech_stack=[],
                        external_ids={},
                        enrichment_cost_credits=Decimal("0"),
                    )
                    session.add(company)

                # Enrichment never blanks a field a previous provider filled
                for name in COMPANY_FIELDS:
                    value = getattr(data, name, None)
                    if value not in (None, ""):
                        setattr(company, name, value)

                company.latest_funding_date = parse_event_date(data.latest_funding_date) or company.latest_funding_date
                company.tech_stack = list(dict.fromkeys((company.tech_stack or []) + data.tech_stack))
                company.external_ids = {**(company.external_ids or {}), **data.external_ids}
                company.sources = (company.sources or []) + _source_records(providers_used, fields, now)
                if not company.primary_source and providers_used:
                    company.primary_source = providers_used[0]
                company.enrichment_cost_credits = (company.enrichment_cost_credits or Decimal("0")) + cost
                company.enrichment_score = round(
                    len(_populated(company, COMPANY_FIELDS)) / len(COMPANY_FIELDS), 2
                )
                company.last_enriched_at = now

        logger.info(f"🏢 {domain} enriched via {', '.join(providers_used)}")
        return company

    # ========================================================================
    # CONTACTS
    # ========================================================================

    async def discover_contacts(
        self,
        client_id: UUID,
        company: Company,
        persona: Optional[Persona] = None,
        limit: int = 10,
        find_emails: bool = True,
        verify_emails: bool = True,
        job_id: Optional[UUID] = None
    ) -> List[Contact]:
        if not company.domain:
            return []

        params = PeopleSearchParams(
            company_domains=[company.domain],
            title_patterns=(persona.title_patterns or []) if persona else [],
            seniority_levels=(persona.seniority_levels or []) if persona else [],
            departments=(persona.departments or []) if persona else [],
            limit=limit,
        )
        options = WaterfallOptions(job_id=job_id)
        found = await self.orchestrator.search_people(client_id, params, options)
        logger.info(f"👥 {len(found.result)} people found at {company.domain}")

        contacts = []
        for person in found.result:
            if not isinstance(person, UnifiedContact):
                person = UnifiedContact.model_validate(person)
            sources = list(found.providers_used)

            if find_emails and not person.work_email and person.first_name and person.last_name:
                email = await self.orchestrator.find_email(client_id, EmailFindParams(
                    first_name=person.first_name,
                    last_name=person.last_name,
                    company_domain=company.domain,
                ), options)
                if email.success:
                    person = person.model_copy(update={"work_email": email.result.email})
                    sources.extend(email.providers_used)

            status = None
            if verify_emails and person.work_email:
                verification = await self.orchestrator.verify_email(client_id, person.work_email, options)
                if verification.success:
                    status = verification.result.status

            contacts.append(await self.upsert_contact(client_id, company.id, person, status, sources))

        return contacts

    async def discover_contacts_for_companies(
        self,
        client_id: UUID,
        company_ids: List[UUID],
        persona_id: Optional[UUID] = None,
        job_id: Optional[UUID] = None
    ) -> Dict:
        """Batch contact discovery as a tracked job"""
        async with self.session_factory() as session:
            persona = await session.get(Persona, persona_id) if persona_id else None
            if persona_id and persona is None:
                raise NotFoundError("Persona", persona_id)
            companies = (await session.execute(
                select(Company).where(Company.id.in_(company_ids))
            )).scalars().all()

        if job_id is None:
            job = await self.create_job(client_id, "contact_discovery", {
                "company_ids": [str(c) for c in company_ids],
                "persona_id": str(persona_id) if persona_id else None,
            })
            job_id = job.id

        async def discover(company: Company) -> List[Contact]:
            return await self.discover_contacts(client_id, company, persona, job_id=job_id)

        counts = await self._run_job(job_id, list(companies), discover, describe=lambda c: c.domain or str(c.id))
        discovered = sum(len(r) for r in counts["results"] if isinstance(r, list))
        summary = {
            "job_id": str(job_id),
            "companies_searched": counts["processed"],
            "failed": counts["failed"],
            "contacts_discovered": discovered,
            "insufficient_credits": counts["insufficient_credits"],
        }
        await self._finish_job(
            job_id, len(companies), counts["processed"], counts["failed"], counts["errors"], summary
        )
        return summary

    async def upsert_contact(
        self,
        client_id: UUID,
        company_id: Optional[UUID],
        data: UnifiedContact,
        verification_status: Optional[str] = None,
        providers_used: Optional[List[str]] = None
    ) -> Contact:
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                contact = await self._find_contact(session, client_id, data)
                previous_email = contact.work_email if contact is not None else None
                if contact is None:
                    contact = Contact(client_id=client_id, company_id=company_id, sources=[], external_ids={})
                    session.add(contact)

                for name in CONTACT_FIELDS:
                    value = getattr(data, name, None)
                    if value not in (None, ""):
                        setattr(contact, name, value)
                if not contact.full_name:
                    contact.full_name = " ".join(filter(None, [data.first_name, data.last_name])) or None
                if data.employment_history:
                    contact.employment_history = [e.model_dump() for e in data.employment_history]
                contact.external_ids = {**(contact.external_ids or {}), **data.external_ids}
                contact.sources = (contact.sources or []) + _source_records(
                    list(dict.fromkeys(providers_used or [])), _populated(data, CONTACT_FIELDS), now
                )
                if company_id and not contact.company_id:
                    contact.company_id = company_id

                # No verification result keeps the prior status unless the email itself changed
                if verification_status is not None:
                    contact.email_verification_status = verification_status
                    if verification_status != EmailVerificationStatus.UNVERIFIED.value:
                        contact.email_verified_at = now
                elif not contact.email_verification_status or (previous_email and contact.work_email != previous_email):
                    contact.email_verification_status = EmailVerificationStatus.UNVERIFIED.value
                    contact.email_verified_at = None
                contact.last_enriched_at = now
        return contact

    @staticmethod
    async def _find_contact(session: AsyncSession, client_id: UUID, data: UnifiedContact) -> Optional[Contact]:
        """LinkedIn URL first, then work email"""
        for column, value in ((Contact.linkedin_url, data.linkedin_url), (Contact.work_email, data.work_email)):
            if not value:
                continue
            result = await session.execute(
                select(Contact)
                .where(Contact.client_id == client_id)
                .where(column == value)
                .limit(1)
            )
            contact = result.scalar_one_or_none()
            if contact is not None:
                return contact
        return None
