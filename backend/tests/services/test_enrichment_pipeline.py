# tests/services/test_enrichment_pipeline.py
"""
Tests for the enrichment pipeline

Coverage:
- Domain normalization and deduplication
- Job tracking: per-item errors, failed only when everything failed
- Insufficient credits surfaced on the job summary
- Company upsert merges provider data and provenance
- Contact discovery: email find/verify, dedupe by LinkedIn URL then work email

The provider waterfall is mocked; the database is real.

Run with: pytest backend/tests/services/test_enrichment_pipeline.py -v
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, Mock
from uuid import UUID, uuid4

import pytest

from leadintel.exceptions import InsufficientCreditsError, NotFoundError
from leadintel.models import Company, Contact, Job
from leadintel.schemas.providers import (
    EmailFindResult, EmailVerificationResult, UnifiedCompany, UnifiedContact
)
from leadintel.services.enrichment_pipeline import EnrichmentPipeline, normalize_domain
from leadintel.services.provider_orchestrator import ProviderOrchestrator, WaterfallOptions, WaterfallResult


@pytest.fixture
def orchestrator():
    mock = Mock(spec=ProviderOrchestrator)
    mock.enrich_company = AsyncMock()
    mock.search_people = AsyncMock(return_value=WaterfallResult(result=[]))
    mock.find_email = AsyncMock(return_value=WaterfallResult(result=None))
    mock.verify_email = AsyncMock(return_value=WaterfallResult(result=None))
    return mock


@pytest.fixture
def pipeline(session_factory, orchestrator):
    return EnrichmentPipeline(session_factory, orchestrator, window_size=2)


def enriched(name, providers=("apollo",), cost="1", **fields):
    return WaterfallResult(
        result=UnifiedCompany(name=name, **fields),
        providers_used=list(providers),
        total_cost=Decimal(cost),
    )


def by_domain(results):
    async def enrich_company(client_id, domain=None, name=None, options=None):
        outcome = results[domain]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
    return enrich_company


def uuid_of(summary):
    return UUID(summary["job_id"])


# ============================================================================
# TEST: DOMAINS
# ============================================================================

@pytest.mark.parametrize("raw, expected", [
    ("https://www.Acme.com/about", "acme.com"),
    ("http://globex.io", "globex.io"),
    ("  initech.com ", "initech.com"),
    ("", ""),
])
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


# ============================================================================
# TEST: COMPANY JOBS
# ============================================================================

class TestEnrichCompanies:

    async def test_partial_failure_completes_job(self, pipeline, orchestrator, factory, client):
        orchestrator.enrich_company.side_effect = by_domain({
            "acme.com": enriched("Acme", cost="1.5", industry="Software", employee_count=120),
            "globex.io": WaterfallResult(result=None),
        })

        summary = await pipeline.enrich_companies(
            client.id, ["https://www.Acme.com/about", "acme.com", "globex.io", ""]
        )

        assert summary["total"] == 2
        assert summary["enriched"] == 1
        assert summary["failed"] == 1
        assert summary["insufficient_credits"] is False
        assert orchestrator.enrich_company.await_count == 2

        job = await factory.get(Job, uuid_of(summary))
        assert job.status == "completed"
        assert (job.total_items, job.processed_items, job.failed_items) == (2, 1, 1)
        assert job.errors[0]["item"] == "globex.io"
        assert "No provider returned data" in job.errors[0]["error"]
        assert job.output["total_cost"] == "1.5"
        assert job.completed_at is not None

    async def test_job_id_passed_to_waterfall(self, pipeline, orchestrator, client):
        orchestrator.enrich_company.side_effect = by_domain({"acme.com": enriched("Acme")})
        job = await pipeline.create_job(client.id, "company_enrichment")

        await pipeline.enrich_companies(client.id, ["acme.com"], job_id=job.id)

        assert orchestrator.enrich_company.await_args.kwargs["options"].job_id == job.id

    async def test_caller_options_reach_waterfall(self, pipeline, orchestrator, client):
        orchestrator.enrich_company.side_effect = by_domain({"acme.com": enriched("Acme")})

        summary = await pipeline.enrich_companies(client.id, ["acme.com"], options=WaterfallOptions(
            provider_override=["prospeo", "apollo"], max_providers=2, max_cost=Decimal("3"),
        ))

        options = orchestrator.enrich_company.await_args.kwargs["options"]
        assert options.provider_override == ["prospeo", "apollo"]
        assert options.max_providers == 2
        assert options.max_cost == Decimal("3")
        assert options.job_id == uuid_of(summary)

    async def test_all_failed_fails_job(self, pipeline, orchestrator, factory, client):
        orchestrator.enrich_company.side_effect = by_domain({
            "acme.com": RuntimeError("provider exploded"),
            "globex.io": WaterfallResult(result=None),
        })

        summary = await pipeline.enrich_companies(client.id, ["acme.com", "globex.io"])

        job = await factory.get(Job, uuid_of(summary))
        assert job.status == "failed"
        assert job.failed_items == 2
        assert await factory.all(Company) == []

    async def test_insufficient_credits_flagged(self, pipeline, orchestrator, factory, client):
        orchestrator.enrich_company.side_effect = by_domain({
            "acme.com": enriched("Acme"),
            "globex.io": InsufficientCreditsError(client.id, Decimal("1"), Decimal("0")),
        })

        summary = await pipeline.enrich_companies(client.id, ["acme.com", "globex.io"])

        assert summary["insufficient_credits"] is True
        job = await factory.get(Job, uuid_of(summary))
        assert job.status == "completed"
        assert "Insufficient credits" in job.errors[0]["error"]

    async def test_empty_input(self, pipeline, factory, client):
        summary = await pipeline.enrich_companies(client.id, ["", "   "])

        assert summary["total"] == 0
        assert (await factory.get(Job, uuid_of(summary))).status == "completed"

    async def test_get_job(self, pipeline, client):
        job = await pipeline.create_job(client.id, "company_enrichment", {"domains": ["acme.com"]})

        assert (await pipeline.get_job(job.id)).status == "pending"
        with pytest.raises(NotFoundError):
            await pipeline.get_job(uuid4())


# ============================================================================
# TEST: COMPANY UPSERT
# ============================================================================

class TestUpsertCompany:

    async def test_merges_providers(self, pipeline, factory, client):
        await pipeline.upsert_company(client.id, "acme.com", UnifiedCompany(
            name="Acme", industry="Software", description="Payments", tech_stack=["Slack"],
            external_ids={"apollo": "a-1"}, latest_funding_date="2024-05",
        ), ["apollo"], Decimal("1"))

        company = await pipeline.upsert_company(client.id, "acme.com", UnifiedCompany(
            name="Acme Inc", country="US", tech_stack=["Slack", "Zoom"], external_ids={"prospeo": "p-9"},
        ), ["prospeo"], Decimal("0.5"))

        rows = await factory.all(Company)
        assert len(rows) == 1
        stored = rows[0]
        assert stored.id == company.id
        assert stored.name == "Acme Inc"
        assert stored.industry == "Software"
        assert stored.country == "US"
        assert stored.tech_stack == ["Slack", "Zoom"]
        assert stored.external_ids == {"apollo": "a-1", "prospeo": "p-9"}
        assert [s["source"] for s in stored.sources] == ["apollo", "prospeo"]
        assert stored.primary_source == "apollo"
        assert stored.enrichment_cost_credits == Decimal("1.5")
        assert stored.latest_funding_date == datetime(2024, 5, 1)

    async def test_enrichment_score_is_field_coverage(self, pipeline, client):
        company = await pipeline.upsert_company(
            client.id, "acme.com", UnifiedCompany(name="Acme", industry="Software", employee_count=120), ["apollo"]
        )
        assert company.enrichment_score == 0.18

    async def test_same_domain_other_client_is_separate(self, pipeline, factory, client):
        other = await factory.client()

        await pipeline.upsert_company(client.id, "acme.com", UnifiedCompany(name="Acme"), ["apollo"])
        await pipeline.upsert_company(other.id, "acme.com", UnifiedCompany(name="Acme"), ["apollo"])

        assert len(await factory.all(Company)) == 2


# ============================================================================
# TEST: CONTACTS
# ============================================================================

class TestDiscoverContacts:

    @pytest.fixture
    def people(self, orchestrator):
        orchestrator.search_people.return_value = WaterfallResult(
            result=[
                UnifiedContact(first_name="Ada", last_name="Lovelace", title="CFO",
                               linkedin_url="https://linkedin.com/in/ada"),
                UnifiedContact(first_name="Grace", last_name="Hopper", work_email="grace@acme.com",
                               linkedin_url="https://linkedin.com/in/grace"),
            ],
            providers_used=["apollo"],
        )
        orchestrator.find_email.return_value = WaterfallResult(
            result=EmailFindResult(email="ada@acme.com", confidence=0.9), providers_used=["leadmagic"]
        )

        async def verify(client_id, email, options=None):
            status = "valid" if email == "ada@acme.com" else "catch_all"
            return WaterfallResult(
                result=EmailVerificationResult(email=email, status=status, provider="prospeo"),
                providers_used=["prospeo"],
            )

        orchestrator.verify_email.side_effect = verify
        return orchestrator

    async def test_finds_and_verifies_emails(self, pipeline, people, factory, client):
        company = await factory.company(client, domain="acme.com")
        persona = await factory.persona(client, title_patterns=["CFO"], seniority_levels=["c_suite"])

        contacts = await pipeline.discover_contacts(client.id, company, persona)

        params = people.search_people.await_args.args[1]
        assert params.company_domains == ["acme.com"]
        assert params.title_patterns == ["CFO"]
        assert people.find_email.await_count == 1

        ada, grace = contacts
        assert ada.work_email == "ada@acme.com"
        assert ada.email_verification_status == "valid"
        assert ada.email_verified_at is not None
        assert ada.full_name == "Ada Lovelace"
        assert ada.company_id == company.id
        assert [s["source"] for s in ada.sources] == ["apollo", "leadmagic"]
        assert grace.email_verification_status == "catch_all"

    async def test_rediscovery_does_not_duplicate(self, pipeline, people, factory, client):
        company = await factory.company(client, domain="acme.com")

        await pipeline.discover_contacts(client.id, company)
        await pipeline.discover_contacts(client.id, company)

        assert len(await factory.all(Contact)) == 2

    async def test_skip_email_steps(self, pipeline, people, factory, client):
        company = await factory.company(client, domain="acme.com")

        contacts = await pipeline.discover_contacts(
            client.id, company, find_emails=False, verify_emails=False
        )

        people.find_email.assert_not_awaited()
        people.verify_email.assert_not_awaited()
        assert contacts[0].work_email is None
        assert all(c.email_verification_status == "unverified" for c in contacts)

    async def test_failed_verification_keeps_prior_status(self, pipeline, orchestrator, factory, client):
        company = await factory.company(client, domain="acme.com")
        existing = await factory.contact(
            client, company, linkedin_url="https://linkedin.com/in/ada", work_email="ada@acme.com",
            email_verification_status="valid",
        )
        orchestrator.search_people.return_value = WaterfallResult(
            result=[UnifiedContact(first_name="Ada", work_email="ada@acme.com",
                                   linkedin_url="https://linkedin.com/in/ada")],
            providers_used=["apollo"],
        )

        await pipeline.discover_contacts(client.id, company)

        orchestrator.verify_email.assert_awaited_once()
        assert (await factory.get(Contact, existing.id)).email_verification_status == "valid"

    async def test_company_without_domain(self, pipeline, orchestrator, factory, client):
        company = await factory.company(client, domain=None)

        assert await pipeline.discover_contacts(client.id, company) == []
        orchestrator.search_people.assert_not_awaited()

    async def test_batch_job(self, pipeline, people, factory, client):
        first = await factory.company(client, domain="acme.com")
        second = await factory.company(client, domain=None)

        summary = await pipeline.discover_contacts_for_companies(client.id, [first.id, second.id])

        assert summary["companies_searched"] == 2
        assert summary["contacts_discovered"] == 2
        job = await factory.get(Job, uuid_of(summary))
        assert job.type == "contact_discovery"
        assert job.status == "completed"

    async def test_unknown_persona(self, pipeline, factory, client):
        company = await factory.company(client)

        with pytest.raises(NotFoundError):
            await pipeline.discover_contacts_for_companies(client.id, [company.id], persona_id=uuid4())


class TestUpsertContact:

    async def test_matches_by_work_email_without_linkedin(self, pipeline, factory, client):
        company = await factory.company(client)
        existing = await factory.contact(client, company, linkedin_url=None, work_email="ada@acme.com")

        contact = await pipeline.upsert_contact(
            client.id, company.id, UnifiedContact(work_email="ada@acme.com", title="CFO")
        )

        assert contact.id == existing.id
        assert (await factory.get(Contact, existing.id)).title == "CFO"

    async def test_keeps_verification_when_no_new_result(self, pipeline, factory, client):
        company = await factory.company(client)
        verified_at = datetime(2025, 1, 1)
        existing = await factory.contact(
            client, company, linkedin_url="https://linkedin.com/in/ada", work_email="ada@acme.com",
            email_verification_status="valid", email_verified_at=verified_at,
        )

        await pipeline.upsert_contact(client.id, company.id, UnifiedContact(
            linkedin_url="https://linkedin.com/in/ada", work_email="ada@acme.com", title="CFO",
        ))

        stored = await factory.get(Contact, existing.id)
        assert stored.title == "CFO"
        assert stored.email_verification_status == "valid"
        assert stored.email_verified_at == verified_at

    async def test_changed_email_resets_verification(self, pipeline, factory, client):
        company = await factory.company(client)
        existing = await factory.contact(
            client, company, linkedin_url="https://linkedin.com/in/ada", work_email="ada@acme.com",
            email_verification_status="valid", email_verified_at=datetime(2025, 1, 1),
        )

        await pipeline.upsert_contact(client.id, company.id, UnifiedContact(
            linkedin_url="https://linkedin.com/in/ada", work_email="ada@globex.io",
        ))

        stored = await factory.get(Contact, existing.id)
        assert stored.work_email == "ada@globex.io"
        assert stored.email_verification_status == "unverified"
        assert stored.email_verified_at is None

    async def test_employment_history_stored_as_dicts(self, pipeline, factory, client):
        contact = await pipeline.upsert_contact(client.id, None, UnifiedContact.model_validate({
            "linkedin_url": "https://linkedin.com/in/ada",
            "employment_history": [{"company": "Acme", "title": "CFO", "is_current": True}],
        }))

        stored = await factory.get(Contact, contact.id)
        assert stored.employment_history[0]["title"] == "CFO"
        assert stored.email_verification_status == "unverified"
