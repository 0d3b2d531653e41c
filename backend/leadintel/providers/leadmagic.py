# backend/leadintel/providers/leadmagic.py
"""LeadMagic adapter: company/person enrichment and email finding."""

from typing import Dict
import logging

from leadintel.exceptions import ProviderError
from leadintel.providers.base import BaseProvider, get_populated_fields
from leadintel.schemas.enums import Capability
from leadintel.schemas.providers import (
    CompanyEnrichParams,
    EmailFindParams,
    EmailFindResult,
    PeopleEnrichParams,
    ProviderResponse,
    UnifiedCompany,
    UnifiedContact,
)

logger = logging.getLogger(__name__)


def map_company(raw: Dict) -> UnifiedCompany:
    return UnifiedCompany(
        name=raw.get("company_name") or "",
        domain=raw.get("domain"),
        linkedin_url=raw.get("linkedin_url"),
        website_url=raw.get("website"),
        industry=raw.get("industry"),
        employee_count=raw.get("employee_count"),
        employee_range=raw.get("employee_range"),
        annual_revenue=raw.get("revenue"),
        revenue_range=raw.get("revenue_range"),
        founded_year=raw.get("founded_year"),
        total_funding=raw.get("total_funding"),
        latest_funding_stage=raw.get("funding_stage"),
        city=raw.get("city"),
        state=raw.get("state"),
        country=raw.get("country"),
        address=raw.get("address"),
        description=raw.get("description"),
        phone=raw.get("phone"),
        logo_url=raw.get("logo_url"),
        tech_stack=raw.get("technologies") or [],
    )


def map_person(raw: Dict) -> UnifiedContact:
    return UnifiedContact(
        first_name=raw.get("first_name"),
        last_name=raw.get("last_name"),
        full_name=raw.get("full_name"),
        linkedin_url=raw.get("linkedin_url"),
        photo_url=raw.get("photo_url"),
        title=raw.get("title"),
        seniority=raw.get("seniority"),
        department=raw.get("department"),
        company_name=raw.get("company_name"),
        company_domain=raw.get("company_domain"),
        work_email=raw.get("work_email"),
        personal_email=raw.get("personal_email"),
        phone=raw.get("phone"),
        mobile_phone=raw.get("mobile_phone"),
        city=raw.get("city"),
        state=raw.get("state"),
        country=raw.get("country"),
    )


class LeadMagicProvider(BaseProvider):
    name = "leadmagic"
    display_name = "LeadMagic"
    base_url = "https://api.leadmagic.io"
    capabilities = frozenset({
        Capability.COMPANY_ENRICH,
        Capability.PEOPLE_ENRICH,
        Capability.EMAIL_FIND,
    })

    def get_auth_headers(self) -> Dict[str, str]:
        return {
            "X-API-Key": self.api_key,
            "Content-Type": "application/json",
        }

    async def enrich_company(self, params: CompanyEnrichParams) -> ProviderResponse:
        body = {}
        if params.domain:
            body["domain"] = params.domain
        if params.name:
            body["company_name"] = params.name

        try:
            raw = await self._request("POST", "/company/enrich", json=body)
        except ProviderError as e:
            return self._failure("company enrichment", e)

        if not raw.get("success") or not raw.get("data"):
            return ProviderResponse.failure(raw.get("error") or "No data returned")

        company = map_company(raw["data"])
        fields = get_populated_fields(company.model_dump())
        return ProviderResponse(
            success=True,
            data=company,
            credits_consumed=1,
            fields_populated=fields,
            quality_score=min(len(fields) / 15, 1.0),
        )

    async def enrich_person(self, params: PeopleEnrichParams) -> ProviderResponse:
        body = {
            key: value
            for key, value in {
                "linkedin_url": params.linkedin_url,
                "email": params.email,
                "first_name": params.first_name,
                "last_name": params.last_name,
                "company_domain": params.company_domain,
            }.items()
            if value
        }

        try:
            raw = await self._request("POST", "/people/enrich", json=body)
        except ProviderError as e:
            return self._failure("person enrichment", e)

        if not raw.get("success") or not raw.get("data"):
            return ProviderResponse.failure(raw.get("error") or "No data returned")

        contact = map_person(raw["data"])
        fields = get_populated_fields(contact.model_dump())
        return ProviderResponse(
            success=True,
            data=contact,
            credits_consumed=1,
            fields_populated=fields,
            quality_score=min(len(fields) / 12, 1.0),
        )

    async def find_email(self, params: EmailFindParams) -> ProviderResponse:
        body = {
            "first_name": params.first_name,
            "last_name": params.last_name,
            "domain": params.company_domain,
        }

        try:
            raw = await self._request("POST", "/email/find", json=body)
        except ProviderError as e:
            return self._failure("email find", e)

        data = raw.get("data") or {}
        if not raw.get("success") or not data.get("email"):
            return ProviderResponse.failure(raw.get("error") or "Email not found")

        confidence = float(data.get("confidence") or 0)
        return ProviderResponse(
            success=True,
            data=EmailFindResult(email=data["email"], confidence=confidence),
            credits_consumed=1,
            fields_populated=["email"],
            quality_score=confidence / 100,
        )
