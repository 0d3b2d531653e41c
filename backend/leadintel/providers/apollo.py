# backend/leadintel/providers/apollo.py
"""
Apollo.io adapter
1. Company search / enrichment
2. People search / match
"""

from typing import Dict, Optional
import logging
import re

from leadintel.exceptions import ProviderError
from leadintel.providers.base import BaseProvider, get_populated_fields
from leadintel.schemas.enums import Capability
from leadintel.schemas.providers import (
    CompanyEnrichParams,
    CompanySearchParams,
    EmploymentRecord,
    PeopleEnrichParams,
    PeopleSearchParams,
    ProviderResponse,
    UnifiedCompany,
    UnifiedContact,
)

logger = logging.getLogger(__name__)


SENIORITY_MAP = {
    "c_suite": "c_suite",
    "owner": "c_suite",
    "founder": "c_suite",
    "partner": "c_suite",
    "vp": "vp",
    "vice_president": "vp",
    "director": "director",
    "manager": "manager",
    "senior": "senior",
    "entry": "entry",
    "intern": "entry",
}


def normalize_seniority(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return SENIORITY_MAP.get(raw.lower(), raw.lower())


def map_organization(raw: Dict) -> UnifiedCompany:
    domain = raw.get("primary_domain")
    if not domain and raw.get("website_url"):
        domain = re.sub(r"^https?://", "", raw["website_url"]).split("/")[0]

    return UnifiedCompany(
        name=raw.get("name") or "",
        domain=domain,
        linkedin_url=raw.get("linkedin_url"),
        website_url=raw.get("website_url"),
        industry=raw.get("industry"),
        sub_industry=raw.get("sub_industry"),
        employee_count=raw.get("estimated_num_employees"),
        employee_range=raw.get("employee_range"),
        annual_revenue=raw.get("annual_revenue"),
        founded_year=raw.get("founded_year"),
        total_funding=raw.get("total_funding"),
        latest_funding_stage=raw.get("latest_funding_stage"),
        latest_funding_date=raw.get("latest_funding_round_date"),
        city=raw.get("city"),
        state=raw.get("state"),
        country=raw.get("country"),
        address=raw.get("street_address"),
        tech_stack=raw.get("technology_names") or [],
        logo_url=raw.get("logo_url"),
        description=raw.get("short_description"),
        phone=raw.get("phone"),
        external_ids={"apollo": raw["id"]} if raw.get("id") else {},
    )


def map_person(raw: Dict) -> UnifiedContact:
    organization = raw.get("organization") or {}
    phones = raw.get("phone_numbers") or []

    def phone_of(kind: str) -> Optional[str]:
        for phone in phones:
            if phone.get("type") == kind:
                return phone.get("raw_number")
        return None

    return UnifiedContact(
        first_name=raw.get("first_name"),
        last_name=raw.get("last_name"),
        full_name=raw.get("name"),
        linkedin_url=raw.get("linkedin_url"),
        photo_url=raw.get("photo_url"),
        title=raw.get("title"),
        seniority=normalize_seniority(raw.get("seniority")),
        department=(raw.get("departments") or [None])[0],
        company_name=organization.get("name"),
        company_domain=organization.get("primary_domain"),
        # Apollo returns guessed emails too; keep only verified ones
        work_email=raw.get("email") if raw.get("email_status") == "verified" else None,
        phone=phone_of("work"),
        mobile_phone=phone_of("mobile"),
        city=raw.get("city"),
        state=raw.get("state"),
        country=raw.get("country"),
        employment_history=[
            EmploymentRecord(
                company=eh.get("organization_name") or "",
                title=eh.get("title") or "",
                start_date=eh.get("start_date"),
                end_date=eh.get("end_date"),
                is_current=bool(eh.get("current")),
            )
            for eh in raw.get("employment_history") or []
        ],
        external_ids={"apollo": raw["id"]} if raw.get("id") else {},
    )


class ApolloProvider(BaseProvider):
    """Apollo.io: the broad, cheap first hop of most waterfalls"""

    name = "apollo"
    display_name = "Apollo.io"
    base_url = "https://api.apollo.io/api/v1"
    capabilities = frozenset({
        Capability.COMPANY_SEARCH,
        Capability.COMPANY_ENRICH,
        Capability.PEOPLE_SEARCH,
        Capability.PEOPLE_ENRICH,
    })

    def get_auth_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        }

    @staticmethod
    def _page(limit: int, offset: int) -> Dict:
        return {
            "per_page": min(limit or 25, 100),
            "page": offset // 100 + 1 if offset else 1,
        }

    async def search_companies(self, params: CompanySearchParams) -> ProviderResponse:
        body = self._page(params.limit, params.offset)
        if params.industries:
            body["organization_industries"] = params.industries
        if params.employee_count_min or params.employee_count_max:
            body["organization_num_employees_ranges"] = [
                f"{params.employee_count_min or 1},{params.employee_count_max or 1000000}"
            ]
        if params.countries:
            body["organization_locations"] = params.countries
        if params.keywords:
            body["q_organization_keyword_tags"] = params.keywords

        try:
            raw = await self._request("POST", "/mixed_companies/search", json=body)
        except ProviderError as e:
            return self._failure("company search", e, many=True)

        companies = [map_organization(org) for org in raw.get("organizations") or []]
        pagination = raw.get("pagination") or {}
        logger.info(f"🔍 Apollo company search returned {len(companies)} organizations")

        return ProviderResponse(
            success=True,
            data=companies,
            total_results=pagination.get("total_entries", len(companies)),
            has_more=pagination.get("page", 1) < pagination.get("total_pages", 1),
            credits_consumed=0,
            fields_populated=["name", "domain", "industry"],
            quality_score=0.5,
        )

    async def enrich_company(self, params: CompanyEnrichParams) -> ProviderResponse:
        query = {"domain": params.domain} if params.domain else {}

        try:
            raw = await self._request("GET", "/organizations/enrich", params=query)
        except ProviderError as e:
            return self._failure("company enrichment", e)

        if not raw.get("organization"):
            return ProviderResponse.failure("No organization found")

        company = map_organization(raw["organization"])
        fields = get_populated_fields(company.model_dump())

        return ProviderResponse(
            success=True,
            data=company,
            credits_consumed=1,
            fields_populated=fields,
            quality_score=min(len(fields) / 15, 1.0),
        )

    async def search_people(self, params: PeopleSearchParams) -> ProviderResponse:
        body = self._page(params.limit, params.offset)
        if params.title_patterns:
            body["person_titles"] = params.title_patterns
        if params.seniority_levels:
            body["person_seniorities"] = params.seniority_levels
        if params.departments:
            body["person_departments"] = params.departments
        if params.company_domains:
            body["organization_domains"] = params.company_domains
        if params.countries:
            body["person_locations"] = params.countries

        try:
            raw = await self._request("POST", "/mixed_people/search", json=body)
        except ProviderError as e:
            return self._failure("people search", e, many=True)

        people = [map_person(person) for person in raw.get("people") or []]
        pagination = raw.get("pagination") or {}
        logger.info(f"👥 Apollo people search returned {len(people)} people")

        return ProviderResponse(
            success=True,
            data=people,
            total_results=pagination.get("total_entries", len(people)),
            has_more=pagination.get("page", 1) < pagination.get("total_pages", 1),
            credits_consumed=0,
            fields_populated=["name", "title", "company", "linkedin"],
            quality_score=0.6,
        )

    async def enrich_person(self, params: PeopleEnrichParams) -> ProviderResponse:
        body = {}
        if params.first_name:
            body["first_name"] = params.first_name
        if params.last_name:
            body["last_name"] = params.last_name
        if params.email:
            body["email"] = params.email
        if params.linkedin_url:
            body["linkedin_url"] = params.linkedin_url
        if params.company_domain:
            body["organization_domain"] = params.company_domain

        try:
            raw = await self._request("POST", "/people/match", json=body)
        except ProviderError as e:
            return self._failure("person enrichment", e)

        if not raw.get("person"):
            return ProviderResponse.failure("No person found")

        contact = map_person(raw["person"])
        fields = get_populated_fields(contact.model_dump())

        return ProviderResponse(
            success=True,
            data=contact,
            credits_consumed=1,
            fields_populated=fields,
            quality_score=min(len(fields) / 12, 1.0),
        )
