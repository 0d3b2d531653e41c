# backend/leadintel/providers/prospeo.py
"""Prospeo adapter: email finding/verification plus person lookups."""

from datetime import datetime, timezone
from typing import Dict
import logging

from leadintel.exceptions import ProviderError
from leadintel.providers.base import BaseProvider, get_populated_fields
from leadintel.schemas.enums import Capability
from leadintel.schemas.providers import (
    EmailFindParams,
    EmailFindResult,
    EmailVerificationResult,
    EmailVerifyParams,
    PeopleEnrichParams,
    PeopleSearchParams,
    ProviderResponse,
    UnifiedContact,
)

logger = logging.getLogger(__name__)

VERIFICATION_STATUSES = {"valid", "invalid", "catch_all", "unknown"}


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
        work_email=raw.get("email"),
        phone=raw.get("phone"),
        city=raw.get("city"),
        state=raw.get("state"),
        country=raw.get("country"),
    )


class ProspeoProvider(BaseProvider):
    name = "prospeo"
    display_name = "Prospeo"
    base_url = "https://api.prospeo.io"
    capabilities = frozenset({
        Capability.EMAIL_FIND,
        Capability.EMAIL_VERIFY,
        Capability.PEOPLE_ENRICH,
        Capability.PEOPLE_SEARCH,
    })

    def get_auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def find_email(self, params: EmailFindParams) -> ProviderResponse:
        body = {
            "first_name": params.first_name,
            "last_name": params.last_name,
            "company": params.company_domain,
        }

        try:
            raw = await self._request("POST", "/email-finder", json=body)
        except ProviderError as e:
            return self._failure("email find", e)

        response = raw.get("response") or {}
        if raw.get("error") or not response.get("email"):
            return ProviderResponse.failure(raw.get("message") or "Email not found")

        confidence = float(response.get("confidence") or 0)
        return ProviderResponse(
            success=True,
            data=EmailFindResult(email=response["email"], confidence=confidence),
            credits_consumed=1,
            fields_populated=["email"],
            quality_score=confidence / 100,
        )

    async def verify_email(self, params: EmailVerifyParams) -> ProviderResponse:
        try:
            raw = await self._request("POST", "/email-verifier", json={"email": params.email})
        except ProviderError as e:
            return self._failure("email verification", e)

        response = raw.get("response") or {}
        if raw.get("error") or not response:
            return ProviderResponse.failure(raw.get("message") or "Verification failed")

        status = response.get("result") or "unknown"
        if status not in VERIFICATION_STATUSES:
            status = "unknown"

        return ProviderResponse(
            success=True,
            data=EmailVerificationResult(
                email=response.get("email") or params.email,
                status=status,
                provider=self.name,
                confidence=response.get("score"),
                verified_at=datetime.now(timezone.utc).isoformat(),
            ),
            credits_consumed=0.05,
            fields_populated=["email_verification_status"],
            quality_score=1.0 if status == "valid" else 0.5,
        )

    async def enrich_person(self, params: PeopleEnrichParams) -> ProviderResponse:
        body = {}
        if params.email:
            body["email"] = params.email
        if params.linkedin_url:
            body["linkedin_url"] = params.linkedin_url
        if params.first_name:
            body["first_name"] = params.first_name
        if params.last_name:
            body["last_name"] = params.last_name

        try:
            raw = await self._request("POST", "/person-search", json=body)
        except ProviderError as e:
            return self._failure("person enrichment", e)

        if raw.get("error") or not raw.get("response"):
            return ProviderResponse.failure(raw.get("message") or "No data found")

        contact = map_person(raw["response"])
        fields = get_populated_fields(contact.model_dump())
        return ProviderResponse(
            success=True,
            data=contact,
            credits_consumed=1,
            fields_populated=fields,
            quality_score=min(len(fields) / 12, 1.0),
        )

    async def search_people(self, params: PeopleSearchParams) -> ProviderResponse:
        body = {
            "limit": min(params.limit or 25, 100),
            "page": params.offset // 100 + 1 if params.offset else 1,
        }
        if params.title_patterns:
            body["titles"] = params.title_patterns
        if params.company_domains:
            body["domains"] = params.company_domains
        if params.countries:
            body["locations"] = params.countries

        try:
            raw = await self._request("POST", "/people-search", json=body)
        except ProviderError as e:
            return self._failure("people search", e, many=True)

        if raw.get("error"):
            return ProviderResponse.failure(raw.get("message") or "Search failed", many=True)

        contacts = [map_person(person) for person in raw.get("response") or []]
        pagination = raw.get("pagination") or {}
        total = pagination.get("total", len(contacts))

        return ProviderResponse(
            success=True,
            data=contacts,
            total_results=total,
            has_more=pagination.get("page", 1) * pagination.get("per_page", 25) < total,
            credits_consumed=len(contacts) * 0.1,
            fields_populated=["name", "title", "email", "company"],
            quality_score=0.7,
        )
