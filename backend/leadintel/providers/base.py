# backend/leadintel/providers/base.py
"""
Base class for external data provider adapters.

Adapters never raise on upstream failures: every capability method returns a
ProviderResponse envelope, and the orchestrator decides what to do with it.
"""

from abc import ABC
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional
import logging

import httpx

from leadintel.exceptions import ProviderError
from leadintel.schemas.enums import Capability
from leadintel.schemas.providers import (
    CompanyEnrichParams,
    CompanySearchParams,
    EmailFindParams,
    EmailVerifyParams,
    PeopleEnrichParams,
    PeopleSearchParams,
    ProviderResponse,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    """Per-window request limits; None means unlimited for that window"""
    per_second: Optional[int] = None
    per_minute: Optional[int] = None
    per_day: Optional[int] = None


@dataclass(frozen=True)
class ProviderRegistration:
    """Static description of a provider, fixed once registered"""
    name: str
    capabilities: FrozenSet[Capability]
    priority: int
    cost_per_operation: Dict[Capability, Decimal] = field(default_factory=dict)
    rate_limit: RateLimit = field(default_factory=RateLimit)
    display_name: Optional[str] = None

    def cost_for(self, capability: Capability) -> Decimal:
        return Decimal(str(self.cost_per_operation.get(capability, 0)))

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


def get_populated_fields(data: Dict) -> List[str]:
    """Names of fields carrying a real value (external ids ignored)"""
    populated = []
    for key, value in data.items():
        if key == "external_ids":
            continue
        if value is None or value == "":
            continue
        if isinstance(value, (list, dict)) and len(value) == 0:
            continue
        populated.append(key)
    return populated


class BaseProvider(ABC):
    """
    Shared HTTP plumbing for provider adapters.

    Subclasses set `name`, `base_url` and `capabilities` and implement the
    capability methods they support. Unsupported methods return a failure
    envelope instead of raising.
    """

    name: str = "base"
    display_name: str = "Base"
    base_url: str = ""
    capabilities: FrozenSet[Capability] = frozenset()

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def get_auth_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None
    ) -> Dict:
        """Perform one HTTP call and return the decoded JSON body"""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=self.get_auth_headers()
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                self.name,
                f"HTTP {e.response.status_code} from {path}",
                status=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"{type(e).__name__} calling {path}: {e}") from e
        except ValueError as e:
            raise ProviderError(self.name, f"Invalid JSON from {path}") from e

    def _failure(self, operation: str, error: Exception, many: bool = False) -> ProviderResponse:
        logger.error(f"❌ {self.name} {operation} failed: {error}")
        return ProviderResponse.failure(str(error), many=many)

    # ========================================================================
    # CAPABILITIES (override what the provider supports)
    # ========================================================================

    async def search_companies(self, params: CompanySearchParams) -> ProviderResponse:
        return ProviderResponse.failure(f"{self.name} does not support company_search", many=True)

    async def enrich_company(self, params: CompanyEnrichParams) -> ProviderResponse:
        return ProviderResponse.failure(f"{self.name} does not support company_enrich")

    async def search_people(self, params: PeopleSearchParams) -> ProviderResponse:
        return ProviderResponse.failure(f"{self.name} does not support people_search", many=True)

    async def enrich_person(self, params: PeopleEnrichParams) -> ProviderResponse:
        return ProviderResponse.failure(f"{self.name} does not support people_enrich")

    async def find_email(self, params: EmailFindParams) -> ProviderResponse:
        return ProviderResponse.failure(f"{self.name} does not support email_find")

    async def verify_email(self, params: EmailVerifyParams) -> ProviderResponse:
        return ProviderResponse.failure(f"{self.name} does not support email_verify")

    async def execute(self, capability: Capability, params) -> ProviderResponse:
        """Dispatch a capability to the matching adapter method"""
        handlers = {
            Capability.COMPANY_SEARCH: (self.search_companies, CompanySearchParams),
            Capability.COMPANY_ENRICH: (self.enrich_company, CompanyEnrichParams),
            Capability.PEOPLE_SEARCH: (self.search_people, PeopleSearchParams),
            Capability.PEOPLE_ENRICH: (self.enrich_person, PeopleEnrichParams),
            Capability.EMAIL_FIND: (self.find_email, EmailFindParams),
            Capability.EMAIL_VERIFY: (self.verify_email, EmailVerifyParams),
        }
        handler, params_model = handlers[Capability(capability)]
        if isinstance(params, dict):
            params = params_model(**params)
        return await handler(params)
