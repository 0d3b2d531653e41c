# backend/leadintel/services/provider_orchestrator.py
"""
Provider Orchestrator - priority-ordered, rate-limited waterfall

Waterfall per request:
1. Providers registered for the capability, ascending priority
   (or the caller's explicit override order)
2. Over the caller's budget or denied by the rate limiter -> skip, never wait
3. Call under a timeout; error / timeout / empty result -> next provider
4. Data-bearing success -> charge the declared cost, record performance
5. Single-entity operations stop at the first success; searches keep
   accumulating until the result target is met

Providers are always tried one at a time: at most one billable attempt per
requested entity.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID
import logging

from leadintel.config import settings
from leadintel.providers.base import BaseProvider, ProviderRegistration
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
from leadintel.services.credit_ledger import ChargeRequest, CreditLedger
from leadintel.services.performance_tracker import PerformanceRecord, PerformanceTracker
from leadintel.services.rate_limiter import RateLimiterRegistry

logger = logging.getLogger(__name__)


@dataclass
class WaterfallOptions:
    max_providers: Optional[int] = None
    provider_override: Optional[List[str]] = None  # replaces priority order entirely
    result_target: Optional[int] = None  # list operations only; defaults to params.limit
    job_id: Optional[UUID] = None
    max_cost: Optional[Decimal] = None  # credits; providers that would exceed it are skipped


@dataclass
class WaterfallResult:
    """Outcome of one waterfall call"""
    result: Any
    providers_used: List[str] = field(default_factory=list)
    total_cost: Decimal = Decimal("0")
    attempts: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.providers_used)

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "providers_used": self.providers_used,
            "total_cost": float(self.total_cost),
            "attempts": self.attempts,
        }


def _result_key(item: Any) -> Optional[str]:
    """Identity used to deduplicate accumulated search results"""
    for attr in ("domain", "linkedin_url", "work_email"):
        value = getattr(item, attr, None)
        if value:
            return f"{attr}:{value.lower()}"
    return None


class ProviderOrchestrator:
    """Routes capability requests through registered providers"""

    def __init__(
        self,
        ledger: CreditLedger,
        rate_limiters: Optional[RateLimiterRegistry] = None,
        performance_tracker: Optional[PerformanceTracker] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.ledger = ledger
        self.rate_limiters = rate_limiters or RateLimiterRegistry()
        self.performance_tracker = performance_tracker
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self._clock = clock

        self._providers: Dict[str, BaseProvider] = {}
        self._registrations: Dict[str, ProviderRegistration] = {}

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register(self, provider: BaseProvider, registration: ProviderRegistration):
        if registration.name in self._registrations:
            raise ValueError(f"Provider '{registration.name}' is already registered")

        self._providers[registration.name] = provider
        self._registrations[registration.name] = registration
        self.rate_limiters.register(registration.name, registration.rate_limit)

        logger.info(
            f"🔌 Provider registered: {registration.name} "
            f"(priority {registration.priority}, "
            f"capabilities: {', '.join(sorted(c.value for c in registration.capabilities))})"
        )

    def get_registration(self, name: str) -> Optional[ProviderRegistration]:
        return self._registrations.get(name)

    def registrations_for(self, capability: Capability) -> List[ProviderRegistration]:
        return sorted(
            (r for r in self._registrations.values() if r.supports(capability)),
            key=lambda r: (r.priority, r.name)
        )

    def catalog(self) -> List[ProviderRegistration]:
        return sorted(self._registrations.values(), key=lambda r: (r.priority, r.name))

    def _candidates(self, capability: Capability, options: WaterfallOptions) -> List[ProviderRegistration]:
        if options.provider_override:
            candidates = []
            for name in options.provider_override:
                registration = self._registrations.get(name)
                if registration is None or not registration.supports(capability):
                    logger.warning(f"⚠️ Override provider '{name}' cannot serve {capability.value}, skipping")
                    continue
                candidates.append(registration)
        else:
            candidates = self.registrations_for(capability)

        if options.max_providers is not None:
            candidates = candidates[:options.max_providers]
        return candidates

    # ========================================================================
    # WATERFALL
    # ========================================================================

    async def execute(
        self,
        client_id: UUID,
        capability: Capability,
        params,
        options: Optional[WaterfallOptions] = None
    ) -> WaterfallResult:
        """
        Run the waterfall for one request.

        InsufficientCreditsError from the ledger propagates to the caller;
        every provider-level failure is absorbed and the next provider tried.
        """
        capability = Capability(capability)
        options = options or WaterfallOptions()
        is_list = capability.is_list

        target = options.result_target
        if is_list and target is None:
            target = getattr(params, "limit", None)

        outcome = WaterfallResult(result=[] if is_list else None)
        accumulated: List[Any] = []
        seen_keys = set()

        for registration in self._candidates(capability, options):
            name = registration.name
            cost = registration.cost_for(capability)

            if options.max_cost is not None and outcome.total_cost + cost > options.max_cost:
                outcome.attempts.append({"provider": name, "outcome": "over_budget"})
                logger.info(f"💸 {name} skipped: {cost} credits would exceed budget of {options.max_cost}")
                continue

            if not self.rate_limiters.try_acquire(name):
                outcome.attempts.append({"provider": name, "outcome": "rate_limited"})
                logger.info(f"⏭️ {name} rate limited for {capability.value}, trying next provider")
                continue

            response = await self._call_provider(client_id, registration, capability, params)
            if response is None or not response.has_data:
                error = response.error if response is not None else "timeout or exception"
                outcome.attempts.append({"provider": name, "outcome": "failed", "error": error})
                logger.warning(f"⚠️ {name} {capability.value} failed: {error}")
                continue

            if cost > 0:
                await self.ledger.charge(client_id, ChargeRequest(
                    base_cost=cost,
                    source=name,
                    operation=capability.value,
                    job_id=options.job_id,
                    description=f"{capability.value} via {name}"
                ))
                outcome.total_cost += cost

            outcome.providers_used.append(name)
            outcome.attempts.append({"provider": name, "outcome": "success"})

            if not is_list:
                outcome.result = response.data
                logger.info(f"✅ {capability.value} answered by {name}")
                return outcome

            for item in response.data:
                key = _result_key(item)
                if key is not None:
                    if key in seen_keys:
                        continue
                    seen_keys.add(key)
                accumulated.append(item)

            if target is not None and len(accumulated) >= target:
                accumulated = accumulated[:target]
                break

        if is_list:
            outcome.result = accumulated
            logger.info(
                f"📋 {capability.value}: {len(accumulated)} results from "
                f"{', '.join(outcome.providers_used) or 'no providers'}"
            )
        else:
            logger.warning(f"❌ {capability.value}: no provider returned data")

        return outcome

    async def _call_provider(
        self,
        client_id: UUID,
        registration: ProviderRegistration,
        capability: Capability,
        params
    ) -> Optional[ProviderResponse]:
        """One attempt; returns None on timeout or unexpected exception"""
        provider = self._providers[registration.name]
        started = self._clock()
        response = None

        try:
            response = await asyncio.wait_for(
                provider.execute(capability, params),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ {registration.name} timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"❌ {registration.name} raised during {capability.value}: {e}")

        elapsed_ms = int((self._clock() - started) * 1000)
        await self._record(client_id, registration, capability, response, elapsed_ms)
        return response

    async def _record(
        self,
        client_id: UUID,
        registration: ProviderRegistration,
        capability: Capability,
        response: Optional[ProviderResponse],
        elapsed_ms: int
    ):
        if self.performance_tracker is None:
            return

        success = response is not None and response.has_data
        await self.performance_tracker.record_performance(PerformanceRecord(
            provider_name=registration.name,
            client_id=client_id,
            operation=capability.value,
            success=success,
            quality_score=response.quality_score if success else 0.0,
            response_time_ms=elapsed_ms,
            fields_populated=len(response.fields_populated) if success else 0,
            cost_credits=registration.cost_for(capability) if success else Decimal("0"),
        ))

    # ========================================================================
    # CONVENIENCE
    # ========================================================================

    async def search_companies(self, client_id: UUID, params: CompanySearchParams, options=None) -> WaterfallResult:
        return await self.execute(client_id, Capability.COMPANY_SEARCH, params, options)

    async def enrich_company(
        self,
        client_id: UUID,
        domain: Optional[str] = None,
        name: Optional[str] = None,
        options: Optional[WaterfallOptions] = None
    ) -> WaterfallResult:
        params = CompanyEnrichParams(domain=domain, name=name)
        return await self.execute(client_id, Capability.COMPANY_ENRICH, params, options)

    async def search_people(self, client_id: UUID, params: PeopleSearchParams, options=None) -> WaterfallResult:
        return await self.execute(client_id, Capability.PEOPLE_SEARCH, params, options)

    async def enrich_person(self, client_id: UUID, params: PeopleEnrichParams, options=None) -> WaterfallResult:
        return await self.execute(client_id, Capability.PEOPLE_ENRICH, params, options)

    async def find_email(self, client_id: UUID, params: EmailFindParams, options=None) -> WaterfallResult:
        return await self.execute(client_id, Capability.EMAIL_FIND, params, options)

    async def verify_email(self, client_id: UUID, email: str, options=None) -> WaterfallResult:
        return await self.execute(client_id, Capability.EMAIL_VERIFY, EmailVerifyParams(email=email), options)
