"""
Provider adapters and their default registrations.
Lower priority number = tried first.
"""

from decimal import Decimal

from leadintel.providers.apollo import ApolloProvider
from leadintel.providers.base import BaseProvider, ProviderRegistration, RateLimit
from leadintel.providers.leadmagic import LeadMagicProvider
from leadintel.providers.prospeo import ProspeoProvider
from leadintel.schemas.enums import Capability


DEFAULT_REGISTRATIONS = {
    "apollo": ProviderRegistration(
        name="apollo",
        display_name="Apollo.io",
        priority=1,
        capabilities=ApolloProvider.capabilities,
        cost_per_operation={
            Capability.COMPANY_SEARCH: Decimal("0"),
            Capability.COMPANY_ENRICH: Decimal("1"),
            Capability.PEOPLE_SEARCH: Decimal("0"),
            Capability.PEOPLE_ENRICH: Decimal("1"),
        },
        rate_limit=RateLimit(per_second=5, per_minute=100, per_day=10000),
    ),
    "leadmagic": ProviderRegistration(
        name="leadmagic",
        display_name="LeadMagic",
        priority=2,
        capabilities=LeadMagicProvider.capabilities,
        cost_per_operation={
            Capability.COMPANY_ENRICH: Decimal("1"),
            Capability.PEOPLE_ENRICH: Decimal("1"),
            Capability.EMAIL_FIND: Decimal("1"),
        },
        rate_limit=RateLimit(per_minute=60),
    ),
    "prospeo": ProviderRegistration(
        name="prospeo",
        display_name="Prospeo",
        priority=3,
        capabilities=ProspeoProvider.capabilities,
        cost_per_operation={
            Capability.EMAIL_FIND: Decimal("1"),
            Capability.EMAIL_VERIFY: Decimal("0.05"),
            Capability.PEOPLE_ENRICH: Decimal("1"),
            Capability.PEOPLE_SEARCH: Decimal("0.1"),
        },
        rate_limit=RateLimit(per_minute=60),
    ),
}

PROVIDER_CLASSES = {
    "apollo": ApolloProvider,
    "leadmagic": LeadMagicProvider,
    "prospeo": ProspeoProvider,
}

__all__ = [
    "ApolloProvider",
    "BaseProvider",
    "DEFAULT_REGISTRATIONS",
    "LeadMagicProvider",
    "PROVIDER_CLASSES",
    "ProspeoProvider",
    "ProviderRegistration",
    "RateLimit",
]
