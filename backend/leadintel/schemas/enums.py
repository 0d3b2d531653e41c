"""Enumerations shared by models, services and schemas."""

from enum import Enum


class Capability(str, Enum):
    """Operations a data provider can serve."""
    COMPANY_SEARCH = "company_search"
    COMPANY_ENRICH = "company_enrich"
    PEOPLE_SEARCH = "people_search"
    PEOPLE_ENRICH = "people_enrich"
    EMAIL_FIND = "email_find"
    EMAIL_VERIFY = "email_verify"
    
    @property
    def is_list(self) -> bool:
        """List capabilities accumulate results across providers."""
        return self in (Capability.COMPANY_SEARCH, Capability.PEOPLE_SEARCH)


class PipelineStage(str, Enum):
    """Funnel stages, in promotion order."""
    TAM = "tam"
    ACTIVE_SEGMENT = "active_segment"
    QUALIFIED = "qualified"
    READY_TO_APPROACH = "ready_to_approach"
    IN_SEQUENCE = "in_sequence"
    CONVERTED = "converted"
    
    @property
    def rank(self) -> int:
        return PIPELINE_ORDER.index(self)


PIPELINE_ORDER = [
    PipelineStage.TAM,
    PipelineStage.ACTIVE_SEGMENT,
    PipelineStage.QUALIFIED,
    PipelineStage.READY_TO_APPROACH,
    PipelineStage.IN_SEQUENCE,
    PipelineStage.CONVERTED,
]


def can_advance(from_stage, to_stage) -> bool:
    """Forward moves only; staying in place is allowed."""
    return PipelineStage(to_stage).rank >= PipelineStage(from_stage).rank


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CreditTransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    ADJUSTMENT = "adjustment"
    REFUND = "refund"


class EmailVerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VALID = "valid"
    INVALID = "invalid"
    CATCH_ALL = "catch_all"
    UNKNOWN = "unknown"


class SignalCategory(str, Enum):
    REGULATORY = "regulatory"
    ECONOMIC = "economic"
    INDUSTRY = "industry"
    COMPETITIVE = "competitive"
