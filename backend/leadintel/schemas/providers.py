"""
Pydantic schemas for provider data.
Every adapter normalizes its upstream payload into these shapes.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


# ============================================================================
# UNIFIED ENTITIES
# ============================================================================

class UnifiedCompany(BaseModel):
    """Company record as returned by any provider"""
    name: str = ""
    domain: Optional[str] = None
    linkedin_url: Optional[str] = None
    website_url: Optional[str] = None
    industry: Optional[str] = None
    sub_industry: Optional[str] = None
    employee_count: Optional[int] = None
    employee_range: Optional[str] = None
    annual_revenue: Optional[float] = None
    revenue_range: Optional[str] = None
    founded_year: Optional[int] = None
    total_funding: Optional[float] = None
    latest_funding_stage: Optional[str] = None
    latest_funding_date: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    logo_url: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    external_ids: Dict[str, str] = Field(default_factory=dict)


class EmploymentRecord(BaseModel):
    company: str = ""
    title: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_current: bool = False


class UnifiedContact(BaseModel):
    """Contact record as returned by any provider"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    linkedin_url: Optional[str] = None
    photo_url: Optional[str] = None
    title: Optional[str] = None
    seniority: Optional[str] = None
    department: Optional[str] = None
    company_name: Optional[str] = None
    company_domain: Optional[str] = None
    work_email: Optional[str] = None
    personal_email: Optional[str] = None
    phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    employment_history: List[EmploymentRecord] = Field(default_factory=list)
    external_ids: Dict[str, str] = Field(default_factory=dict)


class EmailFindResult(BaseModel):
    email: str
    confidence: float = 0.0


class EmailVerificationResult(BaseModel):
    email: str
    status: str  # valid | invalid | catch_all | unknown
    provider: str
    confidence: Optional[float] = None
    verified_at: Optional[str] = None


# ============================================================================
# REQUEST PARAMETERS
# ============================================================================

class CompanySearchParams(BaseModel):
    industries: List[str] = Field(default_factory=list)
    employee_count_min: Optional[int] = None
    employee_count_max: Optional[int] = None
    countries: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    limit: int = 25
    offset: int = 0


class CompanyEnrichParams(BaseModel):
    domain: Optional[str] = None
    name: Optional[str] = None


class PeopleSearchParams(BaseModel):
    title_patterns: List[str] = Field(default_factory=list)
    seniority_levels: List[str] = Field(default_factory=list)
    departments: List[str] = Field(default_factory=list)
    company_domains: List[str] = Field(default_factory=list)
    company_names: List[str] = Field(default_factory=list)
    countries: List[str] = Field(default_factory=list)
    limit: int = 25
    offset: int = 0


class PeopleEnrichParams(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None
    company_domain: Optional[str] = None


class EmailFindParams(BaseModel):
    first_name: str
    last_name: str
    company_domain: str


class EmailVerifyParams(BaseModel):
    email: str


# ============================================================================
# RESPONSE ENVELOPE
# ============================================================================

class ProviderResponse(BaseModel):
    """
    Uniform envelope around every adapter call.

    `data` is a single entity for enrich/find/verify operations and a list
    for search operations.
    """
    success: bool
    data: Any = None
    error: Optional[str] = None
    credits_consumed: float = 0.0
    fields_populated: List[str] = Field(default_factory=list)
    quality_score: float = 0.0
    rate_limit_remaining: Optional[int] = None
    total_results: Optional[int] = None
    has_more: bool = False

    @classmethod
    def failure(cls, error: str, many: bool = False) -> "ProviderResponse":
        return cls(success=False, data=[] if many else None, error=error)

    @property
    def has_data(self) -> bool:
        if not self.success or self.data is None:
            return False
        if isinstance(self.data, list):
            return len(self.data) > 0
        return True
