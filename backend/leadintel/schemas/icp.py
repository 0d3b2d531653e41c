"""
Pydantic schemas for ICP filters and persona definitions
"""

from pydantic import BaseModel, Field
from typing import Optional, List


class IcpFilters(BaseModel):
    """Filter dimensions of an ideal customer profile"""
    industries: List[str] = Field(default_factory=list)
    employee_count_min: Optional[int] = None
    employee_count_max: Optional[int] = None
    revenue_min: Optional[float] = None
    revenue_max: Optional[float] = None
    funding_stages: List[str] = Field(default_factory=list)
    founded_after: Optional[int] = None
    founded_before: Optional[int] = None
    countries: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    
    # Hard exclusions: any hit scores the company 0
    exclude_industries: List[str] = Field(default_factory=list)
    exclude_keywords: List[str] = Field(default_factory=list)
    exclude_domains: List[str] = Field(default_factory=list)
    
    class Config:
        extra = "ignore"


class PersonaCriteria(BaseModel):
    """Who to reach inside a qualified company"""
    title_patterns: List[str] = Field(default_factory=list)
    seniority_levels: List[str] = Field(default_factory=list)
    departments: List[str] = Field(default_factory=list)
    
    class Config:
        from_attributes = True
