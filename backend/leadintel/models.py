# backend/leadintel/models.py
"""
SQLAlchemy ORM models.

Column types are portable (Uuid, JSON with a JSONB variant, Numeric) so the
same mappers run on PostgreSQL in production and SQLite in tests. All
timestamps are stored as naive UTC.
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, Text, DateTime, Float, JSON, Index,
    ForeignKey, CheckConstraint, UniqueConstraint, Uuid, text
)
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
import uuid

from leadintel.config import settings
from leadintel.database import Base

# JSONB on PostgreSQL, plain JSON everywhere else
JsonType = JSON().with_variant(JSONB(), "postgresql")

# Money: four decimal places is enough for fractional provider costs
Money = Numeric(14, 4)


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_margin_percent():
    return settings.DEFAULT_MARGIN_PERCENT


# ============================================================================
# CLIENT & CREDITS
# ============================================================================

class Client(Base):
    """Customer account; owns the prepaid credit balance."""
    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True)
    industry = Column(String(255))
    website = Column(String(500))
    credit_balance = Column(Money, nullable=False, default=0)
    credit_margin_percent = Column(Money, nullable=False, default=default_margin_percent)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="chk_client_balance_non_negative"),
    )

    def __repr__(self):
        return f"<Client(id={self.id}, name='{self.name}', balance={self.credit_balance})>"


class ClientProfile(Base):
    """Market context for a client, used by signal detection and strategy."""
    __tablename__ = "client_profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, unique=True)
    industry = Column(String(255))
    products = Column(JsonType, default=list)
    target_market = Column(Text)
    competitors = Column(JsonType, default=list)
    value_proposition = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CreditTransaction(Base):
    """Append-only ledger row. Usage rows carry a negative amount."""
    __tablename__ = "credit_transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    amount = Column(Money, nullable=False)
    base_cost = Column(Money)
    margin_amount = Column(Money)
    balance_after = Column(Money, nullable=False)
    description = Column(Text)
    data_source = Column(String(100))
    operation_type = Column(String(100))
    job_id = Column(Uuid, ForeignKey("jobs.id"))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "type IN ('purchase', 'usage', 'adjustment', 'refund')",
            name="chk_credit_transaction_type"
        ),
        Index("idx_credit_tx_client_created", "client_id", "created_at"),
    )


# ============================================================================
# ICP & PERSONA
# ============================================================================

class ICP(Base):
    """Ideal customer profile; filters hold IcpFilters as JSON."""
    __tablename__ = "icps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    filters = Column(JsonType, default=dict)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Persona(Base):
    """Buyer persona used for contact matching and persona signals."""
    __tablename__ = "personas"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    title_patterns = Column(JsonType, default=list)
    seniority_levels = Column(JsonType, default=list)
    departments = Column(JsonType, default=list)
    created_at = Column(DateTime, default=utcnow)


# ============================================================================
# COMPANIES & CONTACTS
# ============================================================================

class Company(Base):
    """Target company, unique per client by domain."""
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    domain = Column(String(255))
    linkedin_url = Column(String(500))
    website_url = Column(String(500))
    industry = Column(String(255))
    sub_industry = Column(String(255))
    description = Column(Text)
    employee_count = Column(Integer)
    employee_range = Column(String(50))
    annual_revenue = Column(Money)
    revenue_range = Column(String(50))
    founded_year = Column(Integer)
    total_funding = Column(Money)
    latest_funding_stage = Column(String(100))
    latest_funding_date = Column(DateTime)
    city = Column(String(255))
    state = Column(String(255))
    country = Column(String(255))
    address = Column(Text)
    tech_stack = Column(JsonType, default=list)
    external_ids = Column(JsonType, default=dict)

    # Provenance: [{source, fetched_at, fields_provided}]
    sources = Column(JsonType, default=list)
    primary_source = Column(String(100))

    pipeline_stage = Column(String(50), nullable=False, default="tam", index=True)
    signal_score = Column(Float)
    originality_score = Column(Float)
    enrichment_score = Column(Float)
    enrichment_cost_credits = Column(Money, default=0)
    last_enriched_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("client_id", "domain", name="uq_company_client_domain"),
        CheckConstraint(
            "pipeline_stage IN ('tam', 'active_segment', 'qualified', "
            "'ready_to_approach', 'in_sequence', 'converted')",
            name="chk_company_pipeline_stage"
        ),
    )

    def __repr__(self):
        return f"<Company(id={self.id}, name='{self.name}', stage='{self.pipeline_stage}')>"


class Contact(Base):
    """Person at a target company; deduplicated by LinkedIn URL, then email."""
    __tablename__ = "contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"), index=True)
    first_name = Column(String(255))
    last_name = Column(String(255))
    full_name = Column(String(255))
    linkedin_url = Column(String(500))
    title = Column(String(255))
    seniority = Column(String(100))
    department = Column(String(100))
    work_email = Column(String(255))
    personal_email = Column(String(255))
    phone = Column(String(100))
    email_verification_status = Column(String(50), default="unverified")
    email_verified_at = Column(DateTime)
    city = Column(String(255))
    country = Column(String(255))
    employment_history = Column(JsonType, default=list)
    external_ids = Column(JsonType, default=dict)
    sources = Column(JsonType, default=list)

    persona_fit_score = Column(Float)
    signal_score = Column(Float)
    last_enriched_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_contact_client_linkedin", "client_id", "linkedin_url"),
        Index("idx_contact_client_email", "client_id", "work_email"),
    )


# ============================================================================
# SIGNALS
# ============================================================================

class CompanySignal(Base):
    """Time-boxed buying signal; expiry is evaluated at read time."""
    __tablename__ = "company_signals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)
    signal_type = Column(String(100), nullable=False)
    signal_strength = Column(Float, nullable=False)
    signal_data = Column(JsonType, default=dict)
    source = Column(String(100))
    detected_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint(
            "signal_strength >= 0 AND signal_strength <= 1",
            name="chk_company_signal_strength"
        ),
    )


class ContactSignal(Base):
    """Persona-level signal (job change, promotion, title match)."""
    __tablename__ = "contact_signals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("contacts.id"), nullable=False, index=True)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)
    signal_type = Column(String(100), nullable=False)
    signal_strength = Column(Float, nullable=False)
    signal_data = Column(JsonType, default=dict)
    source = Column(String(100))
    detected_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime)


class MarketSignal(Base):
    """External market event (news, regulation) awaiting classification."""
    __tablename__ = "market_signals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    headline = Column(Text, nullable=False)
    summary = Column(Text)
    source_url = Column(String(1000))
    source_name = Column(String(255))
    published_at = Column(DateTime)
    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime)
    relevance_score = Column(Float)
    signal_category = Column(String(50))
    affected_segments = Column(JsonType, default=list)
    hypothesis_id = Column(Uuid, ForeignKey("signal_hypotheses.id"))
    analysis = Column(JsonType, default=dict)
    created_at = Column(DateTime, default=utcnow)


class SignalHypothesis(Base):
    """Client-authored hypothesis about which market events matter."""
    __tablename__ = "signal_hypotheses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    hypothesis = Column(Text, nullable=False)
    signal_category = Column(String(50), nullable=False)
    priority = Column(Integer, default=5)
    status = Column(String(50), default="active")
    created_at = Column(DateTime, default=utcnow)


# ============================================================================
# STRATEGY & PERFORMANCE
# ============================================================================

class Strategy(Base):
    """Cached enrichment strategy keyed by a context hash."""
    __tablename__ = "strategies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)
    icp_id = Column(Uuid, ForeignKey("icps.id"), nullable=False)
    persona_id = Column(Uuid, ForeignKey("personas.id"))
    context_hash = Column(String(64), nullable=False)
    strategy = Column(JsonType, nullable=False)
    generated_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("client_id", "context_hash", name="uq_strategy_client_hash"),
    )


class ProviderPerformance(Base):
    """Outcome of one provider call, feeding strategy context."""
    __tablename__ = "provider_performance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_name = Column(String(100), nullable=False)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)
    operation = Column(String(100), nullable=False)
    success = Column(Boolean, default=True)
    quality_score = Column(Float)
    response_time_ms = Column(Integer)
    fields_populated = Column(Integer)
    cost_credits = Column(Money)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_provider_perf_client_created", "client_id", "created_at"),
    )


# ============================================================================
# JOBS
# ============================================================================

class Job(Base):
    """Batch job with per-item error tracking."""
    __tablename__ = "jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    type = Column(String(100), nullable=False)
    status = Column(String(50), nullable=False, default="pending")
    input = Column(JsonType, default=dict)
    output = Column(JsonType, default=dict)
    total_items = Column(Integer, default=0)
    processed_items = Column(Integer, default=0)
    failed_items = Column(Integer, default=0)
    errors = Column(JsonType, default=list)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="chk_job_status"
        ),
    )


# ============================================================================
# LISTS
# ============================================================================

class ProspectList(Base):
    """Named list of companies and contacts built from an ICP (and persona)."""
    __tablename__ = "lists"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False, index=True)
    icp_id = Column(Uuid, ForeignKey("icps.id"))
    persona_id = Column(Uuid, ForeignKey("personas.id"))
    name = Column(String(255), nullable=False)
    type = Column(String(50), default="company")
    company_count = Column(Integer, default=0)
    contact_count = Column(Integer, default=0)
    member_count = Column(Integer, default=0)
    last_refreshed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)


class ListMember(Base):
    """Membership row; removed_at marks a soft delete."""
    __tablename__ = "list_members"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    list_id = Column(Uuid, ForeignKey("lists.id"), nullable=False, index=True)
    company_id = Column(Uuid, ForeignKey("companies.id"))
    contact_id = Column(Uuid, ForeignKey("contacts.id"))
    icp_fit_score = Column(Float)
    signal_score = Column(Float)
    originality_score = Column(Float)
    intelligence_score = Column(Float)
    added_reason = Column(Text)
    added_at = Column(DateTime, default=utcnow)
    removed_at = Column(DateTime)

    __table_args__ = (
        # One company row (contact_id NULL) and one row per contact in each list
        Index(
            "uq_list_member_company", "list_id", "company_id", unique=True,
            postgresql_where=text("contact_id IS NULL"), sqlite_where=text("contact_id IS NULL"),
        ),
        Index(
            "uq_list_member_contact", "list_id", "contact_id", unique=True,
            postgresql_where=text("contact_id IS NOT NULL"), sqlite_where=text("contact_id IS NOT NULL"),
        ),
    )


class StageTransition(Base):
    """Audit trail for every pipeline stage mutation."""
    __tablename__ = "stage_transitions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id = Column(Uuid, ForeignKey("clients.id"), nullable=False)
    company_id = Column(Uuid, ForeignKey("companies.id"), nullable=False, index=True)
    from_stage = Column(String(50))
    to_stage = Column(String(50), nullable=False)
    reason = Column(String(255))
    details = Column(JsonType, default=dict)
    created_at = Column(DateTime, default=utcnow)
