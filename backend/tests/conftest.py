# tests/conftest.py
"""
Shared fixtures - real async database + row factories

Every test gets a fresh SQLite file through aiosqlite. Point
TEST_DATABASE_URL at a PostgreSQL database (postgresql+asyncpg://...) to run
the same suite against the production driver; tables are dropped afterwards.
"""

import os
from decimal import Decimal
from itertools import count
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from leadintel.database import Base, create_all, create_engine, create_session_factory
from leadintel.models import (
    ICP,
    Client,
    ClientProfile,
    Company,
    CompanySignal,
    Contact,
    ListMember,
    Persona,
    ProspectList,
    SignalHypothesis,
    utcnow,
)
from leadintel.services.llm_classifier import LLMClassifier

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
async def engine(tmp_path):
    """Fresh schema per test"""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = create_engine(url, echo=False)
    await create_all(engine)

    yield engine

    if TEST_DATABASE_URL:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


# ============================================================================
# FACTORIES
# ============================================================================

class ModelFactory:
    """Persists rows with sensible defaults; every helper returns the row"""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._seq = count(1)

    async def add(self, instance):
        async with self.session_factory() as session:
            async with session.begin():
                session.add(instance)
        return instance

    async def get(self, model, id):
        async with self.session_factory() as session:
            return await session.get(model, id)

    async def all(self, model, *conditions):
        query = select(model)
        if conditions:
            query = query.where(*conditions)
        async with self.session_factory() as session:
            return list((await session.execute(query)).scalars().all())

    async def client(self, **kwargs) -> Client:
        kwargs.setdefault("name", f"Client {next(self._seq)}")
        kwargs.setdefault("credit_balance", Decimal("100"))
        kwargs.setdefault("credit_margin_percent", Decimal("0"))
        return await self.add(Client(**kwargs))

    async def profile(self, client: Client, **kwargs) -> ClientProfile:
        return await self.add(ClientProfile(client_id=client.id, **kwargs))

    async def icp(self, client: Client, filters=None, **kwargs) -> ICP:
        kwargs.setdefault("name", "Mid-market software")
        return await self.add(ICP(client_id=client.id, filters=filters or {}, **kwargs))

    async def persona(self, client: Client, **kwargs) -> Persona:
        kwargs.setdefault("name", "Revenue leaders")
        kwargs.setdefault("title_patterns", [])
        kwargs.setdefault("seniority_levels", [])
        kwargs.setdefault("departments", [])
        return await self.add(Persona(client_id=client.id, **kwargs))

    async def company(self, client: Client, **kwargs) -> Company:
        n = next(self._seq)
        kwargs.setdefault("name", f"Company {n}")
        kwargs.setdefault("domain", f"company{n}.com")
        kwargs.setdefault("pipeline_stage", "tam")
        kwargs.setdefault("sources", [])
        kwargs.setdefault("tech_stack", [])
        return await self.add(Company(client_id=client.id, **kwargs))

    async def contact(self, client: Client, company: Company, **kwargs) -> Contact:
        n = next(self._seq)
        kwargs.setdefault("full_name", f"Person {n}")
        kwargs.setdefault("linkedin_url", f"https://linkedin.com/in/person-{n}")
        return await self.add(Contact(client_id=client.id, company_id=company.id, **kwargs))

    async def prospect_list(self, client: Client, icp: ICP = None, persona: Persona = None, **kwargs) -> ProspectList:
        kwargs.setdefault("name", "Q3 outbound")
        return await self.add(ProspectList(
            client_id=client.id,
            icp_id=icp.id if icp else None,
            persona_id=persona.id if persona else None,
            **kwargs
        ))

    async def member(self, prospect_list: ProspectList, company: Company, contact: Contact = None, **kwargs) -> ListMember:
        return await self.add(ListMember(
            list_id=prospect_list.id,
            company_id=company.id,
            contact_id=contact.id if contact else None,
            **kwargs
        ))

    async def signal(self, client: Client, company: Company, **kwargs) -> CompanySignal:
        kwargs.setdefault("signal_type", "leadership_change")
        kwargs.setdefault("signal_strength", 0.9)
        kwargs.setdefault("source", "manual")
        kwargs.setdefault("signal_data", {"evidence": "Added by hand", "details": {}})
        kwargs.setdefault("detected_at", utcnow())
        return await self.add(CompanySignal(client_id=client.id, company_id=company.id, **kwargs))

    async def hypothesis(self, client: Client, **kwargs) -> SignalHypothesis:
        kwargs.setdefault("hypothesis", "New payment regulation forces fintechs to re-platform")
        kwargs.setdefault("signal_category", "regulatory")
        return await self.add(SignalHypothesis(client_id=client.id, **kwargs))


@pytest.fixture
def factory(session_factory):
    return ModelFactory(session_factory)


@pytest.fixture
async def client(factory):
    """Client with 100 credits and no margin"""
    return await factory.client()


# ============================================================================
# MODEL CLASSIFIER
# ============================================================================

@pytest.fixture
def classifier():
    """LLMClassifier double; set classify.return_value / side_effect per test"""
    mock = AsyncMock(spec=LLMClassifier)
    mock.classify.return_value = None
    return mock
