"""
Pytest configuration and fixtures for MSP Reporting tests.

Every test gets a fresh SQLite database file through aiosqlite, so services
that commit do not leak state between tests and background sync tasks get
their own connections.
"""

import os

# Settings are read once at import time; configure them before importing the app.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test-secret-key-for-unit-tests-only"
os.environ["BCRYPT_ROUNDS"] = "4"
for _name in ("HALO_API_URL", "NINJA_CLIENT_ID", "TWENTYI_API_KEY", "JWT_AUDIENCE"):
    os.environ.pop(_name, None)

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from msp_reporting.models import (
    Base,
    Client,
    Company,
    CompanyDomainAssignment,
    CompanyExternalClient,
    CompanyExternalOrg,
    Feedback,
    Ticket,
    UserCompany,
    UserProfile,
    UserRole,
)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reporting.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# DATA FACTORY
# =============================================================================


class DataFactory:
    """Inserts tenant and ticket rows; every helper commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def company(
        self,
        name: str,
        client_ids=(),
        org_ids=(),
        domains=(),
    ) -> Company:
        company = Company(name=name)
        self.session.add(company)
        await self.session.flush()
        self.session.add_all(
            CompanyExternalClient(company_id=company.id, halopsa_client_id=c)
            for c in client_ids
        )
        self.session.add_all(
            CompanyExternalOrg(
                company_id=company.id, ninjaone_org_id=o, ninjaone_org_name=f"Org {o}"
            )
            for o in org_ids
        )
        self.session.add_all(
            CompanyDomainAssignment(company_id=company.id, domain_name=d)
            for d in domains
        )
        await self.session.commit()
        return company

    async def user(
        self,
        email: str,
        role: UserRole = UserRole.CUSTOMER,
        companies=(),
        active: Company | None = None,
    ) -> UserProfile:
        if active is None and companies:
            active = companies[0]
        profile = UserProfile(
            email=email,
            full_name=email.split("@")[0].title(),
            role=role,
            active_company_id=active.id if active else None,
        )
        self.session.add(profile)
        await self.session.flush()
        self.session.add_all(
            UserCompany(user_id=profile.user_id, company_id=c.id) for c in companies
        )
        await self.session.commit()
        return profile

    async def client(self, client_id: int, name: str | None = None) -> Client:
        client = Client(id=client_id, name=name or f"Client {client_id}")
        self.session.add(client)
        await self.session.commit()
        return client

    async def ticket(
        self,
        ticket_id: int,
        client_id: int,
        occurred: datetime,
        is_closed: bool = False,
        status_name: str | None = None,
    ) -> Ticket:
        ticket = Ticket(
            id=ticket_id,
            client_id=client_id,
            summary=f"Ticket {ticket_id}",
            status_name=status_name or ("Closed" if is_closed else "Open"),
            date_occurred=occurred,
            is_closed=is_closed,
        )
        self.session.add(ticket)
        await self.session.commit()
        return ticket

    async def feedback(self, feedback_id: int, ticket_id: int, score: int | None) -> Feedback:
        row = Feedback(id=feedback_id, ticket_id=ticket_id, score=score)
        self.session.add(row)
        await self.session.commit()
        return row


@pytest.fixture
def factory(session) -> DataFactory:
    return DataFactory(session)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
