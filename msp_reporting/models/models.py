"""SQLAlchemy ORM models for MSP Reporting.

Cached provider data (clients, tickets, feedback) is keyed by the provider's
own integer ids and written only by the sync engine. Tenant data (companies,
profiles and the company-to-external-id mappings) is written only through
the admin and profile operations.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    CUSTOMER = "customer"


class SyncType(str, PyEnum):
    CLIENTS = "clients"
    TICKETS = "tickets"
    FEEDBACK = "feedback"


class SyncStatus(str, PyEnum):
    SUCCESS = "success"
    FAILED = "failed"


class SyncTaskStatus(str, PyEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# =============================================================================
# CACHED PSA DATA
# =============================================================================


class Client(Base, TimestampMixin):
    """A PSA client (customer organization) as last seen by sync."""

    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str | None] = mapped_column(String(255))
    toplevel_id: Mapped[int | None] = mapped_column(BigInteger)
    toplevel_name: Mapped[str | None] = mapped_column(String(255))
    inactive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    colour: Mapped[str | None] = mapped_column(String(32))
    last_ticket_date: Mapped[datetime | None] = mapped_column(nullable=True)

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="client")


class Ticket(Base, TimestampMixin):
    """A PSA ticket. ``is_closed`` is derived at sync time."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    client_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("clients.id"), nullable=False
    )
    client_name: Mapped[str | None] = mapped_column(String(255))
    site_id: Mapped[int | None] = mapped_column(BigInteger)
    site_name: Mapped[str | None] = mapped_column(String(255))
    user_name: Mapped[str | None] = mapped_column(String(255))
    summary: Mapped[str | None] = mapped_column(Text)
    details: Mapped[str | None] = mapped_column(Text)
    status_id: Mapped[int | None] = mapped_column(Integer)
    status_name: Mapped[str | None] = mapped_column(String(100))
    priority_id: Mapped[int | None] = mapped_column(Integer)
    ticket_type_id: Mapped[int | None] = mapped_column(Integer)
    team: Mapped[str | None] = mapped_column(String(255))
    agent_id: Mapped[int | None] = mapped_column(Integer)
    date_occurred: Mapped[datetime] = mapped_column(nullable=False)
    date_closed: Mapped[datetime | None] = mapped_column(nullable=True)
    response_date: Mapped[datetime | None] = mapped_column(nullable=True)
    last_action_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    client: Mapped["Client"] = relationship(back_populates="tickets")
    feedback: Mapped[list["Feedback"]] = relationship(back_populates="ticket")

    __table_args__ = (
        Index("idx_tickets_client_date", "client_id", "date_occurred"),
        Index("idx_tickets_date_occurred", "date_occurred"),
    )


class Feedback(Base, TimestampMixin):
    """Customer feedback on a ticket. Score 1 is satisfied, 2 dissatisfied."""

    __tablename__ = "feedback"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    ticket_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tickets.id"), nullable=False, index=True
    )
    score: Mapped[int | None] = mapped_column(Integer)
    score_band: Mapped[str | None] = mapped_column(String(50))
    date: Mapped[datetime | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text)

    ticket: Mapped["Ticket"] = relationship(back_populates="feedback")


# =============================================================================
# SYNC BOOKKEEPING
# =============================================================================


class SyncMetadata(Base):
    """Append-only record of each sync step outcome."""

    __tablename__ = "sync_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    last_sync: Mapped[datetime] = mapped_column(nullable=False)
    records_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    task_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("sync_tasks.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (Index("idx_sync_metadata_last_sync", "last_sync"),)


class SyncTask(Base, UUIDMixin, TimestampMixin):
    """A queued or running background full sync."""

    __tablename__ = "sync_tasks"

    status: Mapped[SyncTaskStatus] = mapped_column(
        Enum(SyncTaskStatus, name="sync_task_status", values_callable=_enum_values),
        default=SyncTaskStatus.QUEUED,
        nullable=False,
    )
    months_back: Mapped[int] = mapped_column(Integer, nullable=False)
    requested_by: Mapped[UUID | None] = mapped_column(nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    result: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text)


# =============================================================================
# TENANCY
# =============================================================================


class Company(Base, UUIDMixin, TimestampMixin):
    """A tenant. Its mapping rows define what its users may see."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    logo_url: Mapped[str | None] = mapped_column(Text)

    members: Mapped[list["UserCompany"]] = relationship(
        back_populates="company", cascade="all, delete-orphan", passive_deletes=True
    )
    client_mappings: Mapped[list["CompanyExternalClient"]] = relationship(
        back_populates="company", cascade="all, delete-orphan", passive_deletes=True
    )
    org_mappings: Mapped[list["CompanyExternalOrg"]] = relationship(
        back_populates="company", cascade="all, delete-orphan", passive_deletes=True
    )
    domain_assignments: Mapped[list["CompanyDomainAssignment"]] = relationship(
        back_populates="company", cascade="all, delete-orphan", passive_deletes=True
    )


class UserProfile(Base, TimestampMixin):
    """Dashboard user. ``user_id`` matches the auth token subject."""

    __tablename__ = "user_profiles"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid4
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    active_company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    impersonating_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("user_profiles.user_id", ondelete="SET NULL"), nullable=True
    )
    password_hash: Mapped[str | None] = mapped_column(String(255))

    memberships: Mapped[list["UserCompany"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN


class UserCompany(Base, UUIDMixin, TimestampMixin):
    """Membership of a user in a company."""

    __tablename__ = "user_companies"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("user_profiles.user_id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )

    user: Mapped["UserProfile"] = relationship(back_populates="memberships")
    company: Mapped["Company"] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_user_companies_user_company"),
    )


class CompanyExternalClient(Base, UUIDMixin, TimestampMixin):
    """Maps a company to a HaloPSA client id."""

    __tablename__ = "company_halopsa_clients"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    halopsa_client_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    company: Mapped["Company"] = relationship(back_populates="client_mappings")

    __table_args__ = (
        UniqueConstraint(
            "company_id", "halopsa_client_id", name="uq_company_halopsa_clients_pair"
        ),
    )


class CompanyExternalOrg(Base, UUIDMixin, TimestampMixin):
    """Maps a company to a NinjaOne organization id."""

    __tablename__ = "company_ninjaone_orgs"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    ninjaone_org_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ninjaone_org_name: Mapped[str | None] = mapped_column(String(255))

    company: Mapped["Company"] = relationship(back_populates="org_mappings")

    __table_args__ = (
        UniqueConstraint(
            "company_id", "ninjaone_org_id", name="uq_company_ninjaone_orgs_pair"
        ),
    )


class CompanyDomainAssignment(Base, UUIDMixin, TimestampMixin):
    """Assigns a 20i domain to exactly one company."""

    __tablename__ = "company_domain_assignments"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    domain_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    company: Mapped["Company"] = relationship(back_populates="domain_assignments")
