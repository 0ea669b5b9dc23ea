"""
models/tenant.py
----------------
Tenant (organisation) ORM models and their access-control relations.

Each tenant is an isolated workspace. All data belonging to a tenant is
scoped by tenant_id at the query level — never trust application-level
filtering alone; always include tenant_id in WHERE clauses.

  Tenant       — agency or client workspace; external_id is the identity
                 provider's organisation id (unique when present).
  Membership   — (tenant, user) → role. One row per pair.
  AgencyClient — delegation: agency owner/admins act as admin in the client.
  UserProfile  — per-user navigation defaults (active tenant pointer).
  PortalConfig — per-tenant onboarding switch and dashboard layout.
"""

from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import JSON, Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agency_portal.db.base import Base, TimestampMixin, generate_uuid


class TenantKind(str, PyEnum):
    agency = "agency"
    client = "client"


class Role(str, PyEnum):
    owner = "owner"
    admin = "admin"
    member = "member"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]

    def satisfies(self, minimum: "Role") -> bool:
        return self.rank >= minimum.rank

    @property
    def is_agency(self) -> bool:
        return self in (Role.owner, Role.admin)


ROLE_RANK = {Role.owner: 3, Role.admin: 2, Role.member: 1}


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    # Join key for inbound external references
    external_id: Mapped[Optional[str]] = mapped_column(
        String(64), unique=True, nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TenantKind.client.value
    )

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership", back_populates="tenant", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} external_id={self.external_id} kind={self.kind}>"


class Membership(Base, TimestampMixin):
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_membership_tenant_user"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Role.member.value
    )

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="memberships")

    def __repr__(self) -> str:
        return f"<Membership tenant_id={self.tenant_id} user_id={self.user_id} role={self.role}>"


class AgencyClient(Base, TimestampMixin):
    __tablename__ = "agency_clients"
    __table_args__ = (
        UniqueConstraint(
            "agency_tenant_id", "client_tenant_id", name="uq_agency_client_pair"
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    agency_tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class UserProfile(Base, TimestampMixin):
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Navigation default only; never an authorisation input
    active_tenant_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
    )


class PortalConfig(Base, TimestampMixin):
    __tablename__ = "portal_configs"

    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        primary_key=True,
    )
    onboarding_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    dashboard_layout: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
