"""Tenant model - a salon account that owns billing records."""

import uuid as uuid_pkg
from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, String, text
from sqlmodel import Field, SQLModel


class Tenant(SQLModel, table=True):
    """
    A salon tenant.

    Archived tenants are kept for audit but are invisible to every billing
    lookup (offboarding races are resolved as "tenant not found").
    """

    __tablename__ = "tenants"
    __table_args__ = (
        Index("ix_tenants_user_email_archive", "user_email", "is_archive"),
        Index("ix_tenants_stripe_customer_archive", "stripe_customer_id", "is_archive"),
    )

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    user_email: str = Field(sa_type=String(255), nullable=False)
    stripe_customer_id: str | None = Field(default=None, max_length=255, nullable=True)
    is_archive: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
