"""Referral models - per-tenant referral balance and its mutation markers."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class TenantReferral(SQLModel, table=True):
    """
    Referral balance for a tenant.

    referral_point is the number of discount months still owed to the tenant
    (one per successful referral, consumed one per month). total_referral_count
    is the lifetime number of referrals and only ever grows.
    """

    __tablename__ = "tenant_referrals"
    __table_args__ = (
        CheckConstraint("referral_point >= 0", name="ck_tenant_referrals_point_non_negative"),
    )

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    tenant_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    referral_code: str = Field(
        sa_column=Column(String(50), nullable=False, unique=True),
    )

    referral_point: int = Field(
        default=0,
        nullable=False,
        sa_column_kwargs={
            "server_default": text("0"),
            "comment": "Discount months remaining (never negative)",
        },
    )
    total_referral_count: int | None = Field(
        default=0,
        nullable=True,
        sa_column_kwargs={"server_default": text("0")},
    )
    last_applied_month: str | None = Field(
        default=None,
        max_length=7,
        nullable=True,
        sa_column_kwargs={"comment": "YYYY-MM of the last discount applied"},
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    updated_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None,
        sa_type=DateTime(timezone=True),
    )


class ReferralTransactionKind(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"


class ReferralTransaction(SQLModel, table=True):
    """
    Marker row for one applied referral mutation.

    The unique (referral_id, idempotency_key) constraint is what makes
    increments and decrements exactly-once: the marker is inserted in the
    same transaction as the balance change.
    """

    __tablename__ = "referral_transactions"
    __table_args__ = (
        UniqueConstraint(
            "referral_id", "idempotency_key", name="uq_referral_transactions_referral_key"
        ),
    )

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    referral_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("tenant_referrals.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    idempotency_key: str = Field(max_length=255, nullable=False)
    kind: str = Field(sa_column=Column(String(20), nullable=False))
    applied_month: str | None = Field(default=None, max_length=7, nullable=True)

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
