"""Webhook event ledger - one row per Stripe event id."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String, Text, text
from sqlmodel import Field, SQLModel


class WebhookEventResult(str, Enum):
    """Processing result of a webhook event."""

    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


# Results that are final: the event is never dispatched again
TERMINAL_RESULTS = frozenset({WebhookEventResult.SUCCESS.value, WebhookEventResult.SKIPPED.value})


class WebhookEvent(SQLModel, table=True):
    """
    Idempotency ledger for Stripe webhook deliveries.

    Stripe retries delivery until it sees a 2xx, so the same event id may
    arrive several times. A row left in `processing` (crash) or `error` is
    picked up again by the next delivery.
    """

    __tablename__ = "webhook_events"

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    event_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True),
    )
    event_type: str = Field(max_length=100, nullable=False, index=True)
    processing_result: str = Field(
        default=WebhookEventResult.PROCESSING.value,
        sa_column=Column(
            String(20),
            nullable=False,
            server_default=WebhookEventResult.PROCESSING.value,
        ),
    )
    error_message: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
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
        sa_column_kwargs={"onupdate": text("now()")},
    )

    @property
    def is_terminal(self) -> bool:
        return self.processing_result in TERMINAL_RESULTS
