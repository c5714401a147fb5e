"""Idempotency keys for state-mutating store operations.

Every mutation reachable from a webhook handler or a referral discount
transaction takes an `IdempotencyKey`, so replaying the same logical
operation (redelivered event, retried batch run) is detectable by the store.
"""

import hashlib
import uuid as uuid_pkg
from dataclasses import dataclass


def email_fingerprint(email: str, length: int = 12) -> str:
    """Short, stable hash fragment of an email (case-insensitive)."""
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()[:length]


@dataclass(frozen=True)
class IdempotencyKey:
    """Opaque key identifying one logical mutation."""

    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("Idempotency key must not be empty")
        if len(self.value) > 255:
            raise ValueError("Idempotency key must be at most 255 characters")

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_event(cls, event_id: str) -> "IdempotencyKey":
        """Key for effects of a Stripe event (stable across redeliveries)."""
        return cls(f"event:{event_id}")

    @classmethod
    def for_discount(cls, period: str, email: str) -> "IdempotencyKey":
        """Key for one referral discount per tenant per period (YYYY-MM)."""
        return cls(f"discount:{period}:{email_fingerprint(email)}")

    @classmethod
    def new_transaction(cls, prefix: str) -> "IdempotencyKey":
        """Fresh, never-repeating key (e.g. a payment failure transition)."""
        return cls(f"{prefix}:{uuid_pkg.uuid4().hex}")
