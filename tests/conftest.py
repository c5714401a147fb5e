"""Root conftest - test infrastructure for all backend tests.

Provides:
- In-memory store and Stripe fakes implementing the billing protocols
- Dispatcher / referral processor built around the fakes (no sleeping)
- API client with dependency overrides

No test touches a database or the Stripe API.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.throttle import BatchThrottle, ThrottleConfig
from app.services.billing.event_ledger import EventLedger
from app.services.billing.referral_discount import ReferralDiscountProcessor
from app.services.billing.webhook_dispatcher import WebhookDispatcher
from app.services.billing.webhook_handlers import WebhookHandlers

from tests.helpers.fake_provider import FakeStripe
from tests.helpers.fake_store import InMemoryBillingStore

# Fixed "now" for referral processing: mid-month, so month boundaries are unambiguous
NOW = datetime(2026, 3, 15, 9, 30, tzinfo=UTC)


@pytest.fixture
def store() -> InMemoryBillingStore:
    return InMemoryBillingStore(max_referral_count=10)


@pytest.fixture
def provider() -> FakeStripe:
    return FakeStripe()


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Sleep replacement: records requested delays, returns immediately."""
    return AsyncMock()


@pytest.fixture
def dispatcher(store, provider, no_sleep) -> WebhookDispatcher:
    handlers = WebhookHandlers(
        store,
        provider,
        retry_attempts=3,
        retry_base_delay=0.5,
        sleep=no_sleep,
    )
    return WebhookDispatcher(EventLedger(store), handlers)


def build_processor(
    store,
    provider,
    sleep,
    batch_size: int = 20,
    delay_seconds: float = 5.0,
    **overrides,
) -> ReferralDiscountProcessor:
    throttle = BatchThrottle(
        ThrottleConfig(batch_size=batch_size, delay_seconds=delay_seconds),
        sleep=sleep,
    )
    options = {
        "discount_amount": 2000,
        "currency": "jpy",
        "max_referral_count": 10,
        "retry_attempts": 3,
        "retry_base_delay": 0.5,
        "sleep": sleep,
        "now": lambda: NOW,
    }
    options.update(overrides)
    return ReferralDiscountProcessor(store, provider, throttle=throttle, **options)


@pytest.fixture
def processor(store, provider, no_sleep) -> ReferralDiscountProcessor:
    return build_processor(store, provider, no_sleep)


# ─────────────────────────────────────────────────────────────────────────────
# API Client
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def api_client(dispatcher, processor, provider, monkeypatch):
    """HTTP client with billing services swapped for the in-memory fakes.

    Overrides: get_dispatcher, get_processor, get_webhook_verifier.
    Stripe is reported as configured and the cron secret is set.
    """
    from app.api.deps.billing import get_dispatcher, get_processor, get_webhook_verifier
    from app.config import settings
    from app.main import app

    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_fake")
    monkeypatch.setattr(settings, "cron_secret", "test-cron-secret")

    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_processor] = lambda: processor
    app.dependency_overrides[get_webhook_verifier] = lambda: provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
