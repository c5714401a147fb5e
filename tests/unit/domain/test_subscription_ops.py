"""Unit tests for SubscriptionOperations: full-state sync, payment failure transition."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.idempotency import IdempotencyKey
from app.domain.subscription_operations import SubscriptionOperations
from app.models.subscription import SubscriptionSnapshot, TenantSubscription

from tests.helpers.mock_factories import make_mock_subscription


def _snapshot(**overrides) -> SubscriptionSnapshot:
    values = {
        "stripe_subscription_id": "sub_1",
        "stripe_customer_id": "cus_1",
        "status": "active",
        "price_id": "price_pro",
        "plan_name": "Pro",
        "billing_period": "monthly",
        "current_period_end": datetime(2026, 4, 1, tzinfo=UTC),
    }
    values.update(overrides)
    return SubscriptionSnapshot(**values)


def _db(superseded: int = 0) -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock(return_value=MagicMock(rowcount=superseded))
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    return db


class TestSync:
    """Sync overwrites the stored row with the snapshot."""

    def setup_method(self):
        self.ops = SubscriptionOperations()
        self.tenant_id = uuid.uuid4()
        self.key = IdempotencyKey.from_event("evt_1")

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_creates_row_when_unknown(self, mock_get):
        mock_get.return_value = None
        db = _db()

        result = await self.ops.sync(db, self.tenant_id, _snapshot(), self.key)

        assert isinstance(result, TenantSubscription)
        assert result.tenant_id == self.tenant_id
        assert result.stripe_subscription_id == "sub_1"
        assert result.plan_name == "Pro"
        assert result.last_idempotency_key == "event:evt_1"
        db.add.assert_called_once_with(result)
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_overwrites_every_field_of_existing_row(self, mock_get):
        existing = make_mock_subscription(
            tenant_id=self.tenant_id, status="active", plan_name="Lite", price_id="price_lite"
        )
        mock_get.return_value = existing

        await self.ops.sync(
            _db(), self.tenant_id, _snapshot(status="past_due", plan_name="Pro"), self.key
        )

        assert existing.status == "past_due"
        assert existing.plan_name == "Pro"
        assert existing.price_id == "price_pro"
        assert existing.last_idempotency_key == "event:evt_1"

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_live_sync_supersedes_other_rows(self, mock_get):
        mock_get.return_value = make_mock_subscription(tenant_id=self.tenant_id)
        db = _db(superseded=1)

        await self.ops.sync(db, self.tenant_id, _snapshot(status="active"), self.key)

        db.execute.assert_awaited_once()
        statement = str(db.execute.call_args.args[0])
        assert "UPDATE tenant_subscriptions" in statement

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_canceled_sync_leaves_other_rows_alone(self, mock_get):
        mock_get.return_value = make_mock_subscription(tenant_id=self.tenant_id)
        db = _db()

        await self.ops.sync(db, self.tenant_id, _snapshot(status="canceled"), self.key)

        db.execute.assert_not_awaited()

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_same_snapshot_twice_is_stable(self, mock_get):
        existing = make_mock_subscription(tenant_id=self.tenant_id)
        mock_get.return_value = existing
        snapshot = _snapshot(status="trialing")

        await self.ops.sync(_db(), self.tenant_id, snapshot, self.key)
        first = (existing.status, existing.plan_name, existing.current_period_end)
        await self.ops.sync(_db(), self.tenant_id, snapshot, self.key)

        assert (existing.status, existing.plan_name, existing.current_period_end) == first


class TestMarkPaymentFailed:
    """active -> past_due, and nothing else."""

    def setup_method(self):
        self.ops = SubscriptionOperations()
        self.tenant_id = uuid.uuid4()
        self.key = IdempotencyKey.new_transaction("payment_failed")

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_moves_active_to_past_due(self, mock_get):
        sub = make_mock_subscription(tenant_id=self.tenant_id, stripe_customer_id="cus_1")
        mock_get.return_value = sub

        result = await self.ops.mark_payment_failed(
            _db(), self.tenant_id, "sub_1", "cus_1", self.key
        )

        assert result is sub
        assert sub.status == "past_due"
        assert sub.last_payment_failure_transaction_id == str(self.key)

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_unknown_subscription_is_noop(self, mock_get):
        mock_get.return_value = None
        db = _db()

        result = await self.ops.mark_payment_failed(
            db, self.tenant_id, "sub_x", "cus_1", self.key
        )

        assert result is None
        db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_other_tenants_subscription_is_noop(self, mock_get):
        sub = make_mock_subscription(tenant_id=uuid.uuid4(), stripe_customer_id="cus_1")
        mock_get.return_value = sub

        result = await self.ops.mark_payment_failed(
            _db(), self.tenant_id, "sub_1", "cus_1", self.key
        )

        assert result is None
        assert sub.status == "active"

    @pytest.mark.asyncio
    @patch.object(SubscriptionOperations, "get_by_stripe_subscription_id")
    async def test_canceled_subscription_stays_canceled(self, mock_get):
        sub = make_mock_subscription(
            tenant_id=self.tenant_id, stripe_customer_id="cus_1", status="canceled"
        )
        mock_get.return_value = sub
        db = _db()

        result = await self.ops.mark_payment_failed(
            db, self.tenant_id, "sub_1", "cus_1", self.key
        )

        assert result is sub
        assert sub.status == "canceled"
        db.flush.assert_not_awaited()
