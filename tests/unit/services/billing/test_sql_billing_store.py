"""Unit tests for SqlBillingStore: session handling and error mapping."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.exceptions import StoreError
from app.core.idempotency import IdempotencyKey
from app.domain.referral_operations import DecrementResult
from app.models.subscription import SubscriptionSnapshot
from app.services.billing.store import SqlBillingStore

from tests.helpers.mock_factories import make_mock_referral, make_mock_webhook_event


def _session() -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def _store(session: MagicMock) -> SqlBillingStore:
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return SqlBillingStore(
        MagicMock(return_value=context), max_referral_count=10, eligible_email_limit=50
    )


def _integrity_error() -> IntegrityError:
    return IntegrityError("INSERT INTO referral_transactions", {}, Exception("duplicate key"))


class TestSubscriptionWrites:
    @pytest.mark.asyncio
    @patch("app.services.billing.store.subscription_ops")
    async def test_sync_commits(self, mock_ops):
        mock_ops.sync = AsyncMock()
        session = _session()
        snapshot = SubscriptionSnapshot(
            stripe_subscription_id="sub_1", stripe_customer_id="cus_1", status="active"
        )

        await _store(session).sync_subscription(MagicMock(), snapshot, IdempotencyKey("k"))

        mock_ops.sync.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.billing.store.subscription_ops")
    async def test_sync_database_error_becomes_store_error(self, mock_ops):
        mock_ops.sync = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("gone")))
        session = _session()
        snapshot = SubscriptionSnapshot(
            stripe_subscription_id="sub_1", stripe_customer_id="cus_1", status="active"
        )

        with pytest.raises(StoreError, match="sub_1"):
            await _store(session).sync_subscription(MagicMock(), snapshot, IdempotencyKey("k"))

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()


class TestReferralWrites:
    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_increment_race_means_already_applied(self, mock_ops):
        mock_ops.get = AsyncMock(return_value=make_mock_referral())
        mock_ops.increment = AsyncMock(side_effect=_integrity_error())
        session = _session()

        applied = await _store(session).increment_referral_count(
            MagicMock(), IdempotencyKey("event:evt_1")
        )

        assert applied is False
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_increment_locks_referral_row(self, mock_ops):
        referral = make_mock_referral()
        mock_ops.get = AsyncMock(return_value=referral)
        mock_ops.increment = AsyncMock(return_value=True)
        session = _session()
        referral_id = referral.id

        applied = await _store(session).increment_referral_count(referral_id, IdempotencyKey("k"))

        assert applied is True
        mock_ops.get.assert_awaited_once_with(session, referral_id, for_update=True)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_increment_lookup_failure_becomes_store_error(self, mock_ops):
        mock_ops.get = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("gone")))
        session = _session()

        with pytest.raises(StoreError, match="Failed to increment"):
            await _store(session).increment_referral_count(MagicMock(), IdempotencyKey("k"))

        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_increment_unknown_referral_raises(self, mock_ops):
        mock_ops.get = AsyncMock(return_value=None)

        with pytest.raises(StoreError, match="not found"):
            await _store(_session()).increment_referral_count(MagicMock(), IdempotencyKey("k"))

    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_decrement_commits_result(self, mock_ops):
        expected = DecrementResult(success=True, message="Referral balance decreased to 1")
        mock_ops.decrease_balance = AsyncMock(return_value=expected)
        session = _session()

        result = await _store(session).decrease_referral_balance(
            "salon@example.com", IdempotencyKey("k"), "2026-03"
        )

        assert result is expected
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_decrement_race_means_already_processed(self, mock_ops):
        mock_ops.decrease_balance = AsyncMock()
        session = _session()
        session.commit.side_effect = _integrity_error()

        result = await _store(session).decrease_referral_balance(
            "salon@example.com", IdempotencyKey("k"), "2026-03"
        )

        assert result.success is True
        assert result.already_processed is True
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("app.services.billing.store.referral_ops")
    async def test_eligible_emails_passes_limits(self, mock_ops):
        mock_ops.get_eligible_emails = AsyncMock(return_value=["a@example.com"])

        emails = await _store(_session()).get_eligible_tenant_emails(include_updated=True)

        assert emails == ["a@example.com"]
        kwargs = mock_ops.get_eligible_emails.call_args.kwargs
        assert kwargs["max_referral_count"] == 10
        assert kwargs["limit"] == 50
        assert kwargs["include_updated"] is True
        assert kwargs["include_over_max"] is False
        assert kwargs["now"] is None


class TestLedger:
    @pytest.mark.asyncio
    @patch("app.services.billing.store.webhook_event_ops")
    async def test_check_processed_unknown_event(self, mock_ops):
        mock_ops.get_by_event_id = AsyncMock(return_value=None)

        check = await _store(_session()).check_processed_event("evt_1")

        assert check.is_processed is False
        assert check.result is None

    @pytest.mark.asyncio
    @patch("app.services.billing.store.webhook_event_ops")
    async def test_check_processed_terminal_event(self, mock_ops):
        mock_ops.get_by_event_id = AsyncMock(
            return_value=make_mock_webhook_event(processing_result="success")
        )

        check = await _store(_session()).check_processed_event("evt_1")

        assert check.is_processed is True
        assert check.result == "success"

    @pytest.mark.asyncio
    @patch("app.services.billing.store.webhook_event_ops")
    async def test_update_result_for_unknown_event_raises(self, mock_ops):
        mock_ops.set_result = AsyncMock(return_value=False)

        with pytest.raises(StoreError, match="evt_1"):
            await _store(_session()).update_event_result("evt_1", "success")
