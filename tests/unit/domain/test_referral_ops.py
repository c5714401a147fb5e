"""Unit tests for ReferralOperations: keyed increments and balance decrements."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.idempotency import IdempotencyKey
from app.domain.referral_operations import ReferralOperations, month_start
from app.models.referral import ReferralTransaction

from tests.helpers.mock_factories import make_mock_referral, mock_scalar_result, mock_scalars_result


def _db() -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock()
    db.flush = AsyncMock()
    return db


def _markers(db: MagicMock) -> list[ReferralTransaction]:
    return [
        call.args[0]
        for call in db.add.call_args_list
        if isinstance(call.args[0], ReferralTransaction)
    ]


class TestMonthStart:
    def test_truncates_to_first_instant(self):
        now = datetime(2026, 3, 15, 9, 30, 12, 500, tzinfo=UTC)
        assert month_start(now) == datetime(2026, 3, 1, tzinfo=UTC)


class TestIncrement:
    """Credits are applied once per key."""

    def setup_method(self):
        self.ops = ReferralOperations()
        self.key = IdempotencyKey.from_event("evt_created")

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "has_transaction")
    async def test_increments_balance_and_lifetime_count(self, mock_has):
        mock_has.return_value = False
        referral = make_mock_referral(referral_point=2, total_referral_count=4)
        db = _db()

        applied = await self.ops.increment(db, referral, self.key)

        assert applied is True
        assert referral.referral_point == 3
        assert referral.total_referral_count == 5
        markers = _markers(db)
        assert len(markers) == 1
        assert markers[0].idempotency_key == "event:evt_created"
        assert markers[0].kind == "increment"

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "has_transaction")
    async def test_null_lifetime_count_starts_at_one(self, mock_has):
        mock_has.return_value = False
        referral = make_mock_referral(referral_point=0, total_referral_count=None)

        await self.ops.increment(_db(), referral, self.key)

        assert referral.total_referral_count == 1

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "has_transaction")
    async def test_replayed_key_changes_nothing(self, mock_has):
        mock_has.return_value = True
        referral = make_mock_referral(referral_point=2, total_referral_count=4)
        db = _db()

        applied = await self.ops.increment(db, referral, self.key)

        assert applied is False
        assert referral.referral_point == 2
        db.add.assert_not_called()
        db.flush.assert_not_awaited()


class TestDecreaseBalance:
    """One discount month consumed per key; balance never negative."""

    def setup_method(self):
        self.ops = ReferralOperations()
        self.key = IdempotencyKey.for_discount("2026-03", "salon@example.com")

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "has_transaction")
    @patch.object(ReferralOperations, "get_by_email")
    async def test_decrements_and_records_month(self, mock_get, mock_has):
        referral = make_mock_referral(referral_point=3)
        mock_get.return_value = referral
        mock_has.return_value = False
        db = _db()

        result = await self.ops.decrease_balance(db, "salon@example.com", self.key, "2026-03")

        assert result.success is True
        assert result.already_processed is False
        assert result.message == "Referral balance decreased to 2"
        mock_get.assert_awaited_once_with(db, "salon@example.com", for_update=True)
        assert referral.referral_point == 2
        assert referral.last_applied_month == "2026-03"
        markers = _markers(db)
        assert markers[0].kind == "decrement"
        assert markers[0].applied_month == "2026-03"

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "get_by_email")
    async def test_missing_referral_fails(self, mock_get):
        mock_get.return_value = None

        result = await self.ops.decrease_balance(_db(), "nobody@example.com", self.key, "2026-03")

        assert result.success is False
        assert result.message == "Referral record not found"

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "has_transaction")
    @patch.object(ReferralOperations, "get_by_email")
    async def test_same_key_reports_already_processed(self, mock_get, mock_has):
        referral = make_mock_referral(referral_point=2)
        mock_get.return_value = referral
        mock_has.return_value = True
        db = _db()

        result = await self.ops.decrease_balance(db, "salon@example.com", self.key, "2026-03")

        assert result.success is True
        assert result.already_processed is True
        assert referral.referral_point == 2
        db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    @patch.object(ReferralOperations, "has_transaction")
    @patch.object(ReferralOperations, "get_by_email")
    async def test_zero_balance_is_refused(self, mock_get, mock_has):
        referral = make_mock_referral(referral_point=0)
        mock_get.return_value = referral
        mock_has.return_value = False

        result = await self.ops.decrease_balance(_db(), "salon@example.com", self.key, "2026-03")

        assert result.success is False
        assert result.message == "Referral count is 0 or negative"
        assert referral.referral_point == 0


class TestQueries:
    def setup_method(self):
        self.ops = ReferralOperations()

    @pytest.mark.asyncio
    async def test_has_transaction_true_when_marker_exists(self):
        db = _db()
        db.execute.return_value = mock_scalar_result(uuid.uuid4())

        assert await self.ops.has_transaction(db, uuid.uuid4(), IdempotencyKey("k")) is True

    @pytest.mark.asyncio
    async def test_has_transaction_false_without_marker(self):
        db = _db()
        db.execute.return_value = mock_scalar_result(None)

        assert await self.ops.has_transaction(db, uuid.uuid4(), IdempotencyKey("k")) is False

    @pytest.mark.asyncio
    async def test_get_by_code_matches_exactly(self):
        db = _db()
        referral = make_mock_referral(referral_code="SALON-1234")
        db.execute.return_value = mock_scalar_result(referral)

        result = await self.ops.get_by_code(db, " SALON-1234 ")

        assert result is referral
        statement = db.execute.call_args.args[0]
        assert "upper" not in str(statement).lower()
        assert "SALON-1234" in statement.compile().params.values()

    @pytest.mark.asyncio
    async def test_eligible_emails_applies_default_filters(self):
        db = _db()
        db.execute.return_value = mock_scalars_result(["a@example.com", "b@example.com"])

        emails = await self.ops.get_eligible_emails(db, max_referral_count=10)

        assert emails == ["a@example.com", "b@example.com"]
        sql = str(db.execute.call_args.args[0])
        assert "total_referral_count" in sql
        assert "updated_at" in sql

    @pytest.mark.asyncio
    async def test_eligible_emails_overrides_drop_filters(self):
        db = _db()
        db.execute.return_value = mock_scalars_result([])

        await self.ops.get_eligible_emails(
            db, max_referral_count=10, include_updated=True, include_over_max=True
        )

        sql = str(db.execute.call_args.args[0])
        assert "total_referral_count <" not in sql
        assert "tenant_referrals.updated_at <" not in sql


class TestRowLocking:
    """Balance mutations read the referral row under SELECT ... FOR UPDATE."""

    def setup_method(self):
        self.ops = ReferralOperations()

    @pytest.mark.asyncio
    async def test_get_for_update_locks_row(self):
        db = _db()
        db.execute.return_value = mock_scalar_result(make_mock_referral())

        await self.ops.get(db, uuid.uuid4(), for_update=True)

        assert "FOR UPDATE" in str(db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_plain_get_does_not_lock(self):
        db = _db()
        db.execute.return_value = mock_scalar_result(None)

        await self.ops.get(db, uuid.uuid4())

        assert "FOR UPDATE" not in str(db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_get_by_email_for_update_locks_row(self):
        db = _db()
        db.execute.return_value = mock_scalar_result(None)

        await self.ops.get_by_email(db, "salon@example.com", for_update=True)

        assert "FOR UPDATE" in str(db.execute.call_args.args[0])

    @pytest.mark.asyncio
    async def test_decrease_balance_reads_locked_row(self):
        db = _db()
        db.execute.side_effect = [
            mock_scalar_result(make_mock_referral(referral_point=1)),
            mock_scalar_result(None),
        ]
        key = IdempotencyKey.for_discount("2026-03", "salon@example.com")

        result = await self.ops.decrease_balance(db, "salon@example.com", key, "2026-03")

        assert result.success is True
        first_statement = db.execute.call_args_list[0].args[0]
        assert "FOR UPDATE" in str(first_statement)
