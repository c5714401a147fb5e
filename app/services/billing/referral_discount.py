"""Referral discount batch processor.

Applies one month of referral discount to each eligible tenant:

    create coupon -> apply to subscription -> decrement referral balance
    -> delete coupon

The coupon is scaffolding: once created it is deleted on every exit path.
Deleting it does not undo a discount already attached to the subscription.

Tenants are processed sequentially in throttled batches to stay within
Stripe rate limits. A failure for one tenant becomes an entry in the report
and never stops the run.
"""

import asyncio
import logging
import random
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.core.idempotency import IdempotencyKey, email_fingerprint
from app.core.retry import SleepFunc, retry_async
from app.core.throttle import BatchThrottle
from app.models.referral import TenantReferral
from app.models.subscription import DISCOUNTABLE_STATUSES, TenantSubscription
from app.services.billing.store import BillingStore
from app.services.stripe_service import BillingProvider

logger = logging.getLogger(__name__)

_COUPON_SUFFIX_CHARS = string.ascii_lowercase + string.digits


# ─────────────────────────────────────────────────────────────────────────────
# Outcomes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Applied:
    """Discount applied (or already applied for this period)."""

    already_processed: bool = False
    message: str | None = None


@dataclass(frozen=True)
class SkippedNotEligible:
    reason: str


@dataclass(frozen=True)
class Failed:
    error: str


DiscountOutcome = Applied | SkippedNotEligible | Failed


@dataclass
class TenantDiscountResult:
    email: str
    success: bool
    error: str | None = None


@dataclass
class ReferralDiscountReport:
    """Summary of a referral discount run."""

    results: list[TenantDiscountResult] = field(default_factory=list)
    total_processed: int = 0
    success_count: int = 0
    failure_count: int = 0
    processing_time: str = ""
    duration_seconds: float = 0.0

    def add(self, email: str, outcome: DiscountOutcome) -> None:
        if isinstance(outcome, Applied):
            error = f"Already processed: {outcome.message}" if outcome.already_processed else None
            self.results.append(TenantDiscountResult(email=email, success=True, error=error))
            self.success_count += 1
        elif isinstance(outcome, SkippedNotEligible):
            self.results.append(
                TenantDiscountResult(email=email, success=False, error=outcome.reason)
            )
            self.failure_count += 1
        else:
            self.results.append(
                TenantDiscountResult(email=email, success=False, error=outcome.error)
            )
            self.failure_count += 1


def generate_coupon_id(email: str, now: datetime) -> str:
    """Unique, provider-facing coupon id: ref_<ms>_<emailhash>_<random>."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(random.choices(_COUPON_SUFFIX_CHARS, k=3))
    return f"ref_{millis}_{email_fingerprint(email, 5)}_{suffix}"


def billing_period(now: datetime) -> str:
    return now.strftime("%Y-%m")


def updated_in_month(updated_at: datetime | None, now: datetime) -> bool:
    """Whether a timestamp falls in the same calendar month (UTC) as `now`."""
    if updated_at is None:
        return False
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=UTC)
    updated_at = updated_at.astimezone(UTC)
    return (updated_at.year, updated_at.month) == (now.year, now.month)


# ─────────────────────────────────────────────────────────────────────────────
# Processor
# ─────────────────────────────────────────────────────────────────────────────


class ReferralDiscountProcessor:
    """Runs the per-tenant referral discount transaction over many tenants."""

    def __init__(
        self,
        store: BillingStore,
        provider: BillingProvider,
        throttle: BatchThrottle,
        scheduled_throttle: BatchThrottle | None = None,
        discount_amount: int = 2000,
        currency: str = "jpy",
        max_referral_count: int = 10,
        verify_upcoming_invoice: bool = False,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        sleep: SleepFunc = asyncio.sleep,
        now: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.provider = provider
        self.throttle = throttle
        self.scheduled_throttle = scheduled_throttle or throttle
        self.discount_amount = discount_amount
        self.currency = currency
        self.max_referral_count = max_referral_count
        self.verify_upcoming_invoice = verify_upcoming_invoice
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(UTC))

    async def run_scheduled(self) -> ReferralDiscountReport:
        """Monthly run over every tenant the store reports as eligible."""
        emails = await self.store.get_eligible_tenant_emails(
            include_updated=False, include_over_max=False, now=self._now()
        )
        logger.info(f"[referral-discount] {len(emails)} eligible tenants")
        return await self.run(emails, throttle=self.scheduled_throttle)

    async def run(
        self,
        emails: list[str],
        apply_over_max: bool = False,
        include_already_updated: bool = False,
        throttle: BatchThrottle | None = None,
    ) -> ReferralDiscountReport:
        """
        Apply the discount to each tenant email, in throttled batches.

        apply_over_max bypasses the lifetime referral cap and
        include_already_updated bypasses the once-per-month check; both are
        for manual runs only.
        """
        start = time.monotonic()
        throttle = throttle or self.throttle
        report = ReferralDiscountReport(total_processed=len(emails))

        async for index, batch in throttle.batches(emails):
            logger.info(
                f"[referral-discount] Batch {index + 1}: {len(batch)} tenants "
                f"(apply_over_max={apply_over_max}, "
                f"include_already_updated={include_already_updated})"
            )
            for email in batch:
                try:
                    outcome = await self.apply_to_tenant(
                        email,
                        apply_over_max=apply_over_max,
                        include_already_updated=include_already_updated,
                    )
                except Exception as e:
                    logger.exception(f"[referral-discount] {email}: unexpected error: {e}")
                    outcome = Failed(str(e) or type(e).__name__)
                report.add(email, outcome)

        report.processing_time = self._now().isoformat()
        report.duration_seconds = round(time.monotonic() - start, 2)

        logger.info(
            f"[referral-discount] Completed: {report.total_processed} processed, "
            f"{report.success_count} succeeded, {report.failure_count} failed "
            f"({report.duration_seconds}s)"
        )
        return report

    async def apply_to_tenant(
        self,
        email: str,
        apply_over_max: bool = False,
        include_already_updated: bool = False,
    ) -> DiscountOutcome:
        """Check eligibility, then run the discount transaction for one tenant."""
        now = self._now()

        subscription = await self.store.find_subscription_by_email(email)
        if (
            subscription is None
            or subscription.status not in DISCOUNTABLE_STATUSES
            or not subscription.stripe_subscription_id
        ):
            return SkippedNotEligible("Subscription not found")

        if not subscription.stripe_customer_id:
            return SkippedNotEligible("Stripe customer ID not found")

        referral = await self.store.find_referral_by_customer_id(subscription.stripe_customer_id)
        if referral is None:
            return SkippedNotEligible("Referral record not found")

        if (referral.referral_point or 0) <= 0:
            return SkippedNotEligible("Referral count is 0 or negative")

        if not apply_over_max and (referral.total_referral_count or 0) >= self.max_referral_count:
            return SkippedNotEligible(
                f"Total referral count exceeded maximum limit of {self.max_referral_count}"
            )

        if not include_already_updated and updated_in_month(referral.updated_at, now):
            return SkippedNotEligible("Referral was already updated this month")

        return await self._apply_discount(email, subscription, referral, now)

    async def _apply_discount(
        self,
        email: str,
        subscription: TenantSubscription,
        referral: TenantReferral,
        now: datetime,
    ) -> DiscountOutcome:
        period = billing_period(now)
        coupon_id = generate_coupon_id(email, now)
        remaining = referral.referral_point - 1

        try:
            await self.provider.create_coupon(
                coupon_id=coupon_id,
                amount_off=self.discount_amount,
                currency=self.currency,
                name=f"Referral discount ({remaining} left)",
                duration="once",
                metadata={"type": "referral", "period": period},
            )
        except Exception as e:
            logger.error(f"[referral-discount] {email}: coupon creation failed: {e}")
            return Failed(f"Stripe coupon creation failed: {e}")

        try:
            try:
                await self.provider.apply_coupon_to_subscription(
                    subscription.stripe_subscription_id, coupon_id
                )
            except Exception as e:
                logger.error(f"[referral-discount] {email}: applying coupon failed: {e}")
                return Failed(f"Stripe subscription update failed: {e}")

            key = IdempotencyKey.for_discount(period, email)
            try:
                result = await retry_async(
                    lambda: self.store.decrease_referral_balance(email, key, period),
                    attempts=self.retry_attempts,
                    base_delay=self.retry_base_delay,
                    sleep=self._sleep,
                    description=f"decrease referral balance for {email}",
                )
            except Exception as e:
                logger.error(
                    f"[referral-discount] {email}: discount applied to "
                    f"{subscription.stripe_subscription_id} but balance not decremented: {e}"
                )
                return Failed(f"Failed to update referral count: {e}")

            if not result.success:
                logger.error(
                    f"[referral-discount] {email}: discount applied to "
                    f"{subscription.stripe_subscription_id} but balance not decremented: "
                    f"{result.message}"
                )
                return Failed(result.message or "Failed to update referral count")

            if result.already_processed:
                logger.info(f"[referral-discount] {email}: {result.message}")
                return Applied(already_processed=True, message=result.message)

            if self.verify_upcoming_invoice:
                await self._log_upcoming_invoice(email, subscription.stripe_customer_id)

            logger.info(
                f"[referral-discount] {email}: applied {self.discount_amount} "
                f"{self.currency} discount, {remaining} months left"
            )
            return Applied(message=result.message)
        finally:
            await self._delete_coupon(coupon_id)

    async def _delete_coupon(self, coupon_id: str) -> None:
        try:
            await self.provider.delete_coupon(coupon_id)
        except Exception as e:
            logger.error(f"[referral-discount] Failed to delete coupon {coupon_id}: {e}")

    async def _log_upcoming_invoice(self, email: str, customer_id: str) -> None:
        try:
            invoice = await self.provider.retrieve_upcoming_invoice(customer_id)
            logger.info(
                f"[referral-discount] {email}: upcoming invoice amount_due="
                f"{invoice.get('amount_due')} {invoice.get('currency')}"
            )
        except Exception as e:
            logger.warning(f"[referral-discount] {email}: upcoming invoice check failed: {e}")
