"""Internal API endpoints - protected by shared secret, not user auth.

These endpoints are called by cron jobs / operators, not by end users.
They validate a shared secret via the X-Cron-Secret header.
"""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import Processor, verify_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_cron_secret)],
)


class ReferralDiscountApplyRequest(BaseModel):
    """Manual referral discount run over explicit tenants."""

    emails: list[str] = Field(min_length=1)
    apply_over_max: bool = False
    include_already_updated: bool = False


@router.post("/referral-discounts/run")
async def run_referral_discounts(processor: Processor) -> dict[str, Any]:
    """
    Run the monthly referral discount over all eligible tenants.

    Same work as the scheduled job, for external schedulers and re-runs.
    Tenants already discounted this month are excluded by the eligibility
    query, so re-running is safe.
    """
    report = await processor.run_scheduled()
    return asdict(report)


@router.post("/referral-discounts/apply")
async def apply_referral_discounts(
    body: ReferralDiscountApplyRequest,
    processor: Processor,
) -> dict[str, Any]:
    """Apply the referral discount to specific tenants, with optional overrides."""
    logger.info(
        f"Manual referral discount run for {len(body.emails)} tenants "
        f"(apply_over_max={body.apply_over_max}, "
        f"include_already_updated={body.include_already_updated})"
    )
    report = await processor.run(
        body.emails,
        apply_over_max=body.apply_over_max,
        include_already_updated=body.include_already_updated,
    )
    return asdict(report)
