"""Domain operations for the WebhookEvent ledger."""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.webhook_event import WebhookEvent


class WebhookEventOperations:
    """Ledger reads and writes, keyed by Stripe event id."""

    async def get_by_event_id(
        self,
        db: AsyncSession,
        event_id: str,
    ) -> WebhookEvent | None:
        statement = select(WebhookEvent).where(WebhookEvent.event_id == event_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        db: AsyncSession,
        event_id: str,
        event_type: str,
        result: str,
    ) -> None:
        """Insert the event, or reset an existing row (crashed/errored attempt)."""
        statement = (
            insert(WebhookEvent)
            .values(event_id=event_id, event_type=event_type, processing_result=result)
            .on_conflict_do_update(
                index_elements=["event_id"],
                set_={
                    "processing_result": result,
                    "error_message": None,
                    "updated_at": datetime.now(UTC),
                },
            )
        )
        await db.execute(statement)

    async def set_result(
        self,
        db: AsyncSession,
        event_id: str,
        result: str,
        error_message: str | None = None,
    ) -> bool:
        """Record a processing result. Returns False if the event is unknown."""
        event = await self.get_by_event_id(db, event_id)
        if event is None:
            return False
        event.processing_result = result
        event.error_message = error_message
        event.updated_at = datetime.now(UTC)
        db.add(event)
        await db.flush()
        return True


webhook_event_ops = WebhookEventOperations()
