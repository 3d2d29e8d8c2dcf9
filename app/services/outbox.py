import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.prometheus_metrics import prometheus_collector
from core.retry import NonRetryableError, async_retry
from models.outbox import OutboxEvent
from services.collaborators import DocumentService, NotificationDispatcher

logger = logging.getLogger(__name__)

Handler = Callable[[OutboxEvent], Awaitable[None]]


class EventType:
    RESERVATION_BOOKED = "reservation.booked"
    RESERVATION_CONFIRMED = "reservation.confirmed"
    RESERVATION_PICKED_UP = "reservation.picked_up"
    RESERVATION_RETURNED = "reservation.returned"
    RESERVATION_CANCELLED = "reservation.cancelled"
    CONTRACT_DOCUMENT = "document.contract"
    DAMAGE_CHECK_DOCUMENT = "document.damage_check"
    CONTRACT_REASSIGNED = "contract.reassigned"
    MAINTENANCE_SCHEDULED = "maintenance.scheduled"
    MAINTENANCE_STARTED = "maintenance.started"
    MAINTENANCE_COMPLETED = "maintenance.completed"
    SPARE_ASSIGNMENT_REQUIRED = "spare.assignment_required"
    SPARE_ASSIGNED = "spare.assigned"


def enqueue_event(
    db: AsyncSession,
    event_type: str,
    reservation_id: Optional[int],
    payload: Optional[Dict[str, Any]] = None
) -> OutboxEvent:
    """Adds a side-effect job to the caller's transaction; it only exists if that commits."""
    event = OutboxEvent(
        event_type=event_type,
        reservation_id=reservation_id,
        payload=payload or {},
        status="pending",
        attempts=0,
    )
    db.add(event)
    return event


def next_pending_event():
    """Oldest pending event not already claimed by another worker."""
    return (
        select(OutboxEvent)
        .where(OutboxEvent.status == "pending")
        .order_by(OutboxEvent.id)
        .limit(1)
        .with_for_update(skip_locked=True)
    )


def build_side_effect_handlers(
    documents: DocumentService,
    notifications: NotificationDispatcher
) -> Dict[str, Handler]:
    """Maps every event type to the collaborator call that consumes it."""

    async def contract_document(event: OutboxEvent):
        await documents.generate_contract(event.reservation_id, event.payload)

    async def damage_check_document(event: OutboxEvent):
        await documents.generate_damage_check(event.reservation_id, event.payload)

    async def notify(event: OutboxEvent):
        await notifications.dispatch(event.event_type, event.reservation_id, event.payload)

    handlers: Dict[str, Handler] = {
        EventType.CONTRACT_DOCUMENT: contract_document,
        EventType.DAMAGE_CHECK_DOCUMENT: damage_check_document,
    }
    for name, value in vars(EventType).items():
        if name.isupper() and value not in handlers:
            handlers[value] = notify
    return handlers


class OutboxWorker:
    """
    Consumes committed side-effect events.

    A failing handler is retried with exponential backoff; when it still fails
    the event is marked ``failed`` with the error. The transition that enqueued
    the event is never touched. ``session_factory`` must not expire on commit
    since each event is committed while the rest of the batch is still loaded.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        handlers: Dict[str, Handler],
        batch_size: int = 50,
        poll_interval: float = 5.0,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5
    ):
        self.session_factory = session_factory
        self.handlers = handlers
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.retry_attempts = retry_attempts
        self._dispatch_with_retry = async_retry(
            max_attempts=retry_attempts,
            base_delay=retry_base_delay
        )(self._dispatch)

    async def _dispatch(self, event: OutboxEvent):
        handler = self.handlers.get(event.event_type)
        if handler is None:
            raise NonRetryableError(f"No handler registered for {event.event_type}")
        await handler(event)

    async def process_pending(self) -> int:
        """
        Handles up to one batch of pending events, oldest first. Returns how many were processed.

        Each event is claimed with ``FOR UPDATE SKIP LOCKED`` and committed on its
        own, so several workers can poll the same table without handling an
        event twice.
        """
        processed = 0
        async with self.session_factory() as db:
            for _ in range(self.batch_size):
                event = (await db.execute(next_pending_event())).scalars().first()
                if event is None:
                    break

                try:
                    await self._dispatch_with_retry(event)
                except Exception as e:
                    event.status = "failed"
                    event.attempts = (event.attempts or 0) + 1
                    event.last_error = str(e)
                    logger.error(f"Side effect {event.event_type} for reservation {event.reservation_id} failed: {e}")
                else:
                    event.status = "processed"
                    event.attempts = (event.attempts or 0) + 1
                    event.processed_at = datetime.now(timezone.utc)
                    processed += 1

                prometheus_collector.record_outbox_event(event.event_type, event.status)
                await db.commit()

        return processed

    async def run(self, stop_event: asyncio.Event):
        """Polls for pending events until ``stop_event`` is set."""
        logger.info("Outbox worker started.")
        while not stop_event.is_set():
            try:
                await self.process_pending()
            except Exception as e:
                logger.error(f"Outbox poll failed: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox worker stopped.")
