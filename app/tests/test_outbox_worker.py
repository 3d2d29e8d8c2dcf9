import asyncio
import pytest
from unittest.mock import AsyncMock

from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from core.retry import RetryableError
from models.outbox import OutboxEvent
from services.collaborators import DocumentService, NotificationDispatcher
from services.outbox import EventType, OutboxWorker, build_side_effect_handlers, enqueue_event, next_pending_event
from conftest import pickup_kwargs


async def _events(session):
    # the worker commits through its own session
    result = await session.execute(
        select(OutboxEvent).order_by(OutboxEvent.id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_enqueue_is_part_of_the_callers_transaction(async_db_session):
    enqueue_event(async_db_session, EventType.RESERVATION_BOOKED, 1, {"vehicle_id": 3})
    await async_db_session.rollback()

    assert await _events(async_db_session) == []


def test_every_event_type_has_a_handler():
    handlers = build_side_effect_handlers(DocumentService(), NotificationDispatcher())
    declared = {value for name, value in vars(EventType).items() if name.isupper()}
    assert declared == set(handlers)


@pytest.mark.asyncio
async def test_documents_and_notifications_are_routed(async_db_session, session_factory):
    documents = AsyncMock(spec=DocumentService)
    notifications = AsyncMock(spec=NotificationDispatcher)
    enqueue_event(async_db_session, EventType.CONTRACT_DOCUMENT, 5, {"contract_number": "1001"})
    enqueue_event(async_db_session, EventType.DAMAGE_CHECK_DOCUMENT, 5, {})
    enqueue_event(async_db_session, EventType.RESERVATION_PICKED_UP, 5, {})
    await async_db_session.commit()

    worker = OutboxWorker(session_factory, build_side_effect_handlers(documents, notifications))
    processed = await worker.process_pending()

    assert processed == 3
    documents.generate_contract.assert_awaited_once_with(5, {"contract_number": "1001"})
    documents.generate_damage_check.assert_awaited_once_with(5, {})
    notifications.dispatch.assert_awaited_once_with("reservation.picked_up", 5, {})


@pytest.mark.asyncio
async def test_failed_side_effect_does_not_touch_the_transition(
    reservation_service, booked_rental, session_factory, async_db_session
):
    """The contract renderer is down; the pickup stays committed and the event is marked failed."""
    outcome = await reservation_service.pickup(booked_rental.id, **pickup_kwargs())
    assert outcome.outcome == "completed"

    documents = AsyncMock(spec=DocumentService)
    documents.generate_contract.side_effect = RetryableError("renderer unavailable")
    worker = OutboxWorker(
        session_factory,
        build_side_effect_handlers(documents, AsyncMock(spec=NotificationDispatcher)),
        retry_attempts=2,
        retry_base_delay=0.01,
    )

    processed = await worker.process_pending()

    assert processed == 1
    assert documents.generate_contract.await_count == 2
    by_type = {e.event_type: e for e in await _events(async_db_session)}
    assert by_type["document.contract"].status == "failed"
    assert by_type["document.contract"].attempts == 1
    assert "renderer unavailable" in by_type["document.contract"].last_error
    assert by_type["reservation.picked_up"].status == "processed"

    await async_db_session.refresh(booked_rental)
    assert booked_rental.status == "picked_up"


@pytest.mark.asyncio
async def test_unknown_event_type_fails_without_retry(async_db_session, session_factory):
    enqueue_event(async_db_session, "reservation.teleported", 9, {})
    await async_db_session.commit()
    handler = AsyncMock()

    worker = OutboxWorker(session_factory, {"reservation.booked": handler}, retry_base_delay=0.01)
    assert await worker.process_pending() == 0

    [event] = await _events(async_db_session)
    assert event.status == "failed"
    assert "No handler" in event.last_error
    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_processed_events_are_not_picked_up_again(async_db_session, session_factory):
    enqueue_event(async_db_session, EventType.RESERVATION_CONFIRMED, 2, {})
    await async_db_session.commit()
    handler = AsyncMock()
    worker = OutboxWorker(session_factory, {EventType.RESERVATION_CONFIRMED: handler})

    assert await worker.process_pending() == 1
    assert await worker.process_pending() == 0
    handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_stops_when_signalled(session_factory):
    worker = OutboxWorker(session_factory, {}, poll_interval=0.01)
    stop_event = asyncio.Event()

    task = asyncio.create_task(worker.run(stop_event))
    await asyncio.sleep(0.05)
    stop_event.set()

    await asyncio.wait_for(task, timeout=1.0)
    assert task.done()


def test_pending_events_are_claimed_with_skip_locked():
    sql = str(next_pending_event().compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE SKIP LOCKED" in sql


@pytest.mark.asyncio
async def test_batch_size_bounds_one_poll(async_db_session, session_factory):
    for reservation_id in (1, 2, 3):
        enqueue_event(async_db_session, EventType.RESERVATION_CONFIRMED, reservation_id, {})
    await async_db_session.commit()
    handler = AsyncMock()
    worker = OutboxWorker(session_factory, {EventType.RESERVATION_CONFIRMED: handler}, batch_size=2)

    assert await worker.process_pending() == 2
    assert await worker.process_pending() == 1
    assert [call.args[0].reservation_id for call in handler.await_args_list] == [1, 2, 3]
