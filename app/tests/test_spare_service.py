import pytest

from services.exceptions import (
    DuplicatePlaceholderError,
    InvalidDateRangeError,
    InvalidDurationError,
    InvalidReservationStateError,
    SchedulingConflictError,
    VehicleNotFoundError,
    VehicleUnavailableError,
)
from conftest import day, outbox_event_types


@pytest.fixture
def make_placeholder(spare_service, booked_rental):
    async def _make(start=None, end=None):
        return await spare_service.request_spare(booked_rental, start or day(3), end if end is not None else day(5))
    return _make


@pytest.mark.asyncio
async def test_maintenance_block_spans_inclusive_window(spare_service, test_vehicle, async_db_session):
    block = await spare_service.create_maintenance_block(test_vehicle.id, day(18), 3, None)

    assert block.type == "maintenance_block"
    assert block.status == "scheduled"
    assert block.start_date == day(18)
    assert block.end_date == day(20)
    assert block.maintenance_duration == 3
    assert await outbox_event_types(async_db_session, block.id) == ["maintenance.scheduled"]


@pytest.mark.asyncio
async def test_maintenance_block_requires_vehicle(spare_service):
    with pytest.raises(VehicleNotFoundError):
        await spare_service.create_maintenance_block(9999, day(18), 3, None)


@pytest.mark.asyncio
async def test_maintenance_block_rejects_long_duration(spare_service, test_vehicle):
    with pytest.raises(InvalidDurationError):
        await spare_service.create_maintenance_block(test_vehicle.id, day(18), 8, None)


@pytest.mark.asyncio
async def test_placeholder_inherits_customer_and_driver(make_placeholder, booked_rental, async_db_session):
    placeholder = await make_placeholder()

    assert placeholder.type == "replacement"
    assert placeholder.vehicle_id is None
    assert placeholder.placeholder_spare is True
    assert placeholder.replacement_for_reservation_id == booked_rental.id
    assert placeholder.customer_id == booked_rental.customer_id
    assert placeholder.driver_id == booked_rental.driver_id
    assert placeholder.spare_vehicle_status == "assigned"
    assert (placeholder.start_date, placeholder.end_date) == (day(3), day(5))
    assert await outbox_event_types(async_db_session, placeholder.id) == ["spare.assignment_required"]


@pytest.mark.asyncio
async def test_second_placeholder_for_same_rental_is_rejected(make_placeholder):
    await make_placeholder()
    with pytest.raises(DuplicatePlaceholderError):
        await make_placeholder()


@pytest.mark.asyncio
async def test_assign_vehicle_resolves_placeholder(spare_service, make_placeholder, make_vehicle, async_db_session):
    placeholder = await make_placeholder()
    spare = await make_vehicle("SP-001-A", current_mileage=12000)

    resolved = await spare_service.assign_vehicle(placeholder.id, spare.id)

    assert resolved.vehicle_id == spare.id
    assert resolved.placeholder_spare is False
    assert resolved.spare_vehicle_status == "fulfilled"
    assert "SP-001-A" in resolved.notes
    assert "spare.assigned" in await outbox_event_types(async_db_session, placeholder.id)


@pytest.mark.asyncio
async def test_assign_vehicle_rejects_replaced_vehicle(spare_service, make_placeholder, test_vehicle, async_db_session):
    placeholder = await make_placeholder()
    placeholder_id = placeholder.id

    with pytest.raises(VehicleUnavailableError):
        await spare_service.assign_vehicle(placeholder_id, test_vehicle.id)

    await async_db_session.refresh(placeholder)
    assert placeholder.vehicle_id is None


@pytest.mark.asyncio
async def test_assign_vehicle_rejects_not_for_rental(spare_service, make_placeholder, make_vehicle):
    placeholder = await make_placeholder()
    spare = await make_vehicle("SP-002-B", availability_status="not_for_rental")

    with pytest.raises(VehicleUnavailableError):
        await spare_service.assign_vehicle(placeholder.id, spare.id)


@pytest.mark.asyncio
async def test_assign_vehicle_rejects_busy_vehicle(spare_service, make_placeholder, make_vehicle, make_reservation):
    placeholder = await make_placeholder()
    spare = await make_vehicle("SP-003-C")
    await make_reservation(spare.id, day(4), day(9))

    with pytest.raises(SchedulingConflictError):
        await spare_service.assign_vehicle(placeholder.id, spare.id)


@pytest.mark.asyncio
async def test_open_ended_placeholder_needs_end_date(spare_service, booked_rental, make_vehicle):
    placeholder = await spare_service.request_spare(booked_rental, day(3), None)
    spare = await make_vehicle("SP-004-D")
    placeholder_id, spare_id = placeholder.id, spare.id

    with pytest.raises(InvalidDateRangeError):
        await spare_service.assign_vehicle(placeholder_id, spare_id)

    resolved = await spare_service.assign_vehicle(placeholder_id, spare_id, end_date=day(6))
    assert resolved.end_date == day(6)


@pytest.mark.asyncio
async def test_resolved_placeholder_cannot_be_assigned_again(spare_service, make_placeholder, make_vehicle):
    placeholder = await make_placeholder()
    spare = await make_vehicle("SP-005-E")
    await spare_service.assign_vehicle(placeholder.id, spare.id)

    with pytest.raises(InvalidReservationStateError):
        await spare_service.assign_vehicle(placeholder.id, spare.id)


@pytest.mark.asyncio
async def test_pending_assignments_within_lookahead(spare_service, booked_rental, make_vehicle):
    soon = await spare_service.request_spare(booked_rental, day(3), day(5))

    pending = await spare_service.list_pending_assignments(days_ahead=7)
    assert [p.id for p in pending] == [soon.id]

    assert await spare_service.list_pending_assignments(days_ahead=1) == []

    spare = await make_vehicle("SP-006-F")
    await spare_service.assign_vehicle(soon.id, spare.id)
    assert await spare_service.list_pending_assignments(days_ahead=7) == []
