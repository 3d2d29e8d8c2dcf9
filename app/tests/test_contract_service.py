import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy import select

from models.reservation import Reservation
from services.contract_service import ContractService
from services.exceptions import (
    DuplicateContractNumberError,
    InvalidReservationStateError,
    MissingContractNumberError,
)
from conftest import day, outbox_event_types


@pytest.fixture
def contracts(async_db_session) -> ContractService:
    return ContractService(async_db_session, warning_threshold=100000)


@pytest.fixture
def picked_up(make_reservation, test_vehicle, test_customer):
    """Factory for a picked-up rental holding ``contract_number``."""
    async def _make(contract_number: str) -> Reservation:
        return await make_reservation(
            test_vehicle.id,
            day(-5),
            day(2),
            status="picked_up",
            contract_number=contract_number,
            pickup_mileage=48000,
            customer_id=test_customer.id,
        )
    return _make


class TestNormalizeAndWarning:

    def test_normalize_strips_whitespace(self):
        assert ContractService.normalize("  1001 ") == "1001"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_blank_is_rejected(self, value):
        with pytest.raises(MissingContractNumberError):
            ContractService.normalize(value)

    def test_high_value_warning_is_advisory(self):
        svc = ContractService(AsyncMock(), warning_threshold=100000)
        assert svc.high_value_warning("100001") is not None
        assert svc.high_value_warning("100000") is None
        assert svc.high_value_warning("A-200000") is None


@pytest.mark.asyncio
async def test_check_available_number(contracts):
    result = await contracts.check_contract_number("1001")
    assert result.available is True
    assert result.holder is None


@pytest.mark.asyncio
async def test_check_number_held_elsewhere(contracts, picked_up, test_vehicle, test_customer):
    holder = await picked_up("1001")

    result = await contracts.check_contract_number("1001")

    assert result.available is False
    assert result.holder.reservation_id == holder.id
    assert result.holder.license_plate == test_vehicle.license_plate
    assert result.holder.customer_name == test_customer.name
    assert result.holder.status == "picked_up"


@pytest.mark.asyncio
async def test_check_number_held_by_self_is_available(contracts, picked_up):
    holder = await picked_up("1001")

    result = await contracts.check_contract_number("1001", excluding_reservation_id=holder.id)

    assert result.available is True


@pytest.mark.asyncio
async def test_check_is_exact_match(contracts, picked_up):
    await picked_up("1001")
    assert (await contracts.check_contract_number("10010")).available is True


@pytest.mark.asyncio
async def test_assign_without_override_raises_with_holder(contracts, picked_up, async_db_session):
    first = await picked_up("1001")
    second = await picked_up("1002")
    first_id, second_id = first.id, second.id

    with pytest.raises(DuplicateContractNumberError) as exc_info:
        await contracts.assign_contract_number(second_id, "1001")

    assert exc_info.value.holder.reservation_id == first_id
    body = exc_info.value.to_dict()
    assert body["error"] == "duplicate_contract_number"
    assert body["holder"]["reservation_id"] == first_id

    await async_db_session.refresh(second)
    assert second.contract_number == "1002"


@pytest.mark.asyncio
async def test_assign_with_override_moves_number(contracts, picked_up, async_db_session):
    first = await picked_up("1001")
    second = await picked_up("1002")

    await contracts.assign_contract_number(second.id, "1001", override=True)

    await async_db_session.refresh(first)
    await async_db_session.refresh(second)
    assert first.contract_number is None
    assert second.contract_number == "1001"

    holders = (
        await async_db_session.execute(select(Reservation.id).where(Reservation.contract_number == "1001"))
    ).scalars().all()
    assert holders == [second.id]
    assert "contract.reassigned" in await outbox_event_types(async_db_session, second.id)


@pytest.mark.asyncio
async def test_assign_requires_picked_up_reservation(contracts, booked_rental):
    with pytest.raises(InvalidReservationStateError):
        await contracts.assign_contract_number(booked_rental.id, "1001")


@pytest.mark.asyncio
async def test_concurrent_claim_loses_on_unique_constraint(contracts, picked_up, async_db_session, monkeypatch):
    """The pre-check misses a holder that committed meanwhile; the constraint still rejects the claim."""
    first = await picked_up("1001")
    second = await picked_up("1002")
    first_id, second_id = first.id, second.id

    original = ContractService.find_holder

    async def racing_find_holder(self, candidate, excluding_reservation_id=None, lock=False):
        if lock:
            return None
        return await original(self, candidate, excluding_reservation_id, lock)

    monkeypatch.setattr(ContractService, "find_holder", racing_find_holder)

    with pytest.raises(DuplicateContractNumberError) as exc_info:
        await contracts.assign_contract_number(second_id, "1001")

    assert exc_info.value.holder.reservation_id == first_id


@pytest.mark.asyncio
async def test_claim_unit_without_holder(mock_async_session):
    """claim() flushes but leaves the commit to the caller."""
    svc = ContractService(mock_async_session)
    svc.find_holder = AsyncMock(return_value=None)
    reservation = MagicMock(id=7, contract_number=None)

    previous = await svc.claim(reservation, "1001")

    assert previous is None
    assert reservation.contract_number == "1001"
    mock_async_session.flush.assert_awaited()
    mock_async_session.commit.assert_not_awaited()
