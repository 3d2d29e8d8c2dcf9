from typing import Optional, Union

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import get_db
from middleware.rate_limit import limiter, pickup_rate_limit
from models.reservation import Reservation
from schemas.outcomes import ContractNumberInUse, PickupCompleted, RequiresOverride, ReturnCompleted
from schemas.reservation import (
    BookingRequest,
    ContractNumberAssignRequest,
    ContractNumberCheck,
    PickupRequest,
    ReservationOut,
    ReturnRequest,
)
from services.contract_service import ContractService
from services.exceptions import ReservationNotFoundError
from services.reservation_service import ReservationService
from routers.deps import get_contract_service, get_reservation_service


router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationOut, status_code=201)
async def create_booking(
    req: BookingRequest,
    service: ReservationService = Depends(get_reservation_service)
):
    return await service.create_booking(
        vehicle_id=req.vehicle_id,
        start_date=req.start_date,
        end_date=req.end_date,
        customer_id=req.customer_id,
        driver_id=req.driver_id,
        notes=req.notes,
    )


@router.get("/contract-number/check", response_model=ContractNumberCheck)
async def check_contract_number(
    contract_number: str,
    reservation_id: Optional[int] = None,
    contracts: ContractService = Depends(get_contract_service)
):
    """Tells whether a contract number is free, or who holds it."""
    return await contracts.check_contract_number(contract_number, excluding_reservation_id=reservation_id)


@router.get("/{reservation_id}", response_model=ReservationOut)
async def get_reservation(reservation_id: int, db: AsyncSession = Depends(get_db)):
    reservation = await db.get(Reservation, reservation_id)
    if reservation is None:
        raise ReservationNotFoundError(f"Reservation {reservation_id} not found.", reservation_id=reservation_id)
    return reservation


@router.post("/{reservation_id}/confirm", response_model=ReservationOut)
async def confirm_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service)
):
    return await service.confirm(reservation_id)


@router.post("/{reservation_id}/cancel", response_model=ReservationOut)
async def cancel_reservation(
    reservation_id: int,
    reason: Optional[str] = None,
    service: ReservationService = Depends(get_reservation_service)
):
    return await service.cancel(reservation_id, reason=reason)


@router.post(
    "/{reservation_id}/pickup",
    response_model=PickupCompleted,
    responses={409: {"model": Union[RequiresOverride, ContractNumberInUse]}},
)
@limiter.limit(pickup_rate_limit)
async def pickup(
    request: Request,
    reservation_id: int,
    req: PickupRequest,
    service: ReservationService = Depends(get_reservation_service)
):
    """
    Hands the vehicle over to the customer.

    200 with the completed pickup, or 409 with ``requires_override`` /
    ``contract_number_in_use`` when the request must be repeated with an
    override to go through.
    """
    outcome = await service.pickup(
        reservation_id=reservation_id,
        contract_number=req.contract_number,
        pickup_mileage=req.pickup_mileage,
        fuel_level=req.fuel_level_pickup,
        pickup_date=req.pickup_date,
        pickup_notes=req.pickup_notes,
        vehicle_id=req.vehicle_id,
        allow_mileage_decrease=req.allow_mileage_decrease,
        override_password=req.override_password,
        override_contract_number=req.override_contract_number,
    )
    if not isinstance(outcome, PickupCompleted):
        return JSONResponse(status_code=409, content=outcome.model_dump(mode="json"))
    return outcome


@router.post("/{reservation_id}/return", response_model=ReturnCompleted)
async def return_vehicle(
    reservation_id: int,
    req: ReturnRequest,
    service: ReservationService = Depends(get_reservation_service)
):
    return await service.return_vehicle(
        reservation_id=reservation_id,
        return_mileage=req.return_mileage,
        fuel_level=req.fuel_level_return,
        return_date=req.return_date,
        return_notes=req.return_notes,
    )


@router.put("/{reservation_id}/contract-number", response_model=ReservationOut)
async def assign_contract_number(
    reservation_id: int,
    req: ContractNumberAssignRequest,
    contracts: ContractService = Depends(get_contract_service)
):
    """Corrects the contract number of a reservation that was already picked up."""
    return await contracts.assign_contract_number(reservation_id, req.contract_number, override=req.override)
