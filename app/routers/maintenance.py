from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from schemas.maintenance import ConflictResult, MaintenanceScheduled, ScheduleMaintenanceRequest
from schemas.reservation import ReservationOut
from services.reservation_service import ReservationService
from services.schedule_service import ScheduleService
from services.validators import BusinessRules
from routers.deps import get_reservation_service, get_schedule_service


router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("", response_model=MaintenanceScheduled, status_code=201)
async def schedule_maintenance(
    req: ScheduleMaintenanceRequest,
    service: ReservationService = Depends(get_reservation_service)
):
    """
    Blocks the vehicle for an inspection. With ``needs_spare_vehicle`` every
    overlapping rental gets a spare placeholder; if one fails the block still
    stands and ``spare_request_errors`` says why.
    """
    return await service.schedule_maintenance(
        vehicle_id=req.vehicle_id,
        scheduled_date=req.scheduled_date,
        duration=req.duration,
        notes=req.notes,
        needs_spare_vehicle=req.needs_spare_vehicle,
    )


@router.get("/conflicts", response_model=ConflictResult)
async def check_conflicts(
    vehicle_id: int,
    scheduled_date: date,
    duration: int,
    schedule: ScheduleService = Depends(get_schedule_service)
):
    conflict = await schedule.find_conflict(vehicle_id, scheduled_date, duration)
    start, end = BusinessRules.inclusive_window(scheduled_date, duration)
    return ConflictResult(
        vehicle_id=vehicle_id,
        proposed_start=start,
        proposed_end=end,
        conflict=ReservationOut.model_validate(conflict) if conflict else None,
    )


@router.post("/{reservation_id}/start", response_model=ReservationOut)
async def start_maintenance(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service)
):
    return await service.start_maintenance(reservation_id)


@router.post("/{reservation_id}/complete", response_model=ReservationOut)
async def complete_maintenance(
    reservation_id: int,
    completed_on: Optional[date] = None,
    service: ReservationService = Depends(get_reservation_service)
):
    return await service.complete_maintenance(reservation_id, completed_on=completed_on)
