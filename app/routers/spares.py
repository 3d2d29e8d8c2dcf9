from typing import List, Optional

from fastapi import APIRouter, Depends

from core.config import Settings
from schemas.maintenance import SpareAssignRequest
from schemas.reservation import ReservationOut
from services.spare_service import SpareService
from routers.deps import get_app_settings, get_spare_service


router = APIRouter(prefix="/spares", tags=["spares"])


@router.get("/pending", response_model=List[ReservationOut])
async def pending_assignments(
    days_ahead: Optional[int] = None,
    spares: SpareService = Depends(get_spare_service),
    settings: Settings = Depends(get_app_settings)
):
    """Spare placeholders that still need a vehicle and start soon."""
    if days_ahead is None:
        days_ahead = settings.spare_assignment_lookahead_days
    return await spares.list_pending_assignments(days_ahead=days_ahead)


@router.post("/{reservation_id}/assign", response_model=ReservationOut)
async def assign_spare(
    reservation_id: int,
    req: SpareAssignRequest,
    spares: SpareService = Depends(get_spare_service)
):
    return await spares.assign_vehicle(reservation_id, req.vehicle_id, end_date=req.end_date)
