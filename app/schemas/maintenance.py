from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from schemas.reservation import ReservationOut


class ScheduleMaintenanceRequest(BaseModel):
    vehicle_id: int
    scheduled_date: date = Field(..., description="First inspection day")
    duration: int = Field(..., ge=1, le=7, description="Inspection length in days")
    notes: Optional[str] = None
    needs_spare_vehicle: bool = False


class SpareRequestFailure(BaseModel):
    reservation_id: int
    error: str
    message: str


class MaintenanceScheduled(BaseModel):
    maintenance: ReservationOut
    conflicting_reservation_ids: List[int] = []
    placeholders: List[ReservationOut] = []
    spare_request_errors: List[SpareRequestFailure] = []


class ConflictResult(BaseModel):
    vehicle_id: int
    proposed_start: date
    proposed_end: date
    conflict: Optional[ReservationOut] = None


class SpareAssignRequest(BaseModel):
    vehicle_id: int
    end_date: Optional[date] = Field(None, description="Required for open-ended placeholders")
