from typing import List, Literal, Optional

from pydantic import BaseModel

from schemas.reservation import ContractHolder, ReservationOut


class PickupCompleted(BaseModel):
    outcome: Literal["completed"] = "completed"
    reservation: ReservationOut
    vehicle_mileage: int
    previous_contract_holder_id: Optional[int] = None
    warnings: List[str] = []


class RequiresOverride(BaseModel):
    """The pickup reading is below the vehicle's mileage; retry with credentials."""
    outcome: Literal["requires_override"] = "requires_override"
    reason: Literal["mileage_decrease"] = "mileage_decrease"
    reservation_id: int
    vehicle_id: int
    current_mileage: int
    requested_mileage: int
    override_denied: bool = False


class ContractNumberInUse(BaseModel):
    """Another reservation holds the number; retry with override_contract_number."""
    outcome: Literal["contract_number_in_use"] = "contract_number_in_use"
    reservation_id: int
    contract_number: str
    holder: ContractHolder


class ReturnCompleted(BaseModel):
    outcome: Literal["completed"] = "completed"
    reservation: ReservationOut
    driven_km: int
    vehicle_status: str
