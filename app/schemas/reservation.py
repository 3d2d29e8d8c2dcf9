from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.reservation import MAX_MILEAGE, FuelLevel


class BookingRequest(BaseModel):
    vehicle_id: int
    customer_id: Optional[int] = None
    driver_id: Optional[int] = None
    start_date: date = Field(..., description="First rental day")
    end_date: Optional[date] = Field(None, description="Last rental day, omitted for open-ended rentals")
    notes: Optional[str] = None

    @field_validator('end_date')
    def end_not_before_start(cls, v, info):
        start_date = info.data.get('start_date')
        if v is not None and start_date and v < start_date:
            raise ValueError('end_date cannot be before start_date')
        return v


class PickupRequest(BaseModel):
    contract_number: str = Field(..., min_length=1)
    pickup_mileage: int = Field(..., ge=0, le=MAX_MILEAGE, description="Odometer reading in km")
    fuel_level_pickup: FuelLevel
    pickup_date: date
    pickup_notes: Optional[str] = None
    vehicle_id: Optional[int] = Field(None, description="Required when the reservation is a TBD spare")
    allow_mileage_decrease: bool = False
    override_password: Optional[str] = None
    override_contract_number: bool = False

    @field_validator('contract_number')
    def contract_number_not_blank(cls, v):
        if not v.strip():
            raise ValueError('contract_number cannot be blank')
        return v.strip()


class ReturnRequest(BaseModel):
    return_mileage: int = Field(..., ge=0, le=MAX_MILEAGE, description="Odometer reading in km")
    fuel_level_return: FuelLevel
    return_date: date
    return_notes: Optional[str] = None


class ContractNumberAssignRequest(BaseModel):
    contract_number: str = Field(..., min_length=1)
    override: bool = False


class ContractHolder(BaseModel):
    reservation_id: int
    vehicle_id: Optional[int] = None
    license_plate: Optional[str] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    status: str


class ContractNumberCheck(BaseModel):
    contract_number: str
    available: bool
    holder: Optional[ContractHolder] = None
    warning: Optional[str] = None


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    status: str
    vehicle_id: Optional[int] = None
    customer_id: Optional[int] = None
    driver_id: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    contract_number: Optional[str] = None
    pickup_mileage: Optional[int] = None
    return_mileage: Optional[int] = None
    fuel_level_pickup: Optional[str] = None
    fuel_level_return: Optional[str] = None
    pickup_date: Optional[date] = None
    return_date: Optional[date] = None
    placeholder_spare: bool = False
    replacement_for_reservation_id: Optional[int] = None
    spare_vehicle_status: Optional[str] = None
    maintenance_duration: Optional[int] = None
    notes: Optional[str] = None
