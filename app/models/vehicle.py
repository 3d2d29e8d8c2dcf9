from enum import Enum

from sqlalchemy import Column, Integer, String, Date, DateTime, func
from sqlalchemy.orm import relationship
from core.db import Base


class VehicleAvailability(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    SCHEDULED = "scheduled"
    NEEDS_FIXING = "needs_fixing"
    NOT_FOR_RENTAL = "not_for_rental"


class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    license_plate = Column(String, unique=True, nullable=False)
    brand = Column(String, nullable=True)
    model = Column(String, nullable=True)
    current_mileage = Column(Integer, nullable=False, default=0)  # km, defaults the next pickup
    current_fuel_level = Column(String, nullable=True)  # 'Full' | '3/4' | '1/2' | '1/4' | 'Empty'
    apk_date = Column(Date, nullable=True)  # next mandatory inspection
    availability_status = Column(String, nullable=False, default=VehicleAvailability.AVAILABLE.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    reservations = relationship("Reservation", back_populates="vehicle")

    @property
    def display_name(self) -> str:
        label = " ".join(part for part in (self.brand, self.model) if part)
        return f"{self.license_plate} ({label})" if label else self.license_plate
