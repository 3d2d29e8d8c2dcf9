from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Boolean, ForeignKey, CheckConstraint, func
)
from sqlalchemy.orm import relationship
from core.db import Base


class ReservationType(str, Enum):
    STANDARD = "standard"
    MAINTENANCE_BLOCK = "maintenance_block"
    REPLACEMENT = "replacement"


class ReservationStatus(str, Enum):
    # Rentals and replacements
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PICKED_UP = "picked_up"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    # Maintenance blocks
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class FuelLevel(str, Enum):
    FULL = "Full"
    THREE_QUARTERS = "3/4"
    HALF = "1/2"
    QUARTER = "1/4"
    EMPTY = "Empty"


class SpareVehicleStatus(str, Enum):
    ASSIGNED = "assigned"  # request exists, no vehicle chosen yet
    FULFILLED = "fulfilled"


BOOKED_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value)

# Odometer columns are 32-bit integers
MAX_MILEAGE = 2_147_483_647


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint(
            "return_mileage IS NULL OR pickup_mileage IS NULL OR return_mileage >= pickup_mileage",
            name="ck_reservations_return_not_below_pickup",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, nullable=False, default=ReservationType.STANDARD.value)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True, index=True)  # NULL only for placeholders
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # open-ended rental when NULL
    status = Column(String, nullable=False, default=ReservationStatus.PENDING.value)
    notes = Column(Text, nullable=True)

    # Pickup / return
    contract_number = Column(String, unique=True, nullable=True)
    pickup_mileage = Column(Integer, nullable=True)
    return_mileage = Column(Integer, nullable=True)
    fuel_level_pickup = Column(String, nullable=True)
    fuel_level_return = Column(String, nullable=True)
    pickup_date = Column(Date, nullable=True)
    return_date = Column(Date, nullable=True)
    pickup_notes = Column(Text, nullable=True)
    return_notes = Column(Text, nullable=True)

    # Spare substitution
    placeholder_spare = Column(Boolean, nullable=False, default=False)
    replacement_for_reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    spare_vehicle_status = Column(String, nullable=True)

    # Maintenance blocks
    maintenance_duration = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    vehicle = relationship("Vehicle", back_populates="reservations")
