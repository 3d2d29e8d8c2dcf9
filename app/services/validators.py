from datetime import date, timedelta
from enum import Enum
from typing import Tuple, Union

from models.reservation import MAX_MILEAGE, FuelLevel
from services.exceptions import (
    InvalidDurationError,
    InvalidFuelLevelError,
    InvalidMileageError,
)


class MileageCheck(str, Enum):
    OK = "ok"
    MILEAGE_DECREASE = "mileage_decrease"
    RETURN_BELOW_PICKUP = "return_below_pickup"


class BusinessRules:
    # Inspections are short by construction
    MIN_MAINTENANCE_DAYS = 1
    MAX_MAINTENANCE_DAYS = 7

    @staticmethod
    def validate_mileage_value(mileage, field: str = "mileage") -> int:
        # bool is an int subclass; a checkbox value is never a reading
        if isinstance(mileage, bool) or not isinstance(mileage, int):
            raise InvalidMileageError(f"{field} must be an integer.", field=field)
        if mileage < 0:
            raise InvalidMileageError(f"{field} cannot be negative.", field=field)
        if mileage > MAX_MILEAGE:
            raise InvalidMileageError(f"{field} cannot exceed {MAX_MILEAGE} km.", field=field, max_mileage=MAX_MILEAGE)
        return mileage

    @staticmethod
    def validate_pickup(vehicle, requested_mileage: int, override_granted: bool = False) -> MileageCheck:
        """
        Checks a pickup reading against the vehicle's last known odometer value.

        A decrease is only accepted when the caller already holds a granted
        override; the lifecycle turns ``MILEAGE_DECREASE`` into a handshake.
        """
        requested = BusinessRules.validate_mileage_value(requested_mileage, "pickup_mileage")
        current = vehicle.current_mileage or 0
        if requested < current and not override_granted:
            return MileageCheck.MILEAGE_DECREASE
        return MileageCheck.OK

    @staticmethod
    def validate_return(reservation, requested_mileage: int) -> MileageCheck:
        """Return readings below the pickup reading are never acceptable."""
        requested = BusinessRules.validate_mileage_value(requested_mileage, "return_mileage")
        if reservation.pickup_mileage is not None and requested < reservation.pickup_mileage:
            return MileageCheck.RETURN_BELOW_PICKUP
        return MileageCheck.OK

    @staticmethod
    def validate_fuel_level(level: Union[str, FuelLevel], field: str = "fuel_level") -> str:
        try:
            return FuelLevel(level).value
        except ValueError:
            allowed = ", ".join(f.value for f in FuelLevel)
            raise InvalidFuelLevelError(f"{field} must be one of: {allowed}.", field=field)

    @staticmethod
    def validate_maintenance_duration(duration) -> int:
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise InvalidDurationError("Maintenance duration must be a whole number of days.", duration=duration)
        if duration < BusinessRules.MIN_MAINTENANCE_DAYS:
            raise InvalidDurationError(
                f"Maintenance duration must be at least {BusinessRules.MIN_MAINTENANCE_DAYS} day(s).",
                duration=duration
            )
        if duration > BusinessRules.MAX_MAINTENANCE_DAYS:
            raise InvalidDurationError(
                f"Maintenance duration cannot exceed {BusinessRules.MAX_MAINTENANCE_DAYS} days.",
                duration=duration
            )
        return duration

    @staticmethod
    def inclusive_window(start: date, duration_days: int) -> Tuple[date, date]:
        """Returns the inclusive [start, end] day range covering ``duration_days``."""
        try:
            return start, start + timedelta(days=duration_days - 1)
        except OverflowError:
            raise InvalidDurationError(
                f"A {duration_days}-day window starting {start} runs past the last representable date.",
                duration=duration_days
            )
