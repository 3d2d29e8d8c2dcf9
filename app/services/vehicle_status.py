"""Vehicle availability transitions driven by rentals and maintenance."""

from models.vehicle import VehicleAvailability
from services.exceptions import VehicleUnavailableError

# Set by hand and kept until someone clears them
STICKY_STATUSES = (VehicleAvailability.NEEDS_FIXING.value, VehicleAvailability.NOT_FOR_RENTAL.value)


def status_on_pickup(vehicle) -> str:
    if vehicle.availability_status == VehicleAvailability.NOT_FOR_RENTAL.value:
        raise VehicleUnavailableError(
            f'Vehicle {vehicle.license_plate} is marked as "not for rental" and cannot be picked up.',
            vehicle_id=vehicle.id,
            availability_status=vehicle.availability_status,
        )
    return VehicleAvailability.RENTED.value


def status_on_return(vehicle, has_other_rental: bool, has_booking: bool) -> str:
    if vehicle.availability_status in STICKY_STATUSES:
        return vehicle.availability_status
    if has_other_rental:
        return VehicleAvailability.RENTED.value
    if has_booking:
        return VehicleAvailability.SCHEDULED.value
    return VehicleAvailability.AVAILABLE.value


def status_on_maintenance_start(vehicle) -> str:
    if vehicle.availability_status == VehicleAvailability.RENTED.value:
        raise VehicleUnavailableError(
            "Cannot start maintenance on a rented vehicle. Return the vehicle first "
            "or schedule maintenance for after the rental ends.",
            vehicle_id=vehicle.id,
            availability_status=vehicle.availability_status,
        )
    if vehicle.availability_status == VehicleAvailability.NOT_FOR_RENTAL.value:
        return vehicle.availability_status
    return VehicleAvailability.NEEDS_FIXING.value


def status_on_maintenance_end(vehicle, has_rental: bool, has_booking: bool) -> str:
    if vehicle.availability_status == VehicleAvailability.NOT_FOR_RENTAL.value:
        return vehicle.availability_status
    if has_rental:
        return VehicleAvailability.RENTED.value
    if has_booking:
        return VehicleAvailability.SCHEDULED.value
    return VehicleAvailability.AVAILABLE.value
