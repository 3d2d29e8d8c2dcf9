import logging
from datetime import date
from enum import Enum
from typing import Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.reservation import (
    Reservation,
    ReservationStatus,
    ReservationType,
    FuelLevel,
    BOOKED_STATUSES,
)
from models.vehicle import Vehicle

from core.config import Settings, get_settings
from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from schemas.outcomes import ContractNumberInUse, PickupCompleted, RequiresOverride, ReturnCompleted
from schemas.maintenance import MaintenanceScheduled, SpareRequestFailure
from schemas.reservation import ReservationOut
from services import vehicle_status
from services.contract_service import ContractService
from services.outbox import EventType, enqueue_event
from services.override_gate import OverrideDecision, OverrideGate
from services.schedule_service import ScheduleService
from services.spare_service import SpareService
from services.validators import BusinessRules, MileageCheck
from services.exceptions import (
    DatabaseQueryError,
    DuplicateContractNumberError,
    InvalidDateRangeError,
    InvalidReservationStateError,
    ReservationDomainError,
    ReservationNotFoundError,
    ReturnBelowPickupError,
    SchedulingConflictError,
    ValidationFailedError,
    VehicleNotFoundError,
    VehicleRequiredError,
    VehicleUnavailableError,
)

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    AWAITING_VEHICLE = "awaiting_vehicle"
    BOOKED = "booked"
    PICKED_UP = "picked_up"
    RETURNED = "returned"
    CANCELLED = "cancelled"
    # Maintenance blocks
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def lifecycle_state(reservation: Reservation) -> LifecycleState:
    """Derives the state machine position from the stored status and placeholder flags."""
    status = reservation.status

    if reservation.type == ReservationType.MAINTENANCE_BLOCK.value:
        states = {
            ReservationStatus.SCHEDULED.value: LifecycleState.SCHEDULED,
            ReservationStatus.IN_PROGRESS.value: LifecycleState.IN_PROGRESS,
            ReservationStatus.COMPLETED.value: LifecycleState.COMPLETED,
            ReservationStatus.CANCELLED.value: LifecycleState.CANCELLED,
        }
    else:
        states = {
            ReservationStatus.PICKED_UP.value: LifecycleState.PICKED_UP,
            ReservationStatus.RETURNED.value: LifecycleState.RETURNED,
            ReservationStatus.COMPLETED.value: LifecycleState.RETURNED,
            ReservationStatus.CANCELLED.value: LifecycleState.CANCELLED,
        }
        if status in BOOKED_STATUSES:
            if reservation.placeholder_spare and reservation.vehicle_id is None:
                return LifecycleState.AWAITING_VEHICLE
            return LifecycleState.BOOKED

    if status not in states:
        raise InvalidReservationStateError(
            f"Reservation {reservation.id} has unknown status {status!r} for type {reservation.type!r}.",
            reservation_id=reservation.id,
            status=status,
        )
    return states[status]


PickupResult = Union[PickupCompleted, RequiresOverride, ContractNumberInUse]


class ReservationService:
    """
    Drives reservations through Booked -> PickedUp -> Returned (and maintenance
    blocks through Scheduled -> InProgress -> Completed).

    Every transition runs as one database transaction:
    - the reservation and vehicle rows are locked with SELECT ... FOR UPDATE
    - guards (mileage, contract number, vehicle availability) run inside it
    - side effects are only enqueued to the outbox, so they commit with the
      transition and can never roll it back
    - any non-success exit rolls back, which also undoes a placeholder binding

    Mileage decreases and duplicate contract numbers are not errors: pickup
    returns ``RequiresOverride`` or ``ContractNumberInUse`` so the caller can
    retry with an override.
    """

    def __init__(self, db: AsyncSession, override_gate: OverrideGate, settings: Optional[Settings] = None):
        self.db = db
        self.override_gate = override_gate
        self.settings = settings or get_settings()
        self.contracts = ContractService(db, self.settings.contract_number_warning_threshold)
        self.schedule = ScheduleService(db, self.settings.open_ended_horizon_days)
        self.spares = SpareService(db, self.schedule)

    # Row access

    async def _lock_reservation(self, reservation_id: int) -> Reservation:
        reservation = (
            await self.db.execute(
                select(Reservation).where(Reservation.id == reservation_id).with_for_update()
            )
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found.", reservation_id=reservation_id)
        return reservation

    async def _lock_vehicle(self, vehicle_id: int) -> Vehicle:
        vehicle = (
            await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id).with_for_update())
        ).scalar_one_or_none()
        if vehicle is None:
            raise VehicleNotFoundError(f"Vehicle {vehicle_id} not found.", vehicle_id=vehicle_id)
        return vehicle

    async def _count_vehicle_reservations(self, vehicle_id: int, statuses, exclude_id: Optional[int] = None) -> int:
        stmt = select(func.count(Reservation.id)).where(
            Reservation.vehicle_id == vehicle_id,
            Reservation.type != ReservationType.MAINTENANCE_BLOCK.value,
            Reservation.status.in_(statuses),
        )
        if exclude_id is not None:
            stmt = stmt.where(Reservation.id != exclude_id)
        return (await self.db.execute(stmt)).scalar() or 0

    async def _ensure_single_active_rental(self, vehicle: Vehicle, reservation_id: int):
        active = (
            await self.db.execute(
                select(Reservation.id).where(
                    Reservation.vehicle_id == vehicle.id,
                    Reservation.status == ReservationStatus.PICKED_UP.value,
                    Reservation.id != reservation_id,
                )
            )
        ).scalars().first()
        if active is not None:
            raise VehicleUnavailableError(
                f"Vehicle {vehicle.license_plate} is still out on reservation {active}.",
                vehicle_id=vehicle.id,
                active_reservation_id=active,
            )

    # Booking

    @track_performance(service_name="ReservationService")
    async def create_booking(
        self,
        vehicle_id: int,
        start_date: date,
        end_date: Optional[date] = None,
        customer_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        notes: Optional[str] = None
    ) -> Reservation:
        if end_date is not None and end_date < start_date:
            raise InvalidDateRangeError("end_date cannot be before start_date.")

        try:
            vehicle = await self._lock_vehicle(vehicle_id)
            conflicts = await self.schedule.find_vehicle_conflicts(vehicle_id, start_date, end_date)
            if conflicts:
                raise SchedulingConflictError(
                    f"Vehicle {vehicle.license_plate} is already reserved in this period.",
                    vehicle_id=vehicle_id,
                    conflicting_reservation_ids=[c.id for c in conflicts],
                )

            reservation = Reservation(
                type=ReservationType.STANDARD.value,
                vehicle_id=vehicle_id,
                customer_id=customer_id,
                driver_id=driver_id,
                start_date=start_date,
                end_date=end_date,
                status=ReservationStatus.PENDING.value,
                placeholder_spare=False,
                notes=notes,
            )
            self.db.add(reservation)
            await self.db.flush()
            enqueue_event(self.db, EventType.RESERVATION_BOOKED, reservation.id, {"vehicle_id": vehicle_id})
            await self.db.commit()
            return reservation
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    @track_performance(service_name="ReservationService")
    async def confirm(self, reservation_id: int) -> Reservation:
        try:
            reservation = await self._lock_reservation(reservation_id)
            if reservation.status != ReservationStatus.PENDING.value:
                raise InvalidReservationStateError(
                    f"Only pending reservations can be confirmed (status: {reservation.status}).",
                    reservation_id=reservation_id,
                    status=reservation.status,
                )
            reservation.status = ReservationStatus.CONFIRMED.value
            enqueue_event(self.db, EventType.RESERVATION_CONFIRMED, reservation.id)
            await self.db.commit()
            return reservation
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    @track_performance(service_name="ReservationService")
    async def cancel(self, reservation_id: int, reason: Optional[str] = None) -> Reservation:
        try:
            reservation = await self._lock_reservation(reservation_id)
            state = lifecycle_state(reservation)
            if state not in (LifecycleState.BOOKED, LifecycleState.AWAITING_VEHICLE, LifecycleState.SCHEDULED):
                raise InvalidReservationStateError(
                    f"Reservation {reservation_id} cannot be cancelled from state {state.value}.",
                    reservation_id=reservation_id,
                    state=state.value,
                )
            reservation.status = ReservationStatus.CANCELLED.value
            enqueue_event(self.db, EventType.RESERVATION_CANCELLED, reservation.id, {"reason": reason})
            await self.db.commit()
            return reservation
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    # Pickup

    @track_performance(service_name="ReservationService")
    async def pickup(
        self,
        reservation_id: int,
        contract_number: str,
        pickup_mileage: int,
        fuel_level: Union[str, FuelLevel],
        pickup_date: date,
        pickup_notes: Optional[str] = None,
        vehicle_id: Optional[int] = None,
        allow_mileage_decrease: bool = False,
        override_password: Optional[str] = None,
        override_contract_number: bool = False
    ) -> PickupResult:
        """
        Booked -> PickedUp.

        Steps, all in one transaction:
            1. A placeholder without ``vehicle_id`` is rejected (VehicleRequiredError)
            2. A placeholder with ``vehicle_id`` is bound first, so the vehicle
               defaults below are the chosen vehicle's
            3. Mileage is checked against the vehicle; a decrease returns
               RequiresOverride unless ``allow_mileage_decrease`` comes with a
               password the gate grants
            4. The contract number is claimed; a number held elsewhere returns
               ContractNumberInUse unless ``override_contract_number``
            5. Reservation and vehicle are updated and the contract document
               and transition events are enqueued

        Returns:
            PickupCompleted | RequiresOverride | ContractNumberInUse
        """
        contract_number = ContractService.normalize(contract_number)
        mileage = BusinessRules.validate_mileage_value(pickup_mileage, "pickup_mileage")
        fuel = BusinessRules.validate_fuel_level(fuel_level, "fuel_level_pickup")
        if pickup_date is None:
            raise ValidationFailedError("pickup_date is required.", field="pickup_date")

        try:
            reservation = await self._lock_reservation(reservation_id)
            state = lifecycle_state(reservation)

            if state == LifecycleState.AWAITING_VEHICLE:
                if vehicle_id is None:
                    raise VehicleRequiredError(
                        "Select the spare vehicle before completing this pickup.",
                        reservation_id=reservation_id,
                    )
                vehicle = await self.spares.bind_vehicle(reservation, vehicle_id)
            elif state == LifecycleState.BOOKED:
                if vehicle_id is not None and vehicle_id != reservation.vehicle_id:
                    raise ValidationFailedError(
                        "A vehicle can only be chosen at pickup for spare placeholders.",
                        field="vehicle_id",
                    )
                vehicle = await self._lock_vehicle(reservation.vehicle_id)
            else:
                raise InvalidReservationStateError(
                    f"Reservation {reservation_id} cannot be picked up from state {state.value}.",
                    reservation_id=reservation_id,
                    state=state.value,
                )

            new_vehicle_status = vehicle_status.status_on_pickup(vehicle)
            await self._ensure_single_active_rental(vehicle, reservation_id)

            current_mileage = vehicle.current_mileage or 0
            override_granted = False
            if mileage < current_mileage and allow_mileage_decrease:
                # the grant is used for this attempt only
                decision = await self.override_gate.authorize(override_password)
                override_granted = decision == OverrideDecision.GRANTED

            if BusinessRules.validate_pickup(vehicle, mileage, override_granted) == MileageCheck.MILEAGE_DECREASE:
                outcome = RequiresOverride(
                    reservation_id=reservation_id,
                    vehicle_id=vehicle.id,
                    current_mileage=current_mileage,
                    requested_mileage=mileage,
                    override_denied=allow_mileage_decrease,
                )
                await self.db.rollback()
                prometheus_collector.record_lifecycle_outcome("pickup", outcome.outcome)
                return outcome

            if override_granted:
                logger.warning(
                    f"Mileage decrease override granted for reservation {reservation_id}: "
                    f"vehicle {vehicle.id} {current_mileage} -> {mileage} km."
                )

            try:
                previous_holder_id = await self.contracts.claim(
                    reservation, contract_number, override=override_contract_number
                )
            except DuplicateContractNumberError as e:
                outcome = ContractNumberInUse(
                    reservation_id=reservation_id,
                    contract_number=contract_number,
                    holder=e.holder,
                )
                await self.db.rollback()
                prometheus_collector.record_lifecycle_outcome("pickup", outcome.outcome)
                return outcome

            reservation.pickup_mileage = mileage
            reservation.fuel_level_pickup = fuel
            reservation.pickup_date = pickup_date
            reservation.pickup_notes = pickup_notes
            reservation.status = ReservationStatus.PICKED_UP.value

            vehicle.current_mileage = mileage
            vehicle.current_fuel_level = fuel
            vehicle.availability_status = new_vehicle_status

            payload = {
                "vehicle_id": vehicle.id,
                "contract_number": contract_number,
                "pickup_mileage": mileage,
                "fuel_level_pickup": fuel,
                "pickup_date": str(pickup_date),
            }
            enqueue_event(self.db, EventType.RESERVATION_PICKED_UP, reservation.id, payload)
            enqueue_event(self.db, EventType.CONTRACT_DOCUMENT, reservation.id, payload)

            await self.db.commit()
        except IntegrityError as e:
            # a concurrent pickup claimed the contract number first
            await self.db.rollback()
            holder = await self.contracts.find_holder(contract_number, excluding_reservation_id=reservation_id)
            if holder is None:
                raise DatabaseQueryError(str(e))
            prometheus_collector.record_lifecycle_outcome("pickup", "contract_number_in_use")
            return ContractNumberInUse(
                reservation_id=reservation_id,
                contract_number=contract_number,
                holder=await self.contracts.describe_holder(holder.id),
            )
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

        warning = self.contracts.high_value_warning(contract_number)
        prometheus_collector.record_lifecycle_outcome("pickup", "completed")
        logger.info(f"Reservation {reservation_id} picked up with vehicle {vehicle.id} at {mileage} km.")
        return PickupCompleted(
            reservation=ReservationOut.model_validate(reservation),
            vehicle_mileage=vehicle.current_mileage,
            previous_contract_holder_id=previous_holder_id,
            warnings=[warning] if warning else [],
        )

    # Return

    @track_performance(service_name="ReservationService")
    async def return_vehicle(
        self,
        reservation_id: int,
        return_mileage: int,
        fuel_level: Union[str, FuelLevel],
        return_date: date,
        return_notes: Optional[str] = None
    ) -> ReturnCompleted:
        """
        PickedUp -> Returned.

        The return reading may never be below the pickup reading; there is no
        override for this, it would describe a physically impossible trip.
        """
        mileage = BusinessRules.validate_mileage_value(return_mileage, "return_mileage")
        fuel = BusinessRules.validate_fuel_level(fuel_level, "fuel_level_return")
        if return_date is None:
            raise ValidationFailedError("return_date is required.", field="return_date")

        try:
            reservation = await self._lock_reservation(reservation_id)
            state = lifecycle_state(reservation)
            if state != LifecycleState.PICKED_UP:
                raise InvalidReservationStateError(
                    f"Reservation {reservation_id} cannot be returned from state {state.value}.",
                    reservation_id=reservation_id,
                    state=state.value,
                )
            if reservation.pickup_date is not None and return_date < reservation.pickup_date:
                raise InvalidDateRangeError(
                    "return_date cannot be before pickup_date.",
                    pickup_date=str(reservation.pickup_date),
                    return_date=str(return_date),
                )
            if BusinessRules.validate_return(reservation, mileage) == MileageCheck.RETURN_BELOW_PICKUP:
                raise ReturnBelowPickupError(
                    f"Return mileage {mileage} km is below the pickup mileage {reservation.pickup_mileage} km.",
                    reservation_id=reservation_id,
                    pickup_mileage=reservation.pickup_mileage,
                    requested_mileage=mileage,
                )

            vehicle = await self._lock_vehicle(reservation.vehicle_id)
            has_other_rental = await self._count_vehicle_reservations(
                vehicle.id, (ReservationStatus.PICKED_UP.value,), exclude_id=reservation.id
            ) > 0
            has_booking = await self._count_vehicle_reservations(vehicle.id, BOOKED_STATUSES) > 0

            reservation.return_mileage = mileage
            reservation.fuel_level_return = fuel
            reservation.return_date = return_date
            reservation.return_notes = return_notes
            reservation.status = ReservationStatus.RETURNED.value

            vehicle.current_mileage = mileage
            vehicle.current_fuel_level = fuel
            vehicle.availability_status = vehicle_status.status_on_return(vehicle, has_other_rental, has_booking)

            payload = {
                "vehicle_id": vehicle.id,
                "return_mileage": mileage,
                "fuel_level_return": fuel,
                "return_date": str(return_date),
            }
            enqueue_event(self.db, EventType.RESERVATION_RETURNED, reservation.id, payload)
            enqueue_event(self.db, EventType.DAMAGE_CHECK_DOCUMENT, reservation.id, payload)

            await self.db.commit()
        except ReservationDomainError as e:
            await self.db.rollback()
            prometheus_collector.record_lifecycle_outcome("return", e.error_code)
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

        prometheus_collector.record_lifecycle_outcome("return", "completed")
        logger.info(f"Reservation {reservation_id} returned at {mileage} km.")
        return ReturnCompleted(
            reservation=ReservationOut.model_validate(reservation),
            driven_km=mileage - (reservation.pickup_mileage or mileage),
            vehicle_status=vehicle.availability_status,
        )

    # Maintenance

    @track_performance(service_name="ReservationService")
    async def schedule_maintenance(
        self,
        vehicle_id: int,
        scheduled_date: date,
        duration: int,
        notes: Optional[str] = None,
        needs_spare_vehicle: bool = False
    ) -> MaintenanceScheduled:
        """
        none -> Scheduled, with optional spare placeholders.

        The block is committed first and its failure aborts everything. When a
        spare was requested, every booked rental overlapping the block gets a
        placeholder covering the days the two share. A placeholder that cannot
        be created is logged and reported but leaves the block and the other
        placeholders in place.
        """
        duration = BusinessRules.validate_maintenance_duration(duration)

        conflicts = []
        if needs_spare_vehicle:
            conflicts = await self.schedule.find_conflicts(vehicle_id, scheduled_date, duration)

        block = await self.spares.create_maintenance_block(vehicle_id, scheduled_date, duration, notes)
        # a failed placeholder rolls back and expires every loaded row
        maintenance = ReservationOut.model_validate(block)
        windows = [
            (
                rental.id,
                max(rental.start_date, maintenance.start_date),
                maintenance.end_date if rental.end_date is None else min(rental.end_date, maintenance.end_date),
            )
            for rental in conflicts
        ]

        placeholders = []
        errors = []
        for rental_id, start, end in windows:
            try:
                rental = await self.db.get(Reservation, rental_id)
                if rental is None:
                    raise ReservationNotFoundError(f"Reservation {rental_id} not found.", reservation_id=rental_id)
                placeholder = await self.spares.request_spare(rental, start, end)
                placeholders.append(ReservationOut.model_validate(placeholder))
            except (ReservationDomainError, DatabaseQueryError) as e:
                errors.append(SpareRequestFailure(
                    reservation_id=rental_id,
                    error=getattr(e, "error_code", "database_error"),
                    message=str(e),
                ))
                logger.error(
                    f"Maintenance block {maintenance.id} scheduled but the spare placeholder for "
                    f"reservation {rental_id} could not be created: {e}"
                )

        return MaintenanceScheduled(
            maintenance=maintenance,
            conflicting_reservation_ids=[rental_id for rental_id, _, _ in windows],
            placeholders=placeholders,
            spare_request_errors=errors,
        )

    async def _transition_maintenance(self, reservation_id: int, expected: LifecycleState) -> Reservation:
        reservation = await self._lock_reservation(reservation_id)
        if reservation.type != ReservationType.MAINTENANCE_BLOCK.value:
            raise InvalidReservationStateError(
                f"Reservation {reservation_id} is not a maintenance block.", reservation_id=reservation_id
            )
        state = lifecycle_state(reservation)
        if state != expected:
            raise InvalidReservationStateError(
                f"Maintenance block {reservation_id} is {state.value}, expected {expected.value}.",
                reservation_id=reservation_id,
                state=state.value,
            )
        return reservation

    @track_performance(service_name="ReservationService")
    async def start_maintenance(self, reservation_id: int) -> Reservation:
        """Scheduled -> InProgress. Refused while the vehicle is out on rental."""
        try:
            block = await self._transition_maintenance(reservation_id, LifecycleState.SCHEDULED)
            vehicle = await self._lock_vehicle(block.vehicle_id)
            vehicle.availability_status = vehicle_status.status_on_maintenance_start(vehicle)
            block.status = ReservationStatus.IN_PROGRESS.value
            enqueue_event(self.db, EventType.MAINTENANCE_STARTED, block.id, {"vehicle_id": vehicle.id})
            await self.db.commit()
            return block
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    @track_performance(service_name="ReservationService")
    async def complete_maintenance(self, reservation_id: int, completed_on: Optional[date] = None) -> Reservation:
        """InProgress -> Completed; the block's end date becomes the actual completion day."""
        try:
            block = await self._transition_maintenance(reservation_id, LifecycleState.IN_PROGRESS)
            vehicle = await self._lock_vehicle(block.vehicle_id)
            has_rental = await self._count_vehicle_reservations(vehicle.id, (ReservationStatus.PICKED_UP.value,)) > 0
            has_booking = await self._count_vehicle_reservations(vehicle.id, BOOKED_STATUSES) > 0

            vehicle.availability_status = vehicle_status.status_on_maintenance_end(vehicle, has_rental, has_booking)
            block.status = ReservationStatus.COMPLETED.value
            if completed_on is not None:
                if completed_on < block.start_date:
                    raise InvalidDateRangeError("Maintenance cannot complete before it started.")
                block.end_date = completed_on
            enqueue_event(self.db, EventType.MAINTENANCE_COMPLETED, block.id, {"vehicle_id": vehicle.id})
            await self.db.commit()
            return block
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))
