import logging
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from models.reservation import (
    Reservation,
    ReservationStatus,
    ReservationType,
    SpareVehicleStatus,
    BOOKED_STATUSES,
)
from models.vehicle import Vehicle, VehicleAvailability

from core.metrics import track_performance
from services.outbox import EventType, enqueue_event
from services.schedule_service import ScheduleService
from services.validators import BusinessRules
from services.exceptions import (
    DatabaseQueryError,
    DuplicatePlaceholderError,
    InvalidDateRangeError,
    InvalidReservationStateError,
    ReservationDomainError,
    ReservationNotFoundError,
    SchedulingConflictError,
    VehicleNotFoundError,
    VehicleUnavailableError,
)

logger = logging.getLogger(__name__)


class SpareService:
    """
    Maintenance blocks and the "TBD spare" placeholders they can trigger.

    A placeholder is a replacement reservation with no vehicle that stands in
    for a rental disrupted by maintenance. It is bound to a concrete vehicle
    either ahead of time (``assign_vehicle``) or at pickup, where the lifecycle
    calls ``bind_vehicle`` inside its own transaction.
    """

    def __init__(self, db: AsyncSession, schedule: ScheduleService):
        self.db = db
        self.schedule = schedule

    @track_performance(service_name="SpareService")
    async def create_maintenance_block(
        self,
        vehicle_id: int,
        scheduled_date: date,
        duration: int,
        notes: Optional[str] = None
    ) -> Reservation:
        """Creates and commits a maintenance block. Any failure here is fatal to scheduling."""
        duration = BusinessRules.validate_maintenance_duration(duration)
        start_date, end_date = BusinessRules.inclusive_window(scheduled_date, duration)

        try:
            vehicle = await self.db.get(Vehicle, vehicle_id)
            if vehicle is None:
                raise VehicleNotFoundError(f"Vehicle {vehicle_id} not found.", vehicle_id=vehicle_id)

            block = Reservation(
                type=ReservationType.MAINTENANCE_BLOCK.value,
                vehicle_id=vehicle_id,
                start_date=start_date,
                end_date=end_date,
                status=ReservationStatus.SCHEDULED.value,
                maintenance_duration=duration,
                placeholder_spare=False,
                notes=notes or "APK inspection",
            )
            self.db.add(block)
            await self.db.flush()

            enqueue_event(
                self.db,
                EventType.MAINTENANCE_SCHEDULED,
                block.id,
                {"vehicle_id": vehicle_id, "start_date": str(start_date), "end_date": str(end_date)},
            )
            await self.db.commit()
            logger.info(f"Maintenance block {block.id} scheduled for vehicle {vehicle_id} ({start_date} to {end_date}).")
            return block
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    @track_performance(service_name="SpareService")
    async def request_spare(
        self,
        conflicting_rental: Reservation,
        start_date: date,
        end_date: Optional[date]
    ) -> Reservation:
        """
        Creates and commits a placeholder covering [start_date, end_date] for
        the customer of ``conflicting_rental``.
        """
        rental_id = conflicting_rental.id
        try:
            duplicate = (
                await self.db.execute(
                    select(Reservation.id).where(
                        Reservation.replacement_for_reservation_id == rental_id,
                        Reservation.placeholder_spare == True,
                        Reservation.status.in_(BOOKED_STATUSES),
                    )
                )
            ).scalars().first()
            if duplicate is not None:
                raise DuplicatePlaceholderError(
                    f"A spare placeholder already exists for reservation {rental_id}.",
                    reservation_id=rental_id,
                    placeholder_id=duplicate,
                )

            placeholder = Reservation(
                type=ReservationType.REPLACEMENT.value,
                vehicle_id=None,
                customer_id=conflicting_rental.customer_id,
                driver_id=conflicting_rental.driver_id,
                start_date=start_date,
                end_date=end_date,
                status=ReservationStatus.PENDING.value,
                placeholder_spare=True,
                replacement_for_reservation_id=rental_id,
                spare_vehicle_status=SpareVehicleStatus.ASSIGNED.value,
                notes="Spare vehicle needed during APK inspection",
            )
            self.db.add(placeholder)
            await self.db.flush()

            enqueue_event(
                self.db,
                EventType.SPARE_ASSIGNMENT_REQUIRED,
                placeholder.id,
                {
                    "replacement_for_reservation_id": rental_id,
                    "customer_id": placeholder.customer_id,
                    "start_date": str(start_date),
                    "end_date": str(end_date) if end_date else None,
                },
            )
            await self.db.commit()
            logger.info(f"Spare placeholder {placeholder.id} created for reservation {rental_id}.")
            return placeholder
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    async def bind_vehicle(
        self,
        placeholder: Reservation,
        vehicle_id: int,
        end_date: Optional[date] = None
    ) -> Vehicle:
        """
        Binds ``vehicle_id`` to ``placeholder`` in the current transaction.

        The caller owns the transaction: rolling it back undoes the binding,
        which is how a pickup that fails after binding leaves the placeholder
        untouched.
        """
        if not placeholder.placeholder_spare or placeholder.vehicle_id is not None:
            raise InvalidReservationStateError(
                f"Reservation {placeholder.id} is not awaiting a spare vehicle.",
                reservation_id=placeholder.id,
            )

        vehicle = (
            await self.db.execute(select(Vehicle).where(Vehicle.id == vehicle_id).with_for_update())
        ).scalar_one_or_none()
        if vehicle is None:
            raise VehicleNotFoundError(f"Vehicle {vehicle_id} not found.", vehicle_id=vehicle_id)
        if vehicle.availability_status == VehicleAvailability.NOT_FOR_RENTAL.value:
            raise VehicleUnavailableError(
                f"Vehicle {vehicle.license_plate} is not for rental.",
                vehicle_id=vehicle_id,
                availability_status=vehicle.availability_status,
            )

        if placeholder.replacement_for_reservation_id is not None:
            original = await self.db.get(Reservation, placeholder.replacement_for_reservation_id)
            if original is not None and original.vehicle_id == vehicle_id:
                raise VehicleUnavailableError(
                    "The spare vehicle cannot be the vehicle it replaces.",
                    vehicle_id=vehicle_id,
                )

        assignment_end = end_date or placeholder.end_date
        if assignment_end is None:
            raise InvalidDateRangeError(
                "An end date is required to assign a vehicle to an open-ended placeholder.",
                reservation_id=placeholder.id,
            )
        if assignment_end < placeholder.start_date:
            raise InvalidDateRangeError(
                "end_date cannot be before the placeholder start date.",
                reservation_id=placeholder.id,
            )

        conflicts = await self.schedule.find_vehicle_conflicts(
            vehicle_id, placeholder.start_date, assignment_end, exclude_reservation_id=placeholder.id
        )
        if conflicts:
            raise SchedulingConflictError(
                f"Vehicle {vehicle.license_plate} has conflicting reservations during the assignment period.",
                vehicle_id=vehicle_id,
                conflicting_reservation_ids=[c.id for c in conflicts],
            )

        placeholder.vehicle_id = vehicle_id
        placeholder.end_date = assignment_end
        placeholder.placeholder_spare = False
        placeholder.spare_vehicle_status = SpareVehicleStatus.FULFILLED.value
        placeholder.notes = (
            f"Spare vehicle {vehicle.display_name} assigned for reservation "
            f"#{placeholder.replacement_for_reservation_id}"
        )
        enqueue_event(
            self.db,
            EventType.SPARE_ASSIGNED,
            placeholder.id,
            {"vehicle_id": vehicle_id, "replacement_for_reservation_id": placeholder.replacement_for_reservation_id},
        )
        await self.db.flush()
        return vehicle

    @track_performance(service_name="SpareService")
    async def assign_vehicle(
        self,
        reservation_id: int,
        vehicle_id: int,
        end_date: Optional[date] = None
    ) -> Reservation:
        """Binds a spare vehicle ahead of pickup and commits."""
        try:
            placeholder = (
                await self.db.execute(
                    select(Reservation).where(Reservation.id == reservation_id).with_for_update()
                )
            ).scalar_one_or_none()
            if placeholder is None:
                raise ReservationNotFoundError(
                    f"Reservation {reservation_id} not found.", reservation_id=reservation_id
                )
            if placeholder.status not in BOOKED_STATUSES:
                raise InvalidReservationStateError(
                    f"Reservation {reservation_id} is {placeholder.status}; only booked placeholders can be assigned.",
                    reservation_id=reservation_id,
                    status=placeholder.status,
                )

            await self.bind_vehicle(placeholder, vehicle_id, end_date)
            await self.db.commit()
            logger.info(f"Spare vehicle {vehicle_id} assigned to placeholder {reservation_id}.")
            return placeholder
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))

    @track_performance(service_name="SpareService")
    async def list_pending_assignments(self, days_ahead: int = 7, today: Optional[date] = None) -> List[Reservation]:
        """Unresolved placeholders starting within ``days_ahead`` days (overdue ones included)."""
        cutoff = (today or date.today()) + timedelta(days=days_ahead)
        try:
            result = await self.db.execute(
                select(Reservation)
                .where(
                    Reservation.placeholder_spare == True,
                    Reservation.type == ReservationType.REPLACEMENT.value,
                    Reservation.vehicle_id.is_(None),
                    Reservation.status.in_(BOOKED_STATUSES),
                    Reservation.start_date <= cutoff,
                )
                .order_by(Reservation.start_date, Reservation.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))
