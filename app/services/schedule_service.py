from datetime import date, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, or_, and_, false
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from models.reservation import Reservation, ReservationStatus, ReservationType, BOOKED_STATUSES

from core.metrics import track_performance
from services.exceptions import DatabaseQueryError, InvalidDurationError
from services.validators import BusinessRules

# Reservations that no longer occupy their vehicle
INACTIVE_STATUSES = (
    ReservationStatus.CANCELLED.value,
    ReservationStatus.RETURNED.value,
    ReservationStatus.COMPLETED.value,
)


class ScheduleService:
    """
    Read-only temporal overlap checks for a single vehicle.

    Nothing here writes to the session, so the detector is safe to call on every
    keystroke while a user edits a proposed maintenance date.
    """

    def __init__(
        self,
        db: AsyncSession,
        open_ended_horizon_days: int = 365,
        today: Optional[Callable[[], date]] = None
    ):
        self.db = db
        self.open_ended_horizon_days = open_ended_horizon_days
        self._today = today or date.today

    def open_ended_horizon(self) -> date:
        """The end date assumed for rentals without one."""
        return self._today() + timedelta(days=self.open_ended_horizon_days)

    def _rental_overlap_query(self, vehicle_id: int, proposed_start: date, proposed_duration_days: int):
        if isinstance(proposed_duration_days, bool) or not isinstance(proposed_duration_days, int) \
                or proposed_duration_days < 1:
            raise InvalidDurationError(
                "Proposed duration must be at least 1 day.", duration=proposed_duration_days
            )

        proposed_start, proposed_end = BusinessRules.inclusive_window(proposed_start, proposed_duration_days)
        # an open-ended rental only reaches the window if the horizon does
        open_ended_overlaps = Reservation.end_date.is_(None) if self.open_ended_horizon() >= proposed_start else false()

        return (
            select(Reservation)
            .where(
                Reservation.vehicle_id == vehicle_id,
                Reservation.type == ReservationType.STANDARD.value,
                Reservation.status.in_(BOOKED_STATUSES),
                Reservation.start_date <= proposed_end,
                or_(Reservation.end_date >= proposed_start, open_ended_overlaps),
            )
            .order_by(Reservation.start_date, Reservation.id)
        )

    @track_performance(service_name="ScheduleService")
    async def find_conflict(
        self,
        vehicle_id: int,
        proposed_start: date,
        proposed_duration_days: int
    ) -> Optional[Reservation]:
        """
        Finds a booked standard rental overlapping a proposed maintenance window.

        Args:
            vehicle_id (int): Vehicle whose rentals are scanned
            proposed_start (date): First day of the proposed window
            proposed_duration_days (int): Window length; the range is inclusive

        Returns:
            Reservation | None: the earliest overlapping rental, or None

        Overlap:
            [a, b] and [c, d] overlap iff a <= d and b >= c. Open-ended rentals
            run until today + open_ended_horizon_days.
        """
        stmt = self._rental_overlap_query(vehicle_id, proposed_start, proposed_duration_days).limit(1)
        try:
            result = await self.db.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    @track_performance(service_name="ScheduleService")
    async def find_conflicts(
        self,
        vehicle_id: int,
        proposed_start: date,
        proposed_duration_days: int
    ) -> List[Reservation]:
        """Every booked standard rental overlapping the window, earliest first."""
        stmt = self._rental_overlap_query(vehicle_id, proposed_start, proposed_duration_days)
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def find_vehicle_conflicts(
        self,
        vehicle_id: int,
        start_date: date,
        end_date: Optional[date],
        exclude_reservation_id: Optional[int] = None
    ) -> List[Reservation]:
        """
        Lists every reservation still occupying the vehicle within [start_date, end_date].

        Used when booking or binding a vehicle. Unlike ``find_conflict`` this
        considers every reservation type; a missing end date on either side
        means the range never ends.
        """
        conditions = [
            Reservation.vehicle_id == vehicle_id,
            Reservation.status.not_in(INACTIVE_STATUSES),
            or_(Reservation.end_date.is_(None), Reservation.end_date >= start_date),
        ]
        if end_date is not None:
            conditions.append(Reservation.start_date <= end_date)
        if exclude_reservation_id is not None:
            conditions.append(Reservation.id != exclude_reservation_id)

        try:
            result = await self.db.execute(
                select(Reservation).where(and_(*conditions)).order_by(Reservation.start_date)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))
