import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.customer import Customer
from models.reservation import Reservation, ReservationStatus
from models.vehicle import Vehicle

from core.metrics import track_performance
from schemas.reservation import ContractHolder, ContractNumberCheck
from services.outbox import EventType, enqueue_event
from services.exceptions import (
    DatabaseQueryError,
    DuplicateContractNumberError,
    InvalidReservationStateError,
    MissingContractNumberError,
    ReservationDomainError,
    ReservationNotFoundError,
)

logger = logging.getLogger(__name__)


class ContractService:
    """
    Arbitrates the externally visible contract numbers issued at pickup.

    Uniqueness is ultimately enforced by the UNIQUE constraint on
    ``reservations.contract_number``; the checks here exist so that callers get
    a decision prompt (who holds the number) instead of a raw integrity error.
    Reassignment clears the previous holder and flushes before the new holder
    is written, inside the caller's transaction.
    """

    def __init__(self, db: AsyncSession, warning_threshold: int = 100000):
        self.db = db
        self.warning_threshold = warning_threshold

    @staticmethod
    def normalize(candidate: Optional[str]) -> str:
        value = (candidate or "").strip()
        if not value:
            raise MissingContractNumberError("A contract number is required.", field="contract_number")
        return value

    def high_value_warning(self, candidate: str) -> Optional[str]:
        """Advisory only: very large numeric contract numbers are usually typos."""
        if candidate.isdigit() and int(candidate) > self.warning_threshold:
            return (
                f"Contract number {candidate} is above {self.warning_threshold}; "
                f"please double-check it for typos."
            )
        return None

    async def find_holder(
        self,
        candidate: str,
        excluding_reservation_id: Optional[int] = None,
        lock: bool = False
    ) -> Optional[Reservation]:
        stmt = select(Reservation).where(Reservation.contract_number == candidate)
        if excluding_reservation_id is not None:
            stmt = stmt.where(Reservation.id != excluding_reservation_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def describe_holder(self, holder_id: int) -> ContractHolder:
        """Loads the holder's vehicle and customer for the override prompt."""
        stmt = (
            select(Reservation, Vehicle, Customer)
            .outerjoin(Vehicle, Vehicle.id == Reservation.vehicle_id)
            .outerjoin(Customer, Customer.id == Reservation.customer_id)
            .where(Reservation.id == holder_id)
        )
        row = (await self.db.execute(stmt)).first()
        reservation, vehicle, customer = row
        return ContractHolder(
            reservation_id=reservation.id,
            vehicle_id=reservation.vehicle_id,
            license_plate=vehicle.license_plate if vehicle else None,
            customer_id=reservation.customer_id,
            customer_name=customer.name if customer else None,
            status=reservation.status,
        )

    @track_performance(service_name="ContractService")
    async def check_contract_number(
        self,
        candidate: str,
        excluding_reservation_id: Optional[int] = None
    ) -> ContractNumberCheck:
        """
        Read-only lookup used while the user types a contract number.

        Returns ``available`` when nobody but ``excluding_reservation_id`` holds
        the number, otherwise the holder so the caller can ask for an override.
        """
        candidate = self.normalize(candidate)
        try:
            holder = await self.find_holder(candidate, excluding_reservation_id)
            return ContractNumberCheck(
                contract_number=candidate,
                available=holder is None,
                holder=await self.describe_holder(holder.id) if holder else None,
                warning=self.high_value_warning(candidate),
            )
        except SQLAlchemyError as e:
            raise DatabaseQueryError(str(e))

    async def claim(
        self,
        reservation: Reservation,
        candidate: str,
        override: bool = False
    ) -> Optional[int]:
        """
        Sets ``candidate`` on ``reservation`` within the current transaction.

        Returns the id of the reservation the number was taken from, if any.
        Raises DuplicateContractNumberError when another reservation holds it
        and ``override`` is false. Commit is left to the caller.
        """
        holder = await self.find_holder(candidate, excluding_reservation_id=reservation.id, lock=True)
        previous_holder_id = None

        if holder is not None:
            if not override:
                raise DuplicateContractNumberError(
                    f"Contract number {candidate} is already used by reservation {holder.id}.",
                    holder=await self.describe_holder(holder.id),
                    contract_number=candidate,
                )

            previous_holder_id = holder.id
            holder.contract_number = None
            # the old holder must be cleared before the unique column is reused
            await self.db.flush()
            enqueue_event(
                self.db,
                EventType.CONTRACT_REASSIGNED,
                reservation.id,
                {"contract_number": candidate, "previous_holder_id": previous_holder_id},
            )
            logger.warning(
                f"Contract number {candidate} reassigned from reservation {previous_holder_id} "
                f"to reservation {reservation.id}."
            )

        reservation.contract_number = candidate
        await self.db.flush()
        return previous_holder_id

    @track_performance(service_name="ContractService")
    async def assign_contract_number(
        self,
        reservation_id: int,
        candidate: str,
        override: bool = False
    ) -> Reservation:
        """
        Corrects the contract number of a reservation that was already picked up.

        New contract numbers are otherwise only issued by the pickup transition.
        """
        candidate = self.normalize(candidate)
        try:
            reservation = (
                await self.db.execute(
                    select(Reservation).where(Reservation.id == reservation_id).with_for_update()
                )
            ).scalar_one_or_none()
            if reservation is None:
                raise ReservationNotFoundError(
                    f"Reservation {reservation_id} not found.", reservation_id=reservation_id
                )
            if reservation.status not in (ReservationStatus.PICKED_UP.value, ReservationStatus.RETURNED.value):
                raise InvalidReservationStateError(
                    "Contract numbers are issued at pickup; this reservation has not been picked up.",
                    reservation_id=reservation_id,
                    status=reservation.status,
                )

            await self.claim(reservation, candidate, override=override)
            await self.db.commit()
            return reservation
        except ReservationDomainError:
            await self.db.rollback()
            raise
        except IntegrityError as e:
            # lost a race against a concurrent claim of the same number
            await self.db.rollback()
            holder = await self.find_holder(candidate, excluding_reservation_id=reservation_id)
            if holder is None:
                raise DatabaseQueryError(str(e))
            raise DuplicateContractNumberError(
                f"Contract number {candidate} is already used by reservation {holder.id}.",
                holder=await self.describe_holder(holder.id),
                contract_number=candidate,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DatabaseQueryError(str(e))
