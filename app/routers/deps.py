from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from core.db import get_db
from services.contract_service import ContractService
from services.override_gate import OverrideGate
from services.reservation_service import ReservationService
from services.schedule_service import ScheduleService
from services.spare_service import SpareService


def get_app_settings() -> Settings:
    return get_settings()


def get_override_gate(settings: Settings = Depends(get_app_settings)) -> OverrideGate:
    return OverrideGate(settings.override_password_hash)


def get_reservation_service(
    db: AsyncSession = Depends(get_db),
    gate: OverrideGate = Depends(get_override_gate),
    settings: Settings = Depends(get_app_settings),
) -> ReservationService:
    return ReservationService(db, gate, settings)


def get_contract_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> ContractService:
    return ContractService(db, settings.contract_number_warning_threshold)


def get_schedule_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> ScheduleService:
    return ScheduleService(db, settings.open_ended_horizon_days)


def get_spare_service(
    db: AsyncSession = Depends(get_db),
    schedule: ScheduleService = Depends(get_schedule_service),
) -> SpareService:
    return SpareService(db, schedule)
