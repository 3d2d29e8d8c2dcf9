from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Integer, String, Text, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base


class OutboxEvent(Base):
    """Side-effect job committed together with the transition that produced it."""
    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        index=True
    )

    event_type: Mapped[str] = mapped_column(
        String,
        index=True
    )  # reservation.picked_up, document.contract, ...

    reservation_id: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        index=True
    )

    payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True
    )

    status: Mapped[str] = mapped_column(
        String,
        default="pending",
        index=True
    )  # pending | processed | failed

    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0
    )

    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True
    )

    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
