"""
Seams to the external collaborators that consume lifecycle side effects.

Rendering contract / damage-check PDFs and delivering e-mail or WhatsApp
messages happen outside this service. The default implementations only log the
hand-off; deployments replace them with real clients when wiring the outbox
worker in ``main.py``.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class DocumentService:
    """Requests rental documents from the document-generation service."""

    async def generate_contract(self, reservation_id: int, payload: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"Contract document requested for reservation {reservation_id}.", extra={"payload": payload})

    async def generate_damage_check(self, reservation_id: int, payload: Optional[Dict[str, Any]] = None) -> None:
        logger.info(f"Damage-check document requested for reservation {reservation_id}.", extra={"payload": payload})


class NotificationDispatcher:
    """Forwards lifecycle transitions to the notification channels."""

    async def dispatch(self, event_type: str, reservation_id: Optional[int], payload: Optional[Dict[str, Any]] = None) -> None:
        logger.info(
            f"Notification {event_type} dispatched for reservation {reservation_id}.",
            extra={"event_type": event_type, "payload": payload}
        )
