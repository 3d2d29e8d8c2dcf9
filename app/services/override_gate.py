import logging
from enum import Enum
from typing import Optional

from auth.passwords_handler import verify_password_async
from core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)


class OverrideDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class OverrideGate:
    """
    Secondary approval for transitions that are otherwise rejected.

    The gate is stateless: every call checks the supplied password against the
    configured bcrypt hash and nothing is remembered between calls, so each
    override-requiring retry must resupply credentials.
    """

    def __init__(self, password_hash: Optional[str]):
        self.password_hash = password_hash

    async def authorize(self, password: Optional[str]) -> OverrideDecision:
        decision = OverrideDecision.DENIED

        if not self.password_hash:
            logger.warning("Override requested but no override password is configured.")
        elif password:
            try:
                if await verify_password_async(password, self.password_hash):
                    decision = OverrideDecision.GRANTED
            except ValueError as e:
                # malformed hash in configuration
                logger.error(f"Override password hash is invalid: {e}")

        prometheus_collector.record_override_decision(decision.value)
        logger.info(f"Override authorization {decision.value}.")
        return decision
