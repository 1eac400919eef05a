"""Re-authentication gate for sensitive tool calls"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Protocol

from sqlalchemy.exc import SQLAlchemyError

from nova_bank.domain.exceptions import DomainException
from nova_bank.infrastructure.observability.metrics import reauth_counter

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    async def challenge(self, user_id: str, credential_ids: List[str]) -> bool:
        ...


class GateState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class ReauthenticationGate:
    """
    Locked by default; a successful challenge unlocks it for exactly one call.

    Nothing is remembered between calls: every sensitive call runs a fresh
    challenge against the user's current credentials. A user with no
    registered passkeys cannot unlock the gate. Errors and timeouts from the
    authenticator count as a denial, and there is no retry.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        user_id: str,
        credential_ids: Callable[[], List[str]],
        timeout_seconds: float = 60.0,
    ):
        self.authenticator = authenticator
        self.user_id = user_id
        self.credential_ids = credential_ids
        self.timeout_seconds = timeout_seconds
        self.state = GateState.LOCKED

    async def _challenge(self) -> str:
        try:
            credential_ids = self.credential_ids()
        except (DomainException, SQLAlchemyError):
            logger.exception("Could not load passkeys", extra={"user_id": self.user_id})
            return "error"
        if not credential_ids:
            return "no_credentials"

        try:
            granted = await asyncio.wait_for(
                self.authenticator.challenge(self.user_id, credential_ids),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return "timeout"
        except DomainException as e:
            logger.warning("Passkey challenge failed", extra={"user_id": self.user_id, "error": e.message})
            return "error"
        return "granted" if granted else "denied"

    async def authorize(self, action: str) -> bool:
        """Run one challenge; True means the caller may execute ``action`` once"""
        outcome = await self._challenge()
        reauth_counter.labels(outcome=outcome).inc()
        logger.info(
            "Re-authentication challenge",
            extra={"user_id": self.user_id, "action": action, "outcome": outcome},
        )
        if outcome != "granted":
            self.state = GateState.LOCKED
            return False
        self.state = GateState.UNLOCKED
        return True

    def consume(self) -> None:
        """Relock after the unlocked call has been dispatched"""
        self.state = GateState.LOCKED
