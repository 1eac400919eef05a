"""Per-user banking sessions

A ``BankingSession`` is the explicit service object a signed-in user's
screens and the assistant talk to: account operations with their cached
snapshot, the insights cache, and at most one open conversation. Sessions
live in memory for the lifetime of the process.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from nova_bank.assistant.analysis import SpendingAnalyzer
from nova_bank.assistant.dispatch import ToolDispatcher
from nova_bank.assistant.messages import notice
from nova_bank.assistant.orchestrator import ConversationOrchestrator
from nova_bank.assistant.prompts import build_system_instruction
from nova_bank.assistant.reauth import Authenticator, ReauthenticationGate
from nova_bank.assistant.tools import tool_schemas
from nova_bank.config import settings
from nova_bank.domain.underwriting import Underwriting
from nova_bank.infrastructure.clients.chat import ChatClient
from nova_bank.infrastructure.database.repositories import LedgerStore
from nova_bank.services.insights import InsightsCache
from nova_bank.services.operations import AccountOperationsService
from nova_bank.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class BankingSession:
    user_id: str
    operations: AccountOperationsService
    insights: InsightsCache
    conversation: Optional[ConversationOrchestrator] = None
    greeting: str = ""
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionRegistry:
    """Creates sessions on first use and hands out the same one afterwards"""

    def __init__(
        self,
        store: LedgerStore,
        underwriting: Underwriting,
        chat_client: ChatClient,
        authenticator: Authenticator,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.underwriting = underwriting
        self.chat_client = chat_client
        self.authenticator = authenticator
        self.clock = clock
        self.sessions: Dict[str, BankingSession] = {}

    def get(self, user_id: str) -> BankingSession:
        session = self.sessions.get(user_id)
        if session is None:
            session = BankingSession(
                user_id=user_id,
                operations=AccountOperationsService(self.store, user_id, self.underwriting, clock=self.clock),
                insights=InsightsCache(
                    self.store,
                    SpendingAnalyzer(self.chat_client, clock=self.clock),
                    user_id,
                    lookback_days=settings.insights_lookback_days,
                    min_debits=settings.insights_min_debits,
                    clock=self.clock,
                ),
            )
            self.sessions[user_id] = session
        return session

    def open_conversation(self, user_id: str, language: Optional[str] = None) -> ConversationOrchestrator:
        """
        Return the open conversation, starting a new one when there is none
        or the language changed. The system instruction is built from a
        fresh read of the user's cards and loans.
        """
        session = self.get(user_id)
        if language not in settings.supported_languages:
            language = None
        if session.conversation is not None and not session.conversation.closed:
            if language is None or session.conversation.language == language:
                return session.conversation
            session.conversation.close()
        language = language or settings.default_language

        operations = session.operations
        user = operations.refresh().user
        chat = self.chat_client.start_session(
            build_system_instruction(user.name, language, user.cards, user.loans),
            tool_schemas(),
        )
        gate = ReauthenticationGate(
            self.authenticator,
            user_id,
            lambda: [passkey.id for passkey in operations.passkeys()],
            timeout_seconds=settings.auth_challenge_timeout_seconds,
        )
        session.conversation = ConversationOrchestrator(
            chat,
            ToolDispatcher(operations, session.insights, language),
            gate,
            user_id,
            language=language,
            vision=self.chat_client,
        )
        session.greeting = notice("greeting", language, name=user.name.split(" ")[0])
        logger.info("Conversation opened", extra={"user_id": user_id, "language": language})
        return session.conversation

    def close_conversation(self, user_id: str) -> bool:
        session = self.sessions.get(user_id)
        if session is None or session.conversation is None:
            return False
        session.conversation.close()
        session.conversation = None
        logger.info("Conversation closed", extra={"user_id": user_id})
        return True
