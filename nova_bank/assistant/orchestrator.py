"""Conversation orchestrator - drives one assistant turn

A turn streams the model's reply to the user text, then, if the model asked
for tools, runs them strictly in the order requested (each sensitive one
behind the re-authentication gate) and streams a follow-up round carrying
the results. Follow-up rounds may request more tools, up to a fixed bound.

Events are yielded in display order:
- ``text``: a fragment of assistant output
- ``notice``: a system message (confirmation prompt, cancellation, tool
  outcome, or the generic error)
- ``done``: always last
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional, Protocol

from nova_bank.assistant.analysis import StructuredGenerator, extract_payment_details
from nova_bank.assistant.dispatch import ToolDispatcher, ToolOutcome
from nova_bank.assistant.messages import notice
from nova_bank.assistant.reauth import ReauthenticationGate
from nova_bank.assistant.tools import SENSITIVE_TOOLS, validate_arguments
from nova_bank.config import settings
from nova_bank.domain.exceptions import (
    AuthChallengeDeniedError,
    ExternalServiceError,
    ToolArgumentError,
    UnknownToolError,
)
from nova_bank.infrastructure.clients.chat import ChatChunk, ChatMessage, ToolCall, ToolResponse
from nova_bank.infrastructure.observability.logging import log_tool_call
from nova_bank.infrastructure.observability.metrics import (
    chat_round_latency_histogram,
    chat_stream_failures_counter,
    tool_call_counter,
)
from nova_bank.utils.money import format_currency

logger = logging.getLogger(__name__)

TOOL_LIMIT_MESSAGE = "Too many tool calls in one turn. This call was not executed."


class ChatStream(Protocol):
    def send_message_stream(self, message: ChatMessage) -> AsyncIterator[ChatChunk]:
        ...


class EventType(str, Enum):
    TEXT = "text"
    NOTICE = "notice"
    DONE = "done"


@dataclass
class TurnEvent:
    type: EventType
    text: str = ""
    tool: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {"type": self.type.value, "text": self.text}
        if self.tool:
            payload["tool"] = self.tool
        return payload


class ConversationOrchestrator:
    """Runs turns for one chat session; tool calls never run concurrently"""

    def __init__(
        self,
        session: ChatStream,
        dispatcher: ToolDispatcher,
        gate: ReauthenticationGate,
        user_id: str,
        language: str = "en",
        stream_timeout_seconds: float | None = None,
        max_tool_rounds: int | None = None,
        vision: Optional[StructuredGenerator] = None,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.gate = gate
        self.user_id = user_id
        self.language = language
        self.stream_timeout_seconds = stream_timeout_seconds or settings.chat_stream_timeout_seconds
        self.max_tool_rounds = max_tool_rounds if max_tool_rounds is not None else settings.chat_max_tool_rounds
        self.vision = vision
        self.closed = False

    def close(self) -> None:
        """Abandon the conversation; a turn in flight stops at its next step"""
        self.closed = True

    def _notice(self, key: str, **params) -> TurnEvent:
        return TurnEvent(EventType.NOTICE, notice(key, self.language, **params))

    async def _stream(self, message: ChatMessage) -> AsyncIterator[ChatChunk]:
        """Chunks of one round, failing if the service goes quiet for too long"""
        iterator = self.session.send_message_stream(message).__aiter__()
        start_time = time.time()
        try:
            while not self.closed:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self.stream_timeout_seconds)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as e:
                    raise ExternalServiceError(
                        f"Chat stream stalled for {self.stream_timeout_seconds}s"
                    ) from e
                yield chunk
        finally:
            chat_round_latency_histogram.observe(time.time() - start_time)
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _process_call(
        self,
        call: ToolCall,
        responses: List[ToolResponse],
        round_index: int,
    ) -> AsyncIterator[TurnEvent]:
        # Calls that can never run are answered before anyone is asked for a passkey
        try:
            validate_arguments(call.name, call.arguments)
        except (UnknownToolError, ToolArgumentError) as e:
            tool_call_counter.labels(tool=call.name, outcome="failure").inc()
            log_tool_call(self.user_id, call.name, "failure", round_index)
            outcome = ToolOutcome.failure(e.message)
            yield TurnEvent(EventType.NOTICE, outcome.message, tool=call.name)
            responses.append(ToolResponse(call.id, call.name, outcome.result))
            return

        if call.name in SENSITIVE_TOOLS:
            yield self._notice("confirmation_required", action=call.name.replace("_", " "))
            if not await self.gate.authorize(call.name):
                yield self._notice("action_cancelled")
                denial = AuthChallengeDeniedError()
                responses.append(ToolResponse(call.id, call.name, {"success": False, "message": denial.message}))
                tool_call_counter.labels(tool=call.name, outcome="cancelled").inc()
                log_tool_call(self.user_id, call.name, "cancelled", round_index)
                return

        try:
            outcome = await self.dispatcher.dispatch(call)
        finally:
            self.gate.consume()

        outcome_label = "success" if outcome.success else "failure"
        tool_call_counter.labels(tool=call.name, outcome=outcome_label).inc()
        log_tool_call(self.user_id, call.name, outcome_label, round_index)

        yield TurnEvent(EventType.NOTICE, outcome.message, tool=call.name)
        responses.append(ToolResponse(call.id, call.name, outcome.result))

    async def run_turn(self, user_input: str) -> AsyncIterator[TurnEvent]:
        """
        Run one turn and yield its events.

        A transport or provider failure ends the turn with the localized
        error notice. Calls already executed stay executed; calls from a
        round that failed mid-stream are never executed.
        """
        message: ChatMessage = user_input
        round_index = 0
        exhausted = False

        try:
            while not self.closed:
                calls: List[ToolCall] = []
                async for chunk in self._stream(message):
                    if chunk.text:
                        yield TurnEvent(EventType.TEXT, chunk.text)
                    calls.extend(chunk.tool_calls)

                if not calls or exhausted or self.closed:
                    break

                round_index += 1
                responses: List[ToolResponse] = []

                if round_index > self.max_tool_rounds:
                    # Answer the calls without running them and let the model wrap up
                    logger.warning(
                        "Tool round limit reached",
                        extra={"user_id": self.user_id, "round": round_index, "pending": len(calls)},
                    )
                    for call in calls:
                        tool_call_counter.labels(tool=call.name, outcome="rejected").inc()
                        responses.append(
                            ToolResponse(call.id, call.name, {"success": False, "message": TOOL_LIMIT_MESSAGE})
                        )
                    exhausted = True
                else:
                    for call in calls:
                        if self.closed:
                            break
                        async for event in self._process_call(call, responses, round_index):
                            yield event
                    if self.closed:
                        break

                message = responses

        except ExternalServiceError as e:
            chat_stream_failures_counter.inc()
            logger.warning(
                "Chat turn failed",
                extra={"user_id": self.user_id, "round": round_index, "error": e.message},
            )
            yield self._notice("chat_error")

        yield TurnEvent(EventType.DONE)

    async def run_image_turn(self, image: bytes, mime_type: str = "image/jpeg") -> AsyncIterator[TurnEvent]:
        """
        Turn started from a photo of a payment note.

        The recipient and amount are read from the image; with no readable
        recipient the turn ends with a notice, otherwise the details are
        confirmed and fed into a normal turn as a payment request.
        """
        yield self._notice("analyzing_image")

        if self.vision is None:
            yield self._notice("ocr_error")
            yield TurnEvent(EventType.DONE)
            return

        try:
            details = await extract_payment_details(self.vision, image, mime_type)
        except ExternalServiceError as e:
            logger.warning("Payment extraction failed", extra={"user_id": self.user_id, "error": e.message})
            yield self._notice("ocr_error")
            yield TurnEvent(EventType.DONE)
            return

        if not details.has_recipient:
            yield self._notice("ocr_failed")
            yield TurnEvent(EventType.DONE)
            return

        amount = format_currency(details.amount_cents)
        yield self._notice(
            "ocr_success",
            amount=amount,
            recipient=details.recipient_name or details.recipient_account_number,
        )
        prompt = notice("ocr_payment_prompt", self.language, amount=amount, recipient=details.recipient_identifier)
        async for event in self.run_turn(prompt):
            yield event
