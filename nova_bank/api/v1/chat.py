"""Assistant conversation endpoints

Turns are streamed as newline-delimited JSON, one event per line:
``{"type": "text" | "notice" | "done", "text": ..., "tool": ...}``.
"""

import asyncio
import base64
import binascii
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from nova_bank.api.dependencies import get_current_user_id, get_session_registry
from nova_bank.api.v1.schemas import ChatImageRequest, ChatSessionResponse, ChatTurnRequest
from nova_bank.assistant.orchestrator import ConversationOrchestrator, TurnEvent
from nova_bank.services.sessions import BankingSession, SessionRegistry

router = APIRouter()

NDJSON = "application/x-ndjson"


class TurnClaim:
    """
    Holds a session's turn lock from the request until its stream ends.

    The lock is taken in the endpoint, so a second request is refused even
    before the first stream starts. It is released once, by whichever comes
    first: the end of the stream or the response's background task (which
    also runs when the client disconnects before streaming begins).
    """

    def __init__(self, lock: asyncio.Lock):
        self.lock = lock
        self.released = False

    @classmethod
    async def take(cls, session: BankingSession) -> "TurnClaim":
        # No await between the check and the acquire, so this cannot interleave
        if session.turn_lock.locked():
            raise HTTPException(status_code=409, detail="A turn is already in progress")
        await session.turn_lock.acquire()
        return cls(session.turn_lock)

    async def release(self) -> None:
        if not self.released:
            self.released = True
            self.lock.release()


async def _ndjson(claim: TurnClaim, events: AsyncIterator[TurnEvent]) -> AsyncIterator[str]:
    try:
        async for event in events:
            yield json.dumps(event.to_dict(), ensure_ascii=False) + "\n"
    finally:
        await claim.release()


async def _open_for_turn(
    registry: SessionRegistry, user_id: str, language: Optional[str]
) -> tuple[TurnClaim, ConversationOrchestrator]:
    claim = await TurnClaim.take(registry.get(user_id))
    try:
        conversation = await run_in_threadpool(registry.open_conversation, user_id, language)
    except Exception:
        await claim.release()
        raise
    return claim, conversation


def _stream(claim: TurnClaim, events: AsyncIterator[TurnEvent]) -> StreamingResponse:
    return StreamingResponse(_ndjson(claim, events), media_type=NDJSON, background=BackgroundTask(claim.release))


@router.post("/chat/session")
def open_chat_session(
    language: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Start (or resume) the conversation and return the localized greeting"""
    conversation = registry.open_conversation(user_id, language)
    return {"language": conversation.language, "greeting": registry.get(user_id).greeting}


@router.post("/chat/turns")
async def run_chat_turn(
    request_body: ChatTurnRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    claim, conversation = await _open_for_turn(registry, user_id, request_body.language)
    return _stream(claim, conversation.run_turn(request_body.message))


@router.post("/chat/image")
async def run_image_turn(
    request_body: ChatImageRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Turn driven by a photo of a payment note"""
    try:
        image = base64.b64decode(request_body.image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail="image_base64 is not valid base64")

    claim, conversation = await _open_for_turn(registry, user_id, request_body.language)
    return _stream(claim, conversation.run_image_turn(image, request_body.mime_type))


@router.delete("/chat/session", response_model=ChatSessionResponse)
def close_chat_session(
    user_id: str = Depends(get_current_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Close the conversation; a turn in flight stops and committed operations stay committed"""
    return ChatSessionResponse(closed=registry.close_conversation(user_id))
