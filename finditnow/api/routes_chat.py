"""
Chat API Routes

Reading and appending to a claim's thread, plus a Server-Sent-Events
stream that pushes each new message as it is committed.

The chat id is the claim id.
"""

import asyncio
import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from ..observability import get_logger
from ..schemas import Account, Message, MessageForm
from ..web.deps import get_current_account, get_services
from ..web.shared_store import Services


router = APIRouter(prefix="/api/chats", tags=["Chat"])
logger = get_logger("finditnow.api.chat")

HEARTBEAT_SECONDS = 15.0


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.get("/{chat_id}")
def chat_state(
    chat_id: str,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    return services.chat.chat_state(chat_id, account)


@router.get("/{chat_id}/messages")
def list_messages(
    chat_id: str,
    after: int = Query(default=0, ge=0),
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """Messages with sequence greater than `after`, oldest first."""
    messages = services.chat.list_messages(chat_id, account, after=after)
    return {
        "chat_id": chat_id,
        "messages": [m.model_dump(mode="json") for m in messages],
        "last_sequence": messages[-1].sequence if messages else after,
    }


@router.post("/{chat_id}/messages", status_code=201)
def send_message(
    chat_id: str,
    form: MessageForm,
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    message = services.chat.send_message(chat_id, account, form.text)
    return {"success": True, "message": message.model_dump(mode="json")}


@router.get("/{chat_id}/stream")
async def stream_messages(
    chat_id: str,
    request: Request,
    after: int = Query(default=0, ge=0),
    account: Account = Depends(get_current_account),
    services: Services = Depends(get_services),
):
    """
    Server-Sent Events: backlog after `after`, then live messages.

    The listener is registered before the backlog is read so nothing
    committed in between is lost; duplicates are skipped by sequence.
    Both happen inside the generator, so a client that goes away before
    the first chunk never leaves a listener behind.
    """
    # Permission check happens here, before any stream is opened
    await run_in_threadpool(services.chat.chat_state, chat_id, account)

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Message] = asyncio.Queue()

    def on_message(message: Message) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, message)

    async def events():
        last = after
        remove = services.chat.add_listener(chat_id, on_message)
        try:
            backlog = await run_in_threadpool(services.chat.list_messages, chat_id, account, after)
            for message in backlog:
                last = message.sequence
                yield _sse("message", message.model_dump(mode="json"))

            while True:
                if await request.is_disconnected():
                    break
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                if message.sequence <= last:
                    continue
                last = message.sequence
                yield _sse("message", message.model_dump(mode="json"))
        finally:
            remove()
            logger.debug("Chat stream closed", chat_id=chat_id, account_id=account.id)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
