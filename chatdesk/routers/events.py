"""WebSocket relays from the subscription manager to browsers.

Each conversation socket gets the current snapshot, then live events.
Frames already sent to a socket are not sent to it again. Frames are
the JSON-encoded ``ConversationEvent`` plus ``{"type": "status", ...}``
frames when real-time delivery degrades or recovers.
"""

import asyncio
import json
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatdesk.logging_config import get_logger
from chatdesk.realtime.events import ConversationEvent
from chatdesk.realtime.transport import ConnectionStatus
from chatdesk.realtime.view import ConversationView

router = APIRouter()

logger = get_logger("routers.events")

CONVERSATION_NOT_FOUND = 4404


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        frame = await queue.get()
        await websocket.send_text(frame)


async def _relay(websocket: WebSocket, queue: asyncio.Queue, unsubscribe, remove_status) -> None:
    sender = asyncio.create_task(_pump(websocket, queue))
    try:
        while True:
            # inbound frames are ignored, reading detects the disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        await unsubscribe()
        remove_status()


def _status_frame(status: ConnectionStatus) -> str:
    return json.dumps({"type": "status", "status": status.value})


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_events(websocket: WebSocket, conversation_id: UUID):
    subscriptions = websocket.app.state.context.subscriptions
    await websocket.accept()

    queue: asyncio.Queue = asyncio.Queue()
    # only frames that change what this socket has already seen are sent
    view = ConversationView(conversation_id)

    def on_message(payload):
        if view.apply_message(payload):
            queue.put_nowait(ConversationEvent.message_appended(payload).to_json())

    def on_ownership_change(payload):
        if view.apply_ownership(payload):
            queue.put_nowait(ConversationEvent.ownership_changed(payload).to_json())

    # subscribe before reading the snapshot so nothing committed in between is lost
    unsubscribe = await subscriptions.subscribe(
        conversation_id,
        on_message=on_message,
        on_ownership_change=on_ownership_change,
        owner=f"ws:{id(websocket)}",
    )
    remove_status = subscriptions.add_status_listener(lambda status: queue.put_nowait(_status_frame(status)))

    if subscriptions.snapshot_loader is not None:
        snapshot = await subscriptions.snapshot_loader(conversation_id)
        if snapshot is None:
            await unsubscribe()
            remove_status()
            await websocket.close(code=CONVERSATION_NOT_FOUND)
            return
        for message in snapshot.messages:
            on_message(message)
        on_ownership_change(snapshot.ownership)

    logger.info("Conversation socket opened", extra={"context": {"conversation_id": str(conversation_id)}})
    await websocket.send_text(_status_frame(subscriptions.status))
    await _relay(websocket, queue, unsubscribe, remove_status)


@router.websocket("/ws/agents/{agent_id}/notifications")
async def agent_notifications(websocket: WebSocket, agent_id: UUID):
    subscriptions = websocket.app.state.context.subscriptions
    await websocket.accept()

    queue: asyncio.Queue = asyncio.Queue()

    def on_notification(payload):
        queue.put_nowait(ConversationEvent.notification_created(payload).to_json())

    unsubscribe = await subscriptions.subscribe_agent(agent_id, on_notification, owner=f"ws:{id(websocket)}")
    remove_status = subscriptions.add_status_listener(lambda status: queue.put_nowait(_status_frame(status)))
    queue.put_nowait(_status_frame(subscriptions.status))

    await _relay(websocket, queue, unsubscribe, remove_status)
