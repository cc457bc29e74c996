from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from schemas.events import ClientEvent, CodeChangeEvent, SignalEvent, parse_room_event
from context import ServiceContext
from synchronizer import ERROR_EVENT, SIGNAL_EVENTS, InvalidRoomRequest
from logging_config import get_logger
import uuid
import json

logger = get_logger(__name__)

realtime_router = APIRouter(tags=["realtime"])

CONNECTED_EVENT = "connected"


async def dispatch_event(context: ServiceContext, connection_id: str, event: ClientEvent):
    """Route one client event to the synchronizer."""
    synchronizer = context.synchronizer

    if event.event == "join-room":
        room = parse_room_event(event.data)
        await synchronizer.handle_join(connection_id, room.room_id)
    elif event.event == "code-change":
        change = CodeChangeEvent.model_validate(event.data)
        synchronizer.handle_code_change(connection_id, change.room_id, change.code)
    elif event.event in SIGNAL_EVENTS:
        signal = SignalEvent.model_validate(event.data)
        synchronizer.relay_signal(connection_id, event.event, signal.to, signal.payload)
    elif event.event == "leave-room":
        room = parse_room_event(event.data)
        synchronizer.leave_room(connection_id, room.room_id)
    else:
        raise InvalidRoomRequest(f"Unknown event: {event.event}")


@realtime_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Realtime channel; frames are JSON objects of the form {"event": ..., "data": ...}."""
    context: ServiceContext = websocket.app.state.context
    hub = context.hub

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    hub.register(connection_id, websocket)
    logger.info(f"User connected: {connection_id}")
    hub.emit(connection_id, CONNECTED_EVENT, {"connectionId": connection_id})

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            data = message.get("text")
            if data is None:
                logger.debug(f"Binary frame from connection {connection_id}")
                hub.emit(connection_id, ERROR_EVENT, "Malformed message")
                continue
            try:
                event = ClientEvent.model_validate(json.loads(data))
                await dispatch_event(context, connection_id, event)
            except json.JSONDecodeError:
                logger.debug(f"Non-JSON frame from connection {connection_id}")
                hub.emit(connection_id, ERROR_EVENT, "Malformed message")
            except ValidationError as e:
                logger.debug(f"Invalid payload from connection {connection_id}: {e}")
                hub.emit(connection_id, ERROR_EVENT, "Invalid message payload")
            except InvalidRoomRequest as e:
                hub.emit(connection_id, ERROR_EVENT, str(e))
    except WebSocketDisconnect:
        logger.info(f"User disconnected: {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
    finally:
        await hub.disconnect(connection_id)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")
