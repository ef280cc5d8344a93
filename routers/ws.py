import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from connections import connection_manager
from errors import RelayError, ValidationError
from identity import claim_user_id, resolve_user_id
from logging_config import get_logger
from reconciler import reconciler
from relay import relay
from schemas.events import ChatSendEvent, ErrorPayload, HangupEvent, InboundEvent, JoinEvent, SignalEvent
from signaling import signaling

logger = get_logger(__name__)

ws_router = APIRouter(tags=["signaling"])


async def handle_join(connection_id: str, data: dict):
    event = JoinEvent.model_validate(data)
    await signaling.join(connection_id, event.room_id, event.user_id, event.callee_user_id)


async def handle_offer(connection_id: str, data: dict):
    event = SignalEvent.model_validate(data)
    await signaling.offer(connection_id, event.room_id, event.payload)


async def handle_answer(connection_id: str, data: dict):
    event = SignalEvent.model_validate(data)
    await signaling.answer(connection_id, event.room_id, event.payload)


async def handle_ice_candidate(connection_id: str, data: dict):
    event = SignalEvent.model_validate(data)
    await signaling.ice_candidate(connection_id, event.room_id, event.payload)


async def handle_chat_send(connection_id: str, data: dict):
    event = ChatSendEvent.model_validate(data)
    sender_id = claim_user_id(connection_manager, connection_id, event.sender_id)
    await relay.send_message(sender_id, event.receiver_id, event.content)


async def handle_hangup(connection_id: str, data: dict):
    event = HangupEvent.model_validate(data)
    await reconciler.hangup(connection_id, event.user_id)


EVENT_HANDLERS = {
    "join": handle_join,
    "offer": handle_offer,
    "answer": handle_answer,
    "iceCandidate": handle_ice_candidate,
    "chatSend": handle_chat_send,
    "hangup": handle_hangup,
}


async def send_error(connection_id: str, code: str, message: str):
    await connection_manager.send(connection_id, "error", ErrorPayload(code=code, message=message).model_dump())


async def dispatch(connection_id: str, raw: str):
    """Decode one inbound frame and run its handler.

    Failures are reported to this connection only.
    """
    try:
        try:
            envelope = InboundEvent.model_validate(json.loads(raw))
        except json.JSONDecodeError:
            raise ValidationError("Frames must be JSON objects") from None
        handler = EVENT_HANDLERS.get(envelope.event)
        if handler is None:
            raise ValidationError(f"Unknown event: {envelope.event}")
        await handler(connection_id, envelope.data)
    except PydanticValidationError as e:
        logger.info(f"Rejected invalid event from connection {connection_id}: {e.error_count()} error(s)")
        details = "; ".join(f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors())
        await send_error(connection_id, ValidationError.code, details)
    except ValidationError as e:
        logger.info(f"Rejected event from connection {connection_id}: {e.message}")
        await send_error(connection_id, e.code, e.message)
    except RelayError as e:
        logger.error(f"Failed to handle event from connection {connection_id}: {e.message}")
        # Internal details stay in the log
        await send_error(connection_id, e.code, "Internal error" if e.code == "internal_error" else e.message)


@ws_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling and chat socket.

    The user is taken from the X-User-Id header or the user_id query parameter
    when the auth layer provides it; otherwise the first join/chatSend binds it.
    """
    user_id = resolve_user_id(websocket)
    await websocket.accept()
    connection = connection_manager.register(websocket, user_id)
    connection_id = connection.connection_id
    logger.info(f"WebSocket connection {connection_id} accepted (user: {user_id})")

    try:
        await connection_manager.send(connection_id, "connected", {"connectionId": connection_id, "userId": user_id})
        while True:
            raw = await websocket.receive_text()
            await dispatch(connection_id, raw)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id}")
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection_id}: {e}", exc_info=True)
        try:
            await websocket.close(code=1011)
        except RuntimeError as close_error:
            logger.debug(f"Error closing WebSocket {connection_id}: {close_error}")
    finally:
        await reconciler.transport_closed(connection_id)
