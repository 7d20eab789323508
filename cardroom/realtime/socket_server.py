import asyncio
import logging
from functools import partial

import socketio

from cardroom.core.config import get_settings
from cardroom.core.errors import GameError
from cardroom.realtime.broadcast_hub import RoomEvent, Subscription, room_hub
from cardroom.services.game_session import game_session
from cardroom.services.rate_limit_service import rate_limit_service

logger = logging.getLogger("cardroom.realtime.socket")

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")

settings = get_settings()

_sid_watches: dict[str, dict[str, tuple[Subscription, asyncio.Task]]] = {}
_sid_client_ip: dict[str, str] = {}


def _extract_client_ip_from_environ(environ: dict) -> str:
    forwarded_for = str(environ.get("HTTP_X_FORWARDED_FOR", "")).strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = str(environ.get("HTTP_X_REAL_IP", "")).strip()
    if real_ip:
        return real_ip
    remote_addr = str(environ.get("REMOTE_ADDR", "")).strip()
    return remote_addr or "unknown"


def _payload_string(payload: dict | None, key: str) -> str:
    if not isinstance(payload, dict):
        return ""
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _error_payload(exc: GameError) -> dict:
    return {"ok": False, "error": exc.message, "code": exc.code}


def _is_socket_event_allowed(sid: str, event_name: str) -> bool:
    if not settings.rate_limit_enabled:
        return True
    client_ip = _sid_client_ip.get(sid, "unknown")
    decision = rate_limit_service.check(
        f"ws:event:{event_name}:{client_ip}:{sid}",
        limit=settings.websocket_event_limit,
        window_seconds=settings.websocket_event_window_seconds,
    )
    return decision.allowed


def _serialize_event(event: RoomEvent) -> dict:
    return {
        "room_id": event.room_id,
        "sequence": event.sequence,
        "event": event.kind.value,
        "data": event.payload,
        "created_at": event.created_at.isoformat(),
    }


async def _pump_room_events(sid: str, subscription: Subscription) -> None:
    async for event in subscription:
        await sio.emit(event.kind.value, _serialize_event(event), room=sid)
    await sio.emit("room_stream_closed", {"room_id": subscription.room_id}, room=sid)


def _stop_watching(sid: str, room_id: str) -> bool:
    watches = _sid_watches.get(sid)
    if not watches or room_id not in watches:
        return False
    subscription, task = watches.pop(room_id)
    room_hub.unsubscribe(subscription)
    task.cancel()
    if not watches:
        _sid_watches.pop(sid, None)
    return True


def _on_pump_done(sid: str, room_id: str, task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(
            "Event stream for socket %s in room %s failed",
            sid,
            room_id,
            exc_info=task.exception(),
        )
    current = _sid_watches.get(sid, {}).get(room_id)
    if current is not None and current[1] is task:
        _stop_watching(sid, room_id)


@sio.event
async def connect(sid: str, environ: dict, auth: dict | None = None) -> bool:
    client_ip = _extract_client_ip_from_environ(environ)
    if settings.rate_limit_enabled:
        decision = rate_limit_service.check(
            f"ws:connect:{client_ip}",
            limit=settings.websocket_event_limit,
            window_seconds=settings.websocket_event_window_seconds,
        )
        if not decision.allowed:
            return False
    _sid_client_ip[sid] = client_ip
    logger.debug("Socket %s connected from %s", sid, client_ip)
    return True


@sio.event
async def disconnect(sid: str) -> None:
    for room_id in list(_sid_watches.get(sid, {})):
        _stop_watching(sid, room_id)
    _sid_client_ip.pop(sid, None)
    logger.debug("Socket %s disconnected", sid)


@sio.event
async def watch_room(sid: str, payload: dict | None = None) -> dict:
    if not _is_socket_event_allowed(sid, "watch_room"):
        return {"ok": False, "error": "rate limited", "code": "rate_limited"}
    room_id = _payload_string(payload, "room_id")
    if not room_id:
        return {"ok": False, "error": "room_id is required", "code": "invalid_action"}
    if room_id in _sid_watches.get(sid, {}):
        return {"ok": True, "room_id": room_id, "already_watching": True}

    # Subscribe first so nothing committed after the snapshot is missed.
    subscription = room_hub.subscribe(room_id)
    try:
        snapshot = await game_session.get_snapshot(room_id)
    except GameError as exc:
        room_hub.unsubscribe(subscription)
        return _error_payload(exc)

    task = asyncio.get_running_loop().create_task(_pump_room_events(sid, subscription))
    _sid_watches.setdefault(sid, {})[room_id] = (subscription, task)
    task.add_done_callback(partial(_on_pump_done, sid, room_id))
    await sio.emit("room_snapshot", snapshot, room=sid)
    return {"ok": True, "room_id": room_id}


@sio.event
async def unwatch_room(sid: str, payload: dict | None = None) -> dict:
    room_id = _payload_string(payload, "room_id")
    if not room_id:
        return {"ok": False, "error": "room_id is required", "code": "invalid_action"}
    return {"ok": True, "room_id": room_id, "watching": False, "was_watching": _stop_watching(sid, room_id)}


@sio.event
async def room_action(sid: str, payload: dict | None = None) -> dict:
    if not _is_socket_event_allowed(sid, "room_action"):
        return {"ok": False, "error": "rate limited", "code": "rate_limited"}
    room_id = _payload_string(payload, "room_id")
    player_id = _payload_string(payload, "player_id")
    action = _payload_string(payload, "action")
    if not room_id or not player_id or not action:
        return {"ok": False, "error": "room_id, player_id and action are required", "code": "invalid_action"}

    data = payload.get("data") if isinstance(payload.get("data"), dict) else None
    action_id = _payload_string(payload, "action_id") or None
    expected_version = payload.get("expected_version")
    if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
        return {"ok": False, "error": "expected_version must be an integer", "code": "invalid_action"}

    try:
        state = await game_session.perform_action(
            room_id,
            player_id,
            action,
            data,
            action_id=action_id,
            expected_version=expected_version,
        )
    except GameError as exc:
        return _error_payload(exc)
    return {"ok": True, "state": state}


def build_socket_app(api_app) -> socketio.ASGIApp:
    return socketio.ASGIApp(sio, other_asgi_app=api_app, socketio_path="socket.io")
