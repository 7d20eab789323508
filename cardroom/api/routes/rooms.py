import asyncio
import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from cardroom.core.config import get_settings
from cardroom.realtime.broadcast_hub import room_hub
from cardroom.schemas.game import (
    ActionRequest,
    ChatMessageRead,
    ChatRequest,
    RoomCreateRequest,
    RoomHostRequest,
    RoomJoinRequest,
    RoomLeaveRequest,
    RoomSnapshotRead,
    RoomStateRead,
)
from cardroom.services.game_session import game_session
from cardroom.services.rate_limit_service import rate_limit_service
from cardroom.services.room_config import RoomConfig

router = APIRouter()


def _room_config(payload: RoomCreateRequest) -> RoomConfig:
    defaults = RoomConfig.defaults(get_settings())
    config = RoomConfig(
        betting_seconds=payload.betting_seconds or defaults.betting_seconds,
        turn_seconds=payload.turn_seconds or defaults.turn_seconds,
        starting_balance=(
            payload.starting_balance if payload.starting_balance is not None else defaults.starting_balance
        ),
        min_players=payload.min_players or defaults.min_players,
        max_players=payload.max_players or defaults.max_players,
    )
    if config.min_players > config.max_players:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="min_players cannot exceed max_players",
        )
    return config


def _enforce_action_rate_limit(room_id: str, player_id: str) -> None:
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    decision = rate_limit_service.check(
        f"action:{room_id}:{player_id}",
        limit=settings.rate_limit_action_limit,
        window_seconds=settings.rate_limit_action_window_seconds,
    )
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )


@router.post("", response_model=RoomStateRead, status_code=status.HTTP_201_CREATED)
async def create_room(payload: RoomCreateRequest) -> RoomStateRead:
    return await game_session.create_room(
        payload.host_id,
        payload.host_name,
        name=payload.name,
        config=_room_config(payload),
    )


@router.get("/{room_id}", response_model=RoomSnapshotRead)
async def get_room(room_id: str) -> RoomSnapshotRead:
    return await game_session.get_snapshot(room_id)


@router.post("/{room_id}/join", response_model=RoomStateRead)
async def join_room(room_id: str, payload: RoomJoinRequest) -> RoomStateRead:
    return await game_session.join_room(room_id, payload.player_id, payload.name)


@router.post("/{room_id}/leave", response_model=RoomStateRead)
async def leave_room(room_id: str, payload: RoomLeaveRequest) -> RoomStateRead:
    return await game_session.leave_room(room_id, payload.player_id)


@router.post("/{room_id}/setup", response_model=RoomStateRead)
async def setup_game(room_id: str, payload: RoomHostRequest | None = None) -> RoomStateRead:
    requested_by = payload.requested_by if payload else None
    return await game_session.setup_game(room_id, requested_by=requested_by)


@router.post("/{room_id}/actions", response_model=RoomStateRead)
async def perform_action(room_id: str, payload: ActionRequest) -> RoomStateRead:
    _enforce_action_rate_limit(room_id, payload.player_id)
    return await game_session.perform_action(
        room_id,
        payload.player_id,
        payload.action,
        payload.data,
        action_id=payload.action_id,
        expected_version=payload.expected_version,
    )


@router.post("/{room_id}/chat", response_model=ChatMessageRead, status_code=status.HTTP_201_CREATED)
async def post_chat(room_id: str, payload: ChatRequest) -> ChatMessageRead:
    return await game_session.post_message(room_id, payload.sender, payload.content)


@router.delete("/{room_id}", response_model=RoomStateRead)
async def teardown_room(
    room_id: str,
    requested_by: str | None = Query(default=None, max_length=64),
) -> RoomStateRead:
    return await game_session.teardown_room(room_id, requested_by=requested_by)


@router.get("/{room_id}/events")
async def stream_room_events(room_id: str, request: Request) -> StreamingResponse:
    if "text/event-stream" not in request.headers.get("accept", ""):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This endpoint requires an EventSource connection",
        )

    subscription = room_hub.subscribe(room_id)
    try:
        snapshot = await game_session.get_snapshot(room_id)
    except Exception:
        room_hub.unsubscribe(subscription)
        raise
    keepalive = max(1.0, get_settings().sse_keepalive_seconds)

    async def event_stream() -> AsyncIterator[str]:
        try:
            yield f"event: room_snapshot\ndata: {json.dumps(snapshot, separators=(',', ':'), default=str)}\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await subscription.next_event(timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if event is None:
                    break
                yield event.to_sse()
        finally:
            room_hub.unsubscribe(subscription)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
