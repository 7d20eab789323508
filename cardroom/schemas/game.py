from typing import Any

from pydantic import BaseModel, Field


class RoomCreateRequest(BaseModel):
    host_id: str = Field(min_length=1, max_length=64)
    host_name: str = Field(min_length=1, max_length=40)
    name: str | None = Field(default=None, max_length=60)
    betting_seconds: int | None = Field(default=None, ge=1, le=600)
    turn_seconds: int | None = Field(default=None, ge=1, le=600)
    starting_balance: int | None = Field(default=None, ge=0, le=1_000_000)
    min_players: int | None = Field(default=None, ge=1, le=12)
    max_players: int | None = Field(default=None, ge=1, le=12)


class RoomJoinRequest(BaseModel):
    player_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=40)


class RoomLeaveRequest(BaseModel):
    player_id: str = Field(min_length=1, max_length=64)


class RoomHostRequest(BaseModel):
    requested_by: str | None = Field(default=None, max_length=64)


class ActionRequest(BaseModel):
    player_id: str = Field(min_length=1, max_length=64)
    action: str = Field(min_length=1, max_length=20)
    data: dict[str, Any] | None = None
    action_id: str | None = Field(default=None, max_length=64)
    expected_version: int | None = Field(default=None, ge=1)


class ChatRequest(BaseModel):
    sender: str = Field(min_length=1, max_length=40)
    content: str = Field(min_length=1, max_length=500)


class RoomStateRead(BaseModel):
    room_id: str
    version: int
    stage: dict[str, Any]
    reason: str
    players: list[dict[str, Any]]
    hands: list[dict[str, Any]]
    dealer_up_card: dict[str, Any] | None = None


class RoomSnapshotRead(BaseModel):
    room_id: str
    name: str
    host_id: str
    version: int
    stage: dict[str, Any]
    turn_remaining_seconds: int | None = None
    players: list[dict[str, Any]]
    hands: list[dict[str, Any]]
    dealer_cards: list[Any]


class ChatMessageRead(BaseModel):
    sender: str
    content: str
    timestamp: str
