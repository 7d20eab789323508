from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RoomEventType(str, Enum):
    MESSAGE = "message"
    GAME_STATE_UPDATE = "game_state_update"
    PLAYER_ACTION = "player_action"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    DEALER_REVEAL = "dealer_reveal"
    PLAYER_REVEAL = "player_reveal"


class CardRead(BaseModel):
    code: str
    value: str
    suit: str


class MessageEventData(BaseModel):
    sender: str
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GameStateUpdateEventData(BaseModel):
    room_id: str
    version: int
    stage: dict[str, Any]
    reason: str
    players: list[dict[str, Any]] = Field(default_factory=list)
    hands: list[dict[str, Any]] = Field(default_factory=list)
    dealer_up_card: CardRead | None = None


class PlayerActionEventData(BaseModel):
    player_id: str
    action: str
    hand_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class PlayerJoinEventData(BaseModel):
    player_id: str
    player_name: str


class PlayerLeaveEventData(BaseModel):
    player_id: str
    player_name: str


class DealerRevealEventData(BaseModel):
    dealer_hand: list[CardRead]
    dealer_score: int


class PlayerRevealEventData(BaseModel):
    player_id: str
    hand_id: str
    player_hand: list[CardRead]
    player_score: int
    outcome: str
    payout: int
