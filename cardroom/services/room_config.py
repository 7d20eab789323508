from dataclasses import dataclass
from datetime import datetime, timedelta

from cardroom.core.config import Settings
from cardroom.db.models import Room


@dataclass(frozen=True)
class RoomConfig:
    betting_seconds: int
    turn_seconds: int
    starting_balance: int
    min_players: int
    max_players: int

    @classmethod
    def from_room(cls, room: Room) -> "RoomConfig":
        return cls(
            betting_seconds=room.betting_seconds,
            turn_seconds=room.turn_seconds,
            starting_balance=room.starting_balance,
            min_players=room.min_players,
            max_players=room.max_players,
        )

    @classmethod
    def defaults(cls, settings: Settings) -> "RoomConfig":
        return cls(
            betting_seconds=max(1, settings.default_betting_seconds),
            turn_seconds=max(1, settings.default_turn_seconds),
            starting_balance=max(0, settings.default_starting_balance),
            min_players=max(1, settings.default_min_players),
            max_players=max(1, settings.default_max_players),
        )

    def betting_deadline(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.betting_seconds)

    def turn_deadline(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.turn_seconds)
