import asyncio
from datetime import datetime, timedelta, timezone
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cardroom.db.base import Base
from cardroom.db.models import Room
from cardroom.realtime.broadcast_hub import EventBroadcastHub, Subscription
from cardroom.services.deck_provider import LocalDeckProvider
from cardroom.services.game_session import GameSession
from cardroom.services.room_config import RoomConfig

START = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)

TEST_CONFIG = RoomConfig(
    betting_seconds=30,
    turn_seconds=20,
    starting_balance=1000,
    min_players=1,
    max_players=6,
)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RoomTestCase(unittest.IsolatedAsyncioTestCase):
    """A GameSession over in-memory sqlite and a stacked local shoe."""

    async def asyncSetUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self.clock = _Clock(START)
        self.deck = LocalDeckProvider(deck_count=1)
        self.hub = EventBroadcastHub(queue_size=500)
        self.game = GameSession(self.Session, self.deck, self.hub, clock=self.clock)

    async def asyncTearDown(self) -> None:
        self.engine.dispose()

    async def open_room(self, *player_ids: str, config: RoomConfig = TEST_CONFIG) -> str:
        host, *others = player_ids
        state = await self.game.create_room(host, host.upper(), config=config)
        room_id = state["room_id"]
        for player_id in others:
            await self.game.join_room(room_id, player_id, player_id.upper())
        return room_id

    async def open_betting(self, *player_ids: str) -> str:
        room_id = await self.open_room(*player_ids)
        await self.game.setup_game(room_id)
        return room_id

    def deck_id(self, room_id: str) -> str:
        db = self.Session()
        try:
            return db.get(Room, room_id).deck_id
        finally:
            db.close()

    def stack(self, room_id: str, *codes: str) -> None:
        self.deck.force_next(self.deck_id(room_id), list(codes))

    async def act(self, room_id: str, player_id: str, action: str, **data) -> dict:
        return await self.game.perform_action(room_id, player_id, action, data or None)

    async def drain(self, subscription: Subscription) -> list:
        events = []
        while True:
            try:
                event = await subscription.next_event(timeout=0.05)
            except asyncio.TimeoutError:
                return events
            if event is None:
                events.append(None)
                return events
            events.append(event)


def balances(state: dict) -> dict[str, int]:
    return {player["player_id"]: player["balance"] for player in state["players"]}
