from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cardroom.core.errors import ConflictError, NotFoundError
from cardroom.db.models import Hand, Room, RoomPlayer
from cardroom.services.stages import Stage, stage_from_json, stage_to_json

MAX_PROCESSED_ACTION_IDS = 300


class RoomStore:
    """Room, player and hand records for one unit of work.

    Writes are only visible after ``commit``. The room and player rows carry a
    version column, so a commit that races another writer raises
    ``ConflictError`` instead of overwriting.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_room(self, room_id: str) -> Room:
        room = self.db.get(Room, room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        return room

    def list_room_ids(self) -> list[str]:
        return list(self.db.scalars(select(Room.id)).all())

    def add_room(self, room: Room) -> Room:
        self.db.add(room)
        return room

    def read_stage(self, room: Room) -> Stage:
        return stage_from_json(room.stage_json)

    def write_stage(self, room: Room, stage: Stage) -> None:
        room.stage_json = stage_to_json(stage)

    def has_processed_action(self, room: Room, action_id: str) -> bool:
        return action_id in (room.processed_action_ids or [])

    def remember_action(self, room: Room, action_id: str) -> None:
        processed = list(room.processed_action_ids or [])
        processed.append(action_id)
        room.processed_action_ids = processed[-MAX_PROCESSED_ACTION_IDS:]

    def list_players(self, room_id: str) -> list[RoomPlayer]:
        stmt = (
            select(RoomPlayer)
            .where(RoomPlayer.room_id == room_id)
            .order_by(RoomPlayer.position, RoomPlayer.joined_at)
        )
        return list(self.db.scalars(stmt).all())

    def find_player(self, room_id: str, user_id: str) -> RoomPlayer | None:
        stmt = select(RoomPlayer).where(
            RoomPlayer.room_id == room_id,
            RoomPlayer.user_id == user_id,
        )
        return self.db.scalar(stmt)

    def get_player(self, room_id: str, user_id: str) -> RoomPlayer:
        player = self.find_player(room_id, user_id)
        if player is None:
            raise NotFoundError(f"Player {user_id} is not in room {room_id}")
        return player

    def add_player(self, player: RoomPlayer) -> RoomPlayer:
        self.db.add(player)
        return player

    def get_player_by_id(self, room_player_id: str) -> RoomPlayer | None:
        return self.db.get(RoomPlayer, room_player_id)

    def remove_player(self, player: RoomPlayer) -> None:
        self.db.delete(player)

    def list_hands(self, room_id: str) -> list[Hand]:
        stmt = select(Hand).where(Hand.room_id == room_id).order_by(Hand.order, Hand.hand_number)
        return list(self.db.scalars(stmt).all())

    def find_hand(self, room_id: str, order: int, hand_number: int) -> Hand | None:
        stmt = select(Hand).where(
            Hand.room_id == room_id,
            Hand.order == order,
            Hand.hand_number == hand_number,
        )
        return self.db.scalar(stmt)

    def create_hand(self, room_id: str, player: RoomPlayer, order: int, hand_number: int, bet: int) -> Hand:
        hand = Hand(
            id=uuid4().hex,
            room_id=room_id,
            room_player_id=player.id,
            order=order,
            hand_number=hand_number,
            bet=bet,
            status="active",
            action_count=0,
        )
        self.db.add(hand)
        self.flush()
        return hand

    def delete_hands(self, room_id: str) -> None:
        self.flush()
        self.db.execute(delete(Hand).where(Hand.room_id == room_id))

    def flush(self) -> None:
        try:
            self.db.flush()
        except (StaleDataError, IntegrityError) as exc:
            raise ConflictError("Room changed while the action was applied; retry") from exc

    def commit(self) -> None:
        try:
            self.db.commit()
        except (StaleDataError, IntegrityError) as exc:
            self.db.rollback()
            raise ConflictError("Room changed while the action was applied; retry") from exc

    def rollback(self) -> None:
        self.db.rollback()
