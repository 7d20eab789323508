"""Per-room blackjack state machine.

Every public operation runs as one unit of work under the room's lock:
read the stage, validate, mutate, commit, then broadcast the events that the
operation produced. Nothing is broadcast when the unit of work fails, and
the database transaction is rolled back so no partial mutation is visible.
"""

import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import partial
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.orm import Session

from cardroom.core.config import Settings, get_settings
from cardroom.core.errors import (
    ConflictError,
    GameError,
    InternalInconsistencyError,
    InvalidActionError,
)
from cardroom.db.models import Hand, Room, RoomPlayer
from cardroom.db.session import SessionLocal
from cardroom.realtime.broadcast_hub import EventBroadcastHub, room_hub
from cardroom.schemas.events import (
    CardRead,
    DealerRevealEventData,
    GameStateUpdateEventData,
    MessageEventData,
    PlayerActionEventData,
    PlayerJoinEventData,
    PlayerLeaveEventData,
    PlayerRevealEventData,
    RoomEventType,
)
from cardroom.services import turn_sequencer
from cardroom.services.actions import (
    Action,
    BetAction,
    DoubleAction,
    HitAction,
    HurryUpAction,
    SplitAction,
    StandAction,
    SurrenderAction,
    decode_action,
    is_action_valid,
    parse_action_kind,
)
from cardroom.services.cards import Card
from cardroom.services.deck_provider import DEALER_PILE, DeckProvider, build_deck_provider
from cardroom.services.hand_evaluator import (
    dealer_should_draw,
    hand_value,
    is_bust,
    is_pair,
    payout_for,
    settle_hand,
)
from cardroom.services.room_config import RoomConfig
from cardroom.services.room_locks import RoomLockRegistry
from cardroom.services.room_store import RoomStore
from cardroom.services.stages import (
    BettingStage,
    DealingStage,
    FinishRoundStage,
    InitStage,
    PlayerActionStage,
    Stage,
    TeardownStage,
    stage_deadline,
    stage_to_dict,
    stage_to_json,
)

logger = logging.getLogger("cardroom.game")

ACTION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _card_read(card: Card) -> CardRead:
    return CardRead(code=card.code, value=card.value, suit=card.suit)


def _cards_payload(cards: list[Card]) -> list[dict]:
    return [card.to_dict() for card in cards]


def _normalize_action_id(action_id: str | None) -> str | None:
    if action_id is None:
        return None
    normalized = action_id.strip()
    if not normalized:
        return None
    if not ACTION_ID_PATTERN.match(normalized):
        raise InvalidActionError("Invalid action id")
    return normalized


@dataclass
class RoomTurn:
    """Working state of one unit of work on a room."""

    store: RoomStore
    room: Room
    now: datetime
    stage: Stage
    config: RoomConfig
    events: list[tuple[RoomEventType, BaseModel]] = field(default_factory=list)
    # Pile changes made so far, undone newest first when the unit of work fails.
    undo_steps: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)
    after_commit: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)
    close_after_commit: bool = False

    def set_stage(self, stage: Stage) -> None:
        self.stage = stage
        self.store.write_stage(self.room, stage)

    def emit(self, kind: RoomEventType, payload: BaseModel) -> None:
        self.events.append((kind, payload))


class GameSession:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        deck_provider: DeckProvider,
        hub: EventBroadcastHub,
        *,
        locks: RoomLockRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._deck = deck_provider
        self._hub = hub
        self._locks = locks or RoomLockRegistry()
        self._clock = clock or _utc_now
        self._settings = settings or get_settings()

    @asynccontextmanager
    async def _room_turn(self, room_id: str, room: Room | None = None) -> AsyncIterator[RoomTurn]:
        async with self._locks.hold(room_id):
            db = self._session_factory()
            store = RoomStore(db)
            turn: RoomTurn | None = None
            try:
                try:
                    if room is None:
                        room = store.get_room(room_id)
                    else:
                        store.add_room(room)
                    turn = RoomTurn(
                        store=store,
                        room=room,
                        now=self._clock(),
                        stage=store.read_stage(room),
                        config=RoomConfig.from_room(room),
                    )
                    yield turn
                    store.commit()
                except InternalInconsistencyError:
                    store.rollback()
                    logger.exception("Room %s invariant violated; action aborted", room_id)
                    await self._undo_piles(room_id, turn)
                    raise
                except Exception:
                    store.rollback()
                    await self._undo_piles(room_id, turn)
                    raise
            finally:
                db.close()

            for step in turn.after_commit:
                try:
                    await step()
                except GameError as exc:
                    # The next round start returns every card again.
                    logger.warning("Room %s: deck cleanup after commit failed: %s", room_id, exc.message)

            for kind, payload in turn.events:
                self._hub.broadcast(room_id, kind, payload)
            if turn.close_after_commit:
                self._hub.close_room(room_id)

    async def _undo_piles(self, room_id: str, turn: RoomTurn | None) -> None:
        if turn is None or not turn.undo_steps:
            return
        try:
            for step in reversed(turn.undo_steps):
                await step()
        except GameError:
            logger.exception("Room %s: could not restore deck piles after a failed action", room_id)
        turn.undo_steps.clear()

    # ----------------------------------------------------------------- piles

    async def _draw(self, turn: RoomTurn, pile: str, count: int = 1) -> list[Card]:
        deck_id = turn.room.deck_id
        drawn = await self._deck.draw_cards(deck_id, pile, count)
        for card in drawn:
            turn.undo_steps.append(partial(self._deck.remove_from_pile, deck_id, pile, card.code))
        return drawn

    async def _take_from_pile(self, turn: RoomTurn, pile: str, code: str) -> Card:
        deck_id = turn.room.deck_id
        card = await self._deck.remove_from_pile(deck_id, pile, code)
        turn.undo_steps.append(partial(self._deck.add_to_pile, deck_id, pile, card.code))
        return card

    async def _put_in_pile(self, turn: RoomTurn, pile: str, code: str) -> None:
        deck_id = turn.room.deck_id
        await self._deck.add_to_pile(deck_id, pile, code)
        turn.undo_steps.append(partial(self._deck.remove_from_pile, deck_id, pile, code))

    # ----------------------------------------------------------------- views

    def _player_view(self, player: RoomPlayer) -> dict:
        return {
            "player_id": player.user_id,
            "name": player.name,
            "role": player.role,
            "status": player.status,
            "balance": player.balance,
            "position": player.position,
        }

    def _hand_view(self, hand: Hand, owners: dict[str, RoomPlayer], cards: list[Card]) -> dict:
        owner = owners.get(hand.room_player_id)
        return {
            "hand_id": hand.id,
            "player_id": owner.user_id if owner else None,
            "order": hand.order,
            "hand_number": hand.hand_number,
            "bet": hand.bet,
            "status": hand.status,
            "action_count": hand.action_count,
            "cards": _cards_payload(cards),
            "value": hand_value(cards),
        }

    async def _table_view(self, turn: RoomTurn) -> tuple[list[dict], list[dict], list[Card]]:
        """Players, every live hand with its pile, and the dealer pile."""
        players = turn.store.list_players(turn.room.id)
        owners = {player.id: player for player in players}
        hands = turn.store.list_hands(turn.room.id)
        deck_id = turn.room.deck_id
        hand_views = []
        for hand in hands:
            cards = await self._deck.list_pile(deck_id, hand.pile_name) if deck_id else []
            hand_views.append(self._hand_view(hand, owners, cards))
        dealer_cards: list[Card] = []
        if deck_id and hands:
            dealer_cards = await self._deck.list_pile(deck_id, DEALER_PILE)
        return [self._player_view(player) for player in players], hand_views, dealer_cards

    async def _state_payload(self, turn: RoomTurn, reason: str) -> GameStateUpdateEventData:
        turn.store.flush()
        players, hands, dealer_cards = await self._table_view(turn)
        return GameStateUpdateEventData(
            room_id=turn.room.id,
            version=turn.room.version,
            stage=stage_to_dict(turn.stage),
            reason=reason,
            players=players,
            hands=hands,
            dealer_up_card=_card_read(dealer_cards[0]) if dealer_cards else None,
        )

    async def _emit_state(self, turn: RoomTurn, reason: str) -> dict:
        payload = await self._state_payload(turn, reason)
        turn.emit(RoomEventType.GAME_STATE_UPDATE, payload)
        return payload.model_dump(mode="json")

    # ------------------------------------------------------------ lifecycle

    async def create_room(
        self,
        host_id: str,
        host_name: str,
        *,
        name: str | None = None,
        config: RoomConfig | None = None,
    ) -> dict:
        config = config or RoomConfig.defaults(self._settings)
        room_id = uuid4().hex
        room = Room(
            id=room_id,
            name=(name or f"{host_name}'s table").strip()[:60],
            host_id=host_id,
            betting_seconds=config.betting_seconds,
            turn_seconds=config.turn_seconds,
            starting_balance=config.starting_balance,
            min_players=config.min_players,
            max_players=config.max_players,
            stage_json=stage_to_json(InitStage()),
            processed_action_ids=[],
        )
        async with self._room_turn(room_id, room=room) as turn:
            turn.store.add_player(
                RoomPlayer(
                    id=uuid4().hex,
                    room_id=room_id,
                    user_id=host_id,
                    name=host_name.strip()[:40],
                    role="host",
                    status="active",
                    balance=config.starting_balance,
                    position=0,
                )
            )
            result = await self._emit_state(turn, "room_created")
        logger.info("Room %s created by %s", room_id, host_id)
        return result

    async def join_room(self, room_id: str, user_id: str, name: str) -> dict:
        async with self._room_turn(room_id) as turn:
            if isinstance(turn.stage, TeardownStage):
                raise InvalidActionError("Room has been torn down")
            existing = turn.store.find_player(room_id, user_id)
            if existing is not None:
                return (await self._state_payload(turn, "already_joined")).model_dump(mode="json")

            players = turn.store.list_players(room_id)
            if len(players) >= turn.config.max_players:
                raise InvalidActionError("Room is full")
            joins_mid_round = not isinstance(turn.stage, (InitStage, BettingStage))
            player = RoomPlayer(
                id=uuid4().hex,
                room_id=room_id,
                user_id=user_id,
                name=name.strip()[:40],
                role="player",
                status="sitting_out" if joins_mid_round else "active",
                balance=turn.config.starting_balance,
                position=max((entry.position for entry in players), default=-1) + 1,
            )
            turn.store.add_player(player)
            turn.emit(
                RoomEventType.PLAYER_JOINED,
                PlayerJoinEventData(player_id=user_id, player_name=player.name),
            )
            result = await self._emit_state(turn, "player_joined")
        logger.info("Player %s joined room %s", user_id, room_id)
        return result

    async def leave_room(self, room_id: str, user_id: str) -> dict:
        async with self._room_turn(room_id) as turn:
            player = turn.store.get_player(room_id, user_id)
            stage = turn.stage
            if isinstance(stage, BettingStage) and user_id in stage.bets:
                turn.set_stage(stage.without_bet(user_id))
            owns_hand = any(hand.room_player_id == player.id for hand in turn.store.list_hands(room_id))
            if owns_hand:
                raise InvalidActionError("Finish the current round before leaving")

            remaining = [entry for entry in turn.store.list_players(room_id) if entry.id != player.id]
            turn.store.remove_player(player)
            if player.role == "host" and remaining:
                successor = remaining[0]
                successor.role = "host"
                turn.room.host_id = successor.user_id
            turn.emit(
                RoomEventType.PLAYER_LEFT,
                PlayerLeaveEventData(player_id=user_id, player_name=player.name),
            )
            if not remaining:
                await self._teardown(turn)
            result = await self._emit_state(turn, "player_left")
        logger.info("Player %s left room %s", user_id, room_id)
        return result

    async def setup_game(self, room_id: str, requested_by: str | None = None) -> dict:
        async with self._room_turn(room_id) as turn:
            if not isinstance(turn.stage, InitStage):
                raise InvalidActionError("Game has already been set up for this room")
            if requested_by is not None and requested_by != turn.room.host_id:
                raise InvalidActionError("Only the host can start the game")
            players = turn.store.list_players(room_id)
            if len(players) < turn.config.min_players:
                raise InvalidActionError(
                    f"At least {turn.config.min_players} players are required to start"
                )
            turn.room.deck_id = await self._deck.create_deck()
            turn.set_stage(BettingStage(deadline=turn.config.betting_deadline(turn.now)))
            result = await self._emit_state(turn, "game_setup")
        logger.info("Room %s set up; betting open", room_id)
        return result

    async def teardown_room(self, room_id: str, requested_by: str | None = None) -> dict:
        async with self._room_turn(room_id) as turn:
            if isinstance(turn.stage, TeardownStage):
                raise InvalidActionError("Room has already been torn down")
            if requested_by is not None and requested_by != turn.room.host_id:
                raise InvalidActionError("Only the host can close the room")
            await self._teardown(turn)
            result = await self._emit_state(turn, "teardown")
        logger.info("Room %s torn down", room_id)
        return result

    async def _teardown(self, turn: RoomTurn) -> None:
        turn.store.delete_hands(turn.room.id)
        if turn.room.deck_id:
            turn.after_commit.append(partial(self._deck.return_all_cards, turn.room.deck_id))
        turn.set_stage(TeardownStage())
        turn.close_after_commit = True

    async def post_message(self, room_id: str, sender: str, content: str) -> dict:
        message = MessageEventData(sender=sender, content=content)
        async with self._room_turn(room_id) as turn:
            if isinstance(turn.stage, TeardownStage):
                raise InvalidActionError("Room has been torn down")
            turn.emit(RoomEventType.MESSAGE, message)
        return message.model_dump(mode="json")

    async def get_snapshot(self, room_id: str) -> dict:
        async with self._room_turn(room_id) as turn:
            players, hand_views, dealer_cards = await self._table_view(turn)
            deadline = stage_deadline(turn.stage)
            return {
                "room_id": turn.room.id,
                "name": turn.room.name,
                "host_id": turn.room.host_id,
                "version": turn.room.version,
                "stage": stage_to_dict(turn.stage),
                "turn_remaining_seconds": (
                    max(0, int((deadline - turn.now).total_seconds() + 0.999)) if deadline else None
                ),
                "players": players,
                "hands": hand_views,
                "dealer_cards": _cards_payload(dealer_cards[:1]) + (["??"] if len(dealer_cards) > 1 else []),
            }

    # --------------------------------------------------------------- actions

    async def perform_action(
        self,
        room_id: str,
        player_id: str,
        action: str,
        data: dict[str, Any] | None = None,
        *,
        action_id: str | None = None,
        expected_version: int | None = None,
    ) -> dict:
        kind = parse_action_kind(action)
        decoded = decode_action(kind, data)
        normalized_action_id = _normalize_action_id(action_id)

        async with self._room_turn(room_id) as turn:
            if expected_version is not None and expected_version != turn.room.version:
                raise ConflictError(
                    f"Room is at version {turn.room.version}, expected {expected_version}"
                )
            if normalized_action_id and turn.store.has_processed_action(turn.room, normalized_action_id):
                raise ConflictError(f"Action {normalized_action_id} was already applied")
            if not is_action_valid(kind, turn.stage):
                raise InvalidActionError(
                    f"Action {kind.value} is not a valid action for stage {turn.stage.kind}"
                )
            player = turn.store.get_player(room_id, player_id)
            await self._apply(turn, player, decoded)
            if normalized_action_id:
                turn.store.remember_action(turn.room, normalized_action_id)
            result = await self._emit_state(turn, kind.value)
        logger.debug("Room %s: %s by %s applied", room_id, kind.value, player_id)
        return result

    async def force_advance(self, room_id: str) -> bool:
        """Advance an expired Betting or PlayerAction stage; no-op otherwise."""
        async with self._room_turn(room_id) as turn:
            stage = turn.stage
            if isinstance(stage, BettingStage) and turn.now >= stage.deadline:
                await self._start_round(turn, stage)
            elif isinstance(stage, PlayerActionStage) and turn.now >= stage.deadline:
                await self._expire_turn(turn, stage)
            else:
                return False
            await self._emit_state(turn, "deadline_expired")
        return True

    async def _apply(self, turn: RoomTurn, player: RoomPlayer, action: Action) -> None:
        if isinstance(action, BetAction):
            await self._bet(turn, player, action)
        elif isinstance(action, HurryUpAction):
            await self._hurry_up(turn, player)
        elif isinstance(action, HitAction):
            await self._hit(turn, player)
        elif isinstance(action, StandAction):
            await self._stand(turn, player)
        elif isinstance(action, DoubleAction):
            await self._double(turn, player)
        elif isinstance(action, SplitAction):
            await self._split(turn, player, action)
        elif isinstance(action, SurrenderAction):
            await self._surrender(turn, player)
        else:
            raise InvalidActionError(f"Unsupported action {action!r}")

    async def _bet(self, turn: RoomTurn, player: RoomPlayer, action: BetAction) -> None:
        stage = self._stage_as(turn, BettingStage)
        if player.balance < action.amount:
            raise InvalidActionError(
                f"Player {player.user_id} does not have enough chips to bet {action.amount}"
            )
        stage = stage.with_bet(player.user_id, action.amount)
        turn.set_stage(stage)
        player.status = "active"
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(player_id=player.user_id, action="bet", details={"amount": action.amount}),
        )
        if turn.now < stage.deadline:
            return
        await self._start_round(turn, stage)

    async def _hurry_up(self, turn: RoomTurn, player: RoomPlayer) -> None:
        stage = turn.stage
        if isinstance(stage, BettingStage):
            if turn.now < stage.deadline and not self._everyone_has_bet(turn, stage):
                raise InvalidActionError("Betting is still open")
            turn.emit(
                RoomEventType.PLAYER_ACTION,
                PlayerActionEventData(player_id=player.user_id, action="hurry_up"),
            )
            await self._start_round(turn, stage)
            return

        if not isinstance(stage, PlayerActionStage):
            raise InternalInconsistencyError(f"hurry_up reached stage {stage.kind}")
        if turn.now < stage.deadline:
            raise InvalidActionError("The current turn has not timed out yet")
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(player_id=player.user_id, action="hurry_up"),
        )
        await self._expire_turn(turn, stage)

    def _stage_as(self, turn: RoomTurn, stage_cls: type) -> Any:
        if not isinstance(turn.stage, stage_cls):
            raise InternalInconsistencyError(
                f"Expected stage {stage_cls.kind}, room is in {turn.stage.kind}"
            )
        return turn.stage

    def _everyone_has_bet(self, turn: RoomTurn, stage: BettingStage) -> bool:
        eligible = [player for player in turn.store.list_players(turn.room.id) if player.status == "active"]
        return bool(eligible) and all(player.user_id in stage.bets for player in eligible)

    async def _expire_turn(self, turn: RoomTurn, stage: PlayerActionStage) -> None:
        hand = self._acting_hand(turn, stage)
        owner = turn.store.get_player_by_id(hand.room_player_id)
        if owner is None:
            raise InternalInconsistencyError(f"Hand {hand.id} has no owner")
        owner.status = "inactive"
        hand.status = "stood"
        hand.action_count += 1
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(player_id=owner.user_id, action="timeout_stand", hand_id=hand.id),
        )
        await self._advance_turn(turn)

    # ---------------------------------------------------------------- round

    async def _start_round(self, turn: RoomTurn, stage: BettingStage) -> None:
        room = turn.room
        if not stage.bets:
            turn.set_stage(BettingStage(deadline=turn.config.betting_deadline(turn.now)))
            logger.info("Room %s: no bets placed, betting reopened", room.id)
            return
        if not room.deck_id:
            raise InternalInconsistencyError(f"Room {room.id} has no deck")

        players = {player.user_id: player for player in turn.store.list_players(room.id)}
        for user_id in stage.bets:
            if user_id not in players:
                raise InternalInconsistencyError(
                    f"Could not find player {user_id} to process their bet"
                )
        seated = sorted(stage.bets.items(), key=lambda entry: players[entry[0]].position)

        # Anything left in piles by an aborted action goes back before dealing.
        await self._deck.return_all_cards(room.deck_id)

        hands: list[Hand] = []
        for order, (user_id, amount) in enumerate(seated):
            player = players[user_id]
            if player.balance < amount:
                raise InternalInconsistencyError(
                    f"Player {user_id} can no longer cover the bet of {amount}"
                )
            player.balance -= amount
            hands.append(turn.store.create_hand(room.id, player, order, 0, amount))

        turn.set_stage(DealingStage())
        for _ in range(2):
            for hand in hands:
                await self._draw(turn, hand.pile_name)
            await self._draw(turn, DEALER_PILE)

        turn.set_stage(turn_sequencer.first_turn(turn.now, turn.config))
        logger.info("Room %s: round started with %s hands", room.id, len(hands))

    def _acting_hand(self, turn: RoomTurn, stage: PlayerActionStage) -> Hand:
        hand = turn.store.find_hand(turn.room.id, stage.player_index, stage.hand_index)
        if hand is None:
            raise InternalInconsistencyError(
                f"Turn points at missing hand ({stage.player_index}, {stage.hand_index})"
            )
        return hand

    def _own_hand(self, turn: RoomTurn, player: RoomPlayer) -> tuple[PlayerActionStage, Hand]:
        stage = self._stage_as(turn, PlayerActionStage)
        hand = self._acting_hand(turn, stage)
        if hand.room_player_id != player.id:
            raise InvalidActionError("Not your turn")
        return stage, hand

    def _stay_on_hand(self, turn: RoomTurn, stage: PlayerActionStage) -> None:
        turn.set_stage(replace(stage, deadline=turn.config.turn_deadline(turn.now)))

    async def _advance_turn(self, turn: RoomTurn) -> None:
        stage = self._stage_as(turn, PlayerActionStage)
        turn.store.flush()
        slots = [(hand.order, hand.hand_number) for hand in turn.store.list_hands(turn.room.id)]
        next_stage = turn_sequencer.advance(stage, slots, turn.now, turn.config)
        turn.set_stage(next_stage)
        if isinstance(next_stage, FinishRoundStage):
            await self._finish_round(turn)

    async def _hit(self, turn: RoomTurn, player: RoomPlayer) -> None:
        stage, hand = self._own_hand(turn, player)
        drawn = await self._draw(turn, hand.pile_name)
        cards = await self._deck.list_pile(turn.room.deck_id, hand.pile_name)
        hand.action_count += 1
        busted = is_bust(cards)
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(
                player_id=player.user_id,
                action="hit",
                hand_id=hand.id,
                details={"card": drawn[0].to_dict(), "value": hand_value(cards), "busted": busted},
            ),
        )
        if busted:
            hand.status = "busted"
            await self._advance_turn(turn)
        else:
            self._stay_on_hand(turn, stage)

    async def _stand(self, turn: RoomTurn, player: RoomPlayer) -> None:
        _, hand = self._own_hand(turn, player)
        hand.status = "stood"
        hand.action_count += 1
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(player_id=player.user_id, action="stand", hand_id=hand.id),
        )
        await self._advance_turn(turn)

    async def _double(self, turn: RoomTurn, player: RoomPlayer) -> None:
        _, hand = self._own_hand(turn, player)
        cards = await self._deck.list_pile(turn.room.deck_id, hand.pile_name)
        if hand.action_count != 0 or len(cards) != 2:
            raise InvalidActionError("Double is only allowed as the first action on a two-card hand")
        if player.balance < hand.bet:
            raise InvalidActionError(
                f"Player {player.user_id} does not have enough chips to double {hand.bet}"
            )

        player.balance -= hand.bet
        hand.bet *= 2
        drawn = await self._draw(turn, hand.pile_name)
        cards = cards + drawn
        hand.status = "doubled"
        hand.action_count += 1
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(
                player_id=player.user_id,
                action="double",
                hand_id=hand.id,
                details={"card": drawn[0].to_dict(), "bet": hand.bet, "value": hand_value(cards)},
            ),
        )
        await self._advance_turn(turn)

    async def _split(self, turn: RoomTurn, player: RoomPlayer, action: SplitAction) -> None:
        stage, hand = self._own_hand(turn, player)
        deck_id = turn.room.deck_id
        cards = await self._deck.list_pile(deck_id, hand.pile_name)
        if hand.action_count != 0 or not is_pair(cards):
            raise InvalidActionError(
                "Split is only allowed as the first action on a pair of equal rank"
            )
        amount = action.amount if action.amount is not None else hand.bet
        if player.balance < amount:
            raise InvalidActionError(
                f"Player {player.user_id} does not have enough chips to split for {amount}"
            )

        player.balance -= amount
        siblings = [entry for entry in turn.store.list_hands(turn.room.id) if entry.order == hand.order]
        hand_number = max(entry.hand_number for entry in siblings) + 1
        new_hand = turn.store.create_hand(turn.room.id, player, hand.order, hand_number, amount)

        moved = await self._take_from_pile(turn, hand.pile_name, cards[1].code)
        await self._put_in_pile(turn, new_hand.pile_name, moved.code)
        first = [cards[0]] + await self._draw(turn, hand.pile_name)
        second = [moved] + await self._draw(turn, new_hand.pile_name)

        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(
                player_id=player.user_id,
                action="split",
                hand_id=hand.id,
                details={
                    "new_hand_id": new_hand.id,
                    "amount": amount,
                    "hand": _cards_payload(first),
                    "new_hand": _cards_payload(second),
                },
            ),
        )
        self._stay_on_hand(turn, stage)

    async def _surrender(self, turn: RoomTurn, player: RoomPlayer) -> None:
        _, hand = self._own_hand(turn, player)
        owned = [entry for entry in turn.store.list_hands(turn.room.id) if entry.room_player_id == player.id]
        if len(owned) != 1:
            raise InvalidActionError("Surrender is not allowed after splitting")

        refund = hand.bet // 2
        player.balance += refund
        hand.status = "surrendered"
        hand.action_count += 1
        turn.emit(
            RoomEventType.PLAYER_ACTION,
            PlayerActionEventData(
                player_id=player.user_id,
                action="surrender",
                hand_id=hand.id,
                details={"refund": refund},
            ),
        )
        await self._advance_turn(turn)

    async def _finish_round(self, turn: RoomTurn) -> None:
        room = turn.room
        deck_id = room.deck_id
        dealer = await self._deck.list_pile(deck_id, DEALER_PILE)
        while dealer_should_draw(dealer):
            dealer.extend(await self._draw(turn, DEALER_PILE))
        turn.emit(
            RoomEventType.DEALER_REVEAL,
            DealerRevealEventData(
                dealer_hand=[_card_read(card) for card in dealer],
                dealer_score=hand_value(dealer),
            ),
        )

        players = turn.store.list_players(room.id)
        owners = {player.id: player for player in players}
        for hand in turn.store.list_hands(room.id):
            owner = owners.get(hand.room_player_id)
            if owner is None:
                raise InternalInconsistencyError(f"Hand {hand.id} has no owner")
            if hand.status == "surrendered":
                continue
            cards = await self._deck.list_pile(deck_id, hand.pile_name)
            outcome = settle_hand(cards, dealer)
            payout = payout_for(outcome, hand.bet)
            owner.balance += payout
            turn.emit(
                RoomEventType.PLAYER_REVEAL,
                PlayerRevealEventData(
                    player_id=owner.user_id,
                    hand_id=hand.id,
                    player_hand=[_card_read(card) for card in cards],
                    player_score=hand_value(cards),
                    outcome=outcome.value,
                    payout=payout,
                ),
            )

        turn.store.delete_hands(room.id)
        turn.after_commit.append(partial(self._deck.return_all_cards, deck_id))
        for player in players:
            if player.status == "sitting_out":
                player.status = "active"
        turn.set_stage(BettingStage(deadline=turn.config.betting_deadline(turn.now)))
        logger.info("Room %s: round settled, dealer %s", room.id, hand_value(dealer))


game_session = GameSession(SessionLocal, build_deck_provider(), room_hub)
