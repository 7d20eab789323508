from collections.abc import Iterable
from datetime import datetime

from cardroom.services.room_config import RoomConfig
from cardroom.services.stages import FinishRoundStage, PlayerActionStage

HandSlot = tuple[int, int]


def first_turn(now: datetime, config: RoomConfig) -> PlayerActionStage:
    return PlayerActionStage(deadline=config.turn_deadline(now), player_index=0, hand_index=0)


def advance(
    stage: PlayerActionStage,
    hand_slots: Iterable[HandSlot],
    now: datetime,
    config: RoomConfig,
) -> PlayerActionStage | FinishRoundStage:
    """Move to the same player's next hand, else the next player's first hand.

    ``hand_slots`` holds ``(order, hand_number)`` for every hand in the round.
    When neither candidate exists every hand has acted and the round settles.
    """
    slots = set(hand_slots)
    candidates = (
        (stage.player_index, stage.hand_index + 1),
        (stage.player_index + 1, 0),
    )
    for player_index, hand_index in candidates:
        if (player_index, hand_index) in slots:
            return PlayerActionStage(
                deadline=config.turn_deadline(now),
                player_index=player_index,
                hand_index=hand_index,
            )
    return FinishRoundStage()
