"""Round stages as a tagged variant.

A room holds exactly one stage. Stages are immutable; transitions build a new
one. ``stage_to_json``/``stage_from_json`` are the only places that know the
wire shape stored in ``Room.stage_json``.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Union


@dataclass(frozen=True)
class InitStage:
    kind = "init"


@dataclass(frozen=True)
class BettingStage:
    deadline: datetime
    bets: dict[str, int] = field(default_factory=dict)
    kind = "betting"

    def with_bet(self, player_id: str, amount: int) -> "BettingStage":
        bets = dict(self.bets)
        bets[player_id] = amount
        return replace(self, bets=bets)

    def without_bet(self, player_id: str) -> "BettingStage":
        bets = {key: value for key, value in self.bets.items() if key != player_id}
        return replace(self, bets=bets)


@dataclass(frozen=True)
class DealingStage:
    kind = "dealing"


@dataclass(frozen=True)
class PlayerActionStage:
    deadline: datetime
    player_index: int
    hand_index: int
    kind = "player_action"


@dataclass(frozen=True)
class FinishRoundStage:
    kind = "finish_round"


@dataclass(frozen=True)
class TeardownStage:
    kind = "teardown"


Stage = Union[
    InitStage,
    BettingStage,
    DealingStage,
    PlayerActionStage,
    FinishRoundStage,
    TeardownStage,
]

_PAYLOAD_FREE = {
    InitStage.kind: InitStage,
    DealingStage.kind: DealingStage,
    FinishRoundStage.kind: FinishRoundStage,
    TeardownStage.kind: TeardownStage,
}


def stage_deadline(stage: Stage) -> datetime | None:
    if isinstance(stage, (BettingStage, PlayerActionStage)):
        return stage.deadline
    return None


def stage_to_dict(stage: Stage) -> dict:
    payload: dict = {"kind": stage.kind}
    if isinstance(stage, BettingStage):
        payload["deadline"] = stage.deadline.isoformat()
        payload["bets"] = dict(stage.bets)
    elif isinstance(stage, PlayerActionStage):
        payload["deadline"] = stage.deadline.isoformat()
        payload["player_index"] = stage.player_index
        payload["hand_index"] = stage.hand_index
    return payload


def stage_from_dict(payload: dict) -> Stage:
    kind = payload.get("kind")
    if kind == BettingStage.kind:
        return BettingStage(
            deadline=datetime.fromisoformat(payload["deadline"]),
            bets={str(key): int(value) for key, value in payload.get("bets", {}).items()},
        )
    if kind == PlayerActionStage.kind:
        return PlayerActionStage(
            deadline=datetime.fromisoformat(payload["deadline"]),
            player_index=int(payload["player_index"]),
            hand_index=int(payload["hand_index"]),
        )
    stage_cls = _PAYLOAD_FREE.get(kind)
    if stage_cls is None:
        raise ValueError(f"Unknown stage kind: {kind!r}")
    return stage_cls()


def stage_to_json(stage: Stage) -> str:
    return json.dumps(stage_to_dict(stage))


def stage_from_json(raw: str) -> Stage:
    return stage_from_dict(json.loads(raw))
