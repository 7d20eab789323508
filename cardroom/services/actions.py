from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from cardroom.core.errors import InvalidActionError
from cardroom.services.stages import BettingStage, PlayerActionStage, Stage


class ActionKind(str, Enum):
    BET = "bet"
    HIT = "hit"
    STAND = "stand"
    DOUBLE = "double"
    SPLIT = "split"
    SURRENDER = "surrender"
    HURRY_UP = "hurry_up"


@dataclass(frozen=True)
class BetAction:
    amount: int


@dataclass(frozen=True)
class HitAction:
    pass


@dataclass(frozen=True)
class StandAction:
    pass


@dataclass(frozen=True)
class DoubleAction:
    pass


@dataclass(frozen=True)
class SplitAction:
    amount: int | None = None


@dataclass(frozen=True)
class SurrenderAction:
    pass


@dataclass(frozen=True)
class HurryUpAction:
    pass


Action = Union[
    BetAction,
    HitAction,
    StandAction,
    DoubleAction,
    SplitAction,
    SurrenderAction,
    HurryUpAction,
]

_LEGAL_STAGES: dict[ActionKind, tuple[type, ...]] = {
    ActionKind.BET: (BettingStage,),
    ActionKind.HIT: (PlayerActionStage,),
    ActionKind.STAND: (PlayerActionStage,),
    ActionKind.DOUBLE: (PlayerActionStage,),
    ActionKind.SPLIT: (PlayerActionStage,),
    ActionKind.SURRENDER: (PlayerActionStage,),
    ActionKind.HURRY_UP: (BettingStage, PlayerActionStage),
}


def parse_action_kind(raw: str) -> ActionKind:
    normalized = str(raw or "").strip().lower()
    try:
        return ActionKind(normalized)
    except ValueError as exc:
        raise InvalidActionError(f"Unknown action: {raw!r}") from exc


def is_action_valid(kind: ActionKind, stage: Stage) -> bool:
    return isinstance(stage, _LEGAL_STAGES[kind])


def _positive_amount(data: dict[str, Any], *, required: bool) -> int | None:
    raw = data.get("amount")
    if raw is None:
        if required:
            raise InvalidActionError("amount is required")
        return None
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise InvalidActionError("amount must be an integer")
    if raw <= 0:
        raise InvalidActionError("amount must be greater than 0")
    return raw


def decode_action(kind: ActionKind, data: dict[str, Any] | None) -> Action:
    payload = data or {}
    if kind is ActionKind.BET:
        return BetAction(amount=_positive_amount(payload, required=True))
    if kind is ActionKind.SPLIT:
        return SplitAction(amount=_positive_amount(payload, required=False))
    if kind is ActionKind.HIT:
        return HitAction()
    if kind is ActionKind.STAND:
        return StandAction()
    if kind is ActionKind.DOUBLE:
        return DoubleAction()
    if kind is ActionKind.SURRENDER:
        return SurrenderAction()
    return HurryUpAction()
