from datetime import datetime, timedelta, timezone
import unittest

from cardroom.core.errors import InvalidActionError
from cardroom.services import turn_sequencer
from cardroom.services.actions import (
    ActionKind,
    BetAction,
    HurryUpAction,
    SplitAction,
    decode_action,
    is_action_valid,
    parse_action_kind,
)
from cardroom.services.room_config import RoomConfig
from cardroom.services.stages import (
    BettingStage,
    DealingStage,
    FinishRoundStage,
    InitStage,
    PlayerActionStage,
    TeardownStage,
    stage_deadline,
    stage_from_json,
    stage_to_json,
)

NOW = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)
CONFIG = RoomConfig(betting_seconds=30, turn_seconds=20, starting_balance=1000, min_players=1, max_players=6)


class StageEncodingTests(unittest.TestCase):
    def test_betting_stage_keeps_deadline_and_bets(self) -> None:
        stage = BettingStage(deadline=NOW).with_bet("u1", 100).with_bet("u2", 50)
        restored = stage_from_json(stage_to_json(stage))
        self.assertEqual(restored, stage)
        self.assertEqual(restored.without_bet("u1").bets, {"u2": 50})

    def test_payload_free_stages_restore_by_kind(self) -> None:
        for stage in (InitStage(), DealingStage(), FinishRoundStage(), TeardownStage()):
            self.assertEqual(stage_from_json(stage_to_json(stage)), stage)
            self.assertIsNone(stage_deadline(stage))

    def test_unknown_kind_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            stage_from_json('{"kind": "intermission"}')


class ActionDecodingTests(unittest.TestCase):
    def test_kind_is_case_insensitive(self) -> None:
        self.assertIs(parse_action_kind(" Hurry_Up "), ActionKind.HURRY_UP)
        with self.assertRaises(InvalidActionError):
            parse_action_kind("insurance")

    def test_bet_requires_positive_integer_amount(self) -> None:
        self.assertEqual(decode_action(ActionKind.BET, {"amount": 25}), BetAction(amount=25))
        for data in (None, {"amount": 0}, {"amount": -5}, {"amount": "10"}, {"amount": True}):
            with self.assertRaises(InvalidActionError):
                decode_action(ActionKind.BET, data)

    def test_split_amount_is_optional(self) -> None:
        self.assertEqual(decode_action(ActionKind.SPLIT, None), SplitAction())
        self.assertEqual(decode_action(ActionKind.SPLIT, {"amount": 40}), SplitAction(amount=40))
        self.assertEqual(decode_action(ActionKind.HURRY_UP, {"ignored": 1}), HurryUpAction())

    def test_legality_per_stage(self) -> None:
        betting = BettingStage(deadline=NOW)
        acting = PlayerActionStage(deadline=NOW, player_index=0, hand_index=0)
        self.assertTrue(is_action_valid(ActionKind.BET, betting))
        self.assertFalse(is_action_valid(ActionKind.BET, acting))
        self.assertTrue(is_action_valid(ActionKind.HURRY_UP, betting))
        self.assertTrue(is_action_valid(ActionKind.HURRY_UP, acting))
        for kind in (ActionKind.HIT, ActionKind.STAND, ActionKind.DOUBLE, ActionKind.SPLIT, ActionKind.SURRENDER):
            self.assertTrue(is_action_valid(kind, acting))
            self.assertFalse(is_action_valid(kind, betting))
        for stage in (InitStage(), DealingStage(), FinishRoundStage(), TeardownStage()):
            for kind in ActionKind:
                self.assertFalse(is_action_valid(kind, stage))


class TurnSequencerTests(unittest.TestCase):
    def test_first_turn_starts_at_first_hand(self) -> None:
        stage = turn_sequencer.first_turn(NOW, CONFIG)
        self.assertEqual((stage.player_index, stage.hand_index), (0, 0))
        self.assertEqual(stage.deadline, NOW + timedelta(seconds=20))

    def test_split_hand_is_played_before_next_player(self) -> None:
        slots = [(0, 0), (0, 1), (1, 0)]
        stage = PlayerActionStage(deadline=NOW, player_index=0, hand_index=0)
        stage = turn_sequencer.advance(stage, slots, NOW, CONFIG)
        self.assertEqual((stage.player_index, stage.hand_index), (0, 1))
        stage = turn_sequencer.advance(stage, slots, NOW, CONFIG)
        self.assertEqual((stage.player_index, stage.hand_index), (1, 0))
        self.assertIsInstance(turn_sequencer.advance(stage, slots, NOW, CONFIG), FinishRoundStage)

    def test_advance_refreshes_deadline(self) -> None:
        later = NOW + timedelta(minutes=3)
        stage = PlayerActionStage(deadline=NOW, player_index=0, hand_index=0)
        advanced = turn_sequencer.advance(stage, [(0, 0), (1, 0)], later, CONFIG)
        self.assertEqual(advanced.deadline, later + timedelta(seconds=20))


if __name__ == "__main__":
    unittest.main()
