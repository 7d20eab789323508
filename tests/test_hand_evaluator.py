import unittest

from cardroom.services.cards import Card
from cardroom.services.hand_evaluator import (
    HandOutcome,
    dealer_should_draw,
    hand_value,
    is_bust,
    is_natural,
    is_pair,
    payout_for,
    settle_hand,
)


def _cards(*codes: str) -> list[Card]:
    return [Card.from_code(code) for code in codes]


class HandValueTests(unittest.TestCase):
    def test_aces_demote_one_at_a_time(self) -> None:
        self.assertEqual(hand_value(_cards("AS", "AD", "9C")), 21)
        self.assertEqual(hand_value(_cards("AS", "AD", "AH", "8C")), 21)
        self.assertEqual(hand_value(_cards("AS", "AD")), 12)

    def test_faces_and_tens_count_ten(self) -> None:
        self.assertEqual(hand_value(_cards("KS", "QD")), 20)
        self.assertEqual(hand_value(_cards("0H", "JC", "2D")), 22)
        self.assertTrue(is_bust(_cards("0H", "JC", "2D")))

    def test_natural_needs_exactly_two_cards(self) -> None:
        self.assertTrue(is_natural(_cards("AS", "KD")))
        self.assertFalse(is_natural(_cards("7S", "7D", "7C")))

    def test_pair_compares_rank_not_ten_value(self) -> None:
        self.assertTrue(is_pair(_cards("8S", "8D")))
        self.assertFalse(is_pair(_cards("KS", "QD")))
        self.assertFalse(is_pair(_cards("8S", "8D", "2C")))

    def test_dealer_stands_on_every_seventeen(self) -> None:
        self.assertTrue(dealer_should_draw(_cards("0S", "6D")))
        self.assertFalse(dealer_should_draw(_cards("0S", "7D")))
        self.assertFalse(dealer_should_draw(_cards("AS", "6D")))


class SettlementTests(unittest.TestCase):
    def test_outcomes_against_dealer(self) -> None:
        dealer = _cards("0S", "8D")
        self.assertEqual(settle_hand(_cards("0H", "9C"), dealer), HandOutcome.WIN)
        self.assertEqual(settle_hand(_cards("0H", "8C"), dealer), HandOutcome.PUSH)
        self.assertEqual(settle_hand(_cards("0H", "7C"), dealer), HandOutcome.LOSE)
        self.assertEqual(settle_hand(_cards("AH", "KC"), dealer), HandOutcome.BLACKJACK)

    def test_player_bust_loses_even_when_dealer_busts(self) -> None:
        dealer = _cards("0S", "6D", "9C")
        self.assertEqual(settle_hand(_cards("0H", "5C", "9D"), dealer), HandOutcome.LOSE)
        self.assertEqual(settle_hand(_cards("0H", "2C"), dealer), HandOutcome.WIN)

    def test_dealer_natural_beats_three_card_twenty_one(self) -> None:
        dealer = _cards("AS", "KD")
        self.assertEqual(settle_hand(_cards("7H", "7C", "7D"), dealer), HandOutcome.LOSE)
        self.assertEqual(settle_hand(_cards("AH", "QC"), dealer), HandOutcome.PUSH)

    def test_payouts_include_stake(self) -> None:
        self.assertEqual(payout_for(HandOutcome.BLACKJACK, 100), 250)
        self.assertEqual(payout_for(HandOutcome.BLACKJACK, 25), 62)
        self.assertEqual(payout_for(HandOutcome.WIN, 100), 200)
        self.assertEqual(payout_for(HandOutcome.PUSH, 100), 100)
        self.assertEqual(payout_for(HandOutcome.LOSE, 100), 0)


if __name__ == "__main__":
    unittest.main()
