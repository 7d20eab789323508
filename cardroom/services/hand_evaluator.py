from collections.abc import Sequence
from enum import Enum

from cardroom.services.cards import Card

BLACKJACK = 21
DEALER_STANDS_ON = 17
FACE_VALUES = {"KING", "QUEEN", "JACK"}


class HandOutcome(str, Enum):
    BLACKJACK = "blackjack"
    WIN = "win"
    PUSH = "push"
    LOSE = "lose"


def card_value(card: Card) -> int:
    if card.value in FACE_VALUES:
        return 10
    if card.value == "ACE":
        return 11
    return int(card.value)


def hand_value(cards: Sequence[Card]) -> int:
    total = sum(card_value(card) for card in cards)
    soft_aces = sum(1 for card in cards if card.value == "ACE")
    while total > BLACKJACK and soft_aces > 0:
        total -= 10
        soft_aces -= 1
    return total


def is_bust(cards: Sequence[Card]) -> bool:
    return hand_value(cards) > BLACKJACK


def is_natural(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and hand_value(cards) == BLACKJACK


def is_pair(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and cards[0].value == cards[1].value


def dealer_should_draw(cards: Sequence[Card]) -> bool:
    return hand_value(cards) < DEALER_STANDS_ON


def settle_hand(hand_cards: Sequence[Card], dealer_cards: Sequence[Card]) -> HandOutcome:
    """Compare a finished player hand against the dealer's final hand."""
    player_total = hand_value(hand_cards)
    dealer_total = hand_value(dealer_cards)

    if player_total > BLACKJACK:
        return HandOutcome.LOSE
    player_natural = is_natural(hand_cards)
    dealer_natural = is_natural(dealer_cards)
    if player_natural and not dealer_natural:
        return HandOutcome.BLACKJACK
    if dealer_natural and not player_natural:
        return HandOutcome.LOSE
    if dealer_total > BLACKJACK or player_total > dealer_total:
        return HandOutcome.WIN
    if player_total < dealer_total:
        return HandOutcome.LOSE
    return HandOutcome.PUSH


def payout_for(outcome: HandOutcome, bet: int) -> int:
    """Chips returned to the player; the stake was already deducted."""
    if outcome is HandOutcome.BLACKJACK:
        return bet + (bet * 3) // 2
    if outcome is HandOutcome.WIN:
        return bet * 2
    if outcome is HandOutcome.PUSH:
        return bet
    return 0
