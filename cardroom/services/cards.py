from dataclasses import dataclass

SUIT_NAMES = {"S": "SPADES", "H": "HEARTS", "D": "DIAMONDS", "C": "CLUBS"}
RANK_VALUES = {
    "A": "ACE",
    "K": "KING",
    "Q": "QUEEN",
    "J": "JACK",
    "0": "10",
    "9": "9",
    "8": "8",
    "7": "7",
    "6": "6",
    "5": "5",
    "4": "4",
    "3": "3",
    "2": "2",
}
# deckofcardsapi codes: rank then suit, with "0" standing in for ten.
CARD_CODES = tuple(f"{rank}{suit}" for suit in SUIT_NAMES for rank in RANK_VALUES)


@dataclass(frozen=True)
class Card:
    code: str
    value: str
    suit: str

    @classmethod
    def from_code(cls, code: str) -> "Card":
        normalized = code.strip().upper()
        if len(normalized) != 2:
            raise ValueError(f"Invalid card code: {code}")
        rank, suit = normalized[0], normalized[1]
        if rank not in RANK_VALUES or suit not in SUIT_NAMES:
            raise ValueError(f"Invalid card code: {code}")
        return cls(code=normalized, value=RANK_VALUES[rank], suit=SUIT_NAMES[suit])

    @classmethod
    def from_api(cls, payload: dict) -> "Card":
        return cls(
            code=str(payload["code"]).upper(),
            value=str(payload["value"]).upper(),
            suit=str(payload["suit"]).upper(),
        )

    def to_dict(self) -> dict:
        return {"code": self.code, "value": self.value, "suit": self.suit}
