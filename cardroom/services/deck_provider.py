"""Card shoes that live outside the room records.

Hands never store their cards locally. Each hand owns a named pile inside an
external deck, and every read goes back to the provider. ``RemoteDeckProvider``
speaks the deckofcardsapi protocol; ``LocalDeckProvider`` keeps the same
contract in process memory for development and tests.
"""

import asyncio
import json
import logging
import secrets
from threading import Lock
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request
from uuid import uuid4

from cardroom.core.config import Settings, get_settings
from cardroom.core.errors import ExternalProviderError, NotFoundError
from cardroom.services.cards import CARD_CODES, Card

logger = logging.getLogger("cardroom.deck")

DEALER_PILE = "dealer"


class DeckProvider:
    async def create_deck(self) -> str:
        raise NotImplementedError

    async def draw_cards(self, deck_id: str, pile: str, count: int) -> list[Card]:
        raise NotImplementedError

    async def list_pile(self, deck_id: str, pile: str) -> list[Card]:
        raise NotImplementedError

    async def add_to_pile(self, deck_id: str, pile: str, code: str) -> None:
        raise NotImplementedError

    async def remove_from_pile(self, deck_id: str, pile: str, code: str) -> Card:
        raise NotImplementedError

    async def return_all_cards(self, deck_id: str) -> None:
        raise NotImplementedError


class RemoteDeckProvider(DeckProvider):
    def __init__(self, base_url: str, *, deck_count: int = 6, timeout: float = 10.0, retries: int = 2) -> None:
        self._base_url = base_url.rstrip("/")
        self._deck_count = max(1, deck_count)
        self._timeout = max(1.0, timeout)
        self._retries = max(0, retries)

    def _url(self, path: str, **query: str | int) -> str:
        url = f"{self._base_url}/{path.strip('/')}/"
        if query:
            url = f"{url}?{urllib_parse.urlencode(query, safe=',')}"
        return url

    def _get_json(self, url: str) -> dict:
        req = urllib_request.Request(url=url, method="GET")
        try:
            with urllib_request.urlopen(req, timeout=self._timeout) as response:
                text = response.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            if exc.code == 404:
                raise NotFoundError(f"Deck resource not found: {url}") from exc
            raise ExternalProviderError(
                f"Deck provider returned HTTP {exc.code}",
                retryable=exc.code >= 500,
            ) from exc
        except (urllib_error.URLError, TimeoutError) as exc:
            reason = getattr(exc, "reason", exc)
            raise ExternalProviderError(f"Deck provider unreachable: {reason}", retryable=True) from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ExternalProviderError("Invalid JSON response from deck provider") from exc
        if not isinstance(data, dict):
            raise ExternalProviderError("Unexpected deck provider response shape")
        if data.get("success") is False:
            raise ExternalProviderError(str(data.get("error") or "Deck provider rejected the request"))
        return data

    async def _call(self, url: str) -> dict:
        return await asyncio.to_thread(self._get_json, url)

    async def _call_idempotent(self, url: str) -> dict:
        attempt = 0
        while True:
            try:
                return await self._call(url)
            except ExternalProviderError as exc:
                if not exc.retryable or attempt >= self._retries:
                    raise
                attempt += 1
                logger.warning("Retrying deck provider call (%s/%s): %s", attempt, self._retries, exc.message)

    async def create_deck(self) -> str:
        data = await self._call(self._url("new/shuffle", deck_count=self._deck_count))
        deck_id = data.get("deck_id")
        if not isinstance(deck_id, str) or not deck_id:
            raise ExternalProviderError("Deck ID not found in provider response")
        return deck_id

    async def draw_cards(self, deck_id: str, pile: str, count: int) -> list[Card]:
        data = await self._call(self._url(f"{deck_id}/draw", count=count))
        cards = [Card.from_api(entry) for entry in data.get("cards", [])]
        if len(cards) != count:
            raise ExternalProviderError(f"Deck {deck_id} ran out of cards")
        codes = ",".join(card.code for card in cards)
        await self._call(self._url(f"{deck_id}/pile/{pile}/add", cards=codes))
        return cards

    async def list_pile(self, deck_id: str, pile: str) -> list[Card]:
        data = await self._call_idempotent(self._url(f"{deck_id}/pile/{pile}/list"))
        piles = data.get("piles") or {}
        entry = piles.get(pile)
        if not isinstance(entry, dict):
            return []
        return [Card.from_api(card) for card in entry.get("cards", [])]

    async def add_to_pile(self, deck_id: str, pile: str, code: str) -> None:
        await self._call(self._url(f"{deck_id}/pile/{pile}/add", cards=code))

    async def remove_from_pile(self, deck_id: str, pile: str, code: str) -> Card:
        data = await self._call(self._url(f"{deck_id}/pile/{pile}/draw", cards=code))
        cards = data.get("cards") or []
        if not cards:
            raise NotFoundError(f"Card {code} is not in pile {pile}")
        return Card.from_api(cards[0])

    async def return_all_cards(self, deck_id: str) -> None:
        await self._call_idempotent(self._url(f"{deck_id}/return"))
        await self._call_idempotent(self._url(f"{deck_id}/shuffle"))


class _LocalDeck:
    def __init__(self, deck_count: int) -> None:
        self.cards = [Card.from_code(code) for _ in range(deck_count) for code in CARD_CODES]
        self.shoe: list[Card] = []
        self.piles: dict[str, list[Card]] = {}
        self.loose: list[Card] = []
        self.forced: list[Card] = []
        self.reshuffle()

    def reshuffle(self) -> None:
        self.shoe = list(self.cards)
        secrets.SystemRandom().shuffle(self.shoe)
        self.piles.clear()
        self.loose.clear()

    def pull(self, code: str | None = None) -> Card:
        if code is None and self.forced:
            code = self.forced.pop(0).code
        if code is None:
            if not self.shoe:
                raise ExternalProviderError("Deck ran out of cards")
            return self.shoe.pop()
        for index in range(len(self.shoe) - 1, -1, -1):
            if self.shoe[index].code == code:
                return self.shoe.pop(index)
        raise ExternalProviderError(f"No {code} left in the shoe")


class LocalDeckProvider(DeckProvider):
    def __init__(self, deck_count: int = 6) -> None:
        self._deck_count = max(1, deck_count)
        self._decks: dict[str, _LocalDeck] = {}
        self._lock = Lock()

    def _deck(self, deck_id: str) -> _LocalDeck:
        deck = self._decks.get(deck_id)
        if deck is None:
            raise NotFoundError(f"Deck {deck_id} not found")
        return deck

    def force_next(self, deck_id: str, codes: list[str]) -> None:
        """Stack the shoe so the next draws come out in ``codes`` order."""
        with self._lock:
            deck = self._deck(deck_id)
            deck.forced.extend(Card.from_code(code) for code in codes)

    async def create_deck(self) -> str:
        with self._lock:
            deck_id = uuid4().hex[:12]
            self._decks[deck_id] = _LocalDeck(self._deck_count)
            return deck_id

    async def draw_cards(self, deck_id: str, pile: str, count: int) -> list[Card]:
        with self._lock:
            deck = self._deck(deck_id)
            drawn = [deck.pull() for _ in range(count)]
            deck.piles.setdefault(pile, []).extend(drawn)
            return drawn

    async def list_pile(self, deck_id: str, pile: str) -> list[Card]:
        with self._lock:
            return list(self._deck(deck_id).piles.get(pile, []))

    async def add_to_pile(self, deck_id: str, pile: str, code: str) -> None:
        with self._lock:
            deck = self._deck(deck_id)
            normalized = code.upper()
            card = next((entry for entry in deck.loose if entry.code == normalized), None)
            if card is not None:
                deck.loose.remove(card)
            else:
                card = deck.pull(normalized)
            deck.piles.setdefault(pile, []).append(card)

    async def remove_from_pile(self, deck_id: str, pile: str, code: str) -> Card:
        with self._lock:
            deck = self._deck(deck_id)
            cards = deck.piles.get(pile, [])
            normalized = code.upper()
            for index in range(len(cards) - 1, -1, -1):
                if cards[index].code == normalized:
                    card = cards.pop(index)
                    deck.loose.append(card)
                    return card
            raise NotFoundError(f"Card {code} is not in pile {pile}")

    async def return_all_cards(self, deck_id: str) -> None:
        with self._lock:
            self._deck(deck_id).reshuffle()


def build_deck_provider(settings: Settings | None = None) -> DeckProvider:
    settings = settings or get_settings()
    if settings.deck_provider_mode == "remote":
        return RemoteDeckProvider(
            settings.deck_api_base_url,
            deck_count=settings.deck_count,
            timeout=settings.deck_http_timeout_seconds,
            retries=settings.deck_retry_attempts,
        )
    return LocalDeckProvider(deck_count=settings.deck_count)
