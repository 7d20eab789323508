import unittest
from unittest.mock import MagicMock, patch
from urllib import error as urllib_error

from cardroom.core.errors import ExternalProviderError, NotFoundError
from cardroom.services import deck_provider
from cardroom.services.deck_provider import DEALER_PILE, LocalDeckProvider, RemoteDeckProvider


def _api_card(code: str, value: str, suit: str) -> dict:
    return {"code": code, "value": value, "suit": suit, "image": f"https://img/{code}.png"}


class LocalDeckProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_draws_land_in_named_piles(self) -> None:
        provider = LocalDeckProvider(deck_count=1)
        deck_id = await provider.create_deck()
        provider.force_next(deck_id, ["AS", "0D"])
        drawn = await provider.draw_cards(deck_id, "hand_1", 2)
        self.assertEqual([card.code for card in drawn], ["AS", "0D"])
        self.assertEqual(drawn[1].value, "10")
        self.assertEqual(await provider.list_pile(deck_id, "hand_1"), drawn)
        self.assertEqual(await provider.list_pile(deck_id, DEALER_PILE), [])

    async def test_move_between_piles(self) -> None:
        provider = LocalDeckProvider(deck_count=1)
        deck_id = await provider.create_deck()
        provider.force_next(deck_id, ["8H", "8D"])
        await provider.draw_cards(deck_id, "hand_1", 2)
        moved = await provider.remove_from_pile(deck_id, "hand_1", "8d")
        await provider.add_to_pile(deck_id, "hand_2", moved.code)
        self.assertEqual([card.code for card in await provider.list_pile(deck_id, "hand_1")], ["8H"])
        self.assertEqual([card.code for card in await provider.list_pile(deck_id, "hand_2")], ["8D"])
        with self.assertRaises(NotFoundError):
            await provider.remove_from_pile(deck_id, "hand_1", "KS")

    async def test_single_deck_runs_out(self) -> None:
        provider = LocalDeckProvider(deck_count=1)
        deck_id = await provider.create_deck()
        await provider.draw_cards(deck_id, "hand_1", 52)
        with self.assertRaises(ExternalProviderError):
            await provider.draw_cards(deck_id, "hand_1", 1)
        await provider.return_all_cards(deck_id)
        self.assertEqual(await provider.list_pile(deck_id, "hand_1"), [])
        self.assertEqual(len(await provider.draw_cards(deck_id, "hand_1", 52)), 52)

    async def test_unknown_deck(self) -> None:
        provider = LocalDeckProvider()
        with self.assertRaises(NotFoundError):
            await provider.list_pile("nope", DEALER_PILE)


class RemoteDeckProviderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.provider = RemoteDeckProvider("https://deck.test/api/deck/", deck_count=4, retries=2)

    async def test_create_deck_asks_for_a_shuffled_shoe(self) -> None:
        with patch.object(self.provider, "_get_json", return_value={"success": True, "deck_id": "abc"}) as get_json:
            self.assertEqual(await self.provider.create_deck(), "abc")
        get_json.assert_called_once_with("https://deck.test/api/deck/new/shuffle/?deck_count=4")

    async def test_draw_then_add_to_pile(self) -> None:
        responses = [
            {"success": True, "cards": [_api_card("KH", "KING", "HEARTS"), _api_card("0C", "10", "CLUBS")]},
            {"success": True, "piles": {"dealer": {"remaining": 2}}},
        ]
        with patch.object(self.provider, "_get_json", side_effect=responses) as get_json:
            cards = await self.provider.draw_cards("abc", DEALER_PILE, 2)
        self.assertEqual([card.code for card in cards], ["KH", "0C"])
        self.assertEqual(
            [call.args[0] for call in get_json.call_args_list],
            [
                "https://deck.test/api/deck/abc/draw/?count=2",
                "https://deck.test/api/deck/abc/pile/dealer/add/?cards=KH,0C",
            ],
        )

    async def test_list_pile_retries_retryable_failures(self) -> None:
        responses = [
            ExternalProviderError("busy", retryable=True),
            {"success": True, "piles": {"hand_1": {"cards": [_api_card("AS", "ACE", "SPADES")]}}},
        ]
        with patch.object(self.provider, "_get_json", side_effect=responses) as get_json:
            cards = await self.provider.list_pile("abc", "hand_1")
        self.assertEqual([card.code for card in cards], ["AS"])
        self.assertEqual(get_json.call_count, 2)

    async def test_draw_is_never_retried(self) -> None:
        with patch.object(
            self.provider,
            "_get_json",
            side_effect=ExternalProviderError("busy", retryable=True),
        ) as get_json:
            with self.assertRaises(ExternalProviderError):
                await self.provider.draw_cards("abc", "hand_1", 1)
        self.assertEqual(get_json.call_count, 1)

    async def test_retries_are_bounded(self) -> None:
        with patch.object(
            self.provider,
            "_get_json",
            side_effect=ExternalProviderError("down", retryable=True),
        ) as get_json:
            with self.assertRaises(ExternalProviderError):
                await self.provider.return_all_cards("abc")
        self.assertEqual(get_json.call_count, 3)

    def test_http_errors_map_to_game_errors(self) -> None:
        not_found = urllib_error.HTTPError("https://deck.test", 404, "Not Found", {}, None)
        unavailable = urllib_error.HTTPError("https://deck.test", 503, "Unavailable", {}, None)
        with patch.object(deck_provider.urllib_request, "urlopen", side_effect=not_found):
            with self.assertRaises(NotFoundError):
                self.provider._get_json("https://deck.test/x/")
        with patch.object(deck_provider.urllib_request, "urlopen", side_effect=unavailable):
            with self.assertRaises(ExternalProviderError) as ctx:
                self.provider._get_json("https://deck.test/x/")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_unsuccessful_payload_is_an_error(self) -> None:
        response = MagicMock()
        response.read.return_value = b'{"success": false, "error": "Not enough cards remaining"}'
        response.__enter__.return_value = response
        with patch.object(deck_provider.urllib_request, "urlopen", return_value=response):
            with self.assertRaises(ExternalProviderError) as ctx:
                self.provider._get_json("https://deck.test/x/")
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(ctx.exception.message, "Not enough cards remaining")


if __name__ == "__main__":
    unittest.main()
