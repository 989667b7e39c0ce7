import json
import os
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import requests

from src.core.models import CardPrices
from src.services.card_database import CardDatabaseService, parse_card, API_URL

RAW_CARD = {
    "id": 89631139,
    "name": "Blue-Eyes White Dragon",
    "type": "Normal Monster",
    "desc": "This legendary dragon is a powerful engine of destruction.",
    "race": "Dragon",
    "archetype": "Blue-Eyes",
    "atk": 3000,
    "def": 2500,
    "level": 8,
    "card_sets": [{"set_code": "LOB-001", "set_name": "Legend of Blue Eyes White Dragon"}, {"set_code": "SDK-001"}],
    "card_prices": [{"ebay_price": "5.99", "tcgplayer_price": "3.10", "cardmarket_price": "0.00", "amazon_price": "9.00"}],
}

SPELL = {"id": 55144522, "name": "Pot of Greed", "type": "Spell Card", "desc": "Draw 2 cards.", "race": "Normal"}

def _response(status=200, payload=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    return response

class TestParsing(unittest.TestCase):
    def test_parse_card(self):
        card = parse_card(RAW_CARD)
        self.assertEqual(card.name, "Blue-Eyes White Dragon")
        self.assertEqual(card.description, RAW_CARD["desc"])
        self.assertEqual(card.defense, 2500)
        self.assertEqual(card.set_codes, ["LOB-001", "SDK-001"])

    def test_parse_spell_without_stats(self):
        card = parse_card(SPELL)
        self.assertIsNone(card.atk)
        self.assertIsNone(card.level)
        self.assertEqual(card.set_codes, [])

class TestCardDatabaseService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_file = os.path.join(self.tmp.name, "db", "card_db.json")
        self.service = CardDatabaseService(db_file=self.db_file)

    def tearDown(self):
        self.tmp.cleanup()

    @patch('src.services.card_database.requests.get')
    async def test_fetch_and_cache(self, mock_get):
        mock_get.return_value = _response(payload={"data": [RAW_CARD, SPELL]})

        count = await self.service.fetch_card_database()
        self.assertEqual(count, 2)
        self.assertTrue(os.path.exists(self.db_file))
        self.assertEqual(mock_get.call_args.args[0], API_URL)

        # A fresh service reads the cache instead of the API
        mock_get.reset_mock()
        cards = await CardDatabaseService(db_file=self.db_file).load_card_database()
        mock_get.assert_not_called()
        self.assertIsInstance(cards, tuple)
        self.assertEqual([c.name for c in cards], ["Blue-Eyes White Dragon", "Pot of Greed"])
        self.assertEqual(cards[0].set_codes, ["LOB-001", "SDK-001"])

    @patch('src.services.card_database.requests.get')
    async def test_load_fetches_when_missing(self, mock_get):
        mock_get.return_value = _response(payload={"data": [SPELL]})
        cards = await self.service.load_card_database()
        self.assertEqual(len(cards), 1)
        self.assertIs(await self.service.load_card_database(), cards)
        self.assertEqual(self.service.search_by_name("pot of greed").id, 55144522)

    @patch('src.services.card_database.requests.get')
    async def test_fetch_api_error(self, mock_get):
        mock_get.return_value = _response(status=500)
        with self.assertRaises(Exception):
            await self.service.fetch_card_database()
        self.assertFalse(os.path.exists(self.db_file))

    @patch('src.services.card_database.requests.get')
    async def test_fetch_prices(self, mock_get):
        mock_get.return_value = _response(payload={"data": [RAW_CARD]})
        prices = await self.service.fetch_card_prices("Blue-Eyes White Dragon")

        self.assertEqual(prices, CardPrices(ebay="5.99", tcgplayer="3.10", cardmarket="0.00"))
        self.assertEqual(mock_get.call_args.kwargs["params"], {"name": "Blue-Eyes White Dragon"})

    @patch('src.services.card_database.requests.get')
    async def test_prices_never_fail(self, mock_get):
        for outcome in (
            _response(status=400, payload={"error": "No card matching your query was found"}),
            _response(payload={"data": []}),
            _response(payload={"data": [SPELL]}),
            requests.ConnectionError("offline"),
        ):
            if isinstance(outcome, Exception):
                mock_get.side_effect = outcome
            else:
                mock_get.side_effect = None
                mock_get.return_value = outcome

            prices = await self.service.fetch_card_prices("Unknown Card")
            self.assertEqual(prices, CardPrices.zero())

if __name__ == '__main__':
    unittest.main()
