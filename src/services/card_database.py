import requests
import json
import os
import asyncio
import logging
from typing import List, Optional, Tuple, Dict, Any

from src.core.exceptions import PriceFetchFailure
from src.core.models import CardRecord, CardPrices

API_URL = "https://db.ygoprodeck.com/api/v7/cardinfo.php"
DATA_DIR = os.path.join(os.getcwd(), "data")
DB_DIR = os.path.join(DATA_DIR, "db")
DB_FILE = os.path.join(DB_DIR, "card_db.json")
REQUEST_TIMEOUT = 60

logger = logging.getLogger(__name__)

def parse_card(raw: Dict[str, Any]) -> CardRecord:
    """Maps one cardinfo.php entry to the fields the matcher needs."""
    return CardRecord(
        id=raw.get("id"),
        name=raw.get("name", ""),
        description=raw.get("desc"),
        type=raw.get("type"),
        race=raw.get("race"),
        archetype=raw.get("archetype"),
        atk=raw.get("atk"),
        defense=raw.get("def"),
        level=raw.get("level"),
        set_codes=[s["set_code"] for s in (raw.get("card_sets") or []) if s.get("set_code")],
    )

def parse_cards_data(data: List[dict]) -> Tuple[CardRecord, ...]:
    return tuple(parse_card(c) for c in data if c.get("name"))

def parse_prices(raw: Optional[Dict[str, Any]]) -> CardPrices:
    raw = raw or {}
    return CardPrices(
        ebay=raw.get("ebay_price") or "0.00",
        tcgplayer=raw.get("tcgplayer_price") or "0.00",
        cardmarket=raw.get("cardmarket_price") or "0.00",
    )

class CardDatabaseService:
    """
    Reference card list from the YGOPRODeck API, cached on disk.
    The loaded list is an immutable tuple shared by every pipeline of the session.
    """

    def __init__(self, db_file: str = DB_FILE):
        self.db_file = db_file
        self._cards: Optional[Tuple[CardRecord, ...]] = None

    async def fetch_card_database(self) -> int:
        """Downloads the full card list and replaces the local cache."""
        logger.info("Fetching card database")
        response = await asyncio.to_thread(requests.get, API_URL, timeout=REQUEST_TIMEOUT)

        if response.status_code != 200:
            logger.error(f"API Error: {response.status_code}")
            raise Exception(f"API Error: {response.status_code}")

        cards_data = response.json().get("data", [])
        logger.info(f"Fetched {len(cards_data)} cards from API.")

        cards = parse_cards_data(cards_data)
        await asyncio.to_thread(self._save_db_file, [c.model_dump(mode='json') for c in cards])
        self._cards = cards
        return len(cards)

    async def load_card_database(self) -> Tuple[CardRecord, ...]:
        """Loads the database from disk. If missing, fetches it."""
        if self._cards is not None:
            return self._cards

        if not os.path.exists(self.db_file):
            logger.info(f"Database file not found: {self.db_file}. Fetching from API.")
            await self.fetch_card_database()
            return self._cards

        logger.info(f"Loading database from disk: {self.db_file}")
        data = await asyncio.to_thread(self._read_db_file)
        self._cards = tuple(CardRecord.model_validate(c) for c in data)
        logger.info(f"Loaded {len(self._cards)} cards.")
        return self._cards

    def _read_db_file(self):
        with open(self.db_file, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _save_db_file(self, data):
        directory = os.path.dirname(self.db_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.db_file, 'w', encoding='utf-8') as f:
            json.dump(data, f)

    def search_by_name(self, name: str) -> Optional[CardRecord]:
        for c in self._cards or ():
            if c.name.lower() == name.lower():
                return c
        return None

    # --- Prices ---

    def _request_prices(self, card_name: str) -> CardPrices:
        try:
            response = requests.get(API_URL, params={"name": card_name}, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise PriceFetchFailure(card_name, str(e)) from e

        if response.status_code != 200:
            raise PriceFetchFailure(card_name, f"HTTP {response.status_code}")

        try:
            entries = response.json().get("data") or []
        except ValueError as e:
            raise PriceFetchFailure(card_name, f"invalid response: {e}") from e

        if not entries:
            raise PriceFetchFailure(card_name, "card not found")

        card_prices = entries[0].get("card_prices") or [{}]
        return parse_prices(card_prices[0])

    async def fetch_card_prices(self, card_name: str) -> CardPrices:
        """Market prices for a card name. Never fails; unknown prices are "0.00"."""
        try:
            return await asyncio.to_thread(self._request_prices, card_name)
        except PriceFetchFailure as e:
            logger.warning(str(e))
            return CardPrices.zero()
