import csv
import io
import logging
from typing import Iterable, List, Optional, TextIO

from src.core.constants import INVENTORY_CSV_HEADERS, RESULTS_CSV_HEADERS
from src.core.models import CardPrices, InventoryRow, ResultRecord

logger = logging.getLogger(__name__)

class InventoryStore:
    """User-owned list of inventory rows. Edits never touch a running scan's snapshot."""

    def __init__(self, rows: Optional[Iterable[InventoryRow]] = None):
        self._rows: List[InventoryRow] = list(rows or [])

    def __len__(self):
        return len(self._rows)

    def __iter__(self):
        return iter(self._rows)

    @property
    def rows(self) -> List[InventoryRow]:
        return list(self._rows)

    def snapshot(self) -> tuple:
        return tuple(self._rows)

    def add(self, row: InventoryRow) -> InventoryRow:
        self._rows.append(row)
        return row

    def extend(self, rows: Iterable[InventoryRow]) -> int:
        rows = list(rows)
        self._rows.extend(rows)
        return len(rows)

    def get(self, row_id: str) -> Optional[InventoryRow]:
        for row in self._rows:
            if row.id == row_id:
                return row
        return None

    def update(self, row_id: str, **fields) -> Optional[InventoryRow]:
        row = self.get(row_id)
        if row is None:
            return None
        updated = row.model_copy(update=fields)
        self._rows[self._rows.index(row)] = updated
        return updated

    def remove(self, row_id: str) -> bool:
        row = self.get(row_id)
        if row is None:
            return False
        self._rows.remove(row)
        return True

    def clear(self):
        self._rows.clear()

# --- CSV ---

def _price_cells(prices: Optional[CardPrices]) -> List[str]:
    if prices is None:
        return ["", "", ""]
    return [prices.ebay, prices.tcgplayer, prices.cardmarket]

def write_inventory_csv(rows: Iterable[InventoryRow], f: TextIO):
    writer = csv.writer(f, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(INVENTORY_CSV_HEADERS)
    for row in rows:
        writer.writerow([
            row.card_name or "",
            row.set_name or "",
            row.set_code or "",
            row.edition or "",
            row.rarity or "",
            row.condition or "Near Mint",
            row.description or "",
            row.image_url or "",
            *_price_cells(row.prices),
        ])

def read_inventory_csv(f: TextIO) -> List[InventoryRow]:
    """
    Parses rows written by write_inventory_csv. Short or malformed lines are skipped.
    Every row gets a fresh id.
    """
    reader = csv.reader(f)
    header = next(reader, None)
    if header is None:
        raise ValueError("CSV file must contain headers and at least one data row")

    rows = []
    for line_no, fields in enumerate(reader, start=2):
        if not any(cell.strip() for cell in fields):
            continue
        if len(fields) < len(INVENTORY_CSV_HEADERS):
            logger.warning(f"Skipping CSV line {line_no}: expected {len(INVENTORY_CSV_HEADERS)} fields, got {len(fields)}")
            continue

        ebay, tcgplayer, cardmarket = fields[8:11]
        prices = None
        if ebay or tcgplayer or cardmarket:
            prices = CardPrices(
                ebay=ebay or "0.00",
                tcgplayer=tcgplayer or "0.00",
                cardmarket=cardmarket or "0.00",
            )

        rows.append(InventoryRow(
            card_name=fields[0] or "Unknown Card",
            set_name=fields[1],
            set_code=fields[2],
            edition=fields[3],
            rarity=fields[4],
            condition=fields[5] or "Near Mint",
            description=fields[6],
            image_url=fields[7] or None,
            prices=prices,
        ))
    return rows

def export_inventory_csv(rows: Iterable[InventoryRow], path: str) -> int:
    rows = list(rows)
    if not rows:
        raise ValueError("No inventory data to export")
    with open(path, 'w', newline='', encoding='utf-8') as f:
        write_inventory_csv(rows, f)
    logger.info(f"Exported {len(rows)} inventory rows to {path}")
    return len(rows)

def import_inventory_csv(path: str) -> List[InventoryRow]:
    with open(path, 'r', newline='', encoding='utf-8') as f:
        rows = read_inventory_csv(f)
    logger.info(f"Imported {len(rows)} inventory rows from {path}")
    return rows

def inventory_csv_text(rows: Iterable[InventoryRow]) -> str:
    buf = io.StringIO()
    write_inventory_csv(rows, buf)
    return buf.getvalue()

# --- Results ---

def result_row(result: ResultRecord) -> dict:
    prices = result.prices or CardPrices.zero()
    return {
        "Filename": result.filename,
        "Card Name": result.matched_name or result.card_name or "Unknown",
        "Set Name": result.set_name,
        "Set Code": result.set_code,
        "Edition": result.edition,
        "Rarity": result.rarity,
        "Condition": result.condition,
        "Description": result.effect_text or "",
        "Image URL": result.image_url or "",
        "eBay Price": prices.ebay,
        "TCGPlayer Price": prices.tcgplayer,
        "Cardmarket Price": prices.cardmarket,
        "Processing Time": f"{result.processing_time}ms" if result.processing_time else "",
        "Matched": "Yes" if result.matched else "No",
    }

def write_results_csv(results: Iterable[ResultRecord], f: TextIO):
    writer = csv.DictWriter(f, fieldnames=RESULTS_CSV_HEADERS)
    writer.writeheader()
    writer.writerows(result_row(r) for r in results)

def export_results_csv(results: Iterable[ResultRecord], path: str) -> int:
    results = list(results)
    if not results:
        raise ValueError("No results to export")
    with open(path, 'w', newline='', encoding='utf-8') as f:
        write_results_csv(results, f)
    logger.info(f"Exported {len(results)} results to {path}")
    return len(results)
