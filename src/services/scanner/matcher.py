import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from src.core.config import MatchThresholds
from src.core.models import (
    MatchRecord, MatchResult, NoMatch, ExactMatch, FuzzyMatch, PartialMatch, EffectMatch,
    InventoryRow,
)
from src.core.text_utils import (
    clean_for_match, significant_words, token_set_similarity, calculate_similarity,
)

logger = logging.getLogger(__name__)

@dataclass
class MatchOutcome:
    result: MatchResult
    matched: bool = False
    matched_name: Optional[str] = None
    matched_rows: List[InventoryRow] = field(default_factory=list)

    @classmethod
    def none(cls) -> "MatchOutcome":
        return cls(result=NoMatch())

def rows_named(inventory: Sequence[InventoryRow], name: str) -> List[InventoryRow]:
    """Inventory rows whose card name equals name, ignoring case and outer whitespace."""
    target = name.strip().lower()
    return [row for row in inventory if (row.card_name or "").strip().lower() == target]

class CardMatcher:
    """
    Finds the record an OCR reading refers to.

    Tiers are tried in order and the first one producing a match wins:
      1. exact     - case-insensitive name equality
      2. fuzzy     - word-set overlap of "name + effect" against "name + description"
      3. partial   - share of the OCR name words contained in the record name
      4. effect    - verbatim word windows of the effect text found in the description

    Scores must be strictly above the tier threshold. Within a tier the first record
    reaching the best score is kept, so ties depend on the record order.
    """

    def __init__(self, thresholds: Optional[MatchThresholds] = None):
        self.thresholds = thresholds or MatchThresholds()

    # --- Tiers ---

    def _exact(self, card_name: str, records: Sequence[MatchRecord]) -> Optional[ExactMatch]:
        target = card_name.strip().lower()
        if not target:
            return None
        for record in records:
            if record.name.strip().lower() == target:
                return ExactMatch(record=record)
        return None

    def _fuzzy(self, card_name: str, effect_text: str, records: Sequence[MatchRecord],
               threshold: float) -> Optional[FuzzyMatch]:
        search_text = f"{card_name} {effect_text}"
        best_record, best_score = None, 0.0

        for record in records:
            score = token_set_similarity(search_text, f"{record.name} {record.description or ''}")
            if score > best_score and score > threshold:
                best_record, best_score = record, score

        if best_record is None:
            return None
        return FuzzyMatch(record=best_record, score=best_score)

    def _partial(self, card_name: str, records: Sequence[MatchRecord]) -> Optional[PartialMatch]:
        words = significant_words(card_name)
        if not words:
            return None

        best_record, best_score = None, 0.0
        for record in records:
            clean_name = clean_for_match(record.name)
            matches = sum(1 for w in words if w in clean_name)
            score = matches / len(words)
            if score > best_score and score > self.thresholds.partial:
                best_record, best_score = record, score

        if best_record is None:
            return None
        return PartialMatch(record=best_record, score=best_score)

    def _effect(self, effect_text: str, records: Sequence[MatchRecord]) -> Optional[EffectMatch]:
        words = clean_for_match(effect_text).split()
        meaningful = [w for w in words if len(w) > 3]
        if len(meaningful) < self.thresholds.min_effect_words:
            return None

        size = self.thresholds.chunk_size
        windows = [" ".join(words[i:i + size]) for i in range(len(words) - size + 1)]
        if not windows:
            return None

        best_record, best_score = None, 0.0
        for record in records:
            if not record.description:
                continue
            # Padded so windows only match on word boundaries
            desc = f" {clean_for_match(record.description)} "
            hits = sum(1 for chunk in windows if f" {chunk} " in desc)
            score = hits / len(windows)
            if score > best_score and score > self.thresholds.effect:
                best_record, best_score = record, score

        if best_record is None:
            return None
        return EffectMatch(record=best_record, score=best_score)

    # --- Public API ---

    def find_best_match(self, card_name: str, effect_text: str, records: Sequence[MatchRecord],
                        fuzzy_threshold: Optional[float] = None) -> MatchResult:
        card_name = card_name or ""
        effect_text = effect_text or ""

        if not records or (not card_name.strip() and not effect_text.strip()):
            return NoMatch()

        threshold = self.thresholds.fuzzy if fuzzy_threshold is None else fuzzy_threshold

        result = self._exact(card_name, records)
        if result is None:
            result = self._fuzzy(card_name, effect_text, records, threshold)
        if result is None and card_name:
            result = self._partial(card_name, records)
        if result is None and effect_text:
            result = self._effect(effect_text, records)

        if result is None:
            logger.debug(f"No match for '{card_name}'")
            return NoMatch()

        logger.debug(f"{result.match_type} match for '{card_name}': {result.record.name} ({result.score})")
        return result

    def match(self, card_name: str, effect_text: str,
              database: Optional[Sequence[MatchRecord]] = None,
              inventory: Optional[Sequence[InventoryRow]] = None) -> MatchOutcome:
        """
        Matches against the database, the inventory, or both.
        With both, the database identifies the canonical card and the inventory is
        filtered for rows carrying that name.
        """
        if database and inventory:
            result = self.find_best_match(card_name, effect_text, database)
            if isinstance(result, NoMatch):
                return MatchOutcome.none()

            canonical = result.record.name
            rows = rows_named(inventory, canonical)
            if not rows:
                logger.warning(f"Matched database card '{canonical}' is not in the inventory")
                return MatchOutcome(result=result, matched=False, matched_name=canonical)

            logger.info(f"Matched '{canonical}' via database, {len(rows)} inventory row(s)")
            return MatchOutcome(result=result, matched=True, matched_name=canonical, matched_rows=rows)

        if database:
            result = self.find_best_match(card_name, effect_text, database)
            if isinstance(result, NoMatch):
                return MatchOutcome.none()
            return MatchOutcome(result=result, matched=True, matched_name=result.record.name)

        if inventory:
            result = self.find_best_match(card_name, effect_text, inventory,
                                          fuzzy_threshold=self.thresholds.inventory_fuzzy)
            if isinstance(result, NoMatch):
                return MatchOutcome.none()
            name = result.record.name
            return MatchOutcome(result=result, matched=True, matched_name=name,
                                matched_rows=rows_named(inventory, name))

        return MatchOutcome.none()

def score_confidence(card_name: str, effect_text: str, result: MatchResult) -> float:
    """
    Collapses a match into a single 0..1 confidence.
    Exact matches are fully trusted, scored matches use their score, anything else
    falls back to the text similarity between the OCR reading and the record.
    """
    if isinstance(result, NoMatch):
        return 0.0

    if isinstance(result, ExactMatch):
        confidence = 1.0
    elif result.score is not None:
        confidence = result.score
    else:
        record = result.record
        name_similarity = calculate_similarity(card_name, record.name) if card_name else 0.0
        effect_similarity = (
            calculate_similarity(effect_text, record.description)
            if effect_text and record.description else 0.0
        )
        confidence = max(name_similarity, effect_similarity * 0.7)

    return min(max(confidence, 0.0), 1.0)
