import pytest
from src.core.config import MatchThresholds
from src.core.models import (
    CardRecord, InventoryRow, NoMatch, ExactMatch, FuzzyMatch, PartialMatch, EffectMatch,
)
from src.services.scanner.matcher import CardMatcher, score_confidence, rows_named

FILLER = "golf hotel india juliet kilo lima mike november oscar papa quebec romeo sierra tango"

BLUE_EYES = CardRecord(
    id=89631139,
    name="Blue-Eyes White Dragon",
    desc="This legendary dragon is a powerful engine of destruction. Virtually invincible, "
         "very few have faced this awesome creature and lived to tell the tale.",
    type="Normal Monster",
    atk=3000,
    level=8,
)
DARK_MAGICIAN = CardRecord(name="Dark Magician", desc=f"The ultimate wizard {FILLER}")
DARK_MAGICIAN_GIRL = CardRecord(name="Dark Magician Girl", desc=f"Gains ATK for each {FILLER}")
APPRENTICE = CardRecord(
    name="Arcane Apprentice",
    desc="When this card is Normal Summoned you can add one Spellcaster monster from your Deck "
         "to your hand. Once per turn during either player's Battle Phase target face-up monster "
         "the opponent controls and negate its effects until the End Phase of this turn while equipped",
)

DATABASE = (BLUE_EYES, DARK_MAGICIAN, DARK_MAGICIAN_GIRL, APPRENTICE)

@pytest.fixture
def matcher():
    return CardMatcher()

def test_exact_match_ignores_effect_text(matcher):
    result = matcher.find_best_match("blue-eyes WHITE dragon", "completely unrelated words here", DATABASE)
    assert isinstance(result, ExactMatch)
    assert result.record is BLUE_EYES
    assert score_confidence("blue-eyes WHITE dragon", "", result) == 1.0

def test_exact_tie_break_is_first_in_order(matcher):
    duplicate = CardRecord(name="Dark Magician", desc="Alternate art")
    result = matcher.find_best_match("Dark Magician", "", (DARK_MAGICIAN, duplicate))
    assert result.record is DARK_MAGICIAN

def test_fuzzy_match_on_name_and_text(matcher):
    effect = ("This legendary dragon is a powerful engine of destruction Virtually invincible "
              "very few have faced this awesome creature")
    result = matcher.find_best_match("Blue Eyes Dragon", effect, DATABASE)
    assert isinstance(result, FuzzyMatch)
    assert result.record is BLUE_EYES
    assert result.score > 0.3

def test_fuzzy_threshold_is_strict():
    # Query words {alpha, bravo, charlie}; record words are those plus 7 others -> IoU exactly 0.3
    record = CardRecord(name="Delta Echo Foxtrot", desc="alpha bravo charlie golf hotel india juliet")
    query = "alpha bravo charlie"

    at_threshold = CardMatcher(MatchThresholds(fuzzy=0.3)).find_best_match(query, "", [record])
    assert isinstance(at_threshold, NoMatch)

    below = CardMatcher(MatchThresholds(fuzzy=0.3 - 1e-9)).find_best_match(query, "", [record])
    assert isinstance(below, FuzzyMatch)
    assert below.score == pytest.approx(0.3)

def test_fuzzy_first_record_wins_ties(matcher):
    a = CardRecord(name="Alpha Card", desc="")
    b = CardRecord(name="Alpha Card Copy", desc="")
    c = CardRecord(name="Card Alpha", desc="")
    # b scores 2/4, a and c both 2/3; exact misses because of the extra word
    result = matcher.find_best_match("alpha card xyz", "", [b, a, c])
    assert result.record is a

def test_partial_match_on_name_words(matcher):
    # Typo defeats exact, long descriptions keep the word overlap low
    result = matcher.find_best_match("Dark Magican Girl", "", DATABASE)
    assert isinstance(result, PartialMatch)
    assert result.record is DARK_MAGICIAN_GIRL
    assert result.score == pytest.approx(2 / 3)

def test_effect_chunk_match(matcher):
    result = matcher.find_best_match("", "this card is Normal Summoned you can add one", DATABASE)
    assert isinstance(result, EffectMatch)
    assert result.record is APPRENTICE
    assert result.score == 1.0

def test_effect_needs_enough_meaningful_words(matcher):
    result = matcher.find_best_match("", "this card is to be", DATABASE)
    assert isinstance(result, NoMatch)

def test_no_match(matcher):
    assert isinstance(matcher.find_best_match("Unreadable", "", DATABASE), NoMatch)
    assert isinstance(matcher.find_best_match("", "", DATABASE), NoMatch)
    assert isinstance(matcher.find_best_match("Dark Magician", "", []), NoMatch)

# --- Database / inventory ---

INVENTORY = [
    InventoryRow(card_name="Dark Magician", set_code="SDY-006", rarity="Ultra Rare"),
    InventoryRow(card_name="Blue-Eyes White Dragon", set_code="LOB-001", set_name="Legend of Blue Eyes White Dragon"),
    InventoryRow(card_name="dark magician", set_code="LOB-005", rarity="Ultra Rare"),
]

def test_rows_named_ignores_case():
    assert [r.set_code for r in rows_named(INVENTORY, "Dark Magician")] == ["SDY-006", "LOB-005"]

def test_inventory_only_returns_all_rows_with_name(matcher):
    outcome = matcher.match("Dark Magician", "", inventory=INVENTORY)
    assert outcome.matched
    assert outcome.matched_name == "Dark Magician"
    assert len(outcome.matched_rows) == 2

def test_database_then_inventory(matcher):
    outcome = matcher.match("Blue-Eyes White Dragon", "", database=DATABASE, inventory=INVENTORY)
    assert outcome.matched
    assert isinstance(outcome.result, ExactMatch)
    assert [r.set_code for r in outcome.matched_rows] == ["LOB-001"]

def test_database_match_missing_from_inventory(matcher):
    outcome = matcher.match("Arcane Apprentice", "", database=DATABASE, inventory=INVENTORY)
    assert not outcome.matched
    assert outcome.matched_name == "Arcane Apprentice"
    assert outcome.matched_rows == []

def test_database_only(matcher):
    outcome = matcher.match("Dark Magician", "", database=DATABASE)
    assert outcome.matched
    assert outcome.matched_rows == []
    assert not matcher.match("Dark Magician", "").matched

# --- Confidence ---

def test_confidence_uses_score():
    assert score_confidence("x", "", FuzzyMatch(record=DARK_MAGICIAN, score=0.42)) == pytest.approx(0.42)
    assert score_confidence("x", "", PartialMatch(record=DARK_MAGICIAN, score=1.7)) == 1.0
    assert score_confidence("x", "", NoMatch()) == 0.0

def test_confidence_fallback_to_similarity():
    # No score: max(name similarity, effect similarity * 0.7)
    assert score_confidence("Dark Magic", "", EffectMatch(record=DARK_MAGICIAN)) == 1.0
    assert score_confidence("", "ultimate wizard", EffectMatch(record=DARK_MAGICIAN)) == pytest.approx(0.7)
    assert score_confidence("", "", FuzzyMatch(record=DARK_MAGICIAN)) == 0.0
