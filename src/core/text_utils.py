import re
from typing import List, Set

# Anything that is not a letter, digit, whitespace, hyphen, comma or apostrophe
_OCR_NOISE = re.compile(r"[^\w\s\-,']|_")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

def normalize_ocr_text(text: str) -> str:
    """
    Strips OCR noise into a comparable canonical string.
    Keeps letters, digits, whitespace, hyphen, comma and apostrophe,
    collapses whitespace runs and trims. Idempotent.
    """
    if not text:
        return ""
    cleaned = _OCR_NOISE.sub("", text)
    return _WHITESPACE.sub(" ", cleaned).strip()

def clean_for_match(text: str) -> str:
    """Lowercase, punctuation-free form used by the matching tiers."""
    if not text:
        return ""
    cleaned = _PUNCTUATION.sub("", text.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()

def significant_words(text: str, min_length: int = 3) -> List[str]:
    """Words of the cleaned text with at least `min_length` characters, in order."""
    return [w for w in clean_for_match(text).split(" ") if len(w) >= min_length]

def token_set_similarity(text1: str, text2: str) -> float:
    """Intersection over union of the word sets (words longer than 2 characters)."""
    words1: Set[str] = set(significant_words(text1))
    words2: Set[str] = set(significant_words(text2))
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)

def calculate_similarity(text1: str, text2: str) -> float:
    """
    Fraction of the words of text1 found in text2.
    A word also counts when it is contained in a longer word of text2 and is
    itself longer than 3 characters.
    """
    words1 = significant_words(text1)
    words2 = significant_words(text2)

    matches = 0
    for word in words1:
        if word in words2 or (len(word) > 3 and any(word in w for w in words2)):
            matches += 1

    return matches / max(len(words1), 1)

