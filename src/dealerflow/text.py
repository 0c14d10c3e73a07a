import re
import unicodedata
from functools import lru_cache
from typing import Iterable

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, strip diacritics, collapse whitespace."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE.sub(" ", stripped).strip()


@lru_cache(maxsize=None)
def keyword_pattern(keyword: str) -> re.Pattern:
    """Whole-word pattern for a (possibly multi-word) keyword, compiled once."""
    return re.compile(rf"(?<![\w-]){re.escape(keyword)}(?![\w-])")


@lru_cache(maxsize=256)
def any_keyword_pattern(keywords: frozenset) -> re.Pattern:
    """One whole-word alternation for a keyword set, longest keyword first."""
    alternatives = sorted({normalize_text(kw) for kw in keywords} - {""}, key=lambda kw: (-len(kw), kw))
    return re.compile(rf"(?<![\w-])(?:{'|'.join(map(re.escape, alternatives))})(?![\w-])")


def find_keyword(text: str, keyword: str) -> int:
    """Position of the first whole-word occurrence of keyword, or -1."""
    match = keyword_pattern(keyword).search(text)
    return match.start() if match else -1


def match_any_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Check if any keyword appears in text as a whole word (not substring).

    Both sides are normalized, so accented keywords match unaccented input.
    """
    keywords = frozenset(keywords)
    if not keywords - {""}:
        return False
    return any_keyword_pattern(keywords).search(normalize_text(text)) is not None


def starts_with_any(text: str, keywords: Iterable[str]) -> bool:
    """True if normalized text equals, starts or ends with a keyword as whole words."""
    normalized = normalize_text(text)
    for kw in keywords:
        kw = normalize_text(kw)
        if normalized == kw or normalized.startswith(kw + " ") or normalized.endswith(" " + kw):
            return True
    return False
