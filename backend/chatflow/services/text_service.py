# /chatflow/services/text_service.py

import re
import unicodedata
from collections import Counter
from typing import List

from chatflow.config import rules

# Text preparation shared by the matching engine and the flow engine:
# sanitizing raw transport text and normalizing it for comparisons.

HTML_TAG_RE = re.compile(r"<[^>]*>")
DANGEROUS_CHARS_RE = re.compile(r"[<>\"']")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
PUNCTUATION_RE = re.compile(r"[^\w\s]")
UNDERSCORE_RE = re.compile(r"_")
WHITESPACE_RE = re.compile(r"\s+")
WORD_RE = re.compile(r"\w+")

DEFAULT_MAX_LENGTH = 1000


def sanitize_input(text, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Strip markup and control characters from raw input and cap its length."""
    if not text or not isinstance(text, str):
        return ""

    cleaned = HTML_TAG_RE.sub("", text)
    cleaned = DANGEROUS_CHARS_RE.sub("", cleaned)
    cleaned = CONTROL_CHARS_RE.sub("", cleaned)
    return cleaned.strip()[:max_length]


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text: str) -> str:
    """Lowercase, remove diacritics, turn punctuation into spaces and collapse whitespace."""
    if not text:
        return ""
    normalized = strip_accents(text.lower())
    normalized = PUNCTUATION_RE.sub(" ", normalized)
    normalized = UNDERSCORE_RE.sub(" ", normalized)
    return WHITESPACE_RE.sub(" ", normalized).strip()


def tokenize(text: str) -> List[str]:
    return WORD_RE.findall(text or "")


def expand_synonyms(normalized: str) -> str:
    """Append known synonyms of the words present in the text."""
    tokens = set(tokenize(normalized))
    expanded = [normalized]
    for word, synonyms in rules.SYNONYMS.items():
        if word in tokens:
            expanded.extend(synonyms)
    return " ".join(expanded)


def extract_keywords(normalized: str, top_n: int = 5) -> List[str]:
    """Most frequent non-stopword tokens, ties broken by first appearance."""
    tokens = [t for t in tokenize(normalized) if t not in rules.STOPWORDS]
    return [word for word, _ in Counter(tokens).most_common(top_n)]
