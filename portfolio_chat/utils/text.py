"""Small text helpers shared by ingestion, routing and generation."""

import math
import re


def estimate_token_count(text: str) -> int:
    """Approximate token count (~4 characters per token for English text)."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def normalize_for_matching(text: str) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def word_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of two normalized strings."""
    words_a = set(a.split())
    words_b = set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def last_words(text: str, token_count: int) -> str:
    """Return roughly `token_count` tokens worth of trailing words (1.3 tokens per word)."""
    if not text or token_count <= 0:
        return ""
    words = text.strip().split()
    word_count = math.ceil(token_count / 1.3)
    if len(words) <= word_count:
        return text.strip()
    return " ".join(words[-word_count:])


_TAG_RE = re.compile(r"<[^>]*>")
_ATTR_RES = [
    re.compile(r'\s*(href|target|rel|style|class|id)\s*=\s*"[^"]*"', re.IGNORECASE),
    re.compile(r"\s*(href|target|rel|style|class|id)\s*=\s*'[^']*'", re.IGNORECASE),
    re.compile(r"\s*(href|target|rel|style|class|id)\s*=\s*[^\s\"'>]*", re.IGNORECASE),
]
_ENTITY_RE = re.compile(r"&[a-zA-Z0-9#]+;")


def strip_markup(text: str) -> str:
    """Reduce model output to plain text: no tags, attributes, entities or angle brackets."""
    clean = _TAG_RE.sub("", text)
    for pattern in _ATTR_RES:
        clean = pattern.sub("", clean)
    clean = re.sub(r"[<>\"]", "", clean)
    clean = _ENTITY_RE.sub("", clean)
    return re.sub(r"\s+", " ", clean).strip()
