"""Text helpers shared by candidate generation and clustering."""

from __future__ import annotations

import re
import unicodedata

MAX_TERM_LENGTH = 100

_WORD_RE = re.compile(r"[^\W_]+(?:['’][^\W_]+)?", re.UNICODE)
_SPACE_RE = re.compile(r"\s+")

# Words that never make a keyword on their own
COMMON_WORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "for", "with", "your", "you", "are", "can", "will",
        "this", "that", "app", "apps", "application", "mobile", "phone", "device", "free",
        "best", "new", "top", "get", "use", "make", "help", "now", "all", "more", "most",
        "one", "way", "of", "to", "in", "on", "at", "by", "is", "it", "its", "be", "as",
        "from", "our", "we", "us", "my", "me", "i", "so", "do", "has", "have", "any",
        "every", "each", "just", "even", "also", "into", "out", "up", "no", "not", "but",
        "than", "then", "very", "own", "over", "while", "like", "what", "when", "how",
    }
)

GENERIC_WORDS = frozenset(
    {
        "software", "platform", "solution", "system", "service", "product", "digital",
        "online", "internet", "web", "technology", "feature", "features", "tool", "tools",
    }
)

# Marketing boilerplate that reads like a phrase but never is a search term
EXCLUDED_PHRASES = frozenset(
    {
        "app store", "mobile app", "download now", "get started", "sign up", "easy to",
        "simple to", "designed for", "perfect for", "terms of use", "privacy policy",
        "free trial", "in app", "subscription", "auto renew",
    }
)


def normalize_term(term: str) -> str:
    """Lowercase, NFKC-normalize and collapse whitespace."""
    term = unicodedata.normalize("NFKC", term or "")
    return _SPACE_RE.sub(" ", term).strip().lower()


def tokenize(text: str) -> list[str]:
    """Split text into lowercase word tokens, in order."""
    return [m.group(0).lower() for m in _WORD_RE.finditer(unicodedata.normalize("NFKC", text or ""))]


def is_stopword(token: str) -> bool:
    return token in COMMON_WORDS or token in GENERIC_WORDS


def content_tokens(text: str) -> list[str]:
    """Tokens minus stop/generic words and one-letter noise."""
    return [t for t in tokenize(text) if len(t) > 1 and not is_stopword(t)]


def is_valid_term(term: str) -> bool:
    """A searchable term: non-empty, bounded, with at least one letter or digit."""
    term = normalize_term(term)
    if not term or len(term) > MAX_TERM_LENGTH:
        return False
    return any(ch.isalnum() for ch in term)


def is_valuable_phrase(phrase: str, min_length: int = 4, max_length: int = 40) -> bool:
    """Reject boilerplate, stopword-only and out-of-range phrases."""
    phrase = normalize_term(phrase)
    if not (min_length <= len(phrase) <= max_length):
        return False
    if phrase in EXCLUDED_PHRASES:
        return False
    tokens = tokenize(phrase)
    if not tokens:
        return False
    if all(is_stopword(t) for t in tokens):
        return False
    # Phrases starting or ending on a stopword are sentence fragments
    return not (is_stopword(tokens[0]) or is_stopword(tokens[-1]))


def singularize(word: str) -> str:
    """Cheap English singular form. Leaves short words and -ss words alone."""
    if len(word) <= 3 or word.endswith("ss") or word.endswith("us"):
        return word
    if word.endswith("ies") and len(word) > 4:
        return word[:-3] + "y"
    if word.endswith(("ches", "shes", "xes", "zes")):
        return word[:-2]
    if word.endswith("s"):
        return word[:-1]
    return word


def pluralize(word: str) -> str:
    if len(word) <= 2 or word.endswith("s"):
        return word
    if word.endswith("y") and len(word) > 2 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("ch", "sh", "x", "z")):
        return word + "es"
    return word + "s"


def stem_tokens(text: str) -> list[str]:
    """Content tokens reduced to singular form; falls back to raw tokens."""
    stems = [singularize(t) for t in content_tokens(text)]
    if stems:
        return stems
    return [singularize(t) for t in tokenize(text)]


def ngrams(tokens: list[str], n: int) -> list[str]:
    return [" ".join(tokens[i : i + n]) for i in range(len(tokens) - n + 1)]
