"""
String similarity for titles and free-text search.

- title_similarity: Jaccard overlap of synonym-canonicalized title tokens
- levenshtein_distance / string_similarity: edit-distance primitives
- fuzzy_search / fuzzy_match / highlight_matches: forgiving catalog search
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, List, Optional, Sequence, Set, TypeVar

from rapidfuzz.distance import Levenshtein

from jobcurator.normalize import TITLE_SYNONYMS, normalize_title

T = TypeVar("T")

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


# ----------------------------- Titles -----------------------------

def canonical_token(token: str) -> str:
    """Map a title token to its synonym group's representative (first matching group wins)."""
    for group in TITLE_SYNONYMS:
        if token in group:
            return group[0]
    return token


def _canonical_tokens(normalized_title: str) -> Set[str]:
    return {canonical_token(token) for token in normalized_title.split()}


def title_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Calculate similarity between two job titles.
    Returns a score between 0 and 1.
    """
    norm_a = normalize_title(a)
    norm_b = normalize_title(b)

    if norm_a == norm_b:
        return 1.0

    tokens_a = _canonical_tokens(norm_a)
    tokens_b = _canonical_tokens(norm_b)

    union = tokens_a | tokens_b
    if not union:
        return 0.0

    return len(tokens_a & tokens_b) / len(union)


# ----------------------------- Edit distance -----------------------------

def levenshtein_distance(a: str, b: str) -> int:
    """Classic insert/delete/substitute edit distance."""
    return Levenshtein.distance(a or "", b or "")


def string_similarity(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1]; two empty strings are identical."""
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a or "", b or "")


# ----------------------------- Free-text search -----------------------------

def normalize_for_search(s: Optional[str]) -> str:
    """
    Normalize string for fuzzy matching.
    Lowercases, strips diacritics, removes punctuation, and normalizes whitespace.
    """
    if not isinstance(s, str):
        return ""
    s = unicodedata.normalize("NFD", s.lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = _NON_WORD_RE.sub(" ", s)
    return _WS_RE.sub(" ", s).strip()


def _tokenize(s: Optional[str]) -> List[str]:
    return [t for t in normalize_for_search(s).split(" ") if t]


def _token_match_score(query_token: str, value_tokens: Sequence[str], threshold: float) -> float:
    best = 0.0
    for value_token in value_tokens:
        if value_token == query_token:
            return 1.0
        if value_token.startswith(query_token):
            best = max(best, 0.9)
            continue
        if query_token in value_token:
            best = max(best, 0.8)
            continue
        sim = string_similarity(query_token, value_token)
        if sim > threshold:
            best = max(best, sim * 0.7)
    return best


@dataclass
class SearchMatch:
    key: str
    value: str
    score: float


@dataclass
class FuzzySearchResult(Generic[T]):
    item: T
    score: float
    matches: List[SearchMatch] = field(default_factory=list)


def _searchable_values(item: Any, keys: Sequence[str]) -> List[tuple]:
    if isinstance(item, str):
        return [("value", item)]
    values = []
    for key in keys:
        if isinstance(item, dict):
            value = item.get(key)
        else:
            value = getattr(item, key, None)
        if isinstance(value, str):
            values.append((key, value))
    return values


def fuzzy_search(
    items: Iterable[T],
    query: str,
    threshold: float = 0.3,
    keys: Sequence[str] = (),
    max_results: Optional[int] = None,
    sort_by_score: bool = True,
) -> List[FuzzySearchResult[T]]:
    """
    Fuzzy search through items (strings, dicts or objects with ``keys`` attributes).

    Tolerates typos, word order and partial words. Items without any value
    scoring at least ``threshold`` are left out.
    """
    items = list(items)
    if not (query or "").strip():
        return [FuzzySearchResult(item=item, score=1.0) for item in items][:max_results]

    normalized_query = normalize_for_search(query)
    query_tokens = _tokenize(query)
    results: List[FuzzySearchResult[T]] = []

    for item in items:
        matches: List[SearchMatch] = []

        for key, value in _searchable_values(item, keys):
            # Exact substring match (highest priority)
            if normalized_query and normalized_query in normalize_for_search(value):
                matches.append(SearchMatch(key=key, value=value, score=1.0))
                continue

            if not query_tokens:
                continue
            value_tokens = _tokenize(value)
            token_scores = [_token_match_score(q, value_tokens, threshold) for q in query_tokens]
            hits = [s for s in token_scores if s > 0]
            if not hits:
                continue

            score = (sum(hits) / len(query_tokens)) * (len(hits) / len(query_tokens))
            if score >= threshold:
                matches.append(SearchMatch(key=key, value=value, score=score))

        if matches:
            results.append(FuzzySearchResult(
                item=item,
                score=sum(m.score for m in matches) / len(matches),
                matches=matches,
            ))

    if sort_by_score:
        results.sort(key=lambda r: r.score, reverse=True)

    return results[:max_results]


def fuzzy_match(text: Optional[str], query: Optional[str], threshold: float = 0.3) -> bool:
    """Simple fuzzy match check: at least half of the query tokens match."""
    if not (query or "").strip():
        return True
    if not (text or "").strip():
        return False

    if normalize_for_search(query) in normalize_for_search(text):
        return True

    query_tokens = _tokenize(query)
    text_tokens = _tokenize(text)

    matched = 0
    for query_token in query_tokens:
        for text_token in text_tokens:
            if (
                query_token in text_token
                or string_similarity(query_token, text_token) >= threshold
            ):
                matched += 1
                break

    return matched >= len(query_tokens) * 0.5


def highlight_matches(text: str, query: str) -> str:
    """Wrap every query token occurrence in <mark> tags."""
    if not (query or "").strip() or not text:
        return text or ""

    tokens = sorted(set(_tokenize(query)), key=len, reverse=True)
    if not tokens:
        return text
    pattern = re.compile("(" + "|".join(re.escape(t) for t in tokens) + ")", re.IGNORECASE)
    return pattern.sub(r"<mark>\1</mark>", text)
