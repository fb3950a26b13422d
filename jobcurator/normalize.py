"""
Canonical keys for company names, job titles and locations.

Every function here is total: any string (or None) yields a string, never an
exception. The alias/synonym tables are read-only module data.
"""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple


# ----------------------------- Tables -----------------------------

# Trailing tokens dropped from company names (compared after punctuation removal).
COMPANY_SUFFIXES: FrozenSet[str] = frozenset({
    # English
    "inc", "incorporated",
    "ltd", "limited",
    "llc",
    "corp", "corporation",
    "co", "company",
    "plc",
    "labs", "lab",
    "studio", "studios",
    "ventures", "venture",
    "capital",
    "foundation",
    "protocol",
    "network",
    "finance",
    # European
    "gmbh", "ag", "bv", "sa", "sas", "srl",
    # Korean
    "주식회사", "주",
})

# canonical company -> equivalent spellings (equivalence classes, not a hierarchy)
COMPANY_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "klaytn": ("kaia", "kaia foundation", "klaytn foundation"),
    "wemade": ("wemix", "wemix play"),
    "line next": ("line", "line corporation", "dosi", "finschia"),
    "dunamu": ("upbit",),
    "ground x": ("groundx",),
    "iconloop": ("icon",),
    "dsrv": ("dsrv labs", "dsrvlabs"),
    "cryptoquant": ("cryptoquant.com",),
})

# Abbreviation expansion applied token by token to titles.
TITLE_ABBREVIATIONS: Mapping[str, str] = MappingProxyType({
    "sr": "senior",
    "sr.": "senior",
    "jr": "junior",
    "jr.": "junior",
    "assoc": "associate",
    "assoc.": "associate",
    "prin": "principal",
    "prin.": "principal",
    "mgr": "manager",
    "eng": "engineer",
    "dev": "developer",
    "sw": "software",
    "swe": "software engineer",
    "fe": "frontend",
    "be": "backend",
    "fs": "fullstack",
    "ml": "machine learning",
    "ai": "artificial intelligence",
})

# Interchangeable title words; the first entry of a group is its representative.
TITLE_SYNONYMS: Tuple[Tuple[str, ...], ...] = (
    ("engineer", "developer", "programmer"),
    ("frontend", "front-end"),
    ("backend", "back-end"),
    ("fullstack", "full-stack"),
    ("senior", "sr"),
    ("junior", "jr"),
    ("lead", "leader"),
    ("manager", "mgr"),
    ("devops", "sre"),
    ("product", "pm"),
    ("ui", "ux", "uiux"),
)

# canonical location -> spellings matched by substring containment
LOCATION_ALIASES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "seoul": ("seoul, korea", "seoul, south korea", "seoul, kr", "서울", "서울시"),
    "remote": ("remote work", "work from home", "wfh", "anywhere", "worldwide"),
    "singapore": ("singapore, sg", "sg"),
    "san francisco": ("sf", "san francisco, ca", "bay area"),
    "new york": ("nyc", "new york, ny", "new york city"),
})

_COUNTRY_CODE_RE = re.compile(r"(?:,\s*|\s+)(kr|us|sg|uk|jp|de)$")
_PAREN_RE = re.compile(r"\([^)]*\)")
_NON_ALNUM_RE = re.compile(r"[^\w\s]|_")
_NON_TITLE_RE = re.compile(r"[^\w\s-]|_")
_WS_RE = re.compile(r"\s+")
# " - Acme", " – Acme", " @ Acme" at the end of a title
_TITLE_COMPANY_SUFFIX_RE = re.compile(r"(?:\s+[-–—]\s+|\s*@\s*)[\w\s.&,']+$")


def _lower(value: Optional[str]) -> str:
    if not isinstance(value, str):
        return ""
    return value.lower().strip()


# ----------------------------- Company -----------------------------

def normalize_company(name: Optional[str]) -> str:
    """
    Normalize a company name into a comparison key.

    "Acme Inc." -> "acme", "ACME Labs (Korea)" -> "acme".
    Idempotent: normalize_company(normalize_company(x)) == normalize_company(x).
    """
    normalized = _lower(name)
    normalized = _PAREN_RE.sub("", normalized)
    normalized = _NON_ALNUM_RE.sub("", normalized)
    tokens = normalized.split()

    # Strip trailing legal-entity tokens until none is left, keeping at least one token
    while len(tokens) > 1 and tokens[-1] in COMPANY_SUFFIXES:
        tokens.pop()

    return " ".join(tokens)


def _build_company_classes() -> Tuple[Tuple[str, FrozenSet[str]], ...]:
    classes = []
    for canonical, aliases in COMPANY_ALIASES.items():
        members = frozenset(normalize_company(n) for n in (canonical, *aliases))
        classes.append((normalize_company(canonical), members))
    return tuple(classes)


_COMPANY_CLASSES = _build_company_classes()


def company_key(name: Optional[str]) -> str:
    """
    Bucket key for a company's equivalence class.

    The canonical alias name when the company belongs to an alias entry,
    otherwise normalize_company(name).
    """
    normalized = normalize_company(name)
    if not normalized:
        return ""
    for canonical, members in _COMPANY_CLASSES:
        if normalized in members:
            return canonical
    return normalized


def same_company(a: Optional[str], b: Optional[str]) -> bool:
    """Check if two company names refer to the same company."""
    norm_a = normalize_company(a)
    norm_b = normalize_company(b)

    if not norm_a or not norm_b:
        # Names made only of punctuation: fall back to raw comparison
        return bool(_lower(a)) and _lower(a) == _lower(b)

    if norm_a == norm_b:
        return True

    for _, members in _COMPANY_CLASSES:
        if norm_a in members and norm_b in members:
            return True

    return False


# ----------------------------- Title -----------------------------

def normalize_title(title: Optional[str]) -> str:
    """
    Normalize a job title for comparison.

    "Sr. Solidity Engineer - Acme" -> "senior solidity engineer"
    """
    normalized = _lower(title)

    stripped = _TITLE_COMPANY_SUFFIX_RE.sub("", normalized).strip()
    if stripped:
        normalized = stripped

    words = normalized.split()
    normalized = " ".join(TITLE_ABBREVIATIONS.get(word, word) for word in words)

    normalized = _NON_TITLE_RE.sub("", normalized)
    return _WS_RE.sub(" ", normalized).strip()


# ----------------------------- Location -----------------------------

def normalize_location(location: Optional[str]) -> str:
    """
    Normalize a location for comparison.

    Alias table first (substring containment, first match wins), then
    trailing two-letter country codes are dropped.
    """
    normalized = _lower(location)
    if not normalized:
        return ""

    for canonical, aliases in LOCATION_ALIASES.items():
        if canonical in normalized or any(alias in normalized for alias in aliases):
            return canonical

    normalized = _COUNTRY_CODE_RE.sub("", normalized)
    return normalized.strip()


def same_location(a: Optional[str], b: Optional[str]) -> bool:
    """Check if two locations are the same."""
    return normalize_location(a) == normalize_location(b)
