"""
Text normalization and fuzzy matching.

Every comparison between scanner output and the checklist corpus goes
through these helpers. They are pure: no I/O, no shared mutable state.

Similarity is 1 - (edit distance / longer length) over normalized text,
using classic unit-cost Levenshtein distance.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Generic, TypeVar

import Levenshtein

T = TypeVar("T")

_NON_WORD = re.compile(r"[^\w\s/]")
_WHITESPACE = re.compile(r"\s+")

# Keys are matched case-insensitively. Some keys contain punctuation that
# normalize() would remove, so lookups also try the raw trimmed input.
DEFAULT_PARALLEL_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "refractors": "refractor",
        "xfractor": "x-fractor",
        "holo": "holographic",
        "rr": "rated rookie",
        "sp": "short print",
        "ssp": "super short print",
        "rwb": "red white blue",
        "red white & blue": "red white blue",
        "red, white & blue": "red white blue",
        "gold vinyl": "gold vinyl 1/1",
        "black finite": "black finite 1/1",
        "press proof": "press proof silver",
        "neon green": "neon green",
        "disco": "disco prizm",
        "shimmer": "shimmer",
        "mojo": "mojo refractor",
        "wave": "wave refractor",
        "aqua": "aqua",
        "camo": "camo",
    }
)


def build_alias_table(aliases: Mapping[str, str]) -> Mapping[str, str]:
    """Return a read-only, case-folded copy of an alias mapping."""
    return MappingProxyType({key.casefold(): value for key, value in aliases.items()})


_DEFAULT_ALIAS_TABLE = build_alias_table(DEFAULT_PARALLEL_ALIASES)


def normalize(text: str | None) -> str:
    """
    Normalize free text for comparison.

    Lowercases, drops everything except word characters, whitespace and
    "/", collapses runs of whitespace and trims. Returns "" for empty input.
    """
    if not text or not text.strip():
        return ""

    result = _NON_WORD.sub("", text.lower())
    result = _WHITESPACE.sub(" ", result)
    return result.strip()


def normalize_card_number(number: str | None) -> str:
    """
    Canonicalize a printed card number.

    "#088" -> "88", "007" -> "7", "000" -> "0". Idempotent.
    """
    if not number or not number.strip():
        return ""

    result = number.strip().lstrip("#").lstrip("0")
    return result or "0"


def normalize_parallel_name(
    name: str | None,
    aliases: Mapping[str, str] | None = None,
) -> str:
    """
    Normalize a parallel/variation name, resolving known shorthand.

    Args:
        name: Raw parallel name from the scanner or a checklist
        aliases: Case-folded alias table (see build_alias_table).
            Defaults to the packaged table.

    Returns:
        Normalized canonical parallel name, or "" for empty input
    """
    if not name or not name.strip():
        return ""

    table = _DEFAULT_ALIAS_TABLE if aliases is None else aliases
    normalized = normalize(name)

    alias = table.get(normalized.casefold())
    if alias is None:
        alias = table.get(name.strip().casefold())
    if alias is not None:
        return normalize(alias)

    return normalized


def similarity(a: str | None, b: str | None) -> float:
    """
    Similarity of two strings in [0.0, 1.0] after normalization.

    0.0 when either side is empty, 1.0 when the normalized forms match.
    """
    if not a or not a.strip() or not b or not b.strip():
        return 0.0

    norm_a = normalize(a)
    norm_b = normalize(b)

    if norm_a == norm_b:
        return 1.0

    longest = max(len(norm_a), len(norm_b))
    if longest == 0:
        return 1.0

    return 1.0 - Levenshtein.distance(norm_a, norm_b) / longest


@dataclass(frozen=True)
class MatchResult(Generic[T]):
    """Best fuzzy candidate and its score."""

    candidate: T
    score: float


def best_match(
    query: str,
    candidates: Iterable[T],
    key: Callable[[T], str] = str,
    transform: Callable[[str], str] | None = None,
) -> MatchResult[T] | None:
    """
    Find the candidate most similar to query.

    Args:
        query: Text to match
        candidates: Items to search
        key: Extracts the comparison text from a candidate
        transform: Optional canonicalization applied to each candidate's
            text before scoring (query is scored as given)

    Returns:
        Highest-scoring candidate (first wins on ties), or None if empty
    """
    best: MatchResult[T] | None = None

    for candidate in candidates:
        text = key(candidate)
        if transform is not None:
            text = transform(text)
        score = similarity(query, text)
        if best is None or score > best.score:
            best = MatchResult(candidate=candidate, score=score)

    return best
