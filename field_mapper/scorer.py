"""
Confidence scoring of a normalised header against a field's alias patterns.

Three heuristics are evaluated per pattern and the maximum is kept across
heuristics and across patterns:

  exact      -> 1.0 (short-circuits)
  substring  -> len(shorter) / len(longer), containment in either direction
  tokens     -> distinct shared tokens / max(token counts) * TOKEN_OVERLAP_DISCOUNT
"""

from typing import Iterable

from .config import TOKEN_OVERLAP_DISCOUNT
from .normalizer import normalize


def _substring_score(source: str, pattern: str) -> float:
    if source in pattern or pattern in source:
        return min(len(source), len(pattern)) / max(len(source), len(pattern))
    return 0.0


def _token_score(source: str, pattern: str, discount: float) -> float:
    source_tokens = source.split()
    pattern_tokens = pattern.split()
    longest = max(len(source_tokens), len(pattern_tokens))
    if longest == 0:
        return 0.0
    matching = len(set(source_tokens) & set(pattern_tokens))
    return matching / longest * discount


def score(
    normalized_source: str,
    patterns: Iterable[str],
    discount: float = TOKEN_OVERLAP_DISCOUNT,
) -> float:
    """Return the best confidence in [0, 1] of *normalized_source* against *patterns*."""
    best = 0.0
    for raw_pattern in patterns:
        pattern = normalize(raw_pattern)
        if not pattern:
            continue
        if normalized_source == pattern:
            return 1.0
        if not normalized_source:
            continue
        best = max(
            best,
            _substring_score(normalized_source, pattern),
            _token_score(normalized_source, pattern, discount),
        )
    return best
