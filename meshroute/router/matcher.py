"""
Cascading capability matcher.

Matches a query against capability records cheaply first, more precisely
only as needed:

    1. Fingerprint tier - SimHash Hamming similarity, O(1) per candidate
    2. Keyword tier     - Jaccard overlap of query tokens and record keywords
    3. Fuzzy tier       - token-sort ratio against label and description

The cascade stops at the first tier whose best candidate clears
``min_score``. No embedding models are involved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from . import simhash
from .capability import CapabilityRecord

logger = logging.getLogger(__name__)

# Fingerprint similarity bands. Unrelated 64-bit fingerprints sit around
# 0.5, so anything below HASH_SIMILAR_THRESHOLD carries no signal.
HASH_EXACT_THRESHOLD = 0.95
HASH_SIMILAR_THRESHOLD = 0.7

KEYWORD_EXACT_THRESHOLD = 0.8

DEFAULT_MIN_SCORE = 0.3
DEFAULT_MAX_RESULTS = 10

_ALNUM = re.compile(r"[a-z0-9]+")


class MatchMethod(Enum):
    """How a capability was matched."""
    HASH_EXACT = "hash_exact"            # fingerprint >= 0.95
    HASH_SIMILAR = "hash_similar"        # fingerprint 0.7-0.95
    KEYWORD_EXACT = "keyword_exact"      # Jaccard >= 0.8
    KEYWORD_OVERLAP = "keyword_overlap"
    TEXT_FUZZY = "text_fuzzy"
    FALLBACK = "fallback"                # best-effort, no semantic match
    NO_MATCH = "no_match"

    @property
    def tier(self) -> int:
        """Cascade tier (1-3); 0 for FALLBACK and NO_MATCH."""
        return _METHOD_TIERS.get(self, 0)

    @property
    def is_semantic(self) -> bool:
        return self.tier > 0


_METHOD_TIERS = {
    MatchMethod.HASH_EXACT: 1,
    MatchMethod.HASH_SIMILAR: 1,
    MatchMethod.KEYWORD_EXACT: 2,
    MatchMethod.KEYWORD_OVERLAP: 2,
    MatchMethod.TEXT_FUZZY: 3,
}


@dataclass(frozen=True)
class MatchResult:
    """A matched capability with its similarity and the tier that produced it."""
    capability: CapabilityRecord
    score: float
    method: MatchMethod
    explanation: str = ""


# =============================================================================
# Tier scores
# =============================================================================

def query_tokens(query: str) -> List[str]:
    """Lowercase query tokens longer than two chars, stopwords removed."""
    return simhash.extract_tokens(query)


def candidate_tokens(record: CapabilityRecord) -> Set[str]:
    """Record keywords plus the tokens of its description."""
    return set(record.keywords) | set(simhash.extract_tokens(record.description))


def fingerprint_score(query_fingerprint: int, record: CapabilityRecord) -> float:
    """Hamming similarity; exactly 1.0 for identical fingerprints."""
    if query_fingerprint and query_fingerprint == record.fingerprint:
        return 1.0
    return simhash.similarity(query_fingerprint, record.fingerprint)


def keyword_score(tokens: Iterable[str], record: CapabilityRecord) -> float:
    """Jaccard similarity of query tokens against the record's token set."""
    a = set(tokens)
    b = candidate_tokens(record)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _token_sort(text: str) -> str:
    return " ".join(sorted(_ALNUM.findall(text.lower())))


def fuzzy_score(query: str, record: CapabilityRecord) -> float:
    """
    Token-sort ratio of the query against label and description.

    Both sides are lowercased, split into alphanumeric tokens, sorted and
    rejoined before ``SequenceMatcher.ratio()``, so word order does not
    matter. The better of the two comparisons wins.
    """
    q = _token_sort(query)
    if not q:
        return 0.0

    best = 0.0
    for text in (record.label, record.description):
        t = _token_sort(text)
        if t:
            best = max(best, SequenceMatcher(None, q, t).ratio())
    return best


def _hash_method(score: float) -> MatchMethod:
    return MatchMethod.HASH_EXACT if score >= HASH_EXACT_THRESHOLD else MatchMethod.HASH_SIMILAR


def _keyword_method(score: float) -> MatchMethod:
    return MatchMethod.KEYWORD_EXACT if score >= KEYWORD_EXACT_THRESHOLD else MatchMethod.KEYWORD_OVERLAP


def _rank_key(result: MatchResult):
    # Higher score, then higher model tier, fewer hops, cheaper node, cheaper API
    cap = result.capability
    return (
        -result.score,
        -cap.model_tier.rank,
        cap.hops,
        cap.node_cost,
        cap.api_cost_per_1k_tokens,
        cap.id,
    )


def _best(results: List[MatchResult]) -> Optional[MatchResult]:
    if not results:
        return None
    return min(results, key=_rank_key)


# =============================================================================
# Matching
# =============================================================================

def find_best_match(
    query: str,
    candidates: Sequence[CapabilityRecord],
    query_fingerprint: int = 0,
    min_score: float = DEFAULT_MIN_SCORE,
) -> Optional[MatchResult]:
    """
    Find the best matching capability using the fingerprint-first cascade.

    Args:
        query: Query text
        candidates: Eligible capability records
        query_fingerprint: Pre-computed 64-bit SimHash (0 = compute from query)
        min_score: Minimum similarity a tier must reach to resolve the match

    Returns:
        Best MatchResult, or None if no tier clears ``min_score``
    """
    if not candidates:
        return None

    fingerprint = query_fingerprint or simhash.simhash(query)
    tokens = query_tokens(query)
    logger.debug(f"Matching query={query[:50]!r} fingerprint={simhash.to_hex(fingerprint)} tokens={tokens}")

    # Tier 1: fingerprints
    if fingerprint:
        floor = max(min_score, HASH_SIMILAR_THRESHOLD)
        results = []
        for cap in candidates:
            score = fingerprint_score(fingerprint, cap)
            if score >= floor:
                results.append(MatchResult(
                    capability=cap,
                    score=score,
                    method=_hash_method(score),
                    explanation=f"Fingerprint {'exact' if score >= HASH_EXACT_THRESHOLD else 'similar'} "
                                f"({score:.0%} similar)",
                ))
        best = _best(results)
        if best:
            logger.debug(f"Tier 1 resolved {best.capability.id} ({best.score:.3f})")
            return best

    # Tier 2: keywords
    if tokens:
        results = []
        for cap in candidates:
            score = keyword_score(tokens, cap)
            if score >= min_score and score > 0:
                common = sorted(set(tokens) & candidate_tokens(cap))
                results.append(MatchResult(
                    capability=cap,
                    score=score,
                    method=_keyword_method(score),
                    explanation=f"Keyword overlap ({score:.0%}): {', '.join(common)}",
                ))
        best = _best(results)
        if best:
            logger.debug(f"Tier 2 resolved {best.capability.id} ({best.score:.3f})")
            return best

    # Tier 3: fuzzy text
    results = []
    for cap in candidates:
        score = fuzzy_score(query, cap)
        if score >= min_score and score > 0:
            results.append(MatchResult(
                capability=cap,
                score=score,
                method=MatchMethod.TEXT_FUZZY,
                explanation=f"Text similarity ({score:.0%})",
            ))
    best = _best(results)
    if best:
        logger.debug(f"Tier 3 resolved {best.capability.id} ({best.score:.3f})")
    else:
        logger.debug(f"No tier cleared min_score={min_score} for {len(candidates)} candidates")
    return best


def score_all_tiers(
    query: str,
    record: CapabilityRecord,
    query_fingerprint: int = 0,
    tokens: Optional[List[str]] = None,
) -> MatchResult:
    """
    Best score for one record across all three tiers.

    Fingerprint similarities below the similar band count as zero.
    """
    fingerprint = query_fingerprint or simhash.simhash(query)
    if tokens is None:
        tokens = query_tokens(query)

    best_score = 0.0
    method = MatchMethod.NO_MATCH
    explanation = ""

    hash_score = fingerprint_score(fingerprint, record)
    if hash_score >= HASH_SIMILAR_THRESHOLD:
        best_score = hash_score
        method = _hash_method(hash_score)
        explanation = f"Fingerprint ({hash_score:.0%})"

    kw_score = keyword_score(tokens, record)
    if kw_score > best_score:
        best_score = kw_score
        method = _keyword_method(kw_score)
        common = sorted(set(tokens) & candidate_tokens(record))
        explanation = f"Keywords ({kw_score:.0%}): {', '.join(common[:3])}"

    text_score = fuzzy_score(query, record)
    if text_score > best_score:
        best_score = text_score
        method = MatchMethod.TEXT_FUZZY
        explanation = f"Text similarity ({text_score:.0%})"

    return MatchResult(capability=record, score=best_score, method=method, explanation=explanation)


def find_all_matches(
    query: str,
    candidates: Sequence[CapabilityRecord],
    query_fingerprint: int = 0,
    min_score: float = DEFAULT_MIN_SCORE,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> List[MatchResult]:
    """
    Every candidate whose best tier score reaches ``min_score``.

    Returns:
        Results sorted by descending score (same tie-break as
        ``find_best_match``), at most ``max_results``
    """
    if not candidates or max_results <= 0:
        return []

    fingerprint = query_fingerprint or simhash.simhash(query)
    tokens = query_tokens(query)

    results = []
    for cap in candidates:
        result = score_all_tiers(query, cap, fingerprint, tokens)
        if result.score > 0 and result.score >= min_score:
            results.append(result)

    results.sort(key=_rank_key)
    return results[:max_results]


def explain_match(query: str, record: CapabilityRecord, query_fingerprint: int = 0) -> str:
    """Render per-tier scores for one query/record pair (debugging aid)."""
    fingerprint = query_fingerprint or simhash.simhash(query)
    tokens = query_tokens(query)
    common = sorted(set(tokens) & candidate_tokens(record))
    hash_score = fingerprint_score(fingerprint, record)

    lines = [
        f"Match: {query!r} -> {record.label or record.id}",
        f"  Query tokens:       {', '.join(tokens) or '(none)'}",
        f"  Record tokens:      {', '.join(sorted(candidate_tokens(record))) or '(none)'}",
        f"  Common:             {', '.join(common) or '(none)'}",
        f"  Query fingerprint:  {simhash.to_hex(fingerprint)}",
        f"  Record fingerprint: {simhash.to_hex(record.fingerprint)}",
        f"  Fingerprint score:  {hash_score:.3f} "
        f"({simhash.hamming_distance(fingerprint, record.fingerprint)} bits differ)",
        f"  Keyword score:      {keyword_score(tokens, record):.3f}",
        f"  Fuzzy score:        {fuzzy_score(query, record):.3f}",
    ]
    best = score_all_tiers(query, record, fingerprint, tokens)
    lines.append(f"  Best:               {best.method.value} ({best.score:.3f})")
    return "\n".join(lines)
