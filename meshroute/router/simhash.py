"""
SimHash - 64-bit locality-sensitive text fingerprints.

Similar texts produce fingerprints that differ in few bits, so capability
descriptions can be compared by Hamming distance without embeddings.

Algorithm:
    1. Tokenize (lowercase, 3+ alphanumeric chars, no stopwords, deduplicated)
    2. Hash every token with FNV-1a 64
    3. For each bit position accumulate +1 (bit set) or -1 (bit clear)
    4. Bit i of the fingerprint is set when its sum is positive

Fingerprints are unsigned ints in [0, 2**64). 0 means "no fingerprint".
"""

from __future__ import annotations

import re

FNV64_OFFSET_BASIS = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
MASK64 = 0xFFFFFFFFFFFFFFFF

MAX_TOKENS = 50

STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "be",
    "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "should", "could", "may", "might", "can", "this", "that",
    "what", "which", "who", "when", "where", "why", "how", "i", "you",
    "he", "she", "it", "we", "they", "my", "your", "his", "her", "its",
    "our", "their", "all", "each", "every", "both", "few", "more", "most",
    "other", "some", "such", "no", "not", "only", "same", "so", "than",
    "too", "very", "just", "about", "into", "through", "during", "before",
    "after", "above", "below", "between", "under", "again", "further",
    "then", "once", "here", "there",
})

_WORD = re.compile(r"\b[a-zA-Z0-9]{3,}\b")


def fnv1a64(text: str) -> int:
    """FNV-1a 64-bit hash of the UTF-8 bytes of ``text``."""
    h = FNV64_OFFSET_BASIS
    for b in text.encode("utf-8"):
        h ^= b
        h = (h * FNV64_PRIME) & MASK64
    return h


def extract_tokens(text: str, max_tokens: int = MAX_TOKENS) -> list[str]:
    """
    Extract fingerprint tokens from text.

    Lowercases, keeps words of 3+ ASCII alphanumerics, drops stopwords and
    duplicates (first occurrence wins).

    Args:
        text: Input text
        max_tokens: Maximum number of tokens to return

    Returns:
        Ordered list of unique tokens
    """
    if not text:
        return []

    seen: set[str] = set()
    tokens: list[str] = []
    for word in _WORD.findall(text.lower()):
        if word in STOPWORDS or word in seen:
            continue
        seen.add(word)
        tokens.append(word)
        if len(tokens) >= max_tokens:
            break
    return tokens


def simhash_tokens(tokens: list[str]) -> int:
    """SimHash of pre-extracted tokens (0 for no tokens)."""
    if not tokens:
        return 0

    sums = [0] * 64
    for token in tokens:
        h = fnv1a64(token.lower())
        for i in range(64):
            if (h >> i) & 1:
                sums[i] += 1
            else:
                sums[i] -= 1

    result = 0
    for i, s in enumerate(sums):
        if s > 0:
            result |= 1 << i
    return result


def simhash(text: str) -> int:
    """64-bit SimHash of text."""
    return simhash_tokens(extract_tokens(text))


def hamming_distance(a: int, b: int) -> int:
    """Number of differing bits between two 64-bit fingerprints."""
    return bin((a ^ b) & MASK64).count("1")


def similarity(a: int, b: int) -> float:
    """
    Fingerprint similarity ``1 - hamming/64`` in [0, 1].

    Absent fingerprints (0) are never similar to anything.
    """
    if a == 0 or b == 0:
        return 0.0
    return 1.0 - hamming_distance(a, b) / 64.0


def to_hex(fingerprint: int) -> str:
    """Render a fingerprint as 16 hex digits."""
    return f"{fingerprint & MASK64:016x}"


def from_hex(value: str | int | None) -> int:
    """
    Parse a fingerprint from hex text or an int.

    Signed 64-bit values (as produced by JVM peers) are reinterpreted as
    unsigned.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value & MASK64
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return int(text, 16) & MASK64
