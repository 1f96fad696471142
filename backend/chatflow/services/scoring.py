# /chatflow/services/scoring.py

from typing import Callable, Dict, FrozenSet
from rapidfuzz.distance import JaroWinkler, Levenshtein

# String similarity algorithms used by the matching engine. Every function
# takes two normalized strings and returns a similarity in [0, 1].


def jaccard_similarity(tokens_a: FrozenSet[str], tokens_b: FrozenSet[str]) -> float:
    """Token-set overlap."""
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - distance / max(len(a), len(b))."""
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def jaro_winkler_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.similarity(a, b)


def dedup_similarity(a: str, b: str) -> float:
    """
    Similarity used to reject near-duplicate training inputs: a blend of token
    overlap and edit distance.
    """
    lexical = jaccard_similarity(frozenset(a.split()), frozenset(b.split()))
    return lexical * 0.6 + levenshtein_similarity(a, b) * 0.4


# String-based algorithms, keyed by their weight name in AlgorithmWeights.
STRING_ALGORITHMS: Dict[str, Callable[[str, str], float]] = {
    "edit_distance": levenshtein_similarity,
    "jaro_winkler": jaro_winkler_similarity,
}
