"""
Edit-distance based string similarity on a 0-100 scale.
"""
from rapidfuzz.distance import Levenshtein


def string_similarity(a: str, b: str) -> float:
    """
    Similarity between two strings as (1 - distance / max_len) * 100, where
    distance is the insert/delete/substitute Levenshtein distance.

    Inputs are lowercased and trimmed first. Identical strings (including two
    empty strings) score 100.
    """
    s1 = (a or "").lower().strip()
    s2 = (b or "").lower().strip()

    if s1 == s2:
        return 100.0

    max_len = max(len(s1), len(s2))
    distance = Levenshtein.distance(s1, s2)
    similarity = (1 - distance / max_len) * 100

    return max(0.0, min(100.0, similarity))
