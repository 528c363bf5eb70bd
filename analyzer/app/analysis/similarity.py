"""
Approximate text similarity used for finding deduplication.

Similarity is the normalized Levenshtein distance computed over the
full strings (not tokenized):

    similarity(a, b) = (max_len - edit_distance(a, b)) / max_len

with ``similarity("", "") == 1.0``.
"""

from typing import Iterable

# Findings whose source spans are MORE similar than this are duplicates.
DUPLICATE_SIMILARITY_THRESHOLD = 0.8


def edit_distance(a: str, b: str) -> int:
    """
    Classic Levenshtein distance (insert, delete, substitute cost 1).
    """
    rows = len(a) + 1
    cols = len(b) + 1

    table = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        table[i][0] = i
    for j in range(cols):
        table[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            table[i][j] = min(
                table[i - 1][j] + 1,  # deletion
                table[i][j - 1] + 1,  # insertion
                table[i - 1][j - 1] + cost,  # substitution
            )

    return table[rows - 1][cols - 1]


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0

    return (longest - edit_distance(a, b)) / longest


def is_near_duplicate(
    text: str,
    candidates: Iterable[str],
    threshold: float = DUPLICATE_SIMILARITY_THRESHOLD,
) -> bool:
    return any(similarity(text, candidate) > threshold for candidate in candidates)
