"""Map noisy OCR transcripts onto the closest known name.

OCR of a name plate is usually one or two characters off (rn/m, l/I,
dropped accents). Every transcript is snapped to the vocabulary entry with
the smallest Levenshtein distance.
"""

from __future__ import annotations

from collections.abc import Sequence

from encounter_reader.config import ConfigError


def levenshtein_distance(s1: str, s2: str) -> int:
    """Edit distance with unit cost for substitution, insertion and deletion.

    Two-row dynamic programming, O(len(s1) * len(s2)) time and
    O(min(len)) memory.
    """
    if s1 == s2:
        return 0
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            current.append(min(
                previous[j] + 1,               # deletion
                current[j - 1] + 1,            # insertion
                previous[j - 1] + (c1 != c2),  # substitution
            ))
        previous = current
    return previous[-1]


def resolve_name(candidate: str, vocabulary: Sequence[str]) -> str:
    """Return the vocabulary entry closest to ``candidate``.

    Ties go to the entry that comes first in the vocabulary.
    """
    if not vocabulary:
        raise ConfigError("cannot resolve names against an empty vocabulary")

    best = vocabulary[0]
    best_distance = levenshtein_distance(candidate, best)
    for name in vocabulary[1:]:
        if best_distance == 0:
            break
        distance = levenshtein_distance(candidate, name)
        if distance < best_distance:
            best, best_distance = name, distance
    return best
