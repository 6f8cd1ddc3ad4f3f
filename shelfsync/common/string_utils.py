"""String normalization and title similarity utilities for matching."""

import re
from pathlib import PurePath

from rapidfuzz.distance import Levenshtein

# Scores for titles where one is contained in the other never drop below this
SUBSTRING_SIMILARITY_FLOOR = 0.9

_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")
_LEADING_ARTICLE_PATTERN = re.compile(r"^(?:a|an|the)\b\s*")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_COPY_COUNTER_PATTERN = re.compile(r"\(\d+\)$")


def normalize_string(text: str) -> str:
    """
    Lower-case and trim a string for case-insensitive substring search.

    Example:
        >>> normalize_string("  Dune MESSIAH  ")
        'dune messiah'
    """
    return text.strip().lower()


def normalize_title(text: str) -> str:
    """
    Normalize a book title for similarity scoring.

    Applies the following transformations in order:
    1. Convert to lowercase
    2. Remove punctuation (keep word characters and whitespace)
    3. Collapse runs of whitespace and trim
    4. Drop a leading article ("a", "an", "the")

    Args:
        text: Title to normalize

    Returns:
        Normalized title, possibly empty

    Example:
        >>> normalize_title("The Hobbit: or, There and Back Again")
        'hobbit or there and back again'
        >>> normalize_title("An  Unexpected   Journey!")
        'unexpected journey'
        >>> normalize_title("Anathem")
        'anathem'
    """
    normalized = _PUNCTUATION_PATTERN.sub("", text.lower())
    normalized = _WHITESPACE_PATTERN.sub(" ", normalized).strip()
    normalized = _LEADING_ARTICLE_PATTERN.sub("", normalized)
    return normalized.strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Return the edit distance (insert/delete/substitute, unit cost) between two strings."""
    return Levenshtein.distance(a, b)


def title_similarity(title1: str, title2: str) -> float:
    """
    Score how alike two titles are, from 0.0 (unrelated) to 1.0 (identical).

    Both titles are normalized with normalize_title() first. The score is
    ``(len(longer) - distance) / len(longer)`` where ``distance`` is the
    Levenshtein distance between the normalized strings. When the shorter
    normalized title occurs inside the longer one (subtitle or series
    variants) the score is raised to at least 0.9.

    The result does not depend on argument order.

    Args:
        title1: First title
        title2: Second title

    Returns:
        Similarity score in [0.0, 1.0]. Two titles that both normalize to the
        empty string score 1.0; exactly one empty scores 0.0.

    Example:
        >>> title_similarity("Dune", "dune")
        1.0
        >>> title_similarity("Dune", "Dune Messiah")
        0.9
        >>> title_similarity("Dune", "")
        0.0
    """
    normalized1 = normalize_title(title1)
    normalized2 = normalize_title(title2)

    if not normalized1 and not normalized2:
        return 1.0
    if not normalized1 or not normalized2:
        return 0.0

    shorter, longer = sorted((normalized1, normalized2), key=len)

    distance = levenshtein_distance(shorter, longer)
    similarity = (len(longer) - distance) / len(longer)
    similarity = max(0.0, min(1.0, similarity))

    if shorter in longer:
        return max(similarity, SUBSTRING_SIMILARITY_FLOOR)

    return similarity


def title_from_cover_filename(file_name: str) -> str:
    """
    Derive a probable book title from a cover image file name.

    Example:
        >>> title_from_cover_filename("the_left-hand_of_darkness.jpg")
        'the left hand of darkness'
        >>> title_from_cover_filename("Neuromancer(2).png")
        'Neuromancer'
    """
    stem = PurePath(file_name).stem
    title = re.sub(r"[_\-]", " ", stem)
    title = _COPY_COUNTER_PATTERN.sub("", title)
    return title.strip()
