"""Ticket subject similarity.

Similarity is the normalized edit distance of the trimmed, lower-cased
strings: ``(len(longer) - distance) / len(longer)``, 1.0 for two empty
strings.
"""

from collections.abc import Iterable

from rapidfuzz.distance import Levenshtein

from src.domain.models import TicketSnapshot


def normalize_subject(text: str | None) -> str:
    return (text or "").strip().lower()


def subject_similarity(first: str | None, second: str | None) -> float:
    """Normalized edit-distance similarity in [0, 1].

    Example:
        >>> subject_similarity("Server is down", "server is down ")
        1.0
        >>> round(subject_similarity("Printer jam", "Printer jams"), 2)
        0.92
    """
    a = normalize_subject(first)
    b = normalize_subject(second)
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    if not longer:
        return 1.0
    distance = Levenshtein.distance(longer, shorter)
    return (len(longer) - distance) / len(longer)


def find_similar_ticket(
    subject: str | None,
    candidates: Iterable[TicketSnapshot],
    threshold: float,
) -> tuple[TicketSnapshot, float] | None:
    """Return the first candidate whose subject reaches ``threshold``.

    Candidates are scanned in the order given; the first match wins. A blank
    subject never matches.
    """
    if not normalize_subject(subject):
        return None
    for ticket in candidates:
        score = subject_similarity(subject, ticket.subject)
        if score >= threshold:
            return ticket, score
    return None
