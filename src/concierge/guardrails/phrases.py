"""Replaceable text heuristics for disagreement and self-resolution.

Both heuristics are phrase lists and will under- or over-trigger on real
text. They are exposed as plain ``Callable[[str], bool]`` predicates so
callers and tests can swap them for something better without touching
the guardrail or orchestration code.
"""

from typing import Callable, Iterable, List, Tuple


TextPredicate = Callable[[str], bool]


DEFAULT_DISAGREEMENT_PHRASES: Tuple[str, ...] = (
    "doesn't apply",
    "dont apply",
    "does not apply",
    "do not apply",
    "already tried",
    "already did",
    "already done",
    "didn't work",
    "did not work",
    "doesn't work",
    "does not work",
    "still broken",
    "still failing",
    "still see",
    "still getting",
    "not working",
    "not relevant",
    "not applicable",
    "different error",
    "different issue",
    "different problem",
    "need clarification",
    "not sure how",
    "unclear how",
    "not my case",
    "not my situation",
    "doesn't match",
    "disagree",
    "disagrees",
    "disagreed",
    "disagreement",
)

DEFAULT_SELF_RESOLUTION_PHRASES: Tuple[str, ...] = (
    "fixed it",
    "i fixed",
    "that fixed",
    "this fixed",
    "that worked",
    "this worked",
    "works now",
    "working now",
    "resolved it",
    "i resolved",
    "solved it",
    "figured it out",
    "found the fix",
    "found the solution",
    "found the problem",
    "never mind",
    "nevermind",
    "no longer an issue",
    "you can close",
    "can be closed",
)


def _normalize(text: str) -> str:
    text = text.lower().replace("’", "'").replace("‘", "'")
    return " ".join(text.split())


class PhraseMatcher:
    """Case-insensitive phrase predicate.

    A text matches when it contains any of ``phrases`` and none of
    ``exclusions``. Curly apostrophes and runs of whitespace are
    normalized before matching.

    Example:
        >>> matcher = PhraseMatcher(["works now"], exclusions=["not working"])
        >>> matcher("Thanks, it works now!")
        True
    """

    def __init__(self, phrases: Iterable[str], exclusions: Iterable[str] = ()):
        self.phrases = tuple(_normalize(p) for p in phrases if p and p.strip())
        self.exclusions = tuple(_normalize(p) for p in exclusions if p and p.strip())

    def matches(self, text: str) -> List[str]:
        """Return the phrases found in text (empty when excluded)."""
        if not text:
            return []
        normalized = _normalize(text)
        if any(excluded in normalized for excluded in self.exclusions):
            return []
        return [phrase for phrase in self.phrases if phrase in normalized]

    def __call__(self, text: str) -> bool:
        return bool(self.matches(text))


def default_disagreement_predicate() -> TextPredicate:
    """Predicate detecting that the user rejects the bot's last conclusion."""
    return PhraseMatcher(DEFAULT_DISAGREEMENT_PHRASES)


def default_self_resolution_predicate() -> TextPredicate:
    """Predicate detecting that the user already found or applied a fix.

    Texts that also read as disagreement ("still not working now") are
    excluded.
    """
    return PhraseMatcher(
        DEFAULT_SELF_RESOLUTION_PHRASES,
        exclusions=DEFAULT_DISAGREEMENT_PHRASES,
    )
