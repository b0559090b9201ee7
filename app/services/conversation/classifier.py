"""Keyword classification of inbound customer text.

Pure functions over two configured keyword sets. No I/O, no state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.core.config import settings


class Signal(str, Enum):
    AFFIRMATIVE = "affirmative"
    RECEIVED = "received"
    INVALID = "invalid"
    OTHER = "other"


@dataclass(frozen=True)
class ConversationVocabulary:
    """Keyword sets the classifier matches against.

    `received` entries are stored already stripped of non-alphanumerics so
    "recibí" and "recibí!!" compare equal.
    """

    affirmative: frozenset[str]
    received: frozenset[str]
    reaction_sentinel: str

    @classmethod
    def build(
        cls,
        affirmative: list[str] | frozenset[str],
        received: list[str] | frozenset[str],
        reaction_sentinel: str,
    ) -> "ConversationVocabulary":
        return cls(
            affirmative=frozenset(normalize_text(w) for w in affirmative),
            received=frozenset(strip_non_alphanumeric(normalize_text(w)) for w in received),
            reaction_sentinel=reaction_sentinel,
        )

    @classmethod
    def from_settings(cls) -> "ConversationVocabulary":
        return cls.build(
            settings.affirmative_keywords,
            settings.received_keywords,
            settings.reaction_sentinel,
        )


def normalize_text(raw: str | None) -> str:
    """Lowercase and trim."""
    return (raw or "").strip().lower()


def strip_non_alphanumeric(text: str) -> str:
    # str.isalnum is Unicode-aware, so accented letters survive.
    return "".join(ch for ch in text if ch.isalnum())


def classify(text: str, vocabulary: ConversationVocabulary) -> frozenset[Signal]:
    """Classify already-normalized text.

    Returns every signal that applies: a bare "ok" is both affirmative and
    received. Empty text is always {INVALID}; the reaction sentinel is always
    {AFFIRMATIVE, RECEIVED}.
    """
    if not text:
        return frozenset({Signal.INVALID})
    if text == vocabulary.reaction_sentinel:
        return frozenset({Signal.AFFIRMATIVE, Signal.RECEIVED})

    signals = set()
    if text in vocabulary.affirmative:
        signals.add(Signal.AFFIRMATIVE)
    if strip_non_alphanumeric(text) in vocabulary.received:
        signals.add(Signal.RECEIVED)
    return frozenset(signals or {Signal.OTHER})
