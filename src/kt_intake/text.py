"""
KT Intake Text Utilities

Pure string helpers shared by the migration engine and hypothesis synthesis:
whitespace and punctuation normalization, tolerant scalar coercion, preview
truncation, and the grammar sniffing used to pick sentence connectors.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Protocol


HYPOTHESIS_HARD_MIN = 3
HYPOTHESIS_PREVIEW_LIMIT = 240
ELLIPSIS = "…"

TRAILING_PUNCTUATION_PATTERN = re.compile(r"\s*[.,;:!?]+$")
WHITESPACE_PATTERN = re.compile(r"\s+")
LEADING_CONJUNCTION_PATTERN = re.compile(r"^(?:and\b|&)\s*", re.IGNORECASE)
COPULA_PATTERN = re.compile(r"^(?:is|are|was|were)\b", re.IGNORECASE)
PLURAL_JOINER_PATTERN = re.compile(r"\band\b|&", re.IGNORECASE)

TRUE_STRINGS = frozenset({"true", "1", "yes", "y"})
FALSE_STRINGS = frozenset({"false", "0", "no", "n"})

VERB_STARTERS = frozenset({"is", "are", "was", "were", "has", "have"})

# Domain verbs seen in incident write-ups, plus generic verb shapes
VERB_PATTERNS = (
    re.compile(
        r"\b(?:using|use|used|changed|change|changing|set|setting|sets|causing|cause|caused|"
        r"failing|failed|not\s+following|not\s+replacing|not\s+cleaning|missing|skipping|"
        r"ignoring|drifting|overheating|leaking|contaminating)\b"
    ),
    re.compile(r"\b[a-z]+ing\b"),
    re.compile(r"\b[a-z]+ed\b"),
    re.compile(r"\b(?:is|are|was|were)\s+[a-z]+ing\b"),
    re.compile(r"\bto\s+[a-z]+\b"),
)


def to_string(value: Any) -> str:
    """Coerce a persisted scalar to a string.

    Strings pass through; numbers and booleans are stringified the way a
    browser would (``1.0`` becomes ``"1"``, ``True`` becomes ``"true"``).
    Anything else becomes an empty string.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    return ""


def to_boolean(value: Any) -> bool:
    """Parse a tolerant boolean.

    Accepts "true"/"1"/"yes"/"y" and their negations (any case); other values
    fall back to truthiness, with containers counted as truthy.
    """
    if isinstance(value, str):
        normalized = value.strip().lower()
        if not normalized:
            return False
        if normalized in TRUE_STRINGS:
            return True
        if normalized in FALSE_STRINGS:
            return False
        return True
    if value is None:
        return False
    if isinstance(value, (bool, int)):
        return bool(value)
    if isinstance(value, float):
        return not math.isnan(value) and value != 0
    return True


def collapse_whitespace(value: str) -> str:
    """Trim and collapse internal runs of whitespace to single spaces."""
    if not isinstance(value, str):
        return ""
    return WHITESPACE_PATTERN.sub(" ", value.strip())


def normalize_hypothesis_value(value: Any) -> str:
    """Normalize a hypothesis field as committed on blur.

    Trims, collapses whitespace and strips trailing punctuation while
    preserving casing.
    """
    collapsed = collapse_whitespace(value) if isinstance(value, str) else ""
    if not collapsed:
        return ""
    return TRAILING_PUNCTUATION_PATTERN.sub("", collapsed).strip()


def meets_hard_minimum(value: Any) -> bool:
    return len(normalize_hypothesis_value(value)) >= HYPOTHESIS_HARD_MIN


def first_word(text: str) -> str:
    parts = text.strip().split()
    return parts[0] if parts else ""


def lowercase_first(text: str) -> str:
    """Lowercase the first letter unless the first word reads as an acronym."""
    if not text:
        return text
    word = first_word(text)
    if len(word) > 1 and word[:2].isupper():
        return text
    return text[0].lower() + text[1:]


def strip_leading_conjunction(text: str) -> str:
    if not text:
        return ""
    return LEADING_CONJUNCTION_PATTERN.sub("", text)


def truncate_for_preview(value: Any, limit: int = HYPOTHESIS_PREVIEW_LIMIT) -> str:
    """Clip text to ``limit`` characters, ending with an ellipsis when clipped."""
    if not isinstance(value, str):
        return ""
    if len(value) <= limit:
        return value
    return value[:limit].rstrip() + ELLIPSIS


def looks_plural(text: str) -> bool:
    """Guess whether a suspect names more than one thing."""
    if not text:
        return False
    if PLURAL_JOINER_PATTERN.search(text):
        return True
    words = text.split()
    last = re.sub(r"[^a-z]", "", words[-1].lower()) if words else ""
    return last.endswith("s")


def starts_with_copula(text: str) -> bool:
    return bool(COPULA_PATTERN.match(text.strip())) if isinstance(text, str) else False


def is_gerund_first_word(text: str) -> bool:
    return first_word(text).lower().endswith("ing") if isinstance(text, str) else False


def leads_with_verb(text: str) -> bool:
    """True when text opens with an auxiliary (is/are/has/...) or a "to" infinitive."""
    if not isinstance(text, str):
        return False
    lowered = text.strip().lower()
    if not lowered:
        return False
    return first_word(lowered) in VERB_STARTERS or lowered.startswith("to ")


def has_verb_candidate(text: str) -> bool:
    """Detect a verb-like token anywhere in the text."""
    if not isinstance(text, str) or not text.strip():
        return False
    lowered = text.strip().lower()
    return any(pattern.search(lowered) for pattern in VERB_PATTERNS)


@dataclass(frozen=True)
class GrammarTraits:
    """What the sentence assembler needs to know about a fragment."""
    is_gerund: bool = False
    is_copula: bool = False
    has_verb: bool = False
    leads_with_verb: bool = False


class GrammarClassifier(Protocol):
    """Strategy used by hypothesis synthesis to sniff fragment grammar."""

    def classify(self, text: str) -> GrammarTraits:
        ...


class HeuristicClassifier:
    """Regex heuristics over the first word and a curated verb list.

    Misclassifies edge cases by nature; swap in another classifier where
    that matters.
    """

    def classify(self, text: str) -> GrammarTraits:
        return GrammarTraits(
            is_gerund=is_gerund_first_word(text),
            is_copula=starts_with_copula(text),
            has_verb=has_verb_candidate(text),
            leads_with_verb=leads_with_verb(text),
        )


DEFAULT_CLASSIFIER = HeuristicClassifier()
