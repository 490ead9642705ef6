"""
KT Intake Hypothesis Synthesis

Composes readable hypothesis sentences from a cause's suspect, accusation and
impact, plus the decision summary used in action details and the prompts
that tie a cause to each evidence row.

Every function here is pure: same inputs, same string, no mutation.

Sentence 1 connector, picked from the accusation's grammar:
    copula led      "We suspect Pump 7 is leaking."   (is/are agreement)
    gerund led      "We suspect Pump 7 because they are leaking."
    verb-like       "We suspect API gateway because it fails to retry requests."
    anything else   "We suspect Payment service that is experiencing timeouts."

Sentence 2 (only for a meaningful impact):
    gerund led      "This results in ..."
    verb led        "This could lead them to ..."
    anything else   "This could lead to ..."
"""

import re
from typing import Any, Mapping, Optional

from kt_intake.causes import normalize_decision
from kt_intake.evidence import EvidenceRow, substitute_evidence_tokens
from kt_intake.schema import Cause, Decision, NextTest
from kt_intake.text import (
    DEFAULT_CLASSIFIER,
    HYPOTHESIS_HARD_MIN,
    GrammarClassifier,
    collapse_whitespace,
    first_word,
    looks_plural,
    lowercase_first,
    normalize_hypothesis_value,
    strip_leading_conjunction,
    to_string,
    truncate_for_preview,
)


EMPTY_HYPOTHESIS_PLACEHOLDER = "Add suspect, accusation, and impact to craft a strong hypothesis."
INCOMPLETE_HYPOTHESIS_PLACEHOLDER = "Add suspect and accusation to generate a preview."

FILLER_IMPACTS = frozenset({"n/a", "na", "none", "unknown", "tbd", "tba", "?", "-"})

NO_DECISION_SUMMARY = "No decision recorded yet."
DOES_NOT_EXPLAIN_SUMMARY = "It does not explain the evidence."

PROMPT_SUSPECT_FALLBACK = "this cause"
PROMPT_QUESTION_FALLBACK = "this KT row"

LEADING_BECAUSE_PATTERN = re.compile(r"^because\b\s*", re.IGNORECASE)
LEADING_TO_PATTERN = re.compile(r"^to\s+", re.IGNORECASE)
COPULA_SPLIT_PATTERN = re.compile(r"^(?:(?:it|they)\s+)?(is|are|was|were)\b\s*(.*)$", re.IGNORECASE)
TRAILING_QUESTION_PATTERN = re.compile(r"[?]+$")


def _field(cause: Any, name: str) -> Any:
    if isinstance(cause, Cause):
        return getattr(cause, name, None)
    if isinstance(cause, Mapping):
        return cause.get(name)
    return None


def _next_test(cause: Any) -> NextTest:
    value = _field(cause, "next_test")
    if isinstance(value, NextTest):
        return value
    if isinstance(value, Mapping):
        return NextTest(
            text=to_string(value.get("text")),
            owner=to_string(value.get("owner")),
            eta=to_string(value.get("eta")),
        )
    return NextTest()


def _clip(text: str, preview: bool) -> str:
    return truncate_for_preview(text) if preview else text


def select_copula(copula: str, plural: bool) -> str:
    """Pick is/are/was/were for the subject, keeping the tense."""
    past = copula.lower() in ("was", "were")
    if plural:
        return "were" if past else "are"
    return "was" if past else "is"


def agree_copula_clause(clause: str, plural: bool) -> str:
    """Rewrite a copula-led clause so its copula agrees with the subject."""
    match = COPULA_SPLIT_PATTERN.match(clause.strip())
    if not match:
        return clause.strip()
    copula, remainder = match.group(1), match.group(2).strip()
    adjusted = select_copula(copula, plural)
    return f"{adjusted} {remainder}" if remainder else adjusted


def is_meaningful_impact(text: Any) -> bool:
    normalized = normalize_hypothesis_value(text)
    if not normalized:
        return False
    return len(normalized) >= HYPOTHESIS_HARD_MIN and normalized.lower() not in FILLER_IMPACTS


def _normalize_impact(text: Any) -> str:
    collapsed = collapse_whitespace(text) if isinstance(text, str) else ""
    return normalize_hypothesis_value(strip_leading_conjunction(collapsed).strip())


def _accusation_sentence(
    suspect: str,
    accusation: str,
    preview: bool,
    classifier: GrammarClassifier,
) -> str:
    traits = classifier.classify(accusation)
    subject = _clip(suspect, preview)
    plural = looks_plural(suspect)

    if traits.is_copula:
        clause = agree_copula_clause(lowercase_first(accusation), plural)
        return f"We suspect {subject} {_clip(clause, preview)}."
    if LEADING_TO_PATTERN.match(accusation):
        # "to fail under load" reads as an infinitive, not a clause
        copula = select_copula("is", plural)
        return f"We suspect {subject} {copula} likely {_clip(lowercase_first(accusation), preview)}."
    if traits.is_gerund:
        connector = "because they are"
    elif traits.has_verb or traits.leads_with_verb:
        connector = "because they" if plural else "because it"
    else:
        connector = "that is experiencing"
    return f"We suspect {subject} {connector} {_clip(lowercase_first(accusation), preview)}."


def _impact_sentence(impact: str, preview: bool, classifier: GrammarClassifier) -> str:
    traits = classifier.classify(impact)
    if traits.is_gerund:
        return f"This results in {_clip(lowercase_first(impact), preview)}."
    if traits.leads_with_verb:
        phrase = LEADING_TO_PATTERN.sub("", lowercase_first(impact))
        return f"This could lead them to {_clip(phrase, preview)}."
    return f"This could lead to {_clip(impact, preview)}."


def summarize(
    cause: Any,
    preview: bool = False,
    classifier: GrammarClassifier = DEFAULT_CLASSIFIER,
) -> str:
    """Compose the hypothesis sentence(s) for a cause.

    Args:
        cause: ``Cause`` or mapping with ``suspect``, ``accusation``, ``impact``
        preview: Clip each substituted fragment to the preview budget
        classifier: Grammar strategy used to pick connectors

    Returns:
        One or two sentences, or a placeholder when the hypothesis is
        incomplete; never an empty string
    """
    suspect = normalize_hypothesis_value(to_string(_field(cause, "suspect")))
    accusation = normalize_hypothesis_value(to_string(_field(cause, "accusation")))
    impact = _normalize_impact(to_string(_field(cause, "impact")))

    if not suspect and not accusation and not impact:
        return EMPTY_HYPOTHESIS_PLACEHOLDER
    if not suspect or not accusation:
        return INCOMPLETE_HYPOTHESIS_PLACEHOLDER

    sentences = [_accusation_sentence(suspect, accusation, preview, classifier)]
    if is_meaningful_impact(impact):
        sentences.append(_impact_sentence(impact, preview, classifier))
    return " ".join(sentences)


def hypothesis_sentence(cause: Any, classifier: GrammarClassifier = DEFAULT_CLASSIFIER) -> str:
    """Stored summary text when present, else a freshly synthesized sentence."""
    stored = to_string(_field(cause, "summary_text")) or to_string(_field(cause, "summaryText"))
    if stored.strip():
        return stored.strip()
    return summarize(cause, classifier=classifier)


def _explanation(text: Any) -> str:
    cleaned = normalize_hypothesis_value(to_string(text))
    return LEADING_BECAUSE_PATTERN.sub("", cleaned).strip()


def _next_test_sentence(test: NextTest, preview: bool) -> str:
    text = normalize_hypothesis_value(test.text)
    owner = test.owner.strip()
    eta = test.eta.strip()
    if not (text or owner or eta):
        return ""
    sentence = f"Next test: {_clip(text, preview)}" if text else "Next test"
    if owner:
        sentence += f", owned by {_clip(owner, preview)}"
    if eta:
        sentence += f", due {eta}"
    return sentence + "."


def decision_summary(cause: Any, row: Optional[EvidenceRow] = None, preview: bool = False) -> str:
    """Describe the recorded decision in one or two sentences.

    ``<is>`` / ``<is not>`` tokens in the decision fields are replaced with
    the text of ``row`` (or the column names when no row is given).
    """
    is_text = row.is_text if row else None
    is_not_text = row.is_not_text if row else None

    def fill(value: Any) -> str:
        return _clip(substitute_evidence_tokens(_explanation(value), is_text, is_not_text), preview)

    decision = normalize_decision(_field(cause, "decision"))

    if decision == Decision.EXPLAINS.value:
        explain_is = fill(_field(cause, "explanation_is"))
        explain_not = fill(_field(cause, "explanation_is_not"))
        if explain_is and explain_not:
            return (
                f"It explains the IS evidence because {explain_is} "
                f"and the IS NOT evidence because {explain_not}."
            )
        if explain_is:
            return f"It explains the IS evidence because {explain_is}."
        if explain_not:
            return f"It explains the IS NOT evidence because {explain_not}."
        return "It explains the evidence."

    if decision == Decision.CONDITIONAL.value:
        assumptions = fill(_field(cause, "assumptions"))
        head = (
            f"It explains the evidence only if {lowercase_first(assumptions)}."
            if assumptions
            else "It explains the evidence only if its assumptions hold."
        )
        test_sentence = _next_test_sentence(_next_test(cause), preview)
        return f"{head} {test_sentence}" if test_sentence else head

    if decision == Decision.DOES_NOT_EXPLAIN.value:
        return DOES_NOT_EXPLAIN_SUMMARY

    return NO_DECISION_SUMMARY


def _prompt_clause(accusation: str, plural: bool, classifier: GrammarClassifier) -> str:
    if not accusation:
        return "are causing the deviation" if plural else "is causing the deviation"
    traits = classifier.classify(accusation)
    lowered = lowercase_first(accusation)
    if traits.is_copula:
        return agree_copula_clause(lowered, plural)
    if first_word(accusation).lower() in ("has", "have"):
        return lowered
    return f"{select_copula('is', plural)} {lowered}"


def evidence_prompt(
    cause: Any,
    row: Optional[EvidenceRow],
    classifier: GrammarClassifier = DEFAULT_CLASSIFIER,
) -> str:
    """Question tying a cause to one evidence row.

    >>> evidence_prompt({"suspect": "Pump 7", "accusation": "is leaking"},
    ...                 EvidenceRow("What is the deviation?", "leak", "no leak"))
    'If Pump 7 is leaking, how does it explain What is the deviation?'
    """
    suspect = normalize_hypothesis_value(to_string(_field(cause, "suspect"))) or PROMPT_SUSPECT_FALLBACK
    accusation = normalize_hypothesis_value(to_string(_field(cause, "accusation")))
    clause = _prompt_clause(accusation, looks_plural(suspect), classifier)
    question = row.question.strip() if row else ""
    question = TRAILING_QUESTION_PATTERN.sub("", question).strip() or PROMPT_QUESTION_FALLBACK
    return f"If {suspect} {clause}, how does it explain {question}?"
