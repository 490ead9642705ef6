"""
KT Intake Cause Decisions

Derived cause state, status labels, and the ``CauseBoard`` context object that
owns the causes list, the Likely Cause designation and the cached action
counts for one session.

State is computed on demand from field values, never stored:

    draft                suspect or accusation below the hard minimum
    pending              no decision, or the decision lacks its required text
    explained            explains + both IS and IS NOT explanations
    conditional          conditional + assumption + full test plan
    conditional-pending  conditional + assumption, test plan incomplete
    failed               does not explain
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from kt_intake.causes import create_empty_cause, deserialize_causes, normalize_decision, normalize_next_test
from kt_intake.evidence import EvidenceRow, StaticWorksheet, Worksheet, eligible_rows
from kt_intake.exceptions import ValidationError
from kt_intake.hypothesis import decision_summary, evidence_prompt, hypothesis_sentence, summarize
from kt_intake.notify import NullNotifier, Notifier
from kt_intake.schema import Cause, CauseState, Decision, NextTest
from kt_intake.text import meets_hard_minimum, normalize_hypothesis_value, to_boolean, to_string

logger = logging.getLogger(__name__)


STATUS_LABELS = {
    CauseState.DRAFT: "Draft hypothesis",
    CauseState.PENDING: "Awaiting decision",
    CauseState.EXPLAINED: "Explains the evidence",
    CauseState.CONDITIONAL: "Explains only if, test planned",
    CauseState.CONDITIONAL_PENDING: "Explains only if, test plan incomplete",
    CauseState.FAILED: "Does not explain",
}
EDITING_LABEL = "Editing hypothesis"

LIKELY_CAUSE_SET = "Likely Cause set to: {label}."
LIKELY_CAUSE_CLEARED = "Likely Cause cleared."
LIKELY_CAUSE_RULED_OUT = "Previous Likely Cause was ruled out and has been cleared."
NO_CAUSES_SUMMARY = "No possible causes captured."

HYPOTHESIS_FIELDS = ("suspect", "accusation", "impact")
DECISION_TEXT_FIELDS = ("explanation_is", "explanation_is_not", "assumptions")
FLAG_FIELDS = ("editing", "testing_open")
EDITABLE_FIELDS = HYPOTHESIS_FIELDS + DECISION_TEXT_FIELDS + FLAG_FIELDS + ("decision", "next_test")


def has_complete_hypothesis(cause: Cause) -> bool:
    return meets_hard_minimum(cause.suspect) and meets_hard_minimum(cause.accusation)


def has_complete_test_plan(test: NextTest) -> bool:
    return all(value.strip() for value in (test.text, test.owner, test.eta))


def compute_state(cause: Cause) -> CauseState:
    """Derive the decision state of a cause from its current fields."""
    if not has_complete_hypothesis(cause):
        return CauseState.DRAFT

    decision = normalize_decision(cause.decision)
    if decision == Decision.DOES_NOT_EXPLAIN.value:
        return CauseState.FAILED
    if decision == Decision.EXPLAINS.value:
        if cause.explanation_is.strip() and cause.explanation_is_not.strip():
            return CauseState.EXPLAINED
        return CauseState.PENDING
    if decision == Decision.CONDITIONAL.value:
        if not cause.assumptions.strip():
            return CauseState.PENDING
        if has_complete_test_plan(cause.next_test):
            return CauseState.CONDITIONAL
        return CauseState.CONDITIONAL_PENDING
    return CauseState.PENDING


def status_label(cause: Cause) -> str:
    if cause.editing:
        return EDITING_LABEL
    return STATUS_LABELS[compute_state(cause)]


def count_assumptions(cause: Cause) -> int:
    """Badge count: 1 for a conditional cause carrying an assumption, else 0."""
    state = compute_state(cause)
    if state in (CauseState.CONDITIONAL, CauseState.CONDITIONAL_PENDING) and cause.assumptions.strip():
        return 1
    return 0


def format_action_count(count: int) -> str:
    if count <= 0:
        return "No actions yet"
    if count == 1:
        return "1 action assigned"
    return f"{count} actions assigned"


def build_cause_action_counts(actions: Iterable[Any]) -> Dict[str, int]:
    """Count actions per linked cause (``links.hypothesisId``)."""
    counts: Dict[str, int] = {}
    for action in actions or []:
        if not isinstance(action, Mapping):
            continue
        links = action.get("links")
        cause_id = links.get("hypothesisId") if isinstance(links, Mapping) else None
        cause_id = cause_id.strip() if isinstance(cause_id, str) else ""
        if cause_id:
            counts[cause_id] = counts.get(cause_id, 0) + 1
    return counts


def normalize_instant(value: Any) -> str:
    """Render a parseable date/time as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (UTC).

    Naive values are read as UTC. Unparseable text comes back trimmed.
    """
    text = to_string(value).strip()
    if not text:
        return ""
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return text
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"


class CauseBoard:
    """
    The possible-causes list for one intake session.

    Holds the causes, the single Likely Cause designation and the cached
    per-cause action counts. All mutation goes through these methods so the
    at-most-one Likely Cause invariant holds after every edit.
    """

    def __init__(
        self,
        causes: Optional[Iterable[Any]] = None,
        likely_cause_id: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        worksheet: Optional[Worksheet] = None,
    ):
        self.causes: List[Cause] = deserialize_causes(list(causes or []))
        self.notifier = notifier or NullNotifier()
        self.worksheet = worksheet or StaticWorksheet()
        self._likely_cause_id: Optional[str] = None
        self._action_counts: Dict[str, int] = {}

        held = self.get(likely_cause_id) if likely_cause_id else None
        if held is not None and normalize_decision(held.decision) == Decision.DOES_NOT_EXPLAIN.value:
            logger.debug("Ignoring Likely Cause %s: cause was ruled out", likely_cause_id)
        else:
            self._likely_cause_id = likely_cause_id or None

    # -------------------------------------------------------------------------
    # Causes
    # -------------------------------------------------------------------------

    def get(self, cause_id: Optional[str]) -> Optional[Cause]:
        for cause in self.causes:
            if cause.id == cause_id:
                return cause
        return None

    def index_of(self, cause_id: str) -> int:
        for index, cause in enumerate(self.causes):
            if cause.id == cause_id:
                return index
        return -1

    def add_cause(self) -> Cause:
        cause = create_empty_cause()
        self.causes.append(cause)
        return cause

    def remove_cause(self, cause_id: str) -> bool:
        index = self.index_of(cause_id)
        if index < 0:
            return False
        del self.causes[index]
        self._action_counts.pop(cause_id, None)
        if self._likely_cause_id == cause_id:
            self._likely_cause_id = None
            self.notifier.notify(LIKELY_CAUSE_CLEARED)
        return True

    def update_cause(self, cause_id: str, **fields: Any) -> Optional[Cause]:
        """Commit field edits to a cause.

        Hypothesis text is normalized as on blur; decision text is trimmed;
        ``next_test`` may be a partial mapping and is merged. The summary text
        is regenerated after hypothesis edits.

        Raises:
            ValidationError: If a field name is not editable
        """
        cause = self.get(cause_id)
        if cause is None:
            return None
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Cannot edit cause field: {', '.join(unknown)}",
                field=unknown[0],
                expected_format=", ".join(EDITABLE_FIELDS),
            )

        for name in HYPOTHESIS_FIELDS:
            if name in fields:
                setattr(cause, name, normalize_hypothesis_value(to_string(fields[name])))
        for name in DECISION_TEXT_FIELDS:
            if name in fields:
                setattr(cause, name, to_string(fields[name]).strip())
        for name in FLAG_FIELDS:
            if name in fields:
                setattr(cause, name, to_boolean(fields[name]))
        if "decision" in fields:
            cause.decision = normalize_decision(fields["decision"])
        if "next_test" in fields:
            cause.next_test = self._merge_next_test(cause.next_test, fields["next_test"])

        if any(name in fields for name in HYPOTHESIS_FIELDS):
            cause.summary_text = summarize(cause) if has_complete_hypothesis(cause) else ""

        if (
            self._likely_cause_id == cause.id
            and normalize_decision(cause.decision) == Decision.DOES_NOT_EXPLAIN.value
        ):
            self._likely_cause_id = None
            self.notifier.notify(LIKELY_CAUSE_RULED_OUT)
        return cause

    @staticmethod
    def _merge_next_test(current: NextTest, update: Any) -> NextTest:
        if isinstance(update, Mapping):
            merged = current.model_dump()
            merged.update({key: to_string(value).strip() for key, value in update.items() if key in merged})
        else:
            merged = normalize_next_test(update).model_dump()
        merged["eta"] = normalize_instant(merged.get("eta"))
        return NextTest(**merged)

    def state_of(self, cause_id: str) -> Optional[CauseState]:
        cause = self.get(cause_id)
        return compute_state(cause) if cause else None

    def display_label(self, cause: Cause) -> str:
        """Suspect, else accusation, else ``Possible Cause N``."""
        suspect = normalize_hypothesis_value(cause.suspect)
        if suspect:
            return suspect
        accusation = normalize_hypothesis_value(cause.accusation)
        if accusation:
            return accusation
        index = self.index_of(cause.id)
        return f"Possible Cause {index + 1 if index >= 0 else len(self.causes) + 1}"

    # -------------------------------------------------------------------------
    # Likely Cause
    # -------------------------------------------------------------------------

    @property
    def likely_cause_id(self) -> Optional[str]:
        return self._likely_cause_id

    def likely_cause(self) -> Optional[Cause]:
        """The designated cause, or None when unset, missing or ruled out."""
        cause = self.get(self._likely_cause_id) if self._likely_cause_id else None
        if cause is not None and normalize_decision(cause.decision) == Decision.DOES_NOT_EXPLAIN.value:
            return None
        return cause

    def set_likely_cause(self, cause_id: Optional[str]) -> bool:
        """Designate (or clear, with None) the Likely Cause.

        Returns:
            True when the designation changed. Re-selecting the current cause,
            an unknown id, or a failed cause leaves it unchanged.
        """
        cause_id = cause_id or None
        if cause_id == self._likely_cause_id:
            return False
        if cause_id is None:
            self._likely_cause_id = None
            self.notifier.notify(LIKELY_CAUSE_CLEARED)
            return True
        cause = self.get(cause_id)
        if cause is None or normalize_decision(cause.decision) == Decision.DOES_NOT_EXPLAIN.value:
            return False
        self._likely_cause_id = cause_id
        self.notifier.notify(LIKELY_CAUSE_SET.format(label=self.display_label(cause)))
        return True

    # -------------------------------------------------------------------------
    # Evidence
    # -------------------------------------------------------------------------

    def evidence_eligible_rows(self) -> List[EvidenceRow]:
        return eligible_rows(self.worksheet)

    def evidence_prompts(self, cause: Cause) -> List[str]:
        return [evidence_prompt(cause, row) for row in self.evidence_eligible_rows()]

    # -------------------------------------------------------------------------
    # Action counts
    # -------------------------------------------------------------------------

    def refresh_action_counts(self, actions: Iterable[Any]) -> Dict[str, int]:
        self._action_counts = build_cause_action_counts(actions)
        return dict(self._action_counts)

    def action_count(self, cause_id: str) -> int:
        return self._action_counts.get(cause_id, 0)

    # -------------------------------------------------------------------------
    # Report
    # -------------------------------------------------------------------------

    def summary_report(self) -> str:
        """Plain-text digest of every cause, for pasting into an update."""
        if not self.causes:
            return NO_CAUSES_SUMMARY
        blocks = []
        for index, cause in enumerate(self.causes, start=1):
            lines = [f"• Possible Cause {index}: {hypothesis_sentence(cause)}"]
            if cause.id == self.likely_cause_id:
                lines[0] += " (Likely Cause)"
            lines.append(f"  Status: {status_label(cause)}")
            if normalize_decision(cause.decision):
                lines.append(f"  Decision: {decision_summary(cause)}")
            assumptions = count_assumptions(cause)
            if assumptions:
                lines.append(f"  Assumptions noted: {assumptions}")
            count = self.action_count(cause.id)
            if count:
                lines.append(f"  Actions: {format_action_count(count)}")
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)
