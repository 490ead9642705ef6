"""
KT Intake Cause Records

Normalizes persisted possible-cause records into ``Cause`` models and back.
Every field is defaulted; nothing is left missing.
"""

import secrets
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from kt_intake.schema import Cause, Decision, NextTest
from kt_intake.text import to_boolean, to_string


DECISION_ALIASES = {
    "explains": Decision.EXPLAINS,
    "yes": Decision.EXPLAINS,
    "conditional": Decision.CONDITIONAL,
    "explains_if": Decision.CONDITIONAL,
    "assumption": Decision.CONDITIONAL,
    "does_not_explain": Decision.DOES_NOT_EXPLAIN,
    "fail": Decision.DOES_NOT_EXPLAIN,
    "fails": Decision.DOES_NOT_EXPLAIN,
    "no": Decision.DOES_NOT_EXPLAIN,
}


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_cause_id() -> str:
    """Generate an id shaped like the browser tool's: ``cause-<rand>-<time>``."""
    random_part = "".join(secrets.choice("0123456789abcdefghijklmnopqrstuvwxyz") for _ in range(6))
    return f"cause-{random_part}-{_base36(int(time.time() * 1000))}"


def create_empty_cause() -> Cause:
    """Return a fresh cause with blank decision fields, open for editing."""
    return Cause(id=generate_cause_id(), editing=True)


def normalize_decision(value: Any) -> str:
    """Map a stored decision (or a legacy alias) to a current value, else ''."""
    if isinstance(value, Decision):
        return value.value
    if not isinstance(value, str):
        return Decision.NONE.value
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    decision = DECISION_ALIASES.get(key)
    return decision.value if decision else Decision.NONE.value


def _first_present(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def normalize_next_test(value: Any) -> NextTest:
    if isinstance(value, NextTest):
        return value.model_copy()
    if isinstance(value, str):
        return NextTest(text=value)
    if isinstance(value, Mapping):
        return NextTest(
            text=to_string(value.get("text")),
            owner=to_string(value.get("owner")),
            eta=to_string(_first_present(value, "eta", "dueAt", "due")),
        )
    return NextTest()


def normalize_cause(record: Mapping[str, Any]) -> Cause:
    """Build a ``Cause`` from a loosely-shaped record, accepting legacy keys."""
    cause_id = to_string(record.get("id")).strip()
    return Cause(
        id=cause_id or generate_cause_id(),
        suspect=to_string(record.get("suspect")),
        accusation=to_string(record.get("accusation")),
        impact=to_string(record.get("impact")),
        summary_text=to_string(
            _first_present(record, "summaryText", "summary_text", "hypothesis", "summary")
        ),
        decision=normalize_decision(record.get("decision")),
        explanation_is=to_string(_first_present(record, "explanation_is", "explanationIs")),
        explanation_is_not=to_string(
            _first_present(record, "explanation_is_not", "explanationIsNot", "explanationNot")
        ),
        assumptions=to_string(_first_present(record, "assumptions", "assumption")),
        next_test=normalize_next_test(_first_present(record, "next_test", "nextTest")),
        editing=to_boolean(record.get("editing")),
        testing_open=to_boolean(_first_present(record, "testingOpen", "testing_open")),
    )


def deserialize_causes(serialized: Any) -> List[Cause]:
    """Turn a persisted causes array into ``Cause`` models.

    Non-object entries are dropped; records without an id get a generated one.
    A repeated id is replaced on the later record so the first keeps its links.
    """
    if not isinstance(serialized, list):
        return []
    causes = []
    seen = set()
    for raw in serialized:
        if isinstance(raw, Cause):
            cause = raw.model_copy(deep=True)
        elif isinstance(raw, Mapping):
            cause = normalize_cause(raw)
        else:
            continue
        while cause.id in seen:
            cause.id = generate_cause_id()
        seen.add(cause.id)
        causes.append(cause)
    return causes


def serialize_causes(causes: Optional[Iterable[Union[Cause, Mapping[str, Any]]]]) -> List[Dict[str, Any]]:
    """Turn causes (models or loose records) into persisted JSON objects."""
    if causes is None:
        return []
    return [
        cause.model_dump(by_alias=True, mode="json")
        for cause in deserialize_causes(list(causes))
    ]
