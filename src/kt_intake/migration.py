"""
KT Intake Snapshot Migration

Turns any JSON-decodable payload (current, legacy, or garbage) into the current
``Snapshot`` shape.

Pipeline:
    1. Resolve ``meta.version`` (numeric strings parsed, default 0)
    2. Walk the migration registry one version at a time until no entry
       applies; a visited set stops migrations that fail to advance
    3. Run the structural normalization pass, always, whatever the version

Version history:
    0 -> 1  root-level comms fields folded into ``ops``, ``possibleCauses``
            renamed to ``causes``, containment key renamed
    1 -> 2  per-row cause "findings" folded into the single-decision model

Guarantees: normalization is idempotent, and nothing raises past
``migrate_app_state``; malformed fields degrade to defaults one by one.
"""

import copy
import logging
import math
import re
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from kt_intake.causes import deserialize_causes, normalize_decision
from kt_intake.schema import (
    APP_STATE_VERSION,
    ActionsState,
    ContainStatus,
    Decision,
    Impact,
    Meta,
    Ops,
    Pre,
    Snapshot,
    StepItem,
    StepsState,
)
from kt_intake.text import to_boolean, to_string

logger = logging.getLogger(__name__)

LegacySnapshot = Dict[str, Any]
Migration = Callable[[LegacySnapshot], LegacySnapshot]

LEGACY_CONTAINMENT_STATUS_MAP = {
    "none": ContainStatus.ASSESSING.value,
    "mitigation": ContainStatus.STABILIZED.value,
    "restore": ContainStatus.RESTORING.value,
}

CONTAINMENT_STATUS_VALUES = frozenset(status.value for status in ContainStatus)

# Keys that lived at the snapshot root before version 1
LEGACY_ROOT_OPS_KEYS = ("commCadence", "commNextDueIso", "commNextUpdateTime", "tableFocusMode")

OPS_STRING_KEYS = (
    "bridgeOpenedUtc",
    "icName",
    "bcName",
    "semOpsName",
    "severity",
    "commCadence",
    "commNextDueIso",
    "commNextUpdateTime",
    "tableFocusMode",
)

OPS_BOOLEAN_KEYS = (
    "detectMonitoring",
    "detectUserReport",
    "detectAutomation",
    "detectOther",
    "evScreenshot",
    "evLogs",
    "evMetrics",
    "evRepro",
    "evOther",
)

PRE_KEYS = ("oneLine", "proof", "objectPrefill", "healthy", "now")

# current impact key -> legacy root key
IMPACT_KEYS = {"now": "impactNow", "future": "impactFuture", "time": "impactTime"}

FINDING_MODES = ("assumption", "yes", "fail")

VERSION_PREFIX_PATTERN = re.compile(r"^\s*([+-]?\d+)")


# =============================================================================
# HELPERS
# =============================================================================

def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _coalesce(*values: Any) -> Any:
    """First value that is not None (missing keys count as None)."""
    for value in values:
        if value is not None:
            return value
    return None


def resolve_version(state: Any) -> Union[int, float]:
    """Read ``meta.version``, parsing numeric strings; 0 when absent or unparsable."""
    meta = state.get("meta") if isinstance(state, Mapping) else None
    version = meta.get("version") if isinstance(meta, Mapping) else None
    if isinstance(version, bool):
        return 0
    if isinstance(version, int):
        return version
    if isinstance(version, float) and math.isfinite(version):
        return int(version) if version.is_integer() else version
    if isinstance(version, str):
        match = VERSION_PREFIX_PATTERN.match(version)
        if match:
            return int(match.group(1))
    return 0


def normalize_containment_status(value: Any) -> str:
    """Current containment value, a remapped legacy value, or ''."""
    if not isinstance(value, str):
        return ""
    if value in CONTAINMENT_STATUS_VALUES:
        return value
    return LEGACY_CONTAINMENT_STATUS_MAP.get(value, "")


def normalize_comm_log(entries: Any) -> List[Any]:
    if not isinstance(entries, list):
        return []
    normalized = []
    for entry in entries:
        if isinstance(entry, str) or (isinstance(entry, (int, float)) and not isinstance(entry, bool)):
            normalized.append(to_string(entry))
        elif isinstance(entry, Mapping):
            normalized.append(dict(entry))
    return normalized


def normalize_steps_state(raw_steps: Any) -> StepsState:
    """Normalize the checklist section, accepting its older shapes."""
    if not raw_steps:
        return StepsState()
    source = {"items": raw_steps} if isinstance(raw_steps, list) else raw_steps
    if not isinstance(source, Mapping):
        return StepsState()

    if isinstance(source.get("items"), list):
        candidates = source["items"]
    elif isinstance(source.get("steps"), list):
        candidates = source["steps"]
    else:
        candidates = []

    items = []
    for item in candidates:
        if not isinstance(item, Mapping):
            continue
        raw_id = _coalesce(item.get("id"), item.get("stepId"))
        step_id = to_string(raw_id) if raw_id is not None else ""
        if not step_id:
            continue
        if isinstance(item.get("label"), str):
            label = item["label"]
        elif isinstance(item.get("title"), str):
            label = item["title"]
        else:
            label = ""
        items.append(StepItem(id=step_id, label=label, checked=to_boolean(item.get("checked"))))

    if isinstance(source.get("drawerOpen"), bool):
        drawer_open = source["drawerOpen"]
    elif isinstance(source.get("open"), bool):
        drawer_open = source["open"]
    else:
        drawer_open = to_boolean(source.get("drawer"))

    return StepsState(items=items, drawer_open=drawer_open)


def normalize_actions_state(raw_actions: Any) -> ActionsState:
    if isinstance(raw_actions, list):
        raw_actions = {"items": raw_actions}
    source = _mapping(raw_actions)
    analysis_id = source.get("analysisId")
    items = source.get("items")
    return ActionsState(
        analysis_id=analysis_id.strip() if isinstance(analysis_id, str) else "",
        items=[dict(item) for item in items if isinstance(item, Mapping)] if isinstance(items, list) else [],
    )


def _normalize_likely_cause_id(raw: Any) -> Optional[str]:
    if isinstance(raw, str):
        return raw.strip() or None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool) and raw:
        return to_string(raw) or None
    return None


# =============================================================================
# MIGRATIONS
# =============================================================================

def migrate_legacy_state(raw: LegacySnapshot) -> LegacySnapshot:
    """Version 0 -> 1: fold root-level comms fields into ``ops`` and rename keys."""
    state = dict(raw)
    ops = _mapping(state.get("ops"))

    for key in LEGACY_ROOT_OPS_KEYS:
        if key in state:
            value = state.pop(key)
            if value is not None and ops.get(key) is None:
                ops[key] = value

    comm_log = state.pop("commLog", None)
    if isinstance(comm_log, list) and not isinstance(ops.get("commLog"), list):
        ops["commLog"] = comm_log

    if isinstance(state.get("possibleCauses"), list) and not isinstance(state.get("causes"), list):
        state["causes"] = state["possibleCauses"]

    if isinstance(ops.get("containmentStatus"), str) and not ops.get("containStatus"):
        ops["containStatus"] = ops["containmentStatus"]
    if isinstance(ops.get("containment"), str) and not ops.get("containStatus"):
        ops["containStatus"] = ops["containment"]
    ops.pop("containmentStatus", None)
    ops.pop("containment", None)

    state["ops"] = ops
    state["meta"] = {**_mapping(state.get("meta")), "version": 1}
    return state


def _normalize_finding_entry(entry: Any) -> Dict[str, str]:
    """Bring one legacy finding to ``{mode, note, explainIs, explainNot}``."""
    if isinstance(entry, str):
        return {"mode": "yes", "note": entry, "explainIs": "", "explainNot": ""}
    if not isinstance(entry, Mapping):
        return {"mode": "", "note": "", "explainIs": "", "explainNot": ""}

    mode = entry.get("mode").strip().lower() if isinstance(entry.get("mode"), str) else ""
    if mode not in FINDING_MODES:
        mode = ""
    note = entry.get("note")
    if isinstance(note, str):
        pass
    elif isinstance(note, (int, float)) and not isinstance(note, bool):
        note = to_string(note)
    else:
        note = ""
    explain_is = entry.get("explainIs").strip() if isinstance(entry.get("explainIs"), str) else ""
    explain_not = entry.get("explainNot").strip() if isinstance(entry.get("explainNot"), str) else ""
    joined = "\n".join(text for text in (explain_is, explain_not) if text)
    if not mode and joined:
        mode, note = "yes", joined
    elif mode and not note and joined:
        note = joined
    return {"mode": mode, "note": note, "explainIs": explain_is, "explainNot": explain_not}


def _join_notes(entries: List[Dict[str, str]], key: str = "note") -> str:
    return "\n".join(entry[key].strip() for entry in entries if entry[key].strip())


def _fold_findings(raw_cause: Any) -> Any:
    if not isinstance(raw_cause, Mapping):
        return raw_cause
    cause = dict(raw_cause)
    findings = cause.pop("findings", None)

    if not cause.get("summaryText"):
        legacy_summary = _coalesce(cause.get("hypothesis"), cause.get("summary"))
        if isinstance(legacy_summary, str) and legacy_summary.strip():
            cause["summaryText"] = legacy_summary.strip()
    cause.pop("hypothesis", None)
    cause.pop("summary", None)
    if "nextTest" in cause and cause.get("next_test") is None:
        cause["next_test"] = cause.pop("nextTest")

    if normalize_decision(cause.get("decision")) or not isinstance(findings, Mapping):
        return cause

    entries = [_normalize_finding_entry(value) for value in findings.values()]
    by_mode = {mode: [entry for entry in entries if entry["mode"] == mode] for mode in FINDING_MODES}

    if by_mode["fail"]:
        cause["decision"] = Decision.DOES_NOT_EXPLAIN.value
    elif by_mode["assumption"]:
        cause["decision"] = Decision.CONDITIONAL.value
        if not cause.get("assumptions"):
            cause["assumptions"] = _join_notes(by_mode["assumption"])
    elif by_mode["yes"]:
        yes = by_mode["yes"]
        cause["decision"] = Decision.EXPLAINS.value
        explain_is = _join_notes(yes, "explainIs")
        explain_not = _join_notes(yes, "explainNot")
        if not explain_is and not explain_not:
            explain_is = _join_notes(yes)
        cause.setdefault("explanation_is", explain_is)
        cause.setdefault("explanation_is_not", explain_not)
    return cause


def migrate_findings_to_decisions(raw: LegacySnapshot) -> LegacySnapshot:
    """Version 1 -> 2: replace per-row findings with one decision per cause."""
    state = dict(raw)
    if isinstance(state.get("causes"), list):
        state["causes"] = [_fold_findings(cause) for cause in state["causes"]]
    state["meta"] = {**_mapping(state.get("meta")), "version": 2}
    return state


MIGRATIONS: Dict[int, Migration] = {
    0: migrate_legacy_state,
    1: migrate_findings_to_decisions,
}

MIGRATION_REGISTRY: Mapping[int, Migration] = MappingProxyType(MIGRATIONS)


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_app_state_structure(raw: Any) -> Snapshot:
    """Total function from a loosely-shaped record to a current ``Snapshot``."""
    incoming = _mapping(raw)
    pre_source = _mapping(incoming.get("pre"))
    impact_source = _mapping(incoming.get("impact"))
    ops_source = _mapping(incoming.get("ops"))
    meta_source = _mapping(incoming.get("meta"))

    pre = Pre.model_validate({
        key: to_string(_coalesce(pre_source.get(key), incoming.get(key)))
        for key in PRE_KEYS
    })

    impact = Impact.model_validate({
        key: to_string(_coalesce(impact_source.get(key), incoming.get(legacy_key)))
        for key, legacy_key in IMPACT_KEYS.items()
    })

    ops_payload: Dict[str, Any] = {
        key: to_string(_coalesce(ops_source.get(key), incoming.get(key)))
        for key in OPS_STRING_KEYS
    }
    ops_payload.update({
        key: to_boolean(_coalesce(ops_source.get(key), incoming.get(key)))
        for key in OPS_BOOLEAN_KEYS
    })
    ops_payload["containStatus"] = normalize_containment_status(_coalesce(
        ops_source.get("containStatus"),
        ops_source.get("containmentStatus"),
        incoming.get("containStatus"),
        incoming.get("containmentStatus"),
    ))
    ops_payload["containDesc"] = to_string(_coalesce(ops_source.get("containDesc"), incoming.get("containDesc")))
    ops_payload["commLog"] = normalize_comm_log(_coalesce(ops_source.get("commLog"), incoming.get("commLog")))
    ops = Ops.model_validate(ops_payload)

    if isinstance(incoming.get("table"), list):
        table_source = incoming["table"]
    elif isinstance(incoming.get("ktTable"), list):
        table_source = incoming["ktTable"]
    else:
        table_source = []
    table = [dict(row) for row in table_source if isinstance(row, Mapping)]

    if isinstance(incoming.get("causes"), list):
        causes_source = incoming["causes"]
    elif isinstance(incoming.get("possibleCauses"), list):
        causes_source = incoming["possibleCauses"]
    else:
        causes_source = []
    causes = deserialize_causes(causes_source)

    likely_cause_id = _normalize_likely_cause_id(
        _coalesce(incoming.get("likelyCauseId"), incoming.get("likelyCause"))
    )
    ruled_out = {cause.id for cause in causes if cause.decision == Decision.DOES_NOT_EXPLAIN}
    if likely_cause_id in ruled_out:
        logger.debug("Dropping Likely Cause %s: cause was ruled out", likely_cause_id)
        likely_cause_id = None

    saved_at = _coalesce(meta_source.get("savedAt"), incoming.get("savedAt"))

    return Snapshot(
        meta=Meta(version=APP_STATE_VERSION, saved_at=saved_at if isinstance(saved_at, str) else None),
        pre=pre,
        impact=impact,
        ops=ops,
        table=table,
        causes=causes,
        likely_cause_id=likely_cause_id,
        steps=normalize_steps_state(_coalesce(incoming.get("steps"), incoming.get("stepsState"))),
        actions=normalize_actions_state(incoming.get("actions")),
    )


def migrate_app_state(raw: Any) -> Optional[Snapshot]:
    """Migrate and normalize a persisted payload.

    Args:
        raw: Decoded JSON (or an existing ``Snapshot``)

    Returns:
        The current-version ``Snapshot``, or None when ``raw`` is not an object
    """
    if isinstance(raw, Snapshot):
        raw = raw.to_dict()
    if not isinstance(raw, Mapping):
        return None

    state: LegacySnapshot = copy.deepcopy(dict(raw))
    version = resolve_version(state)
    visited = set()
    while version < APP_STATE_VERSION:
        if version in visited:
            logger.warning("Snapshot migration for version %s did not advance; stopping", version)
            break
        visited.add(version)
        migrate = MIGRATIONS.get(version)
        if migrate is None:
            break
        try:
            state = migrate(state)
        except Exception as e:
            logger.warning("Snapshot migration from version %s failed: %s", version, e)
            break
        next_version = resolve_version(state)
        logger.debug("Migrated snapshot from version %s to %s", version, next_version)
        version = next_version

    return normalize_app_state_structure(state)
