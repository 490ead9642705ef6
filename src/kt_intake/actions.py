"""
KT Intake Actions

The action store (per-analysis task lists kept in the local key/value store)
and the bridge that turns a conditional cause's planned test into an action.

The bridge never raises: every outcome comes back as a ``ConversionResult``
and is reported through the board's notifier.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Union

from kt_intake.decision import CauseBoard, compute_state, normalize_instant
from kt_intake.hypothesis import decision_summary, hypothesis_sentence
from kt_intake.schema import Cause, CauseState
from kt_intake.storage import LocalStorage, utc_timestamp
from kt_intake.text import to_string

logger = logging.getLogger(__name__)

ACTIONS_STORAGE_KEY = "kt-actions-by-analysis-v1"

STATUS_PLANNED = "Planned"
STATUS_IN_PROGRESS = "In-Progress"
STATUS_DONE = "Done"

ROLLBACK_REQUIRED = "Rollback plan required before starting."
VERIFICATION_REQUIRED = "Record verification result before marking Done."
ACTION_NOT_FOUND = "Action not found."

ACTION_CREATED = "Action created for {label}."
NOT_CONDITIONAL = "Only conditional causes with a complete test plan can be converted."
CONVERSION_FAILED = "Unable to create an action for this cause."

REASON_NOT_CONDITIONAL = "not_conditional"
REASON_STORE_REJECTED = "store_rejected"
REASON_STORE_ERROR = "store_error"


class ActionStore(Protocol):
    def list_actions(self, analysis_id: str) -> List[Dict[str, Any]]:
        ...

    def create_action(self, analysis_id: str, patch: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    def patch_action(self, analysis_id: str, action_id: str, delta: Mapping[str, Any]) -> "PatchResult":
        ...


@dataclass
class PatchResult:
    """Result of patching an action."""
    success: bool
    message: str = ""
    action: Optional[Dict[str, Any]] = None


class LocalActionStore:
    """Actions grouped by analysis id, kept under one key in ``LocalStorage``."""

    def __init__(
        self,
        storage: LocalStorage,
        key: str = ACTIONS_STORAGE_KEY,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage
        self.key = key
        self._clock = clock

    def _now(self) -> str:
        return utc_timestamp(self._clock() if self._clock else None)

    def _load_all(self) -> Dict[str, List[Dict[str, Any]]]:
        raw = self.storage.get_item(self.key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable action store under %s", self.key)
            return {}
        return data if isinstance(data, dict) else {}

    def _save_all(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        self.storage.set_item(self.key, json.dumps(data))

    @staticmethod
    def _items(data: Mapping[str, Any], analysis_id: str) -> List[Dict[str, Any]]:
        """Actions stored for ``analysis_id``; non-object entries are skipped."""
        items = data.get(analysis_id)
        if not isinstance(items, list):
            return []
        skipped = sum(1 for item in items if not isinstance(item, Mapping))
        if skipped:
            logger.warning("Skipping %d malformed action(s) under %s", skipped, analysis_id)
        return [dict(item) for item in items if isinstance(item, Mapping)]

    def list_actions(self, analysis_id: str) -> List[Dict[str, Any]]:
        return self._items(self._load_all(), analysis_id)

    def create_action(self, analysis_id: str, patch: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Create an action, newest first. Returns None for an empty summary."""
        item = {
            "id": str(uuid.uuid4()),
            "analysisId": analysis_id,
            "createdAt": self._now(),
            "createdBy": "local",
            "summary": to_string(patch.get("summary")).strip(),
            "detail": to_string(patch.get("detail")),
            "owner": to_string(patch.get("owner")),
            "role": to_string(patch.get("role")),
            "status": STATUS_PLANNED,
            "priority": patch.get("priority") or "P2",
            "dueAt": to_string(patch.get("dueAt")),
            "startedAt": "",
            "completedAt": "",
            "dependencies": [],
            "risk": patch.get("risk") or "None",
            "changeControl": {"required": False, **dict(patch.get("changeControl") or {})},
            "verification": {"required": False, **dict(patch.get("verification") or {})},
            "links": dict(patch.get("links") or {}),
            "notes": "",
        }
        if not item["summary"]:
            return None

        data = self._load_all()
        existing = data.get(analysis_id)
        data[analysis_id] = [item] + (existing if isinstance(existing, list) else [])
        self._save_all(data)
        return item

    def patch_action(self, analysis_id: str, action_id: str, delta: Mapping[str, Any]) -> PatchResult:
        """Apply ``delta`` to an action, enforcing the start/finish guardrails."""
        data = self._load_all()
        items = self._items(data, analysis_id)
        index = next((i for i, action in enumerate(items) if action.get("id") == action_id), -1)
        if index < 0:
            return PatchResult(success=False, message=ACTION_NOT_FOUND)

        updated = {**items[index], **delta}
        change_control = updated.get("changeControl")
        change_control = change_control if isinstance(change_control, Mapping) else {}
        verification = updated.get("verification")
        verification = verification if isinstance(verification, Mapping) else {}

        if delta.get("status") == STATUS_IN_PROGRESS:
            needs_rollback = updated.get("risk") == "High" or change_control.get("required")
            if needs_rollback and not change_control.get("rollbackPlan"):
                return PatchResult(success=False, message=ROLLBACK_REQUIRED)
            if not updated.get("startedAt"):
                updated["startedAt"] = self._now()

        if delta.get("status") == STATUS_DONE:
            if verification.get("required") and not verification.get("result"):
                return PatchResult(success=False, message=VERIFICATION_REQUIRED)
            if not updated.get("completedAt"):
                updated["completedAt"] = self._now()

        items[index] = updated
        data[analysis_id] = items
        self._save_all(data)
        return PatchResult(success=True, action=updated)

    def replace_actions(self, analysis_id: str, items: List[Any]) -> None:
        data = self._load_all()
        data[analysis_id] = [dict(item) for item in items if isinstance(item, Mapping)]
        self._save_all(data)

    def remove_action(self, analysis_id: str, action_id: str) -> None:
        data = self._load_all()
        items = self._items(data, analysis_id)
        data[analysis_id] = [action for action in items if action.get("id") != action_id]
        self._save_all(data)


@dataclass
class ConversionResult:
    """Result of converting a cause's planned test into an action."""
    success: bool
    message: str
    action: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


class ActionConversionBridge:
    """Turns a conditional cause with a full test plan into a linked action."""

    def __init__(self, board: CauseBoard, store: ActionStore, analysis_id: str = ""):
        self.board = board
        self.store = store
        self.analysis_id = analysis_id

    def build_request(self, cause: Cause) -> Dict[str, Any]:
        test = cause.next_test
        detail = f"{hypothesis_sentence(cause)}\n\n{decision_summary(cause)}"
        return {
            "summary": f"Test: {test.text.strip()}",
            "detail": detail,
            "owner": test.owner.strip(),
            "dueAt": normalize_instant(test.eta),
            "links": {"hypothesisId": cause.id},
        }

    def _fail(self, message: str, reason: str) -> ConversionResult:
        self.board.notifier.notify(message)
        return ConversionResult(success=False, message=message, reason=reason)

    def convert(self, cause: Union[Cause, str]) -> ConversionResult:
        """Create the action for ``cause`` (a ``Cause`` or its id).

        The cause must be in the conditional state; it is re-checked here.
        On store failure nothing else changes.
        """
        if isinstance(cause, str):
            target = self.board.get(cause)
        else:
            target = self.board.get(cause.id) or cause
        if target is None or compute_state(target) != CauseState.CONDITIONAL:
            return self._fail(NOT_CONDITIONAL, REASON_NOT_CONDITIONAL)

        try:
            action = self.store.create_action(self.analysis_id, self.build_request(target))
        except Exception as e:
            logger.warning("Action store failed to create an action for %s: %s", target.id, e)
            return self._fail(CONVERSION_FAILED, REASON_STORE_ERROR)
        if not action:
            return self._fail(CONVERSION_FAILED, REASON_STORE_REJECTED)

        try:
            self.board.refresh_action_counts(self.store.list_actions(self.analysis_id))
        except Exception as e:
            logger.warning("Could not refresh action counts: %s", e)

        message = ACTION_CREATED.format(label=self.board.display_label(target))
        self.board.notifier.notify(message)
        return ConversionResult(success=True, message=message, action=action)
