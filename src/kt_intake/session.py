"""
KT Intake Session

Live state of one intake: the non-cause snapshot sections plus a
``CauseBoard``. ``collect()`` turns it back into a ``Snapshot``.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from kt_intake.actions import ActionConversionBridge, LocalActionStore
from kt_intake.causes import serialize_causes
from kt_intake.decision import CauseBoard
from kt_intake.evidence import worksheet_from_table
from kt_intake.notify import Notifier
from kt_intake.schema import ActionsState, Impact, Meta, Ops, Pre, Snapshot, StepsState


@dataclass
class ActionsImport:
    """How an imported ``actions`` section should be adopted."""
    should_import: bool
    analysis_id: str
    items: List[Any] = field(default_factory=list)


def resolve_actions_import(has_snapshot: bool, snapshot: Any, current_analysis_id: str) -> ActionsImport:
    """Decide whether to adopt an imported actions section, and under which id.

    A blank imported analysis id keeps the current one.
    """
    if not has_snapshot:
        return ActionsImport(should_import=False, analysis_id=current_analysis_id)
    if isinstance(snapshot, ActionsState):
        snapshot = snapshot.model_dump(by_alias=True)
    payload = snapshot if isinstance(snapshot, Mapping) else {}
    analysis_id = payload.get("analysisId")
    trimmed = analysis_id.strip() if isinstance(analysis_id, str) else ""
    items = payload.get("items")
    return ActionsImport(
        should_import=True,
        analysis_id=trimmed or current_analysis_id,
        items=list(items) if isinstance(items, list) else [],
    )


class IntakeSession:
    """One intake session, built from and collected back into a snapshot."""

    def __init__(
        self,
        board: Optional[CauseBoard] = None,
        pre: Optional[Pre] = None,
        impact: Optional[Impact] = None,
        ops: Optional[Ops] = None,
        table: Optional[List[Dict[str, Any]]] = None,
        steps: Optional[StepsState] = None,
        actions: Optional[ActionsState] = None,
        saved_at: Optional[str] = None,
    ):
        self.board = board or CauseBoard()
        self.pre = pre or Pre()
        self.impact = impact or Impact()
        self.ops = ops or Ops()
        self.table = table or []
        self.steps = steps or StepsState()
        self.actions = actions or ActionsState()
        self.saved_at = saved_at

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, notifier: Optional[Notifier] = None) -> "IntakeSession":
        copy = snapshot.model_copy(deep=True)
        board = CauseBoard(
            causes=copy.causes,
            likely_cause_id=copy.likely_cause_id,
            notifier=notifier,
            worksheet=worksheet_from_table(copy.table),
        )
        return cls(
            board=board,
            pre=copy.pre,
            impact=copy.impact,
            ops=copy.ops,
            table=copy.table,
            steps=copy.steps,
            actions=copy.actions,
            saved_at=copy.meta.saved_at,
        )

    @property
    def analysis_id(self) -> str:
        return self.actions.analysis_id

    def ensure_analysis_id(self) -> str:
        """Return the analysis id, generating one on first use."""
        if not self.actions.analysis_id:
            self.actions.analysis_id = str(uuid.uuid4())
        return self.actions.analysis_id

    def adopt_actions(self, store: LocalActionStore, imported: Any) -> ActionsImport:
        """Move an imported actions section into ``store``."""
        decision = resolve_actions_import(imported is not None, imported, self.analysis_id)
        if decision.should_import:
            self.actions.analysis_id = decision.analysis_id or self.ensure_analysis_id()
            store.replace_actions(self.actions.analysis_id, decision.items)
        return decision

    def bridge(self, store: LocalActionStore) -> ActionConversionBridge:
        return ActionConversionBridge(self.board, store, self.ensure_analysis_id())

    def refresh_action_counts(self, store: LocalActionStore) -> Dict[str, int]:
        return self.board.refresh_action_counts(store.list_actions(self.analysis_id))

    def collect(self, store: Optional[LocalActionStore] = None) -> Snapshot:
        """Snapshot of the current session; actions come from ``store`` when given."""
        items = store.list_actions(self.analysis_id) if store is not None else self.actions.items
        return Snapshot(
            meta=Meta(saved_at=self.saved_at),
            pre=self.pre.model_copy(),
            impact=self.impact.model_copy(),
            ops=self.ops.model_copy(deep=True),
            table=[dict(row) for row in self.table],
            causes=serialize_causes(self.board.causes),
            likely_cause_id=self.board.likely_cause_id,
            steps=self.steps.model_copy(deep=True),
            actions=ActionsState(analysis_id=self.analysis_id, items=[dict(item) for item in items]),
        )
