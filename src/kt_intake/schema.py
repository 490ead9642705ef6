"""
KT Intake Snapshot Schema

Typed shape of the persisted intake snapshot. Field aliases are the JSON keys
the browser tool writes, so ``Snapshot.to_dict()`` round-trips exported files.

These models describe the *current* version only; legacy payloads are brought
here by ``kt_intake.migration``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


APP_STATE_VERSION = 2


class Decision(str, Enum):
    """The user's verdict on a possible cause."""

    NONE = ""
    EXPLAINS = "explains"
    CONDITIONAL = "conditional"
    DOES_NOT_EXPLAIN = "does_not_explain"


class CauseState(str, Enum):
    """Derived status of a cause, computed on demand from its fields."""

    DRAFT = "draft"
    PENDING = "pending"
    EXPLAINED = "explained"
    CONDITIONAL = "conditional"
    CONDITIONAL_PENDING = "conditional-pending"
    FAILED = "failed"


class ContainStatus(str, Enum):
    """Containment status of the incident (current seven-value set)."""

    ASSESSING = "assessing"
    STOPPING_IMPACT = "stoppingImpact"
    STABILIZED = "stabilized"
    FIX_IN_PROGRESS = "fixInProgress"
    RESTORING = "restoring"
    MONITORING = "monitoring"
    CLOSED = "closed"


class IntakeModel(BaseModel):
    """Base for snapshot sections: accepts JSON aliases or field names."""

    class Config:
        populate_by_name = True
        use_enum_values = True


class Meta(IntakeModel):
    version: int = Field(
        default=APP_STATE_VERSION,
        description="Schema version; always the current constant after normalization",
    )
    saved_at: Optional[str] = Field(
        default=None,
        alias="savedAt",
        description="ISO timestamp of the last save, if any",
    )


class Pre(IntakeModel):
    """Problem framing captured before the worksheet."""

    one_line: str = Field(default="", alias="oneLine")
    proof: str = ""
    object_prefill: str = Field(default="", alias="objectPrefill")
    healthy: str = ""
    now: str = ""


class Impact(IntakeModel):
    now: str = ""
    future: str = ""
    time: str = ""


class Ops(IntakeModel):
    """Incident operations: roles, detection, evidence, containment, comms."""

    bridge_opened_utc: str = Field(default="", alias="bridgeOpenedUtc")
    ic_name: str = Field(default="", alias="icName")
    bc_name: str = Field(default="", alias="bcName")
    sem_ops_name: str = Field(default="", alias="semOpsName")
    severity: str = ""

    detect_monitoring: bool = Field(default=False, alias="detectMonitoring")
    detect_user_report: bool = Field(default=False, alias="detectUserReport")
    detect_automation: bool = Field(default=False, alias="detectAutomation")
    detect_other: bool = Field(default=False, alias="detectOther")

    ev_screenshot: bool = Field(default=False, alias="evScreenshot")
    ev_logs: bool = Field(default=False, alias="evLogs")
    ev_metrics: bool = Field(default=False, alias="evMetrics")
    ev_repro: bool = Field(default=False, alias="evRepro")
    ev_other: bool = Field(default=False, alias="evOther")

    contain_status: str = Field(
        default="",
        alias="containStatus",
        description="One of ContainStatus, or empty when unknown",
    )
    contain_desc: str = Field(default="", alias="containDesc")

    comm_cadence: str = Field(default="", alias="commCadence")
    comm_log: List[Any] = Field(default_factory=list, alias="commLog")
    comm_next_due_iso: str = Field(default="", alias="commNextDueIso")
    comm_next_update_time: str = Field(default="", alias="commNextUpdateTime")
    table_focus_mode: str = Field(default="", alias="tableFocusMode")


class NextTest(IntakeModel):
    """Planned validation step for a conditional cause."""

    text: str = ""
    owner: str = ""
    eta: str = ""


class Cause(IntakeModel):
    """A possible-cause hypothesis and the decision recorded against it."""

    id: str = Field(
        ...,
        description="Stable identifier; actions link back to it",
    )
    suspect: str = ""
    accusation: str = ""
    impact: str = ""
    summary_text: str = Field(
        default="",
        alias="summaryText",
        description="Cached hypothesis sentence kept in sync on edit",
    )
    decision: Decision = Decision.NONE
    explanation_is: str = ""
    explanation_is_not: str = ""
    assumptions: str = ""
    next_test: NextTest = Field(default_factory=NextTest)
    editing: bool = False
    testing_open: bool = Field(default=False, alias="testingOpen")


class StepItem(IntakeModel):
    id: str
    label: str = ""
    checked: bool = False


class StepsState(IntakeModel):
    items: List[StepItem] = Field(default_factory=list)
    drawer_open: bool = Field(default=False, alias="drawerOpen")


class ActionsState(IntakeModel):
    analysis_id: str = Field(default="", alias="analysisId")
    items: List[Dict[str, Any]] = Field(default_factory=list)


class Snapshot(IntakeModel):
    """
    The complete persisted state of one intake session.

    Created by collecting live session state, mutated only by migration,
    replaced wholesale on import, persisted as one serialized blob.
    """

    meta: Meta = Field(default_factory=Meta)
    pre: Pre = Field(default_factory=Pre)
    impact: Impact = Field(default_factory=Impact)
    ops: Ops = Field(default_factory=Ops)
    table: List[Dict[str, Any]] = Field(default_factory=list)
    causes: List[Cause] = Field(default_factory=list)
    likely_cause_id: Optional[str] = Field(default=None, alias="likelyCauseId")
    steps: StepsState = Field(default_factory=StepsState)
    actions: ActionsState = Field(default_factory=ActionsState)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the persisted JSON keys."""
        return self.model_dump(by_alias=True, mode="json")
