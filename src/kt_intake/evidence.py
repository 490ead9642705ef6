"""
KT Intake Evidence Worksheet

Read-only view of the IS / IS NOT worksheet that causes are tested against.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Protocol

from kt_intake.text import to_string


IS_NOT_TOKEN_PATTERN = re.compile(r"<is\s+not>", re.IGNORECASE)
IS_TOKEN_PATTERN = re.compile(r"<is>", re.IGNORECASE)

IS_FALLBACK = "IS column"
IS_NOT_FALLBACK = "IS NOT column"


@dataclass(frozen=True)
class EvidenceRow:
    """One worksheet question with its observed / not-observed text."""
    question: str
    is_text: str = ""
    is_not_text: str = ""

    @property
    def is_pair(self) -> bool:
        return bool(self.is_text.strip()) and bool(self.is_not_text.strip())


class Worksheet(Protocol):
    """Ordered, read-only worksheet rows."""

    def rows(self) -> List[EvidenceRow]:
        ...


class StaticWorksheet:
    """Worksheet backed by a fixed list of rows."""

    def __init__(self, rows: Iterable[EvidenceRow] = ()):
        self._rows = list(rows)

    def rows(self) -> List[EvidenceRow]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)


def worksheet_from_table(table: Any) -> StaticWorksheet:
    """Build a worksheet from persisted ``table`` rows (``{q, is, no}``).

    Band rows (section headers) and non-object rows are skipped.
    """
    rows = []
    if isinstance(table, list):
        for entry in table:
            if not isinstance(entry, Mapping) or entry.get("band"):
                continue
            rows.append(EvidenceRow(
                question=to_string(entry.get("q")).strip(),
                is_text=to_string(entry.get("is")),
                is_not_text=to_string(entry.get("no")),
            ))
    return StaticWorksheet(rows)


def eligible_rows(worksheet: Optional[Worksheet]) -> List[EvidenceRow]:
    """Rows where both IS and IS NOT are filled in, in worksheet order."""
    if worksheet is None:
        return []
    return [row for row in worksheet.rows() if row.is_pair]


def substitute_evidence_tokens(template: Any, is_text: Optional[str] = None, is_not_text: Optional[str] = None) -> str:
    """Replace ``<is>`` / ``<is not>`` tokens with the row's evidence text."""
    if not isinstance(template, str):
        return ""
    safe_is = (is_text or "").strip() or IS_FALLBACK
    safe_not = (is_not_text or "").strip() or IS_NOT_FALLBACK
    # <is not> first so the shorter token does not eat it
    replaced = IS_NOT_TOKEN_PATTERN.sub(lambda _: safe_not, template)
    return IS_TOKEN_PATTERN.sub(lambda _: safe_is, replaced)
