"""
KT Intake File Transfer

Export the current snapshot to a timestamped JSON file and import one back
through the migration engine. Outcomes come back as ``TransferResult`` so the
caller can show them as-is.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from kt_intake.migration import migrate_app_state
from kt_intake.schema import Snapshot
from kt_intake.storage import utc_timestamp

logger = logging.getLogger(__name__)

EXPORT_STARTED = "Download started for intake snapshot"
EXPORT_FAILED = "Unable to export intake snapshot."
IMPORT_NO_FILE = "Select an intake export file to import."
IMPORT_UNREADABLE = "Unable to read the selected file."
IMPORT_INVALID_JSON = "The selected file is not valid JSON."
IMPORT_NOT_SNAPSHOT = "The selected file does not contain an intake snapshot."
IMPORT_DONE = "Intake snapshot imported."


@dataclass
class TransferResult:
    """Result of an import or export."""
    success: bool
    message: str
    snapshot: Optional[Snapshot] = None
    path: Optional[Path] = None
    error: Optional[Exception] = None


def export_filename(now: Optional[datetime] = None) -> str:
    return f"kt-intake-{utc_timestamp(now).replace(':', '-')}.json"


def export_snapshot_to_file(
    snapshot: Snapshot,
    directory: Union[str, Path] = ".",
    now: Optional[datetime] = None,
) -> TransferResult:
    """Write ``snapshot`` as pretty JSON to ``directory/kt-intake-<timestamp>.json``."""
    path = Path(directory).expanduser() / export_filename(now)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(snapshot.to_dict(), indent=2))
    except OSError as e:
        logger.warning("Export to %s failed: %s", path, e)
        return TransferResult(success=False, message=EXPORT_FAILED, path=path, error=e)
    return TransferResult(success=True, message=EXPORT_STARTED, snapshot=snapshot, path=path)


def import_snapshot_from_file(path: Optional[Union[str, Path]]) -> TransferResult:
    """Read, parse and migrate an exported snapshot."""
    if not path:
        return TransferResult(success=False, message=IMPORT_NO_FILE)

    source = Path(path).expanduser()
    try:
        text = source.read_text()
    except (OSError, UnicodeDecodeError) as e:
        return TransferResult(success=False, message=IMPORT_UNREADABLE, path=source, error=e)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        return TransferResult(success=False, message=IMPORT_INVALID_JSON, path=source, error=e)

    snapshot = migrate_app_state(parsed)
    if snapshot is None:
        return TransferResult(success=False, message=IMPORT_NOT_SNAPSHOT, path=source)

    logger.debug("Imported snapshot from %s", source)
    return TransferResult(success=True, message=IMPORT_DONE, snapshot=snapshot, path=source)
