"""
Run Lifecycle

Two states:
- OPEN: lines, exclusions and matches may be edited
- CLOSED: read-only; only the creator may reopen

Transitions:
- OPEN -> CLOSED: any user with access to the run
- CLOSED -> OPEN: creator only
Deleting a run is only allowed while it is OPEN.
"""

from typing import Any, Union

from reconciliation.enums import RunStatus
from reconciliation.errors import RunPermissionError, RunStateError


def _status(run: Any) -> RunStatus:
    return RunStatus(run.status)


def assert_run_open(run: Any) -> None:
    """Reject mutations on a closed run."""
    if _status(run) == RunStatus.CLOSED:
        raise RunStateError("Run is CLOSED; reopen it before making changes")


def assert_run_deletable(run: Any) -> None:
    if _status(run) != RunStatus.OPEN:
        raise RunStateError("Only OPEN runs can be deleted")


def transition_status(run: Any, target: Union[RunStatus, str], actor_id: str) -> RunStatus:
    """
    Validate a status change and return the new status.

    Setting the current status again is a no-op.

    Raises:
        RunPermissionError: reopening by someone other than the creator
    """
    current = _status(run)
    target = RunStatus(target)

    if current == target:
        return current
    if current == RunStatus.CLOSED and target == RunStatus.OPEN:
        if run.created_by != actor_id:
            raise RunPermissionError("Only the creator can reopen a closed run")
    return target
