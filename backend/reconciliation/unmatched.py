"""
Unmatched line classification.

Extract lines left without a match are simply outstanding. System lines are
bucketed against the run's cut date: OVERDUE when the due date (or the issue
date when there is no due date) falls on or before the cut date, DEFERRED
otherwise.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple

from reconciliation.enums import UnmatchedSystemStatus
from reconciliation.matching_rules.amount_date_rules import (
    ExtractCandidate,
    MatchingResult,
    SystemCandidate,
)


def classify_system_status(
    issue_date: Optional[date],
    due_date: Optional[date],
    cut_date: Optional[date],
) -> UnmatchedSystemStatus:
    reference = due_date or issue_date
    if cut_date is not None and reference is not None and reference <= cut_date:
        return UnmatchedSystemStatus.OVERDUE
    return UnmatchedSystemStatus.DEFERRED


@dataclass
class UnmatchedSets:
    extract_ids: List[str]
    system: List[Tuple[str, UnmatchedSystemStatus]]

    @property
    def overdue_count(self) -> int:
        return sum(1 for _, status in self.system if status == UnmatchedSystemStatus.OVERDUE)

    @property
    def deferred_count(self) -> int:
        return sum(1 for _, status in self.system if status == UnmatchedSystemStatus.DEFERRED)


def build_unmatched(
    extract_lines: Iterable[ExtractCandidate],
    system_lines: Iterable[SystemCandidate],
    result: MatchingResult,
    cut_date: Optional[date],
    excluded_ids: Iterable[str] = (),
) -> UnmatchedSets:
    """Collect the lines the matcher did not use."""
    excluded = set(excluded_ids)
    extract_ids = [
        line.id for line in extract_lines
        if line.id not in result.used_extract and line.id not in excluded
    ]
    system = [
        (line.id, classify_system_status(line.issue_date, line.due_date, cut_date))
        for line in system_lines
        if line.id not in result.used_system
    ]
    return UnmatchedSets(extract_ids=extract_ids, system=system)
