"""
Amount / Date Matching Rules

Pairs system (ledger) lines with bank extract lines.

Pass 1 - one-to-one:
- Extract lines are bucketed by amount key (integer cents)
- Each system line, in input order, takes the unused extract line of its
  bucket with the smallest day distance to its issue or due date
- Candidates further than window_days away are ignored (0 = same day only)
- Ties keep the first candidate seen

Pass 2 - many-to-one by description:
- Leftover system lines sharing a normalized description are summed
- The first leftover extract line whose amount key equals the key of the sum
  is matched to every line of the group with delta_days = 0
- Groups of a single line are skipped: pass 1 already rejected that line, and
  pairing it here would bypass the date window

Both passes run once per matching call, pass 1 first.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set

from reconciliation.normalize import normalize_description, to_amount_key


# Distance used when a date is missing; larger than any window
MISSING_DATE_DELTA = 999999


@dataclass(frozen=True)
class ExtractCandidate:
    """Bank extract line as seen by the matcher."""
    id: str
    date: Optional[date]
    amount_key: int


@dataclass(frozen=True)
class SystemCandidate:
    """Ledger line as seen by the matcher."""
    id: str
    issue_date: Optional[date]
    due_date: Optional[date]
    amount_key: int
    amount: Decimal = Decimal("0")
    description: Optional[str] = None


@dataclass(frozen=True)
class MatchPair:
    extract_id: str
    system_id: str
    delta_days: int
    grouped: bool = False


@dataclass
class MatchingResult:
    """Matches plus the ids consumed on each side."""
    matches: List[MatchPair] = field(default_factory=list)
    used_extract: Set[str] = field(default_factory=set)
    used_system: Set[str] = field(default_factory=set)

    def add(self, pair: MatchPair) -> None:
        self.matches.append(pair)
        self.used_extract.add(pair.extract_id)
        self.used_system.add(pair.system_id)


def days_between(a: Optional[date], b: Optional[date]) -> int:
    if a is None or b is None:
        return MISSING_DATE_DELTA
    return abs((a - b).days)


def date_delta(
    extract_date: Optional[date],
    issue_date: Optional[date],
    due_date: Optional[date],
) -> int:
    """Smallest day distance between the extract date and the issue/due dates."""
    return min(days_between(extract_date, issue_date), days_between(extract_date, due_date))


def match_one_to_one(
    system_lines: Sequence[SystemCandidate],
    extract_lines: Sequence[ExtractCandidate],
    window_days: int,
    result: Optional[MatchingResult] = None,
) -> MatchingResult:
    """Pass 1: equal amount key, nearest date within the window."""
    if window_days < 0:
        raise ValueError("window_days must be non-negative")
    result = result if result is not None else MatchingResult()

    buckets: Dict[int, List[ExtractCandidate]] = {}
    for ext in extract_lines:
        buckets.setdefault(ext.amount_key, []).append(ext)

    for sys_line in system_lines:
        if sys_line.id in result.used_system:
            continue
        best: Optional[ExtractCandidate] = None
        best_delta = 0
        for ext in buckets.get(sys_line.amount_key, ()):
            if ext.id in result.used_extract:
                continue
            delta = date_delta(ext.date, sys_line.issue_date, sys_line.due_date)
            if delta > window_days:
                continue
            if best is None or delta < best_delta:
                best = ext
                best_delta = delta
        if best is not None:
            result.add(MatchPair(extract_id=best.id, system_id=sys_line.id, delta_days=best_delta))

    return result


def match_grouped_by_description(
    system_lines: Sequence[SystemCandidate],
    extract_lines: Sequence[ExtractCandidate],
    result: Optional[MatchingResult] = None,
) -> MatchingResult:
    """Pass 2: several system lines with a common description against one extract line."""
    result = result if result is not None else MatchingResult()

    groups: "OrderedDict[str, List[SystemCandidate]]" = OrderedDict()
    for sys_line in system_lines:
        if sys_line.id in result.used_system:
            continue
        key = normalize_description(sys_line.description)
        if not key:
            continue
        groups.setdefault(key, []).append(sys_line)

    for members in groups.values():
        if len(members) < 2:  # a lone line keeps its pass 1 verdict
            continue
        total_key = to_amount_key(sum((m.amount for m in members), Decimal("0")))
        target = next(
            (
                ext for ext in extract_lines
                if ext.id not in result.used_extract and ext.amount_key == total_key
            ),
            None,
        )
        if target is None:
            continue
        for member in members:
            result.add(MatchPair(
                extract_id=target.id,
                system_id=member.id,
                delta_days=0,
                grouped=True,
            ))

    return result


def run_matching(
    system_lines: Sequence[SystemCandidate],
    extract_lines: Sequence[ExtractCandidate],
    window_days: int,
    group_by_description: bool = True,
) -> MatchingResult:
    """Run pass 1 and, when enabled, pass 2 over the same line sets."""
    result = match_one_to_one(system_lines, extract_lines, window_days)
    if group_by_description:
        match_grouped_by_description(system_lines, extract_lines, result)
    return result
