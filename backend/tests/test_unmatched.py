"""
Unit Tests for unmatched line classification

Run with: pytest tests/test_unmatched.py -v
"""

from datetime import date

from reconciliation.enums import UnmatchedSystemStatus
from reconciliation.matching_rules.amount_date_rules import (
    ExtractCandidate,
    MatchPair,
    MatchingResult,
    SystemCandidate,
)
from reconciliation.unmatched import build_unmatched, classify_system_status

CUT = date(2024, 1, 20)


class TestClassifySystemStatus:
    """Test OVERDUE / DEFERRED bucketing."""

    def test_due_date_before_cut_is_overdue(self):
        assert classify_system_status(None, date(2024, 1, 18), CUT) == UnmatchedSystemStatus.OVERDUE

    def test_due_date_after_cut_is_deferred(self):
        assert classify_system_status(None, date(2024, 1, 25), CUT) == UnmatchedSystemStatus.DEFERRED

    def test_cut_date_itself_is_overdue(self):
        assert classify_system_status(None, CUT, CUT) == UnmatchedSystemStatus.OVERDUE

    def test_due_date_takes_precedence_over_issue_date(self):
        status = classify_system_status(date(2024, 1, 1), date(2024, 2, 1), CUT)
        assert status == UnmatchedSystemStatus.DEFERRED

    def test_issue_date_used_without_due_date(self):
        assert classify_system_status(date(2024, 1, 1), None, CUT) == UnmatchedSystemStatus.OVERDUE

    def test_no_cut_date_or_no_dates_is_deferred(self):
        assert classify_system_status(date(2024, 1, 1), None, None) == UnmatchedSystemStatus.DEFERRED
        assert classify_system_status(None, None, CUT) == UnmatchedSystemStatus.DEFERRED


class TestBuildUnmatched:
    """Test collection of leftover lines."""

    def test_leftovers_and_counts(self):
        extract = [
            ExtractCandidate(id="e1", date=date(2024, 1, 15), amount_key=10000),
            ExtractCandidate(id="e2", date=date(2024, 1, 16), amount_key=5000),
            ExtractCandidate(id="e3", date=date(2024, 1, 17), amount_key=700),
        ]
        system = [
            SystemCandidate(id="s1", issue_date=date(2024, 1, 15), due_date=None, amount_key=10000),
            SystemCandidate(id="s2", issue_date=None, due_date=date(2024, 1, 18), amount_key=1),
            SystemCandidate(id="s3", issue_date=None, due_date=date(2024, 1, 25), amount_key=2),
        ]
        result = MatchingResult()
        result.add(MatchPair(extract_id="e1", system_id="s1", delta_days=0))

        unmatched = build_unmatched(extract, system, result, CUT, excluded_ids=["e3"])

        assert unmatched.extract_ids == ["e2"]
        assert unmatched.system == [
            ("s2", UnmatchedSystemStatus.OVERDUE),
            ("s3", UnmatchedSystemStatus.DEFERRED),
        ]
        assert unmatched.overdue_count == 1
        assert unmatched.deferred_count == 1
