"""
Unit Tests for the matching engine

Tests one-to-one amount/date matching, grouped matching by description and
the combined two-pass run.

Run with: pytest tests/test_matching.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from reconciliation.matching_rules.amount_date_rules import (
    MISSING_DATE_DELTA,
    ExtractCandidate,
    MatchPair,
    MatchingResult,
    SystemCandidate,
    date_delta,
    match_grouped_by_description,
    match_one_to_one,
    run_matching,
)
from reconciliation.normalize import to_amount_key


def system(id, issue=None, due=None, amount="100.00", description=None):
    value = Decimal(amount)
    return SystemCandidate(
        id=id,
        issue_date=issue,
        due_date=due,
        amount_key=to_amount_key(value),
        amount=value,
        description=description,
    )


def extract(id, on=None, amount="100.00"):
    return ExtractCandidate(id=id, date=on, amount_key=to_amount_key(Decimal(amount)))


class TestDateDelta:
    """Test day distance helpers."""

    def test_minimum_of_issue_and_due(self):
        assert date_delta(date(2024, 1, 21), date(2024, 1, 10), date(2024, 1, 20)) == 1

    def test_missing_dates(self):
        assert date_delta(None, date(2024, 1, 1), None) == MISSING_DATE_DELTA
        assert date_delta(date(2024, 1, 1), None, None) == MISSING_DATE_DELTA
        assert date_delta(date(2024, 1, 3), None, date(2024, 1, 1)) == 2


class TestMatchOneToOne:
    """Test pass 1 matching."""

    def test_exact_amount_same_date(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 15))],
            0,
        )

        assert result.matches == [MatchPair(extract_id="e1", system_id="s1", delta_days=0)]
        assert result.used_extract == {"e1"}
        assert result.used_system == {"s1"}

    def test_within_window(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 18))],
            5,
        )

        assert len(result.matches) == 1
        assert result.matches[0].delta_days == 3

    def test_outside_window(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 25))],
            5,
        )

        assert result.matches == []

    def test_window_boundary_is_inclusive(self):
        lines = ([system("s1", issue=date(2024, 1, 15))], [extract("e1", on=date(2024, 1, 18))])

        assert len(match_one_to_one(*lines, 3).matches) == 1
        assert match_one_to_one(*lines, 2).matches == []

    def test_zero_window_is_same_day_only(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 16))],
            0,
        )

        assert result.matches == []

    def test_due_date_closer_than_issue_date(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 10), due=date(2024, 1, 20))],
            [extract("e1", on=date(2024, 1, 21))],
            5,
        )

        assert len(result.matches) == 1
        assert result.matches[0].delta_days == 1

    def test_different_amounts_never_match(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15), amount="100.00")],
            [extract("e1", on=date(2024, 1, 15), amount="200.00")],
            30,
        )

        assert result.matches == []

    def test_prefers_closest_date(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e2", on=date(2024, 1, 20)), extract("e1", on=date(2024, 1, 17))],
            10,
        )

        assert len(result.matches) == 1
        assert result.matches[0].extract_id == "e1"
        assert result.matches[0].delta_days == 2

    def test_ties_keep_first_candidate(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 13)), extract("e2", on=date(2024, 1, 17))],
            5,
        )

        assert result.matches[0].extract_id == "e1"

    def test_one_to_one_only(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 15)), system("s2", issue=date(2024, 1, 16))],
            [extract("e1", on=date(2024, 1, 15))],
            0,
        )

        assert len(result.matches) == 1
        assert result.matches[0].system_id == "s1"

    def test_system_lines_claim_in_input_order(self):
        result = match_one_to_one(
            [system("s1", issue=date(2024, 1, 10)), system("s2", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 15)), extract("e2", on=date(2024, 1, 12))],
            5,
        )

        pairs = {(m.system_id, m.extract_id) for m in result.matches}
        assert pairs == {("s1", "e2"), ("s2", "e1")}

    def test_no_line_used_twice(self):
        systems = [system(f"s{i}", issue=date(2024, 1, 1 + i)) for i in range(6)]
        extracts = [extract(f"e{i}", on=date(2024, 1, 2 + i)) for i in range(4)]

        result = match_one_to_one(systems, extracts, 3)

        extract_ids = [m.extract_id for m in result.matches]
        system_ids = [m.system_id for m in result.matches]
        assert len(extract_ids) == len(set(extract_ids))
        assert len(system_ids) == len(set(system_ids))
        assert len(result.matches) == 4

    def test_missing_dates_never_match(self):
        result = match_one_to_one(
            [system("s1")],
            [extract("e1", on=date(2024, 1, 15))],
            30,
        )

        assert result.matches == []

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            match_one_to_one([], [], -1)


class TestGroupedByDescription:
    """Test pass 2 matching."""

    def test_group_sum_matches_single_extract_line(self):
        systems = [
            system("s1", issue=date(2024, 1, 5), amount="60.00", description="Alquiler Enero"),
            system("s2", issue=date(2024, 1, 9), amount="40.50", description="  alquiler enero "),
        ]
        extracts = [extract("e1", on=date(2024, 3, 1), amount="100.50")]

        result = match_grouped_by_description(systems, extracts)

        assert result.matches == [
            MatchPair(extract_id="e1", system_id="s1", delta_days=0, grouped=True),
            MatchPair(extract_id="e1", system_id="s2", delta_days=0, grouped=True),
        ]

    def test_single_line_groups_are_ignored(self):
        systems = [system("s1", amount="100.00", description="Alquiler")]
        extracts = [extract("e1", on=date(2024, 1, 1), amount="100.00")]

        assert match_grouped_by_description(systems, extracts).matches == []

    def test_blank_descriptions_are_not_grouped(self):
        systems = [
            system("s1", amount="50.00", description="  "),
            system("s2", amount="50.00", description=None),
        ]
        extracts = [extract("e1", on=date(2024, 1, 1), amount="100.00")]

        assert match_grouped_by_description(systems, extracts).matches == []

    def test_skips_lines_used_in_pass_one(self):
        previous = MatchingResult()
        previous.add(MatchPair(extract_id="e1", system_id="s1", delta_days=0))
        systems = [
            system("s1", amount="50.00", description="Servicios"),
            system("s2", amount="50.00", description="Servicios"),
            system("s3", amount="25.00", description="Servicios"),
        ]
        extracts = [extract("e1", amount="75.00"), extract("e2", amount="75.00")]

        result = match_grouped_by_description(systems, extracts, previous)

        grouped = [m for m in result.matches if m.grouped]
        assert [(m.system_id, m.extract_id) for m in grouped] == [("s2", "e2"), ("s3", "e2")]


class TestRunMatching:
    """Test the combined two-pass run."""

    def test_pass_one_runs_before_grouping(self):
        systems = [
            system("s1", issue=date(2024, 1, 15), amount="100.00", description="Cuota"),
            system("s2", issue=date(2024, 1, 15), amount="100.00", description="Cuota"),
        ]
        extracts = [
            extract("e1", on=date(2024, 1, 15), amount="100.00"),
            extract("e2", on=date(2024, 1, 15), amount="200.00"),
        ]

        result = run_matching(systems, extracts, 0)

        assert [(m.system_id, m.extract_id, m.grouped) for m in result.matches] == [
            ("s1", "e1", False),
        ]

    def test_grouping_can_be_disabled(self):
        systems = [
            system("s1", amount="30.00", description="Cuota"),
            system("s2", amount="70.00", description="Cuota"),
        ]
        extracts = [extract("e1", on=date(2024, 1, 15), amount="100.00")]

        assert len(run_matching(systems, extracts, 0).matches) == 2
        assert run_matching(systems, extracts, 0, group_by_description=False).matches == []

    def test_scenario_window_five(self):
        result = run_matching(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 18))],
            5,
        )

        assert len(result.matches) == 1
        assert result.matches[0].delta_days == 3

    def test_scenario_window_two(self):
        result = run_matching(
            [system("s1", issue=date(2024, 1, 15))],
            [extract("e1", on=date(2024, 1, 18))],
            2,
        )

        assert result.matches == []
        assert result.used_extract == set()
        assert result.used_system == set()
