"""
Unit Tests for expense category classification

Run with: pytest tests/test_category_rules.py -v
"""

import pytest

from reconciliation.matching_rules.category_rules import (
    CategorySnapshot,
    RuleSnapshot,
    compile_rule_pattern,
    concept_matches_rules,
    resolve_category,
    rule_matches,
)


@pytest.fixture
def categories():
    return [
        CategorySnapshot(id="cat-fees", name="Comisiones", rules=(
            RuleSnapshot(pattern="comision"),
            RuleSnapshot(pattern="comisión"),
        )),
        CategorySnapshot(id="cat-vat", name="IVA", rules=(
            RuleSnapshot(pattern=r"\biva\b", is_regex=True),
        )),
        CategorySnapshot(id="cat-sircreb", name="SIRCREB", rules=(
            RuleSnapshot(pattern="SIRCREB", case_sensitive=True),
        )),
    ]


class TestRuleMatches:
    """Test single rule evaluation."""

    def test_substring_is_case_insensitive_by_default(self):
        assert rule_matches("COMISION MANTENIMIENTO", RuleSnapshot(pattern="comision"))

    def test_case_sensitive_substring(self):
        rule = RuleSnapshot(pattern="SIRCREB", case_sensitive=True)
        assert rule_matches("Ret. SIRCREB", rule)
        assert not rule_matches("ret. sircreb", rule)

    def test_regex_searches_original_concept(self):
        rule = RuleSnapshot(pattern=r"^imp\.? deb", is_regex=True)
        assert rule_matches("IMP. DEB. LEY 25413", rule)
        assert not rule_matches("REINTEGRO IMP DEB", rule)

    def test_case_sensitive_regex(self):
        rule = RuleSnapshot(pattern=r"IVA \d+%", is_regex=True, case_sensitive=True)
        assert rule_matches("IVA 21% s/comision", rule)
        assert not rule_matches("iva 21% s/comision", rule)

    def test_invalid_regex_falls_back_to_substring(self):
        rule = RuleSnapshot(pattern="iva (21%", is_regex=True)
        assert compile_rule_pattern("iva (21%", False) is None
        assert rule_matches("Percepcion IVA (21%)", rule)
        assert not rule_matches("Percepcion IVA 21%", rule)

    @pytest.mark.parametrize("concept", [None, ""])
    def test_empty_concept_never_matches(self, concept):
        assert not rule_matches(concept, RuleSnapshot(pattern=""))


class TestResolveCategory:
    """Test first-match-wins classification."""

    def test_first_category_wins(self, categories):
        assert resolve_category("Comision IVA", categories) == "cat-fees"

    def test_regex_category(self, categories):
        assert resolve_category("Debito IVA 21%", categories) == "cat-vat"
        assert resolve_category("Divisas", categories) is None

    def test_order_of_snapshot_is_respected(self, categories):
        reordered = [categories[1], categories[0], categories[2]]
        assert resolve_category("Comision IVA", reordered) == "cat-vat"

    def test_no_match_or_empty(self, categories):
        assert resolve_category("Transferencia recibida", categories) is None
        assert resolve_category(None, categories) is None
        assert resolve_category("comision", []) is None

    def test_concept_matches_rules(self, categories):
        assert concept_matches_rules("RET. SIRCREB", categories[2].rules)
        assert not concept_matches_rules("ret. sircreb", categories[2].rules)
        assert not concept_matches_rules("anything", ())
