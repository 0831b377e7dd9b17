"""
Expense Category Rules

Assigns an optional expense category to an extract line concept using
ordered pattern rules:
- Categories are evaluated in the order given by the caller
- Rules inside a category are evaluated in their own order
- The first satisfied rule across all categories wins

Rules are plain substrings or regular expressions, case-insensitive unless
flagged otherwise. A regular expression that does not compile degrades to a
substring test instead of failing the classification.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Optional, Pattern, Sequence, Tuple


@dataclass(frozen=True)
class RuleSnapshot:
    """Read-only copy of an expense rule."""
    pattern: str
    is_regex: bool = False
    case_sensitive: bool = False


@dataclass(frozen=True)
class CategorySnapshot:
    """Read-only copy of an expense category and its ordered rules."""
    id: str
    name: str
    rules: Tuple[RuleSnapshot, ...] = field(default_factory=tuple)


@lru_cache(maxsize=512)
def compile_rule_pattern(pattern: str, case_sensitive: bool) -> Optional[Pattern]:
    """Compile a rule pattern, or None when it is not a valid expression."""
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(pattern, flags)
    except re.error:
        return None


def _contains(concept: str, rule: RuleSnapshot) -> bool:
    if rule.case_sensitive:
        return rule.pattern in concept
    return rule.pattern.lower() in concept.lower()


def rule_matches(concept: Optional[str], rule: RuleSnapshot) -> bool:
    """Test a single rule against a concept."""
    if not concept:
        return False
    if rule.is_regex:
        compiled = compile_rule_pattern(rule.pattern, rule.case_sensitive)
        if compiled is not None:
            return compiled.search(concept) is not None
    return _contains(concept, rule)


def concept_matches_rules(concept: Optional[str], rules: Iterable[RuleSnapshot]) -> bool:
    """True when any of the rules is satisfied by the concept."""
    return any(rule_matches(concept, rule) for rule in rules)


def resolve_category(
    concept: Optional[str],
    categories: Sequence[CategorySnapshot],
) -> Optional[str]:
    """
    Return the id of the first category with a rule satisfied by concept.

    Args:
        concept: Extract line concept (original casing)
        categories: Snapshot of categories in evaluation order

    Returns:
        Category id, or None when the concept is empty or nothing matches
    """
    if not concept:
        return None
    for category in categories:
        for rule in category.rules:
            if rule_matches(concept, rule):
                return category.id
    return None
