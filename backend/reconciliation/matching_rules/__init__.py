"""
Matching Rules Module
"""

from .amount_date_rules import match_grouped_by_description, match_one_to_one, run_matching
from .category_rules import concept_matches_rules, resolve_category

__all__ = [
    "match_one_to_one",
    "match_grouped_by_description",
    "run_matching",
    "resolve_category",
    "concept_matches_rules",
]
