"""
Bank Reconciliation Module

Reconciles a bank statement extract against ledger ("system") records:
- Amount/date normalization of spreadsheet cells
- Expense category classification by pattern rules
- One-to-one matching by amount and date window
- Many-to-one matching by description and amount sum
- OVERDUE / DEFERRED classification of unmatched ledger lines
- Exclusions, recompute and manual overrides on persisted runs

Only the pure engine is exported here; services and endpoints are imported
from their own modules.
"""

from reconciliation.enums import AmountMode, RunStatus, UnmatchedSystemStatus
from reconciliation.matching_rules.amount_date_rules import (
    ExtractCandidate,
    MatchingResult,
    MatchPair,
    SystemCandidate,
    run_matching,
)
from reconciliation.matching_rules.category_rules import CategorySnapshot, RuleSnapshot, resolve_category
from reconciliation.unmatched import build_unmatched, classify_system_status

__all__ = [
    # Enums
    'AmountMode',
    'RunStatus',
    'UnmatchedSystemStatus',
    # Matching
    'ExtractCandidate',
    'SystemCandidate',
    'MatchPair',
    'MatchingResult',
    'run_matching',
    # Classification
    'CategorySnapshot',
    'RuleSnapshot',
    'resolve_category',
    'build_unmatched',
    'classify_system_status',
]
