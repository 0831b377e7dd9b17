"""
Reconciliation enums shared by the engine, the ORM models and the API.
"""

from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle state of a reconciliation run."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class UnmatchedSystemStatus(str, Enum):
    """Bucket for a system line left without a match."""
    OVERDUE = "OVERDUE"      # due (or issue) date on/before the cut date
    DEFERRED = "DEFERRED"    # no cut date, no date, or after the cut date


class AmountMode(str, Enum):
    """How the amount of a row is read from its columns."""
    SINGLE = "single"
    DEBE_HABER = "debe-haber"


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    RUN_CREATED = "reconciliation.run_created"
    RUN_DELETED = "reconciliation.run_deleted"
    STATUS_CHANGED = "reconciliation.status_changed"
    RECOMPUTED = "reconciliation.recomputed"
    CONCEPT_EXCLUDED = "reconciliation.concept_excluded"
    CATEGORY_EXCLUDED = "reconciliation.category_excluded"
    EXCLUSION_REMOVED = "reconciliation.exclusion_removed"
    MANUAL_MATCH = "reconciliation.manual_match"
    SYSTEM_UPDATED = "reconciliation.system_updated"
