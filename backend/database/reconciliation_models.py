"""
Bank Reconciliation - Database Models

Tables:
- reconciliation_runs: one reconciliation session (extract vs system)
- extract_lines: bank statement rows owned by a run
- system_lines: ledger rows owned by a run
- reconciliation_matches: extract/system pairings
- unmatched_extract: active extract lines without a match
- unmatched_system: system lines without a match, OVERDUE or DEFERRED
- expense_categories / expense_rules: classification rules, independent of runs

Children of a run carry ON DELETE CASCADE; the service also deletes them
explicitly so SQLite behaves the same as PostgreSQL.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Text, Boolean, Date, DateTime, Integer, BigInteger,
    ForeignKey, Index, UniqueConstraint, Enum as SQLEnum, JSON, Numeric
)

from database.connection import Base
from reconciliation.enums import RunStatus, UnmatchedSystemStatus


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== RUNS ====================

class ReconciliationRunDB(Base):
    """
    A reconciliation session.

    exclude_concepts holds normalized concept strings (and category names
    used as exclusion markers) in the order they were added.
    """
    __tablename__ = "reconciliation_runs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=True)
    bank_name = Column(String(255), nullable=True)
    account_ref = Column(String(255), nullable=True)

    window_days = Column(Integer, nullable=False, default=0)
    cut_date = Column(Date, nullable=True)
    status = Column(SQLEnum(RunStatus, name="run_status"), nullable=False, default=RunStatus.OPEN)
    exclude_concepts = Column(JSON, nullable=False, default=list)

    created_by = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


# ==================== LINES ====================

class ExtractLineDB(Base):
    """Bank statement line"""
    __tablename__ = "extract_lines"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    run_id = Column(String(36), ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), nullable=False)
    row_index = Column(Integer, nullable=False)

    date = Column(Date, nullable=True)
    concept = Column(Text, nullable=True)
    amount = Column(Numeric(18, 4), nullable=False)
    amount_key = Column(BigInteger, nullable=False)
    raw = Column(JSON, nullable=True)

    category_id = Column(String(36), ForeignKey("expense_categories.id", ondelete="SET NULL"), nullable=True)
    excluded = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_extract_lines_run_row", "run_id", "row_index"),
        Index("ix_extract_lines_run_key", "run_id", "amount_key"),
    )


class SystemLineDB(Base):
    """Ledger line; row_index identifies it across re-uploads"""
    __tablename__ = "system_lines"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    run_id = Column(String(36), ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), nullable=False)
    row_index = Column(Integer, nullable=False)

    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    amount = Column(Numeric(18, 4), nullable=False)
    amount_key = Column(BigInteger, nullable=False)
    description = Column(Text, nullable=True)
    raw = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("run_id", "row_index", name="uq_system_lines_run_row"),
    )


# ==================== RESULTS ====================

class MatchDB(Base):
    __tablename__ = "reconciliation_matches"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    run_id = Column(String(36), ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    extract_line_id = Column(String(36), ForeignKey("extract_lines.id", ondelete="CASCADE"), nullable=False, index=True)
    system_line_id = Column(String(36), ForeignKey("system_lines.id", ondelete="CASCADE"), nullable=False, index=True)
    delta_days = Column(Integer, nullable=False, default=0)
    grouped = Column(Boolean, nullable=False, default=False)  # matched by the description pass
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class UnmatchedExtractDB(Base):
    __tablename__ = "unmatched_extract"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    run_id = Column(String(36), ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    extract_line_id = Column(
        String(36), ForeignKey("extract_lines.id", ondelete="CASCADE"), nullable=False, unique=True
    )


class UnmatchedSystemDB(Base):
    __tablename__ = "unmatched_system"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    run_id = Column(String(36), ForeignKey("reconciliation_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    system_line_id = Column(
        String(36), ForeignKey("system_lines.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    status = Column(SQLEnum(UnmatchedSystemStatus, name="unmatched_system_status"), nullable=False)


# ==================== CATEGORIES ====================

class ExpenseCategoryDB(Base):
    __tablename__ = "expense_categories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class ExpenseRuleDB(Base):
    __tablename__ = "expense_rules"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    category_id = Column(
        String(36), ForeignKey("expense_categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pattern = Column(Text, nullable=False)
    is_regex = Column(Boolean, nullable=False, default=False)
    case_sensitive = Column(Boolean, nullable=False, default=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
