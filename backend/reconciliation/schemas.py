"""
Reconciliation request/response models.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from reconciliation.enums import AmountMode, RunStatus, UnmatchedSystemStatus


# ==================== MAPPINGS ====================

class ExtractMapping(BaseModel):
    """Column mapping for bank extract rows"""
    date_col: str
    concept_col: Optional[str] = None
    amount_mode: AmountMode = AmountMode.SINGLE
    amount_col: Optional[str] = None
    debe_col: Optional[str] = None
    haber_col: Optional[str] = None


class SystemMapping(BaseModel):
    """Column mapping for ledger rows"""
    issue_date_col: Optional[str] = None
    due_date_col: Optional[str] = None
    amount_mode: AmountMode = AmountMode.SINGLE
    amount_col: Optional[str] = None
    debe_col: Optional[str] = None
    haber_col: Optional[str] = None
    description_col: Optional[str] = None


class ExtractDataset(BaseModel):
    rows: List[Dict[str, Any]]
    mapping: ExtractMapping
    exclude_concepts: Optional[List[str]] = None


class SystemDataset(BaseModel):
    rows: List[Dict[str, Any]]
    mapping: SystemMapping


# ==================== REQUESTS ====================

class CreateRunRequest(BaseModel):
    """Request to create a reconciliation run"""
    title: Optional[str] = None
    bank_name: Optional[str] = None
    account_ref: Optional[str] = None
    window_days: Optional[int] = Field(default=None, ge=0, description="Day tolerance, 0 = same day")
    cut_date: Optional[str] = Field(default=None, description="Cut date (DD/MM/YYYY or ISO)")
    extract: ExtractDataset
    system: SystemDataset
    enabled_category_ids: Optional[List[str]] = Field(
        default=None, description="Restrict classification to these categories"
    )


class UpdateRunRequest(BaseModel):
    status: Optional[RunStatus] = None
    title: Optional[str] = None
    bank_name: Optional[str] = None
    account_ref: Optional[str] = None


class UpdateSystemRequest(BaseModel):
    rows: List[Dict[str, Any]]
    mapping: SystemMapping


class ExcludeConceptRequest(BaseModel):
    concept: str = Field(..., min_length=1)


class ExcludeManyRequest(BaseModel):
    concepts: List[str] = Field(..., min_length=1)


class ExcludeByCategoryRequest(BaseModel):
    category_id: str = Field(..., min_length=1)


class SetMatchRequest(BaseModel):
    system_line_id: str
    extract_line_ids: List[str] = Field(..., min_length=1)


# ==================== RESPONSES ====================

class RunSummary(BaseModel):
    """Counts returned after creating a run"""
    run_id: str
    matched: int
    only_extract: int
    system_overdue: int
    system_deferred: int


class Run(BaseModel):
    id: str
    title: Optional[str] = None
    bank_name: Optional[str] = None
    account_ref: Optional[str] = None
    window_days: int
    cut_date: Optional[str] = None
    status: RunStatus
    exclude_concepts: List[str] = []
    created_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ExtractLine(BaseModel):
    id: str
    row_index: int
    date: Optional[str] = None
    concept: Optional[str] = None
    amount: float
    amount_key: int
    category_id: Optional[str] = None
    excluded: bool = False
    raw: Optional[Dict[str, Any]] = None


class SystemLine(BaseModel):
    id: str
    row_index: int
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    amount: float
    amount_key: int
    description: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


class Match(BaseModel):
    id: str
    extract_line_id: str
    system_line_id: str
    delta_days: int
    grouped: bool = Field(default=False, description="Several system lines share this extract line")


class UnmatchedExtract(BaseModel):
    id: str
    extract_line_id: str


class UnmatchedSystem(BaseModel):
    id: str
    system_line_id: str
    status: UnmatchedSystemStatus


class RunView(BaseModel):
    """Run with its active lines and current match state"""
    run: Run
    extract_lines: List[ExtractLine]
    system_lines: List[SystemLine]
    matches: List[Match]
    unmatched_extract: List[UnmatchedExtract]
    unmatched_system: List[UnmatchedSystem]


# ==================== CATEGORIES ====================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)


class RuleCreate(BaseModel):
    category_id: str
    pattern: str = Field(..., min_length=1)
    is_regex: bool = False
    case_sensitive: bool = False


class Rule(BaseModel):
    id: str
    category_id: str
    pattern: str
    is_regex: bool
    case_sensitive: bool
    position: int


class Category(BaseModel):
    id: str
    name: str
    position: int
    rules: List[Rule] = []
