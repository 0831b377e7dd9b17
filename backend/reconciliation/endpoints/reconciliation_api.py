"""
Reconciliation API Endpoints

REST API for reconciliation runs:
- POST /api/reconciliations - Create a run from extract and system rows
- GET /api/reconciliations - List runs visible to the caller
- GET /api/reconciliations/{run_id} - Run view
- PATCH /api/reconciliations/{run_id} - Close/reopen and edit metadata
- DELETE /api/reconciliations/{run_id} - Delete an OPEN run
- PATCH /api/reconciliations/{run_id}/system - Re-upload system rows
- PATCH /api/reconciliations/{run_id}/exclude-concept - Exclude one concept
- POST /api/reconciliations/{run_id}/exclude-concepts - Exclude several concepts
- POST /api/reconciliations/{run_id}/exclude-category - Exclude by category rules
- PATCH /api/reconciliations/{run_id}/remove-excluded-concept - Remove an exclusion
- POST /api/reconciliations/{run_id}/recompute - Full recompute
- POST /api/reconciliations/{run_id}/match - Manual match override
"""

import logging
from typing import List, NoReturn

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from middleware.auth import get_current_user_required
from reconciliation.errors import (
    ReconciliationError,
    RunNotFoundError,
    RunPermissionError,
    RunStateError,
    RunValidationError,
)
from reconciliation.schemas import (
    CreateRunRequest,
    ExcludeByCategoryRequest,
    ExcludeConceptRequest,
    ExcludeManyRequest,
    Run,
    RunSummary,
    RunView,
    SetMatchRequest,
    UpdateRunRequest,
    UpdateSystemRequest,
)
from reconciliation.services.reconciliation_service import ReconciliationService
from services.auth import AuthUser
from utils.validation_errors import raise_run_validation_error, require_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliations", tags=["Reconciliation"])


# ==================== Error Mapping ====================

def raise_http_error(error: ReconciliationError) -> NoReturn:
    """Translate a reconciliation error into the matching HTTP response."""
    if isinstance(error, RunValidationError):
        raise_run_validation_error(error)
    if isinstance(error, RunNotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, RunPermissionError):
        raise HTTPException(status_code=403, detail=str(error))
    if isinstance(error, RunStateError):
        raise HTTPException(status_code=409, detail=str(error))
    raise HTTPException(status_code=400, detail=str(error))


# ==================== Runs ====================

@router.post("", response_model=RunSummary, status_code=201, summary="Create reconciliation run")
async def create_run(
    request: CreateRunRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    """
    Create a run and reconcile it immediately.

    This will:
    1. Normalize extract and system rows with the given column mappings
    2. Classify extract lines into expense categories
    3. Match system lines to extract lines (amount + date window, then grouped by description)
    4. Classify leftovers (unmatched extract, OVERDUE / DEFERRED system lines)
    """
    try:
        return await ReconciliationService(db).create_run(request, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to create reconciliation run: {e}")
        raise HTTPException(status_code=500, detail="Failed to create reconciliation run")


@router.get("", response_model=List[Run], summary="List reconciliation runs")
async def list_runs(
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    try:
        return await ReconciliationService(db).list_runs(user)
    except Exception as e:
        logger.error(f"Failed to list reconciliation runs: {e}")
        raise HTTPException(status_code=500, detail="Failed to list reconciliation runs")


@router.get("/{run_id}", response_model=RunView, summary="Get reconciliation run")
async def get_run(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).get_run_view(run_id, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to get reconciliation run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get reconciliation run")


@router.patch("/{run_id}", response_model=Run, summary="Update run status or metadata")
async def update_run(
    run_id: str,
    request: UpdateRunRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    """
    Close or reopen a run and edit its title, bank or account reference.

    Only the creator can reopen a CLOSED run.
    """
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).update_run(run_id, request, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to update reconciliation run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update reconciliation run")


@router.delete("/{run_id}", summary="Delete reconciliation run")
async def delete_run(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    require_uuid(run_id, "run_id")
    try:
        await ReconciliationService(db).delete_run(run_id, user)
        return {"success": True, "run_id": run_id}
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete reconciliation run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete reconciliation run")


# ==================== Data & Exclusions ====================

@router.patch("/{run_id}/system", response_model=RunView, summary="Update system data")
async def update_system(
    run_id: str,
    request: UpdateSystemRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    """
    Re-upload the ledger rows of a run.

    Rows are matched to existing lines by position; the run is recomputed afterwards.
    """
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).update_system_data(run_id, request.rows, request.mapping, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to update system data for run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update system data")


@router.patch("/{run_id}/exclude-concept", response_model=RunView, summary="Exclude a concept")
async def exclude_concept(
    run_id: str,
    request: ExcludeConceptRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).add_excluded_concept(run_id, request.concept, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to exclude concept for run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to exclude concept")


@router.post("/{run_id}/exclude-concepts", response_model=RunView, summary="Exclude several concepts")
async def exclude_concepts(
    run_id: str,
    request: ExcludeManyRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).add_excluded_concepts(run_id, request.concepts, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to exclude concepts for run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to exclude concepts")


@router.post("/{run_id}/exclude-category", response_model=RunView, summary="Exclude by category")
async def exclude_category(
    run_id: str,
    request: ExcludeByCategoryRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    """Exclude every active extract line selected by the category's rules."""
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).exclude_by_category(run_id, request.category_id, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to exclude category for run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to exclude category")


@router.patch(
    "/{run_id}/remove-excluded-concept",
    response_model=RunView,
    summary="Remove an exclusion"
)
async def remove_excluded_concept(
    run_id: str,
    request: ExcludeConceptRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).remove_excluded_concept(run_id, request.concept, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to remove exclusion for run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to remove exclusion")


# ==================== Matching ====================

@router.post("/{run_id}/recompute", response_model=RunSummary, summary="Recompute matches")
async def recompute(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).recompute(run_id, user)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to recompute run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to recompute reconciliation run")


@router.post("/{run_id}/match", response_model=RunView, summary="Set a manual match")
async def set_match(
    run_id: str,
    request: SetMatchRequest,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(get_current_user_required)
):
    """
    Match a system line to an explicit set of extract lines.

    The extract amounts must add up to the system amount. Lines that do not
    belong to the run, or excluded extract lines, are rejected with 422.
    """
    require_uuid(run_id, "run_id")
    try:
        return await ReconciliationService(db).set_match(
            run_id, request.system_line_id, request.extract_line_ids, user
        )
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to set manual match for run {run_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to set manual match")
