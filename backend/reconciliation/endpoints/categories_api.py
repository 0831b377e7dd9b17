"""
Expense Category API Endpoints

- GET /api/expenses/categories - Categories with their rules
- POST /api/expenses/categories - Create a category (admin)
- DELETE /api/expenses/categories/{category_id} - Delete a category (admin)
- GET /api/expenses/rules - All rules
- POST /api/expenses/rules - Add a rule to a category (admin)
- DELETE /api/expenses/rules/{rule_id} - Delete a rule (admin)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from middleware.auth import get_current_user_required, require_admin
from reconciliation.endpoints.reconciliation_api import raise_http_error
from reconciliation.errors import ReconciliationError
from reconciliation.schemas import Category, CategoryCreate, Rule, RuleCreate
from reconciliation.services.category_service import CategoryRepository
from services.auth import AuthUser
from utils.validation_errors import require_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/expenses", tags=["Expense Categories"])


@router.get("/categories", response_model=List[Category], summary="List expense categories")
async def list_categories(
    db: AsyncSession = Depends(get_db),
    _user: AuthUser = Depends(get_current_user_required)
):
    try:
        return await CategoryRepository(db).list_categories()
    except Exception as e:
        logger.error(f"Failed to list expense categories: {e}")
        raise HTTPException(status_code=500, detail="Failed to list expense categories")


@router.post("/categories", response_model=Category, status_code=201, summary="Create expense category")
async def create_category(
    request: CategoryCreate,
    db: AsyncSession = Depends(get_db),
    user: AuthUser = Depends(require_admin)
):
    try:
        category = await CategoryRepository(db).create_category(request.name)
        logger.info(f"Category {category.name} created by {user.email}")
        return category
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to create expense category: {e}")
        raise HTTPException(status_code=500, detail="Failed to create expense category")


@router.delete("/categories/{category_id}", summary="Delete expense category")
async def delete_category(
    category_id: str,
    db: AsyncSession = Depends(get_db),
    _user: AuthUser = Depends(require_admin)
):
    """Delete a category and its rules; lines classified with it become uncategorized."""
    require_uuid(category_id, "category_id")
    try:
        await CategoryRepository(db).delete_category(category_id)
        return {"success": True, "category_id": category_id}
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete expense category {category_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete expense category")


@router.get("/rules", response_model=List[Rule], summary="List expense rules")
async def list_rules(
    db: AsyncSession = Depends(get_db),
    _user: AuthUser = Depends(get_current_user_required)
):
    try:
        categories = await CategoryRepository(db).list_categories()
        return [rule for category in categories for rule in category.rules]
    except Exception as e:
        logger.error(f"Failed to list expense rules: {e}")
        raise HTTPException(status_code=500, detail="Failed to list expense rules")


@router.post("/rules", response_model=Rule, status_code=201, summary="Create expense rule")
async def create_rule(
    request: RuleCreate,
    db: AsyncSession = Depends(get_db),
    _user: AuthUser = Depends(require_admin)
):
    """
    Add a rule to a category.

    Regex rules that fail to compile are accepted and evaluated as plain text.
    """
    try:
        return await CategoryRepository(db).create_rule(request)
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to create expense rule: {e}")
        raise HTTPException(status_code=500, detail="Failed to create expense rule")


@router.delete("/rules/{rule_id}", summary="Delete expense rule")
async def delete_rule(
    rule_id: str,
    db: AsyncSession = Depends(get_db),
    _user: AuthUser = Depends(require_admin)
):
    require_uuid(rule_id, "rule_id")
    try:
        await CategoryRepository(db).delete_rule(rule_id)
        return {"success": True, "rule_id": rule_id}
    except ReconciliationError as e:
        raise_http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete expense rule {rule_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete expense rule")
