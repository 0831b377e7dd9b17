"""
Expense Category Store

CRUD for expense categories and their classification rules, plus the
read-only snapshot consumed by the category classifier.

Evaluation order is (position, created_at) for both categories and rules;
new entries are appended at the end.
"""

import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import ExpenseCategoryDB, ExpenseRuleDB, ExtractLineDB
from reconciliation.errors import RunNotFoundError, RunValidationError
from reconciliation.matching_rules.category_rules import CategorySnapshot, RuleSnapshot
from reconciliation.schemas import Category, Rule, RuleCreate

logger = logging.getLogger(__name__)


# Default bank expense categories (Argentine statements)
DEFAULT_CATEGORY_RULES: Dict[str, List[str]] = {
    "Comisiones bancarias gravadas en IVA": ["comision", "comisión"],
    "IVA": ["iva"],
    "Gastos y comisiones NO gravadas": ["gasto", "comision no gravada", "comisión no gravada"],
    "Impuesto a los débitos": ["debito", "débito"],
    "Impuesto a los créditos": ["credito", "crédito"],
    "Impuesto IIBB Tucuman": ["iibb", "iibb tucuman"],
    "SIRCREB": ["sircreb"],
    "Percepciones de IVA": ["percepcion", "percepción"],
}


def _db_to_rule(db_rule: ExpenseRuleDB) -> Rule:
    return Rule(
        id=db_rule.id,
        category_id=db_rule.category_id,
        pattern=db_rule.pattern,
        is_regex=bool(db_rule.is_regex),
        case_sensitive=bool(db_rule.case_sensitive),
        position=db_rule.position or 0,
    )


class CategoryRepository:
    """Repository for expense categories and rules"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== READ ====================

    async def _categories(self, category_ids: Optional[Sequence[str]] = None) -> List[ExpenseCategoryDB]:
        query = select(ExpenseCategoryDB).order_by(
            ExpenseCategoryDB.position, ExpenseCategoryDB.created_at, ExpenseCategoryDB.id
        )
        if category_ids is not None:
            query = query.where(ExpenseCategoryDB.id.in_(list(category_ids)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _rules_by_category(self, category_ids: Sequence[str]) -> Dict[str, List[ExpenseRuleDB]]:
        rules: Dict[str, List[ExpenseRuleDB]] = {cid: [] for cid in category_ids}
        if not category_ids:
            return rules
        result = await self.session.execute(
            select(ExpenseRuleDB)
            .where(ExpenseRuleDB.category_id.in_(list(category_ids)))
            .order_by(ExpenseRuleDB.position, ExpenseRuleDB.created_at, ExpenseRuleDB.id)
        )
        for db_rule in result.scalars().all():
            rules[db_rule.category_id].append(db_rule)
        return rules

    async def list_categories(self) -> List[Category]:
        """All categories with their rules, in evaluation order"""
        categories = await self._categories()
        rules = await self._rules_by_category([c.id for c in categories])
        return [
            Category(
                id=c.id,
                name=c.name,
                position=c.position or 0,
                rules=[_db_to_rule(r) for r in rules[c.id]],
            )
            for c in categories
        ]

    async def get_category(self, category_id: str) -> Optional[ExpenseCategoryDB]:
        result = await self.session.execute(
            select(ExpenseCategoryDB).where(ExpenseCategoryDB.id == category_id)
        )
        return result.scalar_one_or_none()

    async def load_snapshot(self, category_ids: Optional[Sequence[str]] = None) -> List[CategorySnapshot]:
        """
        Immutable copy of categories and rules for classification.

        Args:
            category_ids: Restrict to these categories (None = all)
        """
        categories = await self._categories(category_ids)
        rules = await self._rules_by_category([c.id for c in categories])
        return [
            CategorySnapshot(
                id=c.id,
                name=c.name,
                rules=tuple(
                    RuleSnapshot(
                        pattern=r.pattern,
                        is_regex=bool(r.is_regex),
                        case_sensitive=bool(r.case_sensitive),
                    )
                    for r in rules[c.id]
                ),
            )
            for c in categories
        ]

    # ==================== WRITE ====================

    async def _next_position(self, column, *conditions) -> int:
        query = select(func.max(column))
        if conditions:
            query = query.where(*conditions)
        current = (await self.session.execute(query)).scalar()
        return 0 if current is None else current + 1

    async def create_category(self, name: str) -> Category:
        name = name.strip()
        if not name:
            raise RunValidationError("Category name is required")
        existing = await self.session.execute(
            select(ExpenseCategoryDB.id).where(ExpenseCategoryDB.name == name)
        )
        if existing.scalar_one_or_none():
            raise RunValidationError(f"Category '{name}' already exists")

        db_category = ExpenseCategoryDB(
            name=name,
            position=await self._next_position(ExpenseCategoryDB.position),
        )
        self.session.add(db_category)
        await self.session.commit()
        logger.info(f"Expense category created: {name}")
        return Category(id=db_category.id, name=db_category.name, position=db_category.position, rules=[])

    async def delete_category(self, category_id: str) -> None:
        if not await self.get_category(category_id):
            raise RunNotFoundError("Category not found")
        # Keep classified lines, drop the reference
        await self.session.execute(
            ExtractLineDB.__table__.update()
            .where(ExtractLineDB.category_id == category_id)
            .values(category_id=None)
        )
        await self.session.execute(delete(ExpenseRuleDB).where(ExpenseRuleDB.category_id == category_id))
        await self.session.execute(delete(ExpenseCategoryDB).where(ExpenseCategoryDB.id == category_id))
        await self.session.commit()
        logger.info(f"Expense category deleted: {category_id}")

    async def create_rule(self, data: RuleCreate) -> Rule:
        if not await self.get_category(data.category_id):
            raise RunNotFoundError("Category not found")

        db_rule = ExpenseRuleDB(
            category_id=data.category_id,
            pattern=data.pattern,
            is_regex=data.is_regex,
            case_sensitive=data.case_sensitive,
            position=await self._next_position(
                ExpenseRuleDB.position, ExpenseRuleDB.category_id == data.category_id
            ),
        )
        self.session.add(db_rule)
        await self.session.commit()
        return _db_to_rule(db_rule)

    async def delete_rule(self, rule_id: str) -> None:
        result = await self.session.execute(delete(ExpenseRuleDB).where(ExpenseRuleDB.id == rule_id))
        if not result.rowcount:
            raise RunNotFoundError("Rule not found")
        await self.session.commit()

    async def seed_defaults(self) -> int:
        """
        Create the default categories and rules that are missing.

        Returns:
            Number of rules created
        """
        created = 0
        for name, patterns in DEFAULT_CATEGORY_RULES.items():
            result = await self.session.execute(
                select(ExpenseCategoryDB).where(ExpenseCategoryDB.name == name)
            )
            category = result.scalar_one_or_none()
            if category is None:
                category = ExpenseCategoryDB(
                    name=name,
                    position=await self._next_position(ExpenseCategoryDB.position),
                )
                self.session.add(category)
                await self.session.flush()

            existing = await self.session.execute(
                select(ExpenseRuleDB.pattern).where(ExpenseRuleDB.category_id == category.id)
            )
            known = set(existing.scalars().all())
            for pattern in patterns:
                if pattern in known:
                    continue
                self.session.add(ExpenseRuleDB(
                    category_id=category.id,
                    pattern=pattern,
                    is_regex=False,
                    case_sensitive=False,
                    position=await self._next_position(
                        ExpenseRuleDB.position, ExpenseRuleDB.category_id == category.id
                    ),
                ))
                await self.session.flush()
                created += 1

        await self.session.commit()
        if created:
            logger.info(f"Seeded {created} default expense rules")
        return created
