"""
Integration Tests for the expense category store

Run with: pytest tests/test_category_service.py -v
"""

import uuid

import pytest

from reconciliation.errors import RunNotFoundError, RunValidationError
from reconciliation.matching_rules.category_rules import resolve_category
from reconciliation.schemas import RuleCreate
from reconciliation.services.category_service import DEFAULT_CATEGORY_RULES, CategoryRepository


@pytest.fixture
def repo(db_session):
    return CategoryRepository(db_session)


class TestCategoryRepository:
    """Test category and rule CRUD."""

    @pytest.mark.asyncio
    async def test_categories_keep_creation_order(self, repo):
        await repo.create_category("IVA")
        await repo.create_category("Comisiones")

        categories = await repo.list_categories()

        assert [c.name for c in categories] == ["IVA", "Comisiones"]
        assert [c.position for c in categories] == [0, 1]

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, repo):
        await repo.create_category("IVA")

        with pytest.raises(RunValidationError):
            await repo.create_category("  IVA ")

    @pytest.mark.asyncio
    async def test_rules_are_ordered_within_category(self, repo):
        category = await repo.create_category("Impuestos")
        first = await repo.create_rule(RuleCreate(category_id=category.id, pattern="debito"))
        second = await repo.create_rule(RuleCreate(category_id=category.id, pattern=r"imp\.? deb", is_regex=True))

        listed = (await repo.list_categories())[0]

        assert [r.id for r in listed.rules] == [first.id, second.id]
        assert listed.rules[1].is_regex is True
        assert second.position == 1

    @pytest.mark.asyncio
    async def test_rule_needs_existing_category(self, repo):
        with pytest.raises(RunNotFoundError):
            await repo.create_rule(RuleCreate(category_id=str(uuid.uuid4()), pattern="x"))

    @pytest.mark.asyncio
    async def test_delete_rule_and_category(self, repo):
        category = await repo.create_category("SIRCREB")
        rule = await repo.create_rule(RuleCreate(category_id=category.id, pattern="sircreb"))

        await repo.delete_rule(rule.id)
        assert (await repo.list_categories())[0].rules == []

        await repo.delete_category(category.id)
        assert await repo.list_categories() == []

        with pytest.raises(RunNotFoundError):
            await repo.delete_rule(rule.id)
        with pytest.raises(RunNotFoundError):
            await repo.delete_category(category.id)

    @pytest.mark.asyncio
    async def test_snapshot_restricted_to_enabled_ids(self, repo):
        vat = await repo.create_category("IVA")
        fees = await repo.create_category("Comisiones")
        await repo.create_rule(RuleCreate(category_id=vat.id, pattern="iva"))
        await repo.create_rule(RuleCreate(category_id=fees.id, pattern="comision"))

        everything = await repo.load_snapshot()
        only_fees = await repo.load_snapshot([fees.id])

        assert [c.id for c in everything] == [vat.id, fees.id]
        assert resolve_category("Comision + IVA", everything) == vat.id
        assert resolve_category("Comision + IVA", only_fees) == fees.id


class TestSeedDefaults:
    """Test default category seeding."""

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, repo):
        created = await repo.seed_defaults()
        again = await repo.seed_defaults()

        assert created == sum(len(patterns) for patterns in DEFAULT_CATEGORY_RULES.values())
        assert again == 0
        categories = await repo.list_categories()
        assert [c.name for c in categories] == list(DEFAULT_CATEGORY_RULES)

    @pytest.mark.asyncio
    async def test_seed_classifies_bank_fees(self, repo):
        await repo.seed_defaults()
        snapshot = await repo.load_snapshot()
        names = {c.id: c.name for c in snapshot}

        assert names[resolve_category("Ret. SIRCREB Tucuman", snapshot)] == "SIRCREB"
        assert names[resolve_category("IMPUESTO DEBITO LEY 25413", snapshot)] == "Impuesto a los débitos"
        assert resolve_category("Transferencia recibida", snapshot) is None
