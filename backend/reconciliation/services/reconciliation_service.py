"""
Reconciliation Service

Orchestrates a reconciliation run end to end:
- Run creation (normalize rows, classify extract lines, match, classify leftovers)
- Concept / category exclusions and their removal
- Full recompute of matches and unmatched sets
- Manual match override
- System data re-upload (row index diff)
- Status changes and deletion
- Audit logging

Every mutation of a run is serialized by an in-process lock per run plus a
row lock on the run record, and committed in a single transaction. Any
failure rolls the session back and re-raises.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.reconciliation_models import (
    ExpenseCategoryDB,
    ExpenseRuleDB,
    ExtractLineDB,
    MatchDB,
    ReconciliationRunDB,
    SystemLineDB,
    UnmatchedExtractDB,
    UnmatchedSystemDB,
    generate_uuid,
)
from reconciliation.enums import ReconciliationAuditEvent, RunStatus, UnmatchedSystemStatus
from reconciliation.errors import RunNotFoundError, RunPermissionError, RunValidationError
from reconciliation.lifecycle import assert_run_deletable, assert_run_open, transition_status
from reconciliation.matching_rules.amount_date_rules import (
    MISSING_DATE_DELTA,
    ExtractCandidate,
    SystemCandidate,
    date_delta,
    run_matching,
)
from reconciliation.matching_rules.category_rules import (
    RuleSnapshot,
    concept_matches_rules,
    resolve_category,
)
from reconciliation.normalize import (
    extract_amount,
    normalize_concept,
    normalize_text,
    parse_date,
    to_amount_key,
)
from reconciliation.schemas import (
    CreateRunRequest,
    ExtractLine,
    Match,
    Run,
    RunSummary,
    RunView,
    SystemLine,
    SystemMapping,
    UnmatchedExtract,
    UnmatchedSystem,
    UpdateRunRequest,
)
from reconciliation.services.category_service import CategoryRepository
from reconciliation.unmatched import build_unmatched, classify_system_status
from services.auth import AuthUser

logger = logging.getLogger(__name__)


def log_reconciliation_event(
    event_type: str,
    run_id: str,
    details: Dict[str, Any],
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "run_id": run_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


# ==================== RUN LOCKS ====================

# run id -> (lock, holders + waiters); an entry lives only while someone uses it
_run_locks: Dict[str, Tuple[asyncio.Lock, int]] = {}


@asynccontextmanager
async def run_lock(run_id: str) -> AsyncIterator[None]:
    """Serialize mutations of one run inside this process."""
    lock, users = _run_locks.get(run_id, (None, 0))
    if lock is None:
        lock = asyncio.Lock()
    _run_locks[run_id] = (lock, users + 1)
    try:
        async with lock:
            yield
    finally:
        lock, users = _run_locks[run_id]
        if users <= 1:
            del _run_locks[run_id]
        else:
            _run_locks[run_id] = (lock, users - 1)


# ==================== CONVERSIONS ====================

def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value else None


def _to_extract_candidate(line: ExtractLineDB) -> ExtractCandidate:
    return ExtractCandidate(id=line.id, date=line.date, amount_key=int(line.amount_key))


def _to_system_candidate(line: SystemLineDB) -> SystemCandidate:
    return SystemCandidate(
        id=line.id,
        issue_date=line.issue_date,
        due_date=line.due_date,
        amount_key=int(line.amount_key),
        amount=Decimal(line.amount),
        description=line.description,
    )


def _run_to_schema(run: ReconciliationRunDB) -> Run:
    return Run(
        id=run.id,
        title=run.title,
        bank_name=run.bank_name,
        account_ref=run.account_ref,
        window_days=run.window_days,
        cut_date=_iso(run.cut_date),
        status=RunStatus(run.status),
        exclude_concepts=list(run.exclude_concepts or []),
        created_by=run.created_by,
        created_at=_iso(run.created_at),
        updated_at=_iso(run.updated_at),
    )


def _system_fields(row: Dict[str, Any], mapping: SystemMapping) -> Optional[Dict[str, Any]]:
    """Typed column values of a ledger row, None when the row has no amount"""
    amount = extract_amount(
        row, mapping.amount_mode, mapping.amount_col, mapping.debe_col, mapping.haber_col
    )
    if amount is None:
        return None
    return {
        "issue_date": parse_date(row.get(mapping.issue_date_col)) if mapping.issue_date_col else None,
        "due_date": parse_date(row.get(mapping.due_date_col)) if mapping.due_date_col else None,
        "amount": amount,
        "amount_key": to_amount_key(amount),
        "description": normalize_text(row.get(mapping.description_col)) if mapping.description_col else None,
        "raw": row,
    }


def _parse_cut_date(value: Optional[str]) -> Optional[date]:
    if value is None or not value.strip():
        return None
    cut_date = parse_date(value)
    if cut_date is None:
        raise RunValidationError("Invalid cut date", {"cut_date": value})
    return cut_date


class ReconciliationService:
    """
    Service for bank extract vs ledger reconciliation runs.

    Methods taking a user enforce run access (creator or admin).
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.categories = CategoryRepository(db)

    # ==================== ACCESS ====================

    async def _get_run(self, run_id: str, for_update: bool = False) -> ReconciliationRunDB:
        query = select(ReconciliationRunDB).where(ReconciliationRunDB.id == run_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        run = result.scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(f"Reconciliation run {run_id} not found")
        return run

    @staticmethod
    def assert_access(run: ReconciliationRunDB, user: AuthUser) -> None:
        if run.created_by != user.id and not user.is_admin():
            raise RunPermissionError("No access to this reconciliation run")

    @asynccontextmanager
    async def _mutation(
        self,
        run_id: str,
        user: AuthUser,
        require_open: bool = True,
    ) -> AsyncIterator[ReconciliationRunDB]:
        """Lock, load and check the run; commit on success, roll back on failure."""
        async with run_lock(run_id):
            try:
                run = await self._get_run(run_id, for_update=True)
                self.assert_access(run, user)
                if require_open:
                    assert_run_open(run)
                yield run
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

    # ==================== READ ====================

    async def get_run_view(self, run_id: str, user: AuthUser) -> RunView:
        run = await self._get_run(run_id)
        self.assert_access(run, user)

        extract_lines = await self._active_extract_lines(run_id)
        system_lines = await self._system_lines(run_id)
        matches = (await self.db.execute(
            select(MatchDB).where(MatchDB.run_id == run_id).order_by(MatchDB.created_at, MatchDB.id)
        )).scalars().all()
        unmatched_extract = (await self.db.execute(
            select(UnmatchedExtractDB).where(UnmatchedExtractDB.run_id == run_id)
        )).scalars().all()
        unmatched_system = (await self.db.execute(
            select(UnmatchedSystemDB).where(UnmatchedSystemDB.run_id == run_id)
        )).scalars().all()

        return RunView(
            run=_run_to_schema(run),
            extract_lines=[
                ExtractLine(
                    id=line.id,
                    row_index=line.row_index,
                    date=_iso(line.date),
                    concept=line.concept,
                    amount=float(line.amount),
                    amount_key=int(line.amount_key),
                    category_id=line.category_id,
                    excluded=bool(line.excluded),
                    raw=line.raw,
                )
                for line in extract_lines
            ],
            system_lines=[
                SystemLine(
                    id=line.id,
                    row_index=line.row_index,
                    issue_date=_iso(line.issue_date),
                    due_date=_iso(line.due_date),
                    amount=float(line.amount),
                    amount_key=int(line.amount_key),
                    description=line.description,
                    raw=line.raw,
                )
                for line in system_lines
            ],
            matches=[
                Match(
                    id=m.id,
                    extract_line_id=m.extract_line_id,
                    system_line_id=m.system_line_id,
                    delta_days=m.delta_days,
                    grouped=bool(m.grouped),
                )
                for m in matches
            ],
            unmatched_extract=[
                UnmatchedExtract(id=u.id, extract_line_id=u.extract_line_id) for u in unmatched_extract
            ],
            unmatched_system=[
                UnmatchedSystem(
                    id=u.id,
                    system_line_id=u.system_line_id,
                    status=UnmatchedSystemStatus(u.status),
                )
                for u in unmatched_system
            ],
        )

    async def list_runs(self, user: AuthUser) -> List[Run]:
        """Runs created by the user, or all runs for admins, newest first"""
        query = select(ReconciliationRunDB).order_by(ReconciliationRunDB.created_at.desc())
        if not user.is_admin():
            query = query.where(ReconciliationRunDB.created_by == user.id)
        result = await self.db.execute(query)
        return [_run_to_schema(run) for run in result.scalars().all()]

    async def _active_extract_lines(self, run_id: str) -> List[ExtractLineDB]:
        result = await self.db.execute(
            select(ExtractLineDB)
            .where(ExtractLineDB.run_id == run_id, ExtractLineDB.excluded.is_(False))
            .order_by(ExtractLineDB.row_index)
        )
        return list(result.scalars().all())

    async def _system_lines(self, run_id: str) -> List[SystemLineDB]:
        result = await self.db.execute(
            select(SystemLineDB).where(SystemLineDB.run_id == run_id).order_by(SystemLineDB.row_index)
        )
        return list(result.scalars().all())

    # ==================== CREATE ====================

    async def create_run(self, request: CreateRunRequest, user: AuthUser) -> RunSummary:
        """
        Create a run from already tabular extract and system rows.

        Rows whose amount cannot be read are dropped. Extract lines whose
        normalized concept is in the initial exclusion list are stored as
        excluded and take no part in matching.
        """
        window_days = (
            request.window_days if request.window_days is not None
            else self.settings.RECON_DEFAULT_WINDOW_DAYS
        )
        cut_date = _parse_cut_date(request.cut_date)

        exclude_concepts: List[str] = []
        for concept in request.extract.exclude_concepts or []:
            key = normalize_concept(concept)
            if key and key not in exclude_concepts:
                exclude_concepts.append(key)

        try:
            snapshot = await self.categories.load_snapshot(request.enabled_category_ids)

            run = ReconciliationRunDB(
                id=generate_uuid(),
                title=request.title,
                bank_name=request.bank_name,
                account_ref=request.account_ref,
                window_days=window_days,
                cut_date=cut_date,
                status=RunStatus.OPEN,
                exclude_concepts=exclude_concepts,
                created_by=user.id,
            )
            self.db.add(run)

            extract_mapping = request.extract.mapping
            extract_lines: List[ExtractLineDB] = []
            for index, row in enumerate(request.extract.rows):
                amount = extract_amount(
                    row,
                    extract_mapping.amount_mode,
                    extract_mapping.amount_col,
                    extract_mapping.debe_col,
                    extract_mapping.haber_col,
                )
                if amount is None:
                    continue
                concept = (
                    normalize_text(row.get(extract_mapping.concept_col))
                    if extract_mapping.concept_col else None
                )
                extract_lines.append(ExtractLineDB(
                    id=generate_uuid(),
                    run_id=run.id,
                    row_index=index,
                    date=parse_date(row.get(extract_mapping.date_col)),
                    concept=concept,
                    amount=amount,
                    amount_key=to_amount_key(amount),
                    raw=row,
                    category_id=resolve_category(concept, snapshot),
                    excluded=normalize_concept(concept) in exclude_concepts if concept else False,
                ))

            system_lines: List[SystemLineDB] = []
            for index, row in enumerate(request.system.rows):
                fields = _system_fields(row, request.system.mapping)
                if fields is None:
                    continue
                system_lines.append(SystemLineDB(id=generate_uuid(), run_id=run.id, row_index=index, **fields))

            self.db.add_all(extract_lines)
            self.db.add_all(system_lines)
            await self.db.flush()

            summary = await self._replace_results(
                run,
                [line for line in extract_lines if not line.excluded],
                system_lines,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.RUN_CREATED,
            run.id,
            {
                "extract_lines": len(extract_lines),
                "system_lines": len(system_lines),
                "window_days": window_days,
                **summary.model_dump(exclude={"run_id"}),
            },
            actor=user.id,
        )
        return summary

    # ==================== RECOMPUTE ====================

    async def _replace_results(
        self,
        run: ReconciliationRunDB,
        extract_lines: Sequence[ExtractLineDB],
        system_lines: Sequence[SystemLineDB],
    ) -> RunSummary:
        """Run both matching passes and replace every match/unmatched row of the run."""
        await self.db.execute(delete(MatchDB).where(MatchDB.run_id == run.id))
        await self.db.execute(delete(UnmatchedExtractDB).where(UnmatchedExtractDB.run_id == run.id))
        await self.db.execute(delete(UnmatchedSystemDB).where(UnmatchedSystemDB.run_id == run.id))

        extract = [_to_extract_candidate(line) for line in extract_lines]
        system = [_to_system_candidate(line) for line in system_lines]
        result = run_matching(
            system,
            extract,
            run.window_days,
            group_by_description=self.settings.RECON_GROUP_BY_DESCRIPTION,
        )
        unmatched = build_unmatched(extract, system, result, run.cut_date)

        self.db.add_all(
            MatchDB(
                run_id=run.id,
                extract_line_id=pair.extract_id,
                system_line_id=pair.system_id,
                delta_days=pair.delta_days,
                grouped=pair.grouped,
            )
            for pair in result.matches
        )
        self.db.add_all(
            UnmatchedExtractDB(run_id=run.id, extract_line_id=line_id)
            for line_id in unmatched.extract_ids
        )
        self.db.add_all(
            UnmatchedSystemDB(run_id=run.id, system_line_id=line_id, status=status)
            for line_id, status in unmatched.system
        )
        await self.db.flush()

        return RunSummary(
            run_id=run.id,
            matched=len(result.matches),
            only_extract=len(unmatched.extract_ids),
            system_overdue=unmatched.overdue_count,
            system_deferred=unmatched.deferred_count,
        )

    async def _recompute(self, run: ReconciliationRunDB) -> RunSummary:
        return await self._replace_results(
            run,
            await self._active_extract_lines(run.id),
            await self._system_lines(run.id),
        )

    async def recompute(self, run_id: str, user: AuthUser) -> RunSummary:
        """Rebuild matches and unmatched sets from the current lines."""
        async with self._mutation(run_id, user) as run:
            summary = await self._recompute(run)

        log_reconciliation_event(
            ReconciliationAuditEvent.RECOMPUTED,
            run_id,
            summary.model_dump(exclude={"run_id"}),
            actor=user.id,
        )
        return summary

    # ==================== EXCLUSIONS ====================

    async def _release_system_lines(self, run: ReconciliationRunDB, system_ids: Iterable[str]) -> None:
        """Put system lines that lost their last match back into the unmatched set."""
        ids = set(system_ids)
        if not ids:
            return
        still_matched = set((await self.db.execute(
            select(MatchDB.system_line_id).where(MatchDB.system_line_id.in_(ids))
        )).scalars().all())
        already_unmatched = set((await self.db.execute(
            select(UnmatchedSystemDB.system_line_id).where(UnmatchedSystemDB.system_line_id.in_(ids))
        )).scalars().all())
        released = ids - still_matched - already_unmatched
        if not released:
            return
        lines = (await self.db.execute(
            select(SystemLineDB).where(SystemLineDB.id.in_(released)).order_by(SystemLineDB.row_index)
        )).scalars().all()
        self.db.add_all(
            UnmatchedSystemDB(
                run_id=run.id,
                system_line_id=line.id,
                status=classify_system_status(line.issue_date, line.due_date, run.cut_date),
            )
            for line in lines
        )
        await self.db.flush()

    async def _release_extract_lines(self, run: ReconciliationRunDB, extract_ids: Iterable[str]) -> None:
        """Put active extract lines without any match back into the unmatched set."""
        ids = set(extract_ids)
        if not ids:
            return
        still_matched = set((await self.db.execute(
            select(MatchDB.extract_line_id).where(MatchDB.extract_line_id.in_(ids))
        )).scalars().all())
        already_unmatched = set((await self.db.execute(
            select(UnmatchedExtractDB.extract_line_id).where(UnmatchedExtractDB.extract_line_id.in_(ids))
        )).scalars().all())
        active = set((await self.db.execute(
            select(ExtractLineDB.id).where(ExtractLineDB.id.in_(ids), ExtractLineDB.excluded.is_(False))
        )).scalars().all())
        self.db.add_all(
            UnmatchedExtractDB(run_id=run.id, extract_line_id=line_id)
            for line_id in sorted(active - still_matched - already_unmatched)
        )
        await self.db.flush()

    async def _exclude_lines(self, run: ReconciliationRunDB, lines: Sequence[ExtractLineDB]) -> int:
        """Flag lines excluded, drop their matches and release the system lines they held."""
        if not lines:
            return 0
        ids = [line.id for line in lines]
        for line in lines:
            line.excluded = True

        affected_system = (await self.db.execute(
            select(MatchDB.system_line_id).where(MatchDB.extract_line_id.in_(ids))
        )).scalars().all()
        await self.db.execute(delete(MatchDB).where(MatchDB.extract_line_id.in_(ids)))
        await self.db.execute(delete(UnmatchedExtractDB).where(UnmatchedExtractDB.extract_line_id.in_(ids)))
        await self.db.flush()

        await self._release_system_lines(run, affected_system)
        return len(ids)

    def _add_exclusion_entry(self, run: ReconciliationRunDB, entry: str) -> bool:
        current = list(run.exclude_concepts or [])
        if entry in current:
            return False
        # New list so the JSON column registers the change
        run.exclude_concepts = current + [entry]
        return True

    async def _exclude_concept_keys(self, run: ReconciliationRunDB, keys: Sequence[str]) -> int:
        wanted = set(keys)
        for key in keys:
            self._add_exclusion_entry(run, key)
        lines = [
            line for line in await self._active_extract_lines(run.id)
            if normalize_concept(line.concept) in wanted
        ]
        return await self._exclude_lines(run, lines)

    async def add_excluded_concept(self, run_id: str, concept: str, user: AuthUser) -> RunView:
        """Exclude every active extract line with this concept."""
        key = normalize_concept(concept)
        if not key:
            raise RunValidationError("Concept is required")

        async with self._mutation(run_id, user) as run:
            excluded = await self._exclude_concept_keys(run, [key])

        log_reconciliation_event(
            ReconciliationAuditEvent.CONCEPT_EXCLUDED,
            run_id,
            {"concepts": [key], "lines_excluded": excluded},
            actor=user.id,
        )
        return await self.get_run_view(run_id, user)

    async def add_excluded_concepts(self, run_id: str, concepts: Sequence[str], user: AuthUser) -> RunView:
        """Exclude several concepts in one transaction."""
        keys: List[str] = []
        for concept in concepts:
            key = normalize_concept(concept)
            if key and key not in keys:
                keys.append(key)
        if not keys:
            raise RunValidationError("At least one concept is required")

        async with self._mutation(run_id, user) as run:
            excluded = await self._exclude_concept_keys(run, keys)

        log_reconciliation_event(
            ReconciliationAuditEvent.CONCEPT_EXCLUDED,
            run_id,
            {"concepts": keys, "lines_excluded": excluded},
            actor=user.id,
        )
        return await self.get_run_view(run_id, user)

    async def _category_rules(self, category_id: str) -> List[RuleSnapshot]:
        result = await self.db.execute(
            select(ExpenseRuleDB)
            .where(ExpenseRuleDB.category_id == category_id)
            .order_by(ExpenseRuleDB.position, ExpenseRuleDB.created_at, ExpenseRuleDB.id)
        )
        return [
            RuleSnapshot(pattern=r.pattern, is_regex=bool(r.is_regex), case_sensitive=bool(r.case_sensitive))
            for r in result.scalars().all()
        ]

    async def exclude_by_category(self, run_id: str, category_id: str, user: AuthUser) -> RunView:
        """Exclude every active extract line the category's rules select."""
        async with self._mutation(run_id, user) as run:
            category = await self.categories.get_category(category_id)
            if category is None:
                raise RunNotFoundError("Category not found")
            rules = await self._category_rules(category_id)
            if not rules:
                raise RunValidationError(
                    "category has no rules to match against", {"category_id": category_id}
                )

            self._add_exclusion_entry(run, normalize_concept(category.name))
            lines = [
                line for line in await self._active_extract_lines(run.id)
                if concept_matches_rules(line.concept, rules)
            ]
            excluded = await self._exclude_lines(run, lines)

        log_reconciliation_event(
            ReconciliationAuditEvent.CATEGORY_EXCLUDED,
            run_id,
            {"category_id": category_id, "category": category.name, "lines_excluded": excluded},
            actor=user.id,
        )
        return await self.get_run_view(run_id, user)

    async def _exclusion_rules(self, entries: Iterable[str]) -> Dict[str, List[RuleSnapshot]]:
        """Rules for the entries that name a known category"""
        entries = set(entries)
        if not entries:
            return {}
        categories = (await self.db.execute(select(ExpenseCategoryDB))).scalars().all()
        return {
            normalize_concept(c.name): await self._category_rules(c.id)
            for c in categories
            if normalize_concept(c.name) in entries
        }

    async def remove_excluded_concept(self, run_id: str, concept: str, user: AuthUser) -> RunView:
        """
        Drop an exclusion entry, restore the lines it covered and recompute.

        Lines still covered by another remaining entry stay excluded.
        """
        key = normalize_concept(concept)
        if not key:
            raise RunValidationError("Concept is required")

        async with self._mutation(run_id, user) as run:
            current = list(run.exclude_concepts or [])
            if key not in current:
                raise RunNotFoundError(f"'{key}' is not an excluded concept of this run")
            remaining = [entry for entry in current if entry != key]
            run.exclude_concepts = remaining

            category_rules = await self._exclusion_rules(current)

            def covered(line: ExtractLineDB, entry: str) -> bool:
                if entry in category_rules:
                    return concept_matches_rules(line.concept, category_rules[entry])
                return normalize_concept(line.concept) == entry

            excluded_lines = (await self.db.execute(
                select(ExtractLineDB).where(ExtractLineDB.run_id == run.id, ExtractLineDB.excluded.is_(True))
            )).scalars().all()
            restored = 0
            for line in excluded_lines:
                if covered(line, key) and not any(covered(line, entry) for entry in remaining):
                    line.excluded = False
                    restored += 1
            await self.db.flush()

            summary = await self._recompute(run)

        log_reconciliation_event(
            ReconciliationAuditEvent.EXCLUSION_REMOVED,
            run_id,
            {"concept": key, "lines_restored": restored, **summary.model_dump(exclude={"run_id"})},
            actor=user.id,
        )
        return await self.get_run_view(run_id, user)

    # ==================== MANUAL MATCH ====================

    async def set_match(
        self,
        run_id: str,
        system_line_id: str,
        extract_line_ids: Sequence[str],
        user: AuthUser,
    ) -> RunView:
        """
        Force a system line onto an explicit set of extract lines.

        The extract amounts must add up to the system amount within the
        configured tolerance. Extract lines leave whatever match they had;
        system lines left without a match become unmatched again.
        """
        target_ids = list(dict.fromkeys(extract_line_ids))
        if not target_ids:
            raise RunValidationError("At least one extract line is required")

        async with self._mutation(run_id, user) as run:
            system_line = (await self.db.execute(
                select(SystemLineDB).where(SystemLineDB.id == system_line_id, SystemLineDB.run_id == run.id)
            )).scalar_one_or_none()
            if system_line is None:
                raise RunValidationError(
                    "System line does not belong to this run",
                    {"system_line_id": system_line_id},
                )

            targets = (await self.db.execute(
                select(ExtractLineDB).where(ExtractLineDB.id.in_(target_ids), ExtractLineDB.run_id == run.id)
            )).scalars().all()
            found = {line.id for line in targets}
            missing = [line_id for line_id in target_ids if line_id not in found]
            if missing:
                raise RunValidationError(
                    "Extract lines do not belong to this run",
                    {"extract_line_ids": missing},
                )
            excluded = [line.id for line in targets if line.excluded]
            if excluded:
                raise RunValidationError("Excluded extract lines cannot be matched", {"extract_line_ids": excluded})

            total = sum((Decimal(line.amount) for line in targets), Decimal("0"))
            difference = abs(total - Decimal(system_line.amount))
            if difference > self.settings.RECON_MANUAL_MATCH_TOLERANCE:
                raise RunValidationError(
                    "Extract amounts do not add up to the system amount",
                    {"extract_total": str(total), "system_amount": str(system_line.amount)},
                )

            # Matches the targeted extract lines hold with other system lines
            other_system: Set[str] = set((await self.db.execute(
                select(MatchDB.system_line_id).where(
                    MatchDB.extract_line_id.in_(target_ids),
                    MatchDB.system_line_id != system_line.id,
                )
            )).scalars().all())
            previous_extract: Set[str] = set((await self.db.execute(
                select(MatchDB.extract_line_id).where(MatchDB.system_line_id == system_line.id)
            )).scalars().all())

            await self.db.execute(delete(MatchDB).where(MatchDB.extract_line_id.in_(target_ids)))
            await self.db.execute(delete(MatchDB).where(MatchDB.system_line_id == system_line.id))
            await self.db.execute(delete(UnmatchedExtractDB).where(UnmatchedExtractDB.extract_line_id.in_(target_ids)))
            await self.db.execute(delete(UnmatchedSystemDB).where(UnmatchedSystemDB.system_line_id == system_line.id))

            for line in sorted(targets, key=lambda l: l.row_index):
                delta = date_delta(line.date, system_line.issue_date, system_line.due_date)
                self.db.add(MatchDB(
                    run_id=run.id,
                    extract_line_id=line.id,
                    system_line_id=system_line.id,
                    delta_days=0 if delta == MISSING_DATE_DELTA else delta,
                ))
            await self.db.flush()

            await self._release_system_lines(run, other_system)
            await self._release_extract_lines(run, previous_extract - set(target_ids))

        log_reconciliation_event(
            ReconciliationAuditEvent.MANUAL_MATCH,
            run_id,
            {
                "system_line_id": system_line_id,
                "extract_line_ids": target_ids,
                "released_system_lines": sorted(other_system),
            },
            actor=user.id,
        )
        return await self.get_run_view(run_id, user)

    # ==================== SYSTEM DATA ====================

    async def update_system_data(
        self,
        run_id: str,
        rows: Sequence[Dict[str, Any]],
        mapping: SystemMapping,
        user: AuthUser,
    ) -> RunView:
        """
        Replace the ledger rows of a run, keyed by row index, then recompute.

        Existing indices are updated in place, new indices inserted and
        indices no longer present (or no longer carrying an amount) deleted.
        """
        incoming: Dict[int, Dict[str, Any]] = {}
        for index, row in enumerate(rows):
            fields = _system_fields(row, mapping)
            if fields is not None:
                incoming[index] = fields

        async with self._mutation(run_id, user) as run:
            existing = {line.row_index: line for line in await self._system_lines(run.id)}

            removed_ids = [line.id for index, line in existing.items() if index not in incoming]
            if removed_ids:
                await self.db.execute(delete(MatchDB).where(MatchDB.system_line_id.in_(removed_ids)))
                await self.db.execute(
                    delete(UnmatchedSystemDB).where(UnmatchedSystemDB.system_line_id.in_(removed_ids))
                )
                await self.db.execute(delete(SystemLineDB).where(SystemLineDB.id.in_(removed_ids)))

            updated = inserted = 0
            for index, fields in incoming.items():
                line = existing.get(index)
                if line is None:
                    self.db.add(SystemLineDB(id=generate_uuid(), run_id=run.id, row_index=index, **fields))
                    inserted += 1
                    continue
                for name, value in fields.items():
                    setattr(line, name, value)
                updated += 1
            await self.db.flush()

            summary = await self._recompute(run)

        log_reconciliation_event(
            ReconciliationAuditEvent.SYSTEM_UPDATED,
            run_id,
            {
                "inserted": inserted,
                "updated": updated,
                "deleted": len(removed_ids),
                **summary.model_dump(exclude={"run_id"}),
            },
            actor=user.id,
        )
        return await self.get_run_view(run_id, user)

    # ==================== LIFECYCLE ====================

    async def update_run(self, run_id: str, request: UpdateRunRequest, user: AuthUser) -> Run:
        """Change status (close/reopen) and descriptive metadata."""
        metadata = request.model_dump(exclude_unset=True, exclude={"status"})

        async with self._mutation(run_id, user, require_open=False) as run:
            previous = RunStatus(run.status)
            target = previous
            if request.status is not None:
                target = transition_status(run, request.status, user.id)
            if metadata and target == RunStatus.CLOSED:
                assert_run_open(run)

            for name, value in metadata.items():
                setattr(run, name, value)
            run.status = target
            run.updated_at = datetime.now(timezone.utc)
            await self.db.flush()
            response = _run_to_schema(run)

        if target != previous:
            log_reconciliation_event(
                ReconciliationAuditEvent.STATUS_CHANGED,
                run_id,
                {"from": previous.value, "to": target.value},
                actor=user.id,
            )
        return response

    async def delete_run(self, run_id: str, user: AuthUser) -> None:
        """Delete an OPEN run with all of its lines and results."""
        async with self._mutation(run_id, user, require_open=False) as run:
            assert_run_deletable(run)
            await self.db.execute(delete(MatchDB).where(MatchDB.run_id == run.id))
            await self.db.execute(delete(UnmatchedExtractDB).where(UnmatchedExtractDB.run_id == run.id))
            await self.db.execute(delete(UnmatchedSystemDB).where(UnmatchedSystemDB.run_id == run.id))
            await self.db.execute(delete(ExtractLineDB).where(ExtractLineDB.run_id == run.id))
            await self.db.execute(delete(SystemLineDB).where(SystemLineDB.run_id == run.id))
            await self.db.delete(run)

        log_reconciliation_event(ReconciliationAuditEvent.RUN_DELETED, run_id, {}, actor=user.id)
