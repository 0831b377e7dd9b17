from .connection import get_db, engine, AsyncSessionLocal, init_db, Base

# Import reconciliation models to ensure they are registered with Base
from .reconciliation_models import (
    ReconciliationRunDB, ExtractLineDB, SystemLineDB, MatchDB,
    UnmatchedExtractDB, UnmatchedSystemDB, ExpenseCategoryDB, ExpenseRuleDB,
)

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'Base',
    # Reconciliation models
    'ReconciliationRunDB', 'ExtractLineDB', 'SystemLineDB', 'MatchDB',
    'UnmatchedExtractDB', 'UnmatchedSystemDB', 'ExpenseCategoryDB', 'ExpenseRuleDB',
]
