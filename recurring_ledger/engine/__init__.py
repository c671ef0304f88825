"""Posting engine: processing, deletion, balances and reconciliation."""

from recurring_ledger.engine.balance import BalancePropagator
from recurring_ledger.engine.deletion import DeletionCoordinator
from recurring_ledger.engine.processor import IdempotentProcessor
from recurring_ledger.engine.reconciliation import (
    ConsistencyIssue,
    IssueKind,
    Reconciler,
    ReconciliationReport,
    RepairStrategy,
)

__all__ = [
    "BalancePropagator",
    "ConsistencyIssue",
    "DeletionCoordinator",
    "IdempotentProcessor",
    "IssueKind",
    "Reconciler",
    "ReconciliationReport",
    "RepairStrategy",
]
