"""
Shared fixtures for the recurring ledger tests.

Test strategy:
1. Unit tests for individual components (money, schedule, validation)
2. Engine tests against in-memory storage
3. SQLite tests against ':memory:' or a tmp_path database
"""

from datetime import date
from decimal import Decimal

import pytest

from recurring_ledger.audit import AuditLogger
from recurring_ledger.models.recurring import Direction, RecurringRule, UntilCancelled
from recurring_ledger.money import CurrencyArithmetic
from recurring_ledger.storage import InMemoryAuditStorage, InMemoryLedgerStorage


TODAY = date(2024, 1, 15)


def build_rule(**overrides) -> RecurringRule:
    """A valid expense rule; override any field."""
    fields = {
        "direction": Direction.EXPENSE,
        "amount": Decimal("100.00"),
        "description": "Rent",
        "day_of_month": 20,
        "policy": UntilCancelled(),
        "start_date": date(2024, 1, 1),
    }
    fields.update(overrides)
    return RecurringRule(**fields)


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def money():
    return CurrencyArithmetic()


@pytest.fixture
def rule_builder():
    """Build an unsaved rule."""
    return build_rule


@pytest.fixture
def make_rule(storage):
    """Build a rule and save it to the in-memory storage."""
    def _make(**overrides) -> RecurringRule:
        rule = build_rule(**overrides)
        storage.save_rule(rule)
        return rule
    return _make
