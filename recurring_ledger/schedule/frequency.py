"""
Frequency Policy Operations

Exhaustive dispatch over the closed policy union
(UntilCancelled | FixedCount | MonthlyDuration). Every function raises
TypeError on anything else, so a new variant cannot be silently ignored.

Policies are frozen; `advance` returns a new policy.
"""

from typing import Optional

from recurring_ledger.models.recurring import (
    FixedCount,
    MonthlyDuration,
    RecurringRule,
    UntilCancelled,
)


def _unknown(policy) -> TypeError:
    return TypeError(f"Unknown frequency policy: {type(policy).__name__}")


def is_exhausted(policy) -> bool:
    """True when the policy has no postings left."""
    if isinstance(policy, UntilCancelled):
        return False
    if isinstance(policy, FixedCount):
        return policy.remaining <= 0
    if isinstance(policy, MonthlyDuration):
        return policy.remaining_months <= 0
    raise _unknown(policy)


def advance(policy):
    """Consume one unit. Counters are floored at zero."""
    if isinstance(policy, UntilCancelled):
        return policy
    if isinstance(policy, FixedCount):
        return policy.model_copy(update={"remaining": max(0, policy.remaining - 1)})
    if isinstance(policy, MonthlyDuration):
        return policy.model_copy(
            update={"remaining_months": max(0, policy.remaining_months - 1)}
        )
    raise _unknown(policy)


def remaining_units(policy) -> Optional[int]:
    """Units left, or None for open-ended policies."""
    if isinstance(policy, UntilCancelled):
        return None
    if isinstance(policy, FixedCount):
        return max(0, policy.remaining)
    if isinstance(policy, MonthlyDuration):
        return max(0, policy.remaining_months)
    raise _unknown(policy)


def describe(policy) -> str:
    if isinstance(policy, UntilCancelled):
        return "until cancelled"
    if isinstance(policy, FixedCount):
        return f"{policy.remaining} postings left"
    if isinstance(policy, MonthlyDuration):
        return f"{policy.remaining_months} months left"
    raise _unknown(policy)


def apply_advance(rule: RecurringRule) -> RecurringRule:
    """
    Advance the rule's policy and deactivate it on exhaustion.

    Both changes happen in the same returned copy so they are persisted
    together.
    """
    policy = advance(rule.policy)
    update = {"policy": policy}
    if is_exhausted(policy):
        update["is_active"] = False
    return rule.model_copy(update=update)
