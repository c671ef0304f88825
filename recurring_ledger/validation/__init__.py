"""Rule validation package."""

from recurring_ledger.validation.validator import (
    ImmutableFieldError,
    RuleValidationError,
    RuleValidator,
)

__all__ = ["ImmutableFieldError", "RuleValidationError", "RuleValidator"]
