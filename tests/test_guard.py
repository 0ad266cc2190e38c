"""Tests for the idempotency guard."""

import pytest

from hostforge.orchestrator.guard import GuardDecision, IdempotencyGuard
from hostforge.utils.errors import UnrecoverableStateError


class TestIdempotencyGuard:
    """Decision table for non-repeatable resources."""

    @pytest.mark.parametrize("exists,record,expected", [
        (False, False, GuardDecision.CREATE),
        (False, True, GuardDecision.CREATE),
        (True, True, GuardDecision.SKIP),
        (True, False, GuardDecision.CONFLICT),
    ])
    def test_resolve(self, exists, record, expected):
        """Each combination of backend state and record maps to one decision."""
        assert IdempotencyGuard().resolve("db:example_com", exists, record) is expected

    def test_enforce_raises_on_conflict_with_remediation(self):
        """A resource without a record is never adopted."""
        guard = IdempotencyGuard()

        with pytest.raises(UnrecoverableStateError) as exc_info:
            guard.enforce(
                "db:example_com",
                exists_in_backend=True,
                has_credential_record=False,
                remediation=["DROP DATABASE example_com;"],
            )

        error = exc_info.value
        assert error.remediation == ["DROP DATABASE example_com;"]
        assert "DROP DATABASE example_com;" in error.to_user_message()
        assert error.context.resource_id == "db:example_com"

    def test_enforce_returns_decision_otherwise(self):
        """Non-conflicting decisions pass through."""
        guard = IdempotencyGuard()
        assert guard.enforce("k", exists_in_backend=True, has_credential_record=True) is GuardDecision.SKIP
        assert guard.enforce("k", exists_in_backend=False, has_credential_record=False) is GuardDecision.CREATE
