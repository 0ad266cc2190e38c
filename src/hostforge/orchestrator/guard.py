"""Idempotency guard for non-repeatable steps."""

from enum import Enum
from typing import List, Optional

from hostforge.utils.errors import UnrecoverableStateError, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


class GuardDecision(Enum):
    """What to do with a non-repeatable resource."""
    CREATE = "create"
    SKIP = "skip"
    CONFLICT = "conflict"


class IdempotencyGuard:
    """Decides between create, skip and operator intervention.

    A resource that exists in the backend without a credential record was
    not created by this tool (or its record was lost) and is never adopted.
    """

    def resolve(
        self,
        resource_key: str,
        exists_in_backend: bool,
        has_credential_record: bool
    ) -> GuardDecision:
        """Resolve the action for a resource.

        Args:
            resource_key: Resource key
            exists_in_backend: Probe result from the backend
            has_credential_record: Whether the CredentialStore holds a record

        Returns:
            GuardDecision
        """
        if exists_in_backend and has_credential_record:
            decision = GuardDecision.SKIP
        elif exists_in_backend:
            decision = GuardDecision.CONFLICT
        else:
            # A stale record is replaced only after the resource is created
            decision = GuardDecision.CREATE
            if has_credential_record:
                logger.warning(
                    f"Stale credential record for {resource_key}: backend resource is missing",
                    extra={'resource_id': resource_key}
                )

        logger.debug(
            f"Guard decision for {resource_key}: {decision.value} "
            f"(exists={exists_in_backend}, record={has_credential_record})"
        )
        return decision

    def enforce(
        self,
        resource_key: str,
        exists_in_backend: bool,
        has_credential_record: bool,
        remediation: Optional[List[str]] = None
    ) -> GuardDecision:
        """Resolve and raise on conflict.

        Raises:
            UnrecoverableStateError: If the resource exists without a record
        """
        decision = self.resolve(resource_key, exists_in_backend, has_credential_record)
        if decision is GuardDecision.CONFLICT:
            raise UnrecoverableStateError(
                f"{resource_key} exists but its credential record is missing; "
                f"the password cannot be recovered",
                remediation=remediation,
                context=ErrorContext(resource_id=resource_key, operation="guard"),
            )
        return decision
