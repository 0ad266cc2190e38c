"""Orchestrator module for step execution, idempotency and verification."""

from hostforge.orchestrator.guard import GuardDecision, IdempotencyGuard
from hostforge.orchestrator.verification import (
    Check,
    CheckResult,
    VerificationPass,
    VerificationReport
)
from hostforge.orchestrator.executor import (
    StepExecutor,
    StepOutcome,
    StepStatus,
    StepAction,
    RunStatus,
    WorkflowRun,
    ProgressCallback
)

__all__ = [
    # Idempotency
    'GuardDecision',
    'IdempotencyGuard',

    # Verification
    'Check',
    'CheckResult',
    'VerificationPass',
    'VerificationReport',

    # Execution
    'StepExecutor',
    'StepOutcome',
    'StepStatus',
    'StepAction',
    'RunStatus',
    'WorkflowRun',
    'ProgressCallback',
]
