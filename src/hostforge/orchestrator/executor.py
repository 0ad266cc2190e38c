"""Sequential step executor with per-step rollback and progress tracking."""

from typing import Dict, List, Optional, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from hostforge.orchestrator.guard import GuardDecision, IdempotencyGuard
from hostforge.provisioners.base import ResourceState, Step
from hostforge.utils.logging import get_logger, LogContext
from hostforge.utils.errors import (
    DeploymentError,
    ErrorContext,
    RollbackFailedError,
    error_handler,
)

logger = get_logger(__name__)


class StepStatus(Enum):
    """State of a step within its state machine."""
    PENDING = "pending"
    PROBING = "probing"
    SATISFIED = "satisfied"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class StepAction(Enum):
    """Label recorded in the run log for each finished step."""
    CREATE = "CREATE"
    APPLY = "APPLY"
    SKIP = "SKIP"
    WARN = "WARN"
    FAIL = "FAIL"
    ROLLBACK = "ROLLBACK"


class RunStatus(Enum):
    """Final status of a workflow run."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    ABORTED = "aborted"


@dataclass
class StepOutcome:
    """Result of executing a single step."""

    step_name: str
    status: StepStatus = StepStatus.PENDING
    action: Optional[StepAction] = None
    detail: str = ""
    error: Optional[DeploymentError] = None
    history: List[StepStatus] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def transition(self, status: StepStatus) -> None:
        self.status = status
        self.history.append(status)

    def is_success(self) -> bool:
        """Check if the step ended applied or satisfied."""
        return self.status in (StepStatus.APPLIED, StepStatus.SATISFIED)

    def is_failed(self) -> bool:
        """Check if the step ended in any failure state."""
        return self.status in (
            StepStatus.FAILED, StepStatus.ROLLED_BACK, StepStatus.ROLLBACK_FAILED
        )


@dataclass
class WorkflowRun:
    """One ordered execution of steps against one target."""

    target: str
    status: RunStatus = RunStatus.RUNNING
    outcomes: List[StepOutcome] = field(default_factory=list)
    error: Optional[DeploymentError] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        """Check if the run finished without aborting."""
        return self.status in (RunStatus.SUCCEEDED, RunStatus.PARTIAL)

    def is_aborted(self) -> bool:
        return self.status == RunStatus.ABORTED

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 unless aborted, then the failing command's code."""
        if not self.is_aborted():
            return 0
        return self.error.exit_code if self.error else 1

    def get_outcome(self, step_name: str) -> Optional[StepOutcome]:
        for outcome in self.outcomes:
            if outcome.step_name == step_name:
                return outcome
        return None

    def actions(self) -> Dict[str, str]:
        """Step name to action label, in execution order."""
        return {
            o.step_name: o.action.value if o.action else o.status.value
            for o in self.outcomes
        }

    def warnings(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if o.action == StepAction.WARN]


# Type alias for progress callback
ProgressCallback = Callable[[str, StepStatus, Optional[str]], None]


class _AbortRun(Exception):
    """Internal signal: the current step aborts the run."""

    def __init__(self, error: DeploymentError):
        super().__init__(error.message)
        self.error = error


class StepExecutor:
    """Executes steps strictly in declared order.

    Each step is probed first and applied only when not yet satisfied.
    A failed apply or validation rolls back that step only; steps that
    completed earlier in the run are never reverted.
    """

    def __init__(
        self,
        guard: Optional[IdempotencyGuard] = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """Initialize step executor.

        Args:
            guard: Idempotency guard for non-repeatable steps
            progress_callback: Optional callback for status transitions
        """
        self.guard = guard or IdempotencyGuard()
        self.progress_callback = progress_callback
        self.logger = get_logger(__name__)

    def execute(self, target: str, steps: List[Step]) -> WorkflowRun:
        """Execute steps for one target.

        Args:
            target: Site domain or "base-environment"
            steps: Ordered steps

        Returns:
            WorkflowRun with per-step outcomes
        """
        self.logger.info(f"Starting workflow for {target} ({len(steps)} steps)")

        run = WorkflowRun(target=target, start_time=datetime.now())

        for step in steps:
            outcome = StepOutcome(step_name=step.name, start_time=datetime.now())
            run.outcomes.append(outcome)
            try:
                with LogContext(self.logger, step=step.name):
                    self._execute_step(step, outcome)
            except _AbortRun as abort:
                run.error = abort.error
                run.status = RunStatus.ABORTED
                break
            finally:
                outcome.end_time = datetime.now()
                outcome.duration = (outcome.end_time - outcome.start_time).total_seconds()

        run.end_time = datetime.now()
        run.duration = (run.end_time - run.start_time).total_seconds()

        if run.status == RunStatus.ABORTED:
            self.logger.error(
                f"Workflow for {target} aborted at step '{run.outcomes[-1].step_name}' "
                f"(exit code {run.exit_code})"
            )
        elif run.warnings():
            run.status = RunStatus.PARTIAL
            self.logger.warning(
                f"Workflow for {target} completed with {len(run.warnings())} warning(s) "
                f"in {run.duration:.1f}s"
            )
        else:
            run.status = RunStatus.SUCCEEDED
            self.logger.info(f"Workflow for {target} completed in {run.duration:.1f}s")

        return run

    def _notify(self, step: Step, outcome: StepOutcome, status: StepStatus, message: Optional[str] = None):
        outcome.transition(status)
        if self.progress_callback:
            self.progress_callback(step.name, status, message)

    def _execute_step(self, step: Step, outcome: StepOutcome) -> None:
        self._notify(step, outcome, StepStatus.PROBING)

        try:
            probe = step.probe()
        except Exception as e:
            self._fail(step, outcome, e, operation="probe")
            return

        decision = None
        if step.guarded:
            spec = step.guard_spec()
            key = step.resource.key if step.resource else step.name
            try:
                decision = self.guard.enforce(
                    key,
                    exists_in_backend=probe.satisfied,
                    has_credential_record=spec.has_record if spec else False,
                    remediation=spec.remediation if spec else None,
                )
            except DeploymentError as e:
                if step.resource:
                    step.resource.state = ResourceState.EXISTING_UNMANAGED
                outcome.error = e
                outcome.action = StepAction.FAIL
                self._notify(step, outcome, StepStatus.FAILED, e.message)
                self.logger.error(f"[FAIL] {step.name}: {e.message}")
                raise _AbortRun(e)
            satisfied = decision is GuardDecision.SKIP
        else:
            satisfied = probe.satisfied

        if satisfied:
            if step.resource:
                step.resource.state = ResourceState.EXISTING_MANAGED
            outcome.action = StepAction.SKIP
            outcome.detail = probe.detail
            self._notify(step, outcome, StepStatus.SATISFIED, probe.detail)
            self.logger.info(f"[SKIP] {step.name}" + (f": {probe.detail}" if probe.detail else ""))
            return

        self._notify(step, outcome, StepStatus.APPLYING)

        snapshot = None
        try:
            snapshot = step.snapshot()
            detail = step.apply(snapshot)
            step.validate()
        except Exception as e:
            self._fail(step, outcome, e, operation="apply", snapshot=snapshot)
            return

        try:
            step.activate()
        except Exception as e:
            self._fail(step, outcome, e, operation="activate")
            return

        if step.resource:
            step.resource.state = ResourceState.CREATED_THIS_RUN
        outcome.action = StepAction.CREATE if decision is GuardDecision.CREATE else StepAction.APPLY
        outcome.detail = detail or ""
        self._notify(step, outcome, StepStatus.APPLIED, outcome.detail)
        self.logger.info(
            f"[{outcome.action.value}] {step.name}" + (f": {outcome.detail}" if outcome.detail else "")
        )

    def _fail(
        self,
        step: Step,
        outcome: StepOutcome,
        exc: Exception,
        operation: str,
        snapshot=None
    ) -> None:
        """Record a failure, roll back when possible, and abort unless optional."""
        error = error_handler.handle_exception(
            exc,
            ErrorContext(
                resource_id=step.resource.key if step.resource else step.name,
                operation=operation,
            )
        )
        outcome.error = error
        self._notify(step, outcome, StepStatus.FAILED, error.message)

        if step.has_rollback and snapshot is not None:
            self._notify(step, outcome, StepStatus.ROLLING_BACK)
            self.logger.warning(f"[ROLLBACK] {step.name}: restoring previous state")
            try:
                step.rollback(snapshot)
            except Exception as rollback_exc:
                rollback_error = RollbackFailedError(
                    f"Rollback of step '{step.name}' failed: {rollback_exc}",
                    context=error.context,
                    cause=rollback_exc,
                    suggestions=[f"Restore the previous state of {step.name} manually"],
                )
                rollback_error.exit_code = error.exit_code
                outcome.error = rollback_error
                outcome.action = StepAction.FAIL
                self._notify(step, outcome, StepStatus.ROLLBACK_FAILED, str(rollback_exc))
                self.logger.error(f"[FAIL] {step.name}: rollback failed: {rollback_exc}")
                raise _AbortRun(rollback_error)

            outcome.action = StepAction.ROLLBACK
            self._notify(step, outcome, StepStatus.ROLLED_BACK, error.message)
            self.logger.error(f"[ROLLBACK] {step.name}: {error.message}")
            raise _AbortRun(error)

        if not step.required:
            outcome.action = StepAction.WARN
            outcome.detail = error.message
            self.logger.warning(f"[WARN] {step.name}: {error.message}")
            return

        outcome.action = StepAction.FAIL
        self.logger.error(f"[FAIL] {step.name}: {error.message}")
        raise _AbortRun(error)
