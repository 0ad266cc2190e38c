"""Base step interface and resource types."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional
from dataclasses import dataclass, field
from enum import Enum


class ResourceKind(Enum):
    """Kind of backend-held entity."""
    PACKAGE = "package"
    SERVICE = "service"
    USER = "user"
    DIRECTORY = "directory"
    DATABASE = "database"
    VHOST = "vhost"
    WORKER = "worker"
    CERTIFICATE = "certificate"
    FILE = "file"
    SCHEDULE = "schedule"
    COMMAND = "command"


class ResourceState(Enum):
    """Lifecycle state of a resource within one run."""
    ABSENT = "absent"
    EXISTING_UNMANAGED = "existing_unmanaged"
    EXISTING_MANAGED = "existing_managed"
    CREATED_THIS_RUN = "created_this_run"


@dataclass
class Resource:
    """One provisionable unit, identified by a deterministic key."""
    key: str
    kind: ResourceKind
    state: ResourceState = ResourceState.ABSENT


@dataclass
class ProbeResult:
    """Read-only observation of a step's target.

    For guarded steps `satisfied` means "exists in the backend"; the guard
    combines it with the credential record to decide.
    """
    satisfied: bool
    detail: str = ""
    data: Optional[Any] = None


@dataclass
class GuardSpec:
    """Inputs the IdempotencyGuard needs for a non-repeatable step."""
    has_record: bool
    remediation: List[str] = field(default_factory=list)


class Step(ABC):
    """One ordered, idempotent unit of provisioning or deployment work.

    Subclasses implement probe() and apply(). Steps that can restore their
    previous artifact override snapshot() and rollback(); steps with a
    built-in check override validate(); steps that make their change live
    separately (service reload) override activate(), which only runs after
    validate() passed.
    """

    #: Failure aborts the run when True, becomes a warning otherwise
    required: bool = True

    #: Apply is non-repeatable; consult the IdempotencyGuard first
    guarded: bool = False

    def __init__(self, name: str, resource: Optional[Resource] = None):
        """Initialize step.

        Args:
            name: Step name used in logs and results
            resource: Resource this step touches
        """
        self.name = name
        self.resource = resource

    @abstractmethod
    def probe(self) -> ProbeResult:
        """Read current state without mutating anything."""
        pass

    @abstractmethod
    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        """Mutate to the desired state.

        Args:
            snapshot: Value returned by snapshot() right before this call

        Returns:
            Optional detail for the run log
        """
        pass

    def snapshot(self) -> Optional[Any]:
        """Capture the pre-apply artifact. None means nothing to restore."""
        return None

    def validate(self) -> None:
        """Check the applied change before activation.

        Raises:
            ApplyFailedError: If the change is not valid
        """
        return None

    def rollback(self, snapshot: Any) -> None:
        """Restore the pre-apply artifact captured by snapshot()."""
        raise NotImplementedError

    def activate(self) -> None:
        """Make a validated change live."""
        return None

    def guard_spec(self) -> Optional[GuardSpec]:
        """Record status and remediation for guarded steps."""
        return None

    @property
    def has_rollback(self) -> bool:
        return type(self).rollback is not Step.rollback

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class CommandStep(Step):
    """Runs one external command every time; never satisfied up front."""

    def __init__(
        self,
        name: str,
        runner,
        args: List[str],
        cwd: Optional[str] = None,
        user: Optional[str] = None,
        required: bool = True,
    ):
        super().__init__(name, Resource(key=name, kind=ResourceKind.COMMAND))
        self.runner = runner
        self.args = args
        self.cwd = cwd
        self.user = user
        self.required = required

    def probe(self) -> ProbeResult:
        return ProbeResult(satisfied=False)

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        self.runner.check(self.args, cwd=self.cwd, user=self.user, capture=False)
        return None
