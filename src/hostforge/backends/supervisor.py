"""Supervisor (supervisord) backend."""

from enum import Enum

from hostforge.utils.commands import CommandRunner
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


class ProgramStatus(Enum):
    """supervisorctl process states, plus NOT_REGISTERED."""
    RUNNING = "RUNNING"
    STARTING = "STARTING"
    BACKOFF = "BACKOFF"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    EXITED = "EXITED"
    FATAL = "FATAL"
    UNKNOWN = "UNKNOWN"
    NOT_REGISTERED = "NOT_REGISTERED"

    @property
    def needs_start(self) -> bool:
        """Registered but not running; `start` rather than `restart`."""
        return self in (ProgramStatus.STOPPED, ProgramStatus.EXITED, ProgramStatus.FATAL)


class SupervisorBackend:
    """Registers and controls supervised programs via supervisorctl."""

    service = "supervisor"

    def __init__(self, runner: CommandRunner, sudo: bool = False):
        self.runner = runner
        self.sudo = sudo

    def _ctl(self, *args: str):
        argv = ["supervisorctl"] + list(args)
        return (["sudo"] + argv) if self.sudo else argv

    def is_installed(self) -> bool:
        return self.runner.which("supervisorctl") is not None

    def status(self, program: str) -> ProgramStatus:
        """Status of a program (or the first process of a program group)."""
        result = self.runner.run(self._ctl("status", f"{program}:*"))
        lines = result.lines()
        if not lines:
            return ProgramStatus.NOT_REGISTERED

        first = lines[0]
        if "no such" in first.lower() or "ERROR" in first:
            return ProgramStatus.NOT_REGISTERED

        parts = first.split()
        if len(parts) < 2:
            return ProgramStatus.UNKNOWN
        try:
            return ProgramStatus(parts[1])
        except ValueError:
            return ProgramStatus.UNKNOWN

    def reread(self) -> None:
        self.runner.check(self._ctl("reread"))

    def update(self) -> None:
        self.runner.check(self._ctl("update"))

    def start(self, program: str) -> None:
        self.runner.check(self._ctl("start", f"{program}:*"))

    def restart(self, program: str) -> None:
        self.runner.check(self._ctl("restart", f"{program}:*"))
