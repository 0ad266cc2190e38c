"""External command execution."""

import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from hostforge.utils.errors import ApplyFailedError, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.args)

    def lines(self) -> List[str]:
        """Non-empty stripped stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class CommandRunner:
    """Runs external commands and reports their exit status.

    Never raises on a non-zero exit: callers decide whether that is fatal,
    usually through check(). A missing executable is reported as exit code
    127, the same status a shell would give.
    """

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        input: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        capture: bool = True,
        user: Optional[str] = None,
    ) -> CommandResult:
        """Run a command.

        Args:
            args: Program and arguments, no shell interpretation
            cwd: Working directory
            input: Text fed to stdin
            env: Full environment for the child (inherits when None)
            capture: Capture stdout/stderr; stream to the terminal when False
            user: Run through `sudo -u <user> -H`

        Returns:
            CommandResult with exit code and captured output
        """
        argv = [str(a) for a in args]
        if user:
            argv = ['sudo', '-u', user, '-H'] + argv

        logger.debug(f"$ {shlex.join(argv)}", extra={'operation': 'command'})

        try:
            completed = subprocess.run(
                argv,
                cwd=cwd,
                input=input,
                env=env,
                text=True,
                capture_output=capture,
                check=False,
            )
        except FileNotFoundError as e:
            logger.debug(f"Executable not found: {argv[0]}")
            return CommandResult(args=argv, exit_code=127, stderr=str(e))

        result = CommandResult(
            args=argv,
            exit_code=completed.returncode,
            stdout=(completed.stdout or "") if capture else "",
            stderr=(completed.stderr or "") if capture else "",
        )
        if not result.ok:
            logger.debug(
                f"Exit {result.exit_code}: {result.command_line}",
                extra={'exit_code': result.exit_code}
            )
        return result

    def check(self, args: Sequence[str], **kwargs) -> CommandResult:
        """Run a command and raise ApplyFailedError on a non-zero exit."""
        result = self.run(args, **kwargs)
        if not result.ok:
            detail = (result.stderr or result.stdout).strip().splitlines()
            raise ApplyFailedError(
                f"Command failed with exit code {result.exit_code}: {result.command_line}",
                exit_code=result.exit_code,
                context=ErrorContext(
                    command=result.command_line,
                    additional_info={'output': detail[-20:]} if detail else None
                ),
            )
        return result

    def which(self, program: str) -> Optional[str]:
        """Locate an executable on PATH."""
        return shutil.which(program)
