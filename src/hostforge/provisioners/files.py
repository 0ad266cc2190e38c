"""Managed configuration files: atomic writes, snapshots and directive edits."""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from hostforge.provisioners.base import ProbeResult, Resource, ResourceKind, Step
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


def read_file(path: str) -> Optional[str]:
    """File content, or None when the file does not exist."""
    try:
        return Path(path).read_text()
    except FileNotFoundError:
        return None


def write_file(path: str, content: str, mode: int = 0o644) -> None:
    """Write a file atomically (temp file + rename) with the given mode."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_name(f".{target.name}.tmp")

    fd = os.open(str(temp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(temp_path, mode)

    # Atomic rename
    temp_path.replace(target)


def remove_file(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


@dataclass
class FileSnapshot:
    """Content of a file right before a step rewrote it.

    `content` is None when the file did not exist; restoring then removes it.
    """
    path: str
    content: Optional[str]
    mode: int = 0o644

    @classmethod
    def capture(cls, path: str, default_mode: int = 0o644) -> "FileSnapshot":
        try:
            mode = os.stat(path).st_mode & 0o777
        except FileNotFoundError:
            mode = default_mode
        return cls(path=path, content=read_file(path), mode=mode)

    def restore(self) -> None:
        if self.content is None:
            remove_file(self.path)
            logger.info(f"Removed {self.path}")
        else:
            write_file(self.path, self.content, self.mode)
            logger.info(f"Restored previous {self.path}")


def set_directive(
    text: str,
    key: str,
    value: str,
    assign: str = "=",
    comment: str = ";",
    uncomment: bool = False,
) -> str:
    """Set `key` to `value` in an ini-style or whitespace-separated config file.

    The first matching line is replaced (including a commented-out one when
    `uncomment` is set); the directive is appended when no line matches.
    """
    lead = rf"(?:{re.escape(comment)}[ \t]*)?" if uncomment else ""
    separator = r"[ \t]*=" if assign == "=" else r"[ \t]+"
    pattern = re.compile(rf"^[ \t]*{lead}{re.escape(key)}{separator}.*$", re.MULTILINE)
    line = f"{key} = {value}" if assign == "=" else f"{key} {value}"

    updated, count = pattern.subn(lambda _: line, text, count=1)
    if count:
        return updated
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def set_directives(text: str, settings: List[Tuple], assign: str = "=", comment: str = ";") -> str:
    """Apply (key, value) or (key, value, uncomment) settings in order."""
    for setting in settings:
        key, value = setting[0], setting[1]
        uncomment = setting[2] if len(setting) > 2 else False
        text = set_directive(text, key, value, assign=assign, comment=comment, uncomment=uncomment)
    return text


class ManagedFileStep(Step):
    """Keeps one file at a rendered content.

    `render` receives the current content (None if missing) and returns the
    desired content, so both whole-file templates and in-place directive
    edits fit. The previous content is snapshotted and restored when the
    optional validator rejects the new file.
    """

    def __init__(
        self,
        name: str,
        path: str,
        render: Callable[[Optional[str]], str],
        mode: int = 0o644,
        validator: Optional[Callable[[], None]] = None,
        activator: Optional[Callable[[], None]] = None,
        kind: ResourceKind = ResourceKind.FILE,
        required: bool = True,
        require_existing: bool = False,
    ):
        """
        Initialize ManagedFileStep.

        Args:
            name: Step name
            path: Managed file
            render: Maps current content to desired content
            mode: File mode for new files
            validator: Raises when the written file is rejected
            activator: Makes the validated file live (reload/restart)
            kind: Resource kind reported for the file
            required: Failure aborts the run when True
            require_existing: Edit in place only; a missing file is an error
        """
        super().__init__(name, Resource(key=path, kind=kind))
        self.path = path
        self.render = render
        self.mode = mode
        self.validator = validator
        self.activator = activator
        self.required = required
        self.require_existing = require_existing

    def probe(self) -> ProbeResult:
        current = read_file(self.path)
        if current is None:
            return ProbeResult(satisfied=False, detail=f"{self.path} missing")
        if current == self.render(current):
            return ProbeResult(satisfied=True, detail=f"{self.path} up to date")
        return ProbeResult(satisfied=False, detail=f"{self.path} differs")

    def snapshot(self) -> FileSnapshot:
        return FileSnapshot.capture(self.path, self.mode)

    def apply(self, snapshot: Optional[Any] = None) -> Optional[str]:
        current = snapshot.content if snapshot is not None else read_file(self.path)
        if current is None and self.require_existing:
            raise FileNotFoundError(2, "Configuration file not found", self.path)
        mode = snapshot.mode if snapshot is not None else self.mode
        write_file(self.path, self.render(current), mode)
        return f"wrote {self.path}"

    def validate(self) -> None:
        if self.validator:
            self.validator()

    def rollback(self, snapshot: Any) -> None:
        snapshot.restore()

    def activate(self) -> None:
        if self.activator:
            self.activator()
