"""Read-only verification of provisioned resources."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple, Union

from hostforge.utils.errors import VerificationFailure, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

CheckOutcome = Union[bool, Tuple[bool, str]]


@dataclass
class Check:
    """A named read-only probe.

    The probe returns a bool or a (bool, detail) tuple and must not mutate
    anything.
    """
    name: str
    probe: Callable[[], CheckOutcome]
    detail: str = ""


@dataclass
class CheckResult:
    """Outcome of one check."""
    name: str
    passed: bool
    detail: str = ""
    failure: Optional[VerificationFailure] = None

    def as_tuple(self) -> Tuple[str, bool, str]:
        return (self.name, self.passed, self.detail)


@dataclass
class VerificationReport:
    """Aggregated results of a verification pass."""
    results: List[CheckResult] = field(default_factory=list)
    checked_at: datetime = field(default_factory=datetime.now)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if not r.passed]


class VerificationPass:
    """Runs every check regardless of earlier failures."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def verify(self, checks: List[Check]) -> VerificationReport:
        """Run all checks.

        Args:
            checks: Checks to run, in display order

        Returns:
            VerificationReport; a raising check is recorded as failed
        """
        report = VerificationReport()

        for check in checks:
            try:
                outcome = check.probe()
                if isinstance(outcome, tuple):
                    passed, detail = outcome
                else:
                    passed, detail = bool(outcome), check.detail
            except Exception as e:
                passed, detail = False, f"check raised: {e}"

            result = CheckResult(name=check.name, passed=bool(passed), detail=detail)
            if not result.passed:
                result.failure = VerificationFailure(
                    f"{check.name} failed" + (f": {detail}" if detail else ""),
                    context=ErrorContext(resource_id=check.name, operation="verify"),
                )
                self.logger.error(f"[FAIL] {check.name}" + (f": {detail}" if detail else ""))
            else:
                self.logger.info(f"[PASS] {check.name}")
            report.results.append(result)

        self.logger.info(
            f"Verification: {len(report.results) - len(report.failures())}/{len(report.results)} checks passed"
        )
        return report
