"""Error handling framework for provisioning and deployment workflows."""

import subprocess
from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during a workflow run."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    PREREQUISITE = "prerequisite"
    STATE = "state"
    CREDENTIAL = "credential"
    PROVISIONING = "provisioning"
    ROLLBACK = "rollback"
    LOCK = "lock"
    VERIFICATION = "verification"
    COMMAND = "command"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Step failed, run aborts
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    command: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class DeploymentError(Exception):
    """Base exception for all hostforge errors."""

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize deployment error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = []

        lines.append(f"{self.severity.value.upper()}: {self.message}")

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.context.command:
            lines.append(f"   Command: {self.context.command}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'exit_code': self.exit_code,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'command': self.context.command,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(DeploymentError):
    """Error in configuration file or settings."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ValidationError(DeploymentError):
    """Bad input (malformed domain, email, branch), raised before any side effect."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class PrereqMissingError(DeploymentError):
    """A required backend or earlier stage is missing."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PREREQUISITE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class UnrecoverableStateError(DeploymentError):
    """Backend state conflicts with local records and needs an operator.

    The remediation commands are printed verbatim, nothing is guessed.
    """

    def __init__(self, message: str, remediation: Optional[List[str]] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )
        self.remediation = remediation or []

    def to_user_message(self) -> str:
        lines = [super().to_user_message()]
        if self.remediation:
            lines.append("\nManual remediation (pick one):")
            for command in self.remediation:
                lines.append(f"   {command}")
        return "\n".join(lines)


class ApplyFailedError(DeploymentError):
    """A step's mutation failed; carries the failing command's exit code."""

    def __init__(self, message: str, exit_code: int = 1, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PROVISIONING,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )
        self.exit_code = exit_code or 1


class RollbackFailedError(DeploymentError):
    """Restoring a step's previous artifact failed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.ROLLBACK,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class LockTimeoutError(DeploymentError):
    """The runtime lock could not be acquired within its bound."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.LOCK,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class VerificationFailure(DeploymentError):
    """A read-only check did not pass. Reported, never fatal."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.VERIFICATION,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class CredentialError(DeploymentError):
    """Base error for credential record handling."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)
        super().__init__(
            message,
            category=ErrorCategory.CREDENTIAL,
            **kwargs
        )


class AlreadyPersistedError(CredentialError):
    """A credential record already exists for the key."""


class NotFoundError(CredentialError):
    """No credential record exists for the key."""


class CorruptRecordError(CredentialError):
    """A credential record exists but its fields cannot be parsed."""


class ErrorHandler:
    """Converts arbitrary exceptions into DeploymentError instances."""

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> DeploymentError:
        """Handle an exception and convert to DeploymentError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            DeploymentError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, DeploymentError):
            return error

        if isinstance(error, subprocess.CalledProcessError):
            return ApplyFailedError(
                message=f"Command exited with status {error.returncode}",
                exit_code=error.returncode,
                context=context,
                cause=error
            )

        if isinstance(error, FileNotFoundError):
            return PrereqMissingError(
                message=f"Executable or file not found: {error.filename or error}",
                context=context,
                cause=error,
                suggestions=['Run `hostforge provision` to install the base environment']
            )

        if isinstance(error, PermissionError):
            return DeploymentError(
                message=f"Permission denied: {error.filename or error}",
                category=ErrorCategory.PROVISIONING,
                severity=ErrorSeverity.CRITICAL,
                context=context,
                cause=error,
                suggestions=['Run this command as root (sudo)']
            )

        return DeploymentError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check the JSON log file for more details']
        )

    def log_error(self, error: DeploymentError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
