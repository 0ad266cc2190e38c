"""Utility modules for logging, errors, command execution and locking."""

from hostforge.utils.commands import CommandRunner, CommandResult
from hostforge.utils.locking import FileLock
from hostforge.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    DeploymentError,
    ConfigurationError,
    ValidationError,
    PrereqMissingError,
    UnrecoverableStateError,
    ApplyFailedError,
    RollbackFailedError,
    LockTimeoutError,
    VerificationFailure,
    CredentialError,
    AlreadyPersistedError,
    NotFoundError,
    CorruptRecordError,
    ErrorHandler,
    error_handler
)
from hostforge.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # Commands
    'CommandRunner',
    'CommandResult',

    # Locking
    'FileLock',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'DeploymentError',
    'ConfigurationError',
    'ValidationError',
    'PrereqMissingError',
    'UnrecoverableStateError',
    'ApplyFailedError',
    'RollbackFailedError',
    'LockTimeoutError',
    'VerificationFailure',
    'CredentialError',
    'AlreadyPersistedError',
    'NotFoundError',
    'CorruptRecordError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
