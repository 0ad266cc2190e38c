"""Backends wrapping external subsystems behind typed interfaces."""

from .database import (
    DatabaseBackend,
    DatabaseProbe,
    MySQLBackend,
    PostgresBackend,
    create_database_backend,
)
from .system import SystemBackend
from .webserver import NginxBackend, ConfigTestResult
from .supervisor import SupervisorBackend, ProgramStatus
from .certbot import CertbotBackend, CertificateInfo

__all__ = [
    'DatabaseBackend',
    'DatabaseProbe',
    'MySQLBackend',
    'PostgresBackend',
    'create_database_backend',
    'SystemBackend',
    'NginxBackend',
    'ConfigTestResult',
    'SupervisorBackend',
    'ProgramStatus',
    'CertbotBackend',
    'CertificateInfo',
]
