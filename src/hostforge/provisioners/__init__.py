"""Provisioning steps for the base environment, sites, certificates and deployments."""

from .base import (
    Step,
    CommandStep,
    Resource,
    ResourceKind,
    ResourceState,
    ProbeResult,
    GuardSpec,
)
from .files import FileSnapshot, ManagedFileStep
from .server import server_steps, base_environment_checks
from .site import site_steps, DatabaseStep, VhostStep
from .certificate import certificate_steps, certificate_checks, dns_mismatch
from .deployment import deployment_steps, WorkerStep, RuntimeReloadStep

__all__ = [
    'Step',
    'CommandStep',
    'Resource',
    'ResourceKind',
    'ResourceState',
    'ProbeResult',
    'GuardSpec',
    'FileSnapshot',
    'ManagedFileStep',
    'server_steps',
    'base_environment_checks',
    'site_steps',
    'DatabaseStep',
    'VhostStep',
    'certificate_steps',
    'certificate_checks',
    'dns_mismatch',
    'deployment_steps',
    'WorkerStep',
    'RuntimeReloadStep',
]
