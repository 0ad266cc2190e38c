"""Idempotent provisioning and deployment for multi-tenant Laravel hosts."""

__version__ = "0.1.0"
