"""Credential generation and persistence."""

from .models import Credential
from .store import CredentialStore

__all__ = [
    "Credential",
    "CredentialStore",
]
