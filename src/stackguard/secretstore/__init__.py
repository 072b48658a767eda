"""Secret storage and generation."""

from .store import SecretStore

__all__ = ["SecretStore"]
