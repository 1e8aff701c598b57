"""
Core interfaces for the GPT Toolkit client.

This module defines the abstract interfaces that components must implement
to ensure consistent behavior across the client.
"""

from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional


class CredentialKey(NamedTuple):
    """Identifies one stored secret."""
    service: str
    account: str


class ICredentialStore(ABC):
    """
    Secure, persistent storage for secrets identified by (service, account).

    Each operation is atomic with respect to its key. read() never raises;
    an unreadable entry is reported as absent.
    """

    @abstractmethod
    def save(self, key: CredentialKey, data: bytes) -> None:
        """Store data under key, replacing any previous value."""
        pass

    @abstractmethod
    def read(self, key: CredentialKey) -> Optional[bytes]:
        """Return the stored value, or None if absent or unreadable."""
        pass

    @abstractmethod
    def delete(self, key: CredentialKey) -> None:
        """Remove the stored value. Deleting an absent key is not an error."""
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value using 'section.key' notation."""
        pass

    @abstractmethod
    def set_config(self, key: str, value: Any) -> None:
        """Set configuration value using 'section.key' notation."""
        pass

    @abstractmethod
    def reload_configuration(self) -> None:
        """Reload configuration from its sources."""
        pass
