"""Exceptions raised by the dual-write layer."""

from __future__ import annotations


class DualWriteError(Exception):
    """Base exception for dual-write failures."""
    pass


class DualWriteConfigurationError(DualWriteError):
    """Raised when the selected store has no adapter configured."""
    pass


class RepositoryMethodNotFoundError(DualWriteError, AttributeError):
    """Raised when a repository does not implement a required method."""
    pass


class FeatureFlagPersistenceError(DualWriteError):
    """Raised when writing feature flags to the config store fails."""
    pass
