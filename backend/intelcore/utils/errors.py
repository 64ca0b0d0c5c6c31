"""
Custom exceptions for the Intelligence Core.

Only not-found conditions are meant to reach callers as hard failures.
Insufficient data, numeric degeneracy, unavailable sources and rate limiting
are expected steady-state conditions and are reported through result values.
"""

from typing import Optional, Dict, Any


class IntelCoreError(Exception):
    """Base exception for all Intelligence Core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# ============================================================================
# Persistence Errors
# ============================================================================

class DatabaseError(IntelCoreError):
    """Database operation failed."""
    pass


class RecordNotFoundError(DatabaseError):
    """Database record not found."""
    pass


class DatasetNotFoundError(RecordNotFoundError):
    """No dataset with the given id."""
    pass


class ModelNotFoundError(RecordNotFoundError):
    """No trained model exists for the dataset."""
    pass


class SnapshotNotFoundError(RecordNotFoundError):
    """No prediction snapshot with the given id."""
    pass


class SignalSourceNotFoundError(RecordNotFoundError):
    """No signal source registered under the given name."""
    pass


class DuplicateRecordError(DatabaseError):
    """Attempted to create a duplicate record."""
    pass


class ImmutableRecordError(DatabaseError):
    """Attempted to modify a locked snapshot or a prediction log."""
    pass


# ============================================================================
# Validation Errors
# ============================================================================

class ValidationError(IntelCoreError):
    """Data validation failed."""
    pass


class DatasetTypeNotRegisteredError(ValidationError):
    """Dataset type has no registered feature/target extractors."""
    pass


class InvalidSignalSourceError(ValidationError):
    """Signal source registration is malformed (layer, frequency)."""
    pass


# ============================================================================
# External Service Errors
# ============================================================================

class ExternalServiceError(IntelCoreError):
    """External service integration failed."""
    pass


class SignalSourceError(ExternalServiceError):
    """A signal source could not be fetched or normalized."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(IntelCoreError):
    """Core configuration error."""
    pass
