from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class MassImportError(Exception):
    """Base class for all errors raised by the import engine."""

    code = "MASS_IMPORT_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        cause = self.__cause__
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "cause": {"name": type(cause).__name__, "message": str(cause)} if cause else None,
        }


class ValidationError(MassImportError):
    """Candidate is structurally unusable and never reaches the resolver."""

    code = "validation_failed"


class CollaboratorError(MassImportError):
    """Failure of an external collaborator (submission API, photos, geocoder, archive)."""

    code = "collaborator_failed"

    def __init__(
        self,
        collaborator: str,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"{collaborator}: {message}", context)
        self.collaborator = collaborator
        self.status_code = status_code


class CircuitBreakerTripped(MassImportError):
    code = "circuit_breaker_tripped"

    def __init__(self, consecutive_errors: int, last_error: Optional[str] = None):
        super().__init__(
            f"Aborting: {consecutive_errors} consecutive collaborator failures. "
            f"The external API is probably down or misconfigured.",
            {"consecutive_errors": consecutive_errors, "last_error": last_error},
        )
        self.consecutive_errors = consecutive_errors


class ConfigurationError(MassImportError):
    code = "config_invalid"


class MappingError(MassImportError):
    """Raw source data does not have the shape a mapper expects."""

    code = "mapping_failed"


class UnknownMapperError(MassImportError):
    code = "unknown_mapper"

    def __init__(self, name: str, available: List[str]):
        suggestions = [m for m in available if m in name or name in m] or available
        super().__init__(
            f"Unknown importer: '{name}'. Available importers: {', '.join(available) or 'none'}.",
            {"name": name, "suggestions": suggestions},
        )
        self.suggestions = suggestions
