"""
Error Taxonomy

Domain errors raised by the directory, complaint store and workflow engine.
They subclass ValueError so callers that only care about "bad input" can
keep catching that, while the API layer maps each type to its own status.
"""

from typing import Any, Dict, List, Optional


class ResolveError(Exception):
    """Base class for all domain errors"""

    code = "ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(ResolveError, ValueError):
    """Malformed input: broken stage graph, missing required field"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.details
        return result


class InvalidReferenceError(ResolveError, ValueError):
    """Dangling department, complaint type, user or stage reference"""

    code = "INVALID_REFERENCE"


class ConflictError(ResolveError, ValueError):
    """Operation conflicts with existing state (duplicates, dependents)"""

    code = "CONFLICT"


class ConcurrentModificationError(ConflictError):
    """A record changed between read and write"""

    code = "CONCURRENT_MODIFICATION"


class InvalidTransitionError(ResolveError, ValueError):
    """Illegal workflow stage move or mutation of a finished instance"""

    code = "INVALID_TRANSITION"

    def __init__(self, message: str, valid_targets: Optional[List[str]] = None):
        super().__init__(message)
        self.valid_targets = valid_targets or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["validTargets"] = self.valid_targets
        return result


class NotFoundError(ResolveError, LookupError):
    """Missing definition, instance, complaint or directory entry"""

    code = "NOT_FOUND"


class ExternalDispatchError(ResolveError):
    """Email or notification delivery failed; logged, never surfaced"""

    code = "DISPATCH_FAILED"


class AuthenticationError(ResolveError):
    """Unknown user, wrong password or inactive account"""

    code = "AUTHENTICATION_FAILED"
