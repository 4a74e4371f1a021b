"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, List, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Authentication & Authorization Errors
class AuthenticationError(DomainError):
    """Token missing, invalid, or expired"""
    error_code = "AUTHENTICATION_ERROR"
    http_status = 401


class ForbiddenError(DomainError):
    """Actor lacks a role required for the operation"""
    error_code = "FORBIDDEN"
    http_status = 403


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"
    http_status = 422


class RequirementNotMetError(ValidationError):
    """A mandatory transition requirement was not satisfied"""
    error_code = "REQUIREMENT_NOT_MET"

    def __init__(self, message: str, requirement: Dict[str, Any]):
        super().__init__(message, details={"requirement": requirement})
        self.requirement = requirement


class WorkflowValidationError(ValidationError):
    """Workflow definition validation failed"""
    error_code = "WORKFLOW_VALIDATION_ERROR"


class NoWorkflowMatchError(ValidationError):
    """No active workflow applies to the case and no default exists"""
    error_code = "NO_WORKFLOW_MATCH"


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"
    http_status = 404


class WorkflowNotFoundError(NotFoundError):
    error_code = "WORKFLOW_NOT_FOUND"


class StateNotFoundError(NotFoundError):
    error_code = "STATE_NOT_FOUND"


class TransitionNotFoundError(NotFoundError):
    error_code = "TRANSITION_NOT_FOUND"


class CaseNotFoundError(NotFoundError):
    error_code = "CASE_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict (e.g., concurrent modification)"""
    error_code = "CONFLICT"
    http_status = 409


class ConcurrencyError(ConflictError):
    """Optimistic concurrency conflict"""
    error_code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Transition not valid for the case's current state"""
    error_code = "INVALID_TRANSITION"


class AlreadyExistsError(ConflictError):
    """Resource already exists"""
    error_code = "ALREADY_EXISTS"


class AmbiguousAssignmentError(ConflictError):
    """Assignment needs an explicit choice among several candidates"""
    error_code = "AMBIGUOUS_ASSIGNMENT"

    def __init__(self, message: str, kind: str, candidates: List[Dict[str, Any]]):
        super().__init__(message, details={"kind": kind, "candidates": candidates})
        self.kind = kind
        self.candidates = candidates


# Action Errors (captured into action results, never returned to the caller)
class ActionExecutionError(DomainError):
    """Automated transition action failed"""
    error_code = "ACTION_EXECUTION_ERROR"
    http_status = 500


class ActionConfigError(ActionExecutionError):
    """Action cannot run with the given config or case data"""
    error_code = "ACTION_CONFIG_ERROR"


# Import Errors
class ImportFileTooLargeError(DomainError):
    """Workflow import file exceeds max size"""
    error_code = "IMPORT_TOO_LARGE"
    http_status = 413
