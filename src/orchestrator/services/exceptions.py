# orchestrator/services/exceptions.py

from typing import Optional

class ServiceException(Exception):
    """Base exception for all service layer errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

class ValidationError(ServiceException):
    """Raised when an input (payload, version label, resolution map) is malformed."""
    pass

class StateError(ServiceException):
    """Raised when an operation is not legal for the entity's current status."""
    pass

class NotFoundError(ServiceException):
    """Raised when a proposal, job, tenant or version does not exist."""
    pass

class PolicyError(ServiceException):
    """Raised when an operation is refused by policy, e.g. unresolved high-risk template conflicts."""
    pass

class InfrastructureError(ServiceException):
    """Raised when a tenant store or the job scheduler cannot be reached."""
    pass

class ExecutionError(ServiceException):
    """Raised when a migration step fails while being applied to a tenant store."""
    def __init__(self, message: str, step_kind: Optional[str] = None):
        self.step_kind = step_kind
        super().__init__(message)
