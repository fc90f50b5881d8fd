# errors.py — Engine error taxonomy with TT-DOMAIN-NUMBER codes
from typing import Optional

# ============================================================
# ERROR CODE CATALOGUE
# TT-{DOMAIN}-{NUMBER}
# Domains: AUTH, TASK, POS, DB
# ============================================================

ERROR_CATALOGUE = {
    "TT-AUTH-001": {"message": "Not a member of this workspace", "http_status": 403},
    "TT-AUTH-002": {"message": "Action not permitted", "http_status": 403},
    "TT-AUTH-003": {"message": "Operation violates a workspace policy", "http_status": 409},
    "TT-TASK-001": {"message": "Not found", "http_status": 404},
    "TT-TASK-002": {"message": "Invalid status transition", "http_status": 422},
    "TT-TASK-003": {"message": "Invalid request", "http_status": 422},
    "TT-POS-001": {"message": "Concurrent modification could not be resolved", "http_status": 409},
    "TT-DB-001": {"message": "Storage temporarily unavailable", "http_status": 503},
}

CONCEALED_MESSAGE = "Not found or access denied"


class EngineError(Exception):
    """Base class for every error raised by the engine."""
    code = "TT-TASK-003"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or ERROR_CATALOGUE[self.code]["message"]
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return ERROR_CATALOGUE[self.code]["http_status"]


class NotMemberError(EngineError):
    """Actor has no role in the workspace. Reported as an authorization failure."""
    code = "TT-AUTH-001"


class ForbiddenError(EngineError):
    code = "TT-AUTH-002"


class PolicyViolationError(ForbiddenError):
    """Last admin, last member, creator unfollow, non-empty service."""
    code = "TT-AUTH-003"


class NotFoundError(EngineError):
    code = "TT-TASK-001"


class InvalidTransitionError(EngineError):
    code = "TT-TASK-002"


class ValidationError(EngineError):
    code = "TT-TASK-003"


class ConflictError(EngineError):
    code = "TT-POS-001"


class TransientError(EngineError):
    code = "TT-DB-001"
    retryable = True


def is_access_denial(exc: EngineError) -> bool:
    """Denials that must be indistinguishable from non-existence to the caller."""
    if isinstance(exc, PolicyViolationError):
        return False
    return isinstance(exc, (NotMemberError, ForbiddenError))
