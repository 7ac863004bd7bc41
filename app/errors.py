"""Error taxonomy shared by the HTTP routers and the real-time gateway.

Every error knows the HTTP status it maps to and a stable ``type`` string
that is sent to real-time clients in ``error`` events.
"""

from typing import Any, Dict, List, Optional


class DispatchError(Exception):
    status_code = 500
    type = "DispatchError"

    def __init__(self, detail: str = "", **extra: Any):
        super().__init__(detail or self.type)
        self.detail = detail or self.type
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.detail, "type": self.type}
        payload.update(self.extra)
        return payload


class AuthenticationError(DispatchError):
    status_code = 401
    type = "AuthenticationError"


class ValidationError(DispatchError):
    status_code = 400
    type = "ValidationError"

    def __init__(self, detail: str = "", missing: Optional[List[str]] = None, **extra: Any):
        if missing:
            extra["missing"] = list(missing)
            detail = detail or f"Missing required fields: {', '.join(missing)}"
        super().__init__(detail, **extra)
        self.missing = list(missing or [])


class Forbidden(DispatchError):
    status_code = 403
    type = "Forbidden"


class NotFound(DispatchError):
    status_code = 404
    type = "NotFound"


class Conflict(DispatchError):
    status_code = 409
    type = "Conflict"


class AlreadyTaken(Conflict):
    type = "AlreadyTaken"


class InvalidTransition(Conflict):
    type = "InvalidTransition"


class PersistenceError(DispatchError):
    status_code = 503
    type = "PersistenceError"

    def __init__(self, detail: str = "Storage temporarily unavailable, please retry", **extra: Any):
        extra.setdefault("retryable", True)
        super().__init__(detail, **extra)
