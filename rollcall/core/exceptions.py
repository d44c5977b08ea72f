from typing import Dict

from rollcall.core.enums import CONNECTIVITY_REASONS, ErrorReason


class ServiceError(Exception):
    """Base exception for persistence layer errors."""

    def __init__(self, message: str, reason: ErrorReason = ErrorReason.SERVICE_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> Dict[str, str]:
        return {"reason": self.reason.value, "message": self.message}


class ConnectivityError(ServiceError):
    """Transport-level failure talking to the remote service (offline, unreachable, timeout)."""

    def __init__(self, message: str, reason: ErrorReason = ErrorReason.UNREACHABLE) -> None:
        if reason not in CONNECTIVITY_REASONS:
            raise ValueError(f"{reason} is not a connectivity reason")
        super().__init__(message, reason)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorReason.NOT_FOUND)


class DuplicateError(ServiceError):
    """Uniqueness violation (duplicate account, second record for an attendance key)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorReason.SERVICE_ERROR)
