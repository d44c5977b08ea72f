from enum import Enum


class ConnectionMode(str, Enum):
    REMOTE = "REMOTE"
    LOCAL_FALLBACK = "LOCAL_FALLBACK"


class Reachability(str, Enum):
    REACHABLE = "REACHABLE"
    OFFLINE = "OFFLINE"
    UNREACHABLE = "UNREACHABLE"
    TIMEOUT = "TIMEOUT"


class AuthState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    CHECKING = "CHECKING"
    READY_SESSION = "READY_SESSION"
    READY_NO_SESSION = "READY_NO_SESSION"
    DEGRADED = "DEGRADED"


class ErrorReason(str, Enum):
    # Connectivity class
    OFFLINE = "offline"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    # Business / data
    SERVICE_ERROR = "service-error"
    NOT_FOUND = "not-found"
    # Auth outcomes
    NETWORK = "network"
    INVALID_CREDENTIALS = "invalid-credentials"
    SERVICE_UNAVAILABLE = "service-unavailable"
    PROFILE_MISSING = "profile-missing"
    PARTIAL_FAILURE = "partial-failure"


CONNECTIVITY_REASONS = frozenset(
    {ErrorReason.OFFLINE, ErrorReason.UNREACHABLE, ErrorReason.TIMEOUT}
)
