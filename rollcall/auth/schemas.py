from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from rollcall.core.enums import AuthState, ConnectionMode, ErrorReason
from rollcall.core.schemas import NonBlankStr, Teacher


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: NonBlankStr


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class PasswordUpdate(BaseModel):
    new_password: str = Field(..., min_length=6)


class AuthUser(BaseModel):
    """Identity known to an identity provider (remote service or local fallback)."""

    id: UUID
    email: str


class AuthSession(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    provider: str  # "remote" | "local"
    user: AuthUser


class SignUpResult(BaseModel):
    user: AuthUser
    # None when the remote service requires email confirmation before the first sign-in
    session: Optional[AuthSession] = None


class AuthError(BaseModel):
    reason: ErrorReason
    message: str


class AuthOutcome(BaseModel):
    """Result of an auth operation. Failures always carry a reason."""

    success: bool
    error: Optional[AuthError] = None
    teacher: Optional[Teacher] = None
    confirmation_required: bool = False

    @classmethod
    def ok(cls, teacher: Optional[Teacher] = None, confirmation_required: bool = False) -> "AuthOutcome":
        return cls(success=True, teacher=teacher, confirmation_required=confirmation_required)

    @classmethod
    def fail(cls, reason: ErrorReason, message: str) -> "AuthOutcome":
        return cls(success=False, error=AuthError(reason=reason, message=message))

    @property
    def reason(self) -> Optional[ErrorReason]:
        return self.error.reason if self.error else None

    def to_dict(self) -> Dict[str, Optional[str]]:
        if self.error is None:
            return {"reason": None, "message": None}
        return {"reason": self.error.reason.value, "message": self.error.message}


class AuthSnapshot(BaseModel):
    """What observers of the session manager receive on every change."""

    state: AuthState
    mode: ConnectionMode
    user: Optional[AuthUser] = None
    teacher: Optional[Teacher] = None
    last_error: Optional[AuthError] = None
