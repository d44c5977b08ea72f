"""
Identity providers: the remote service's auth API and a local fallback.

Providers raise ServiceError subclasses; the session manager turns them into AuthOutcome values.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

import httpx

from rollcall.core.config import Settings
from rollcall.core.enums import ErrorReason
from rollcall.core.exceptions import DuplicateError, ServiceError
from rollcall.core.schemas import utcnow
from rollcall.stores.local import LocalStore
from rollcall.stores.remote import error_body, raise_for_remote_error, transmit

from .schemas import AuthSession, AuthUser, SignUpResult
from .security import create_access_token, decode_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

USERS = "users"


class IdentityProvider(ABC):
    name: str = "identity"

    @abstractmethod
    async def sign_up(self, email: str, password: str) -> SignUpResult: ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthSession: ...

    @abstractmethod
    async def get_user(self, session: AuthSession) -> Optional[AuthUser]:
        """The user behind a stored session, or None when the session is no longer valid."""

    @abstractmethod
    async def sign_out(self, session: AuthSession) -> None: ...

    @abstractmethod
    async def update_password(self, session: AuthSession, new_password: str) -> None: ...


def _invalid_credentials() -> ServiceError:
    return ServiceError("Invalid login credentials", ErrorReason.INVALID_CREDENTIALS)


class RemoteAuthProvider(IdentityProvider):
    """Session endpoints of the backend-as-a-service (/auth/v1)."""

    name = "remote"

    def __init__(self, client: httpx.AsyncClient, anon_key: str) -> None:
        self._client = client
        self._anon_key = anon_key

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {"apikey": self._anon_key, "Authorization": f"Bearer {access_token or self._anon_key}"}

    def _session_from(self, body: Dict[str, Any]) -> AuthSession:
        expires_at = None
        if body.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(body["expires_in"]))
        return AuthSession(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            token_type=body.get("token_type", "bearer"),
            expires_at=expires_at,
            provider=self.name,
            user=_user_from(body["user"]),
        )

    async def sign_up(self, email: str, password: str) -> SignUpResult:
        response = await transmit(
            self._client,
            "sign up",
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        if response.status_code in (httpx.codes.BAD_REQUEST, httpx.codes.UNPROCESSABLE_ENTITY):
            code, message = error_body(response)
            if code == "user_already_exists" or "already registered" in message.lower():
                raise DuplicateError(f"An account with email {email} already exists")
            raise ServiceError(f"Sign up rejected: {message}")
        raise_for_remote_error(response, "sign up")
        body = response.json()
        if body.get("access_token"):
            session = self._session_from(body)
            return SignUpResult(user=session.user, session=session)
        # Email confirmation pending: the body is the user itself
        return SignUpResult(user=_user_from(body.get("user") or body))

    async def sign_in(self, email: str, password: str) -> AuthSession:
        response = await transmit(
            self._client,
            "sign in",
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        if response.status_code in (httpx.codes.BAD_REQUEST, httpx.codes.UNAUTHORIZED):
            raise _invalid_credentials()
        raise_for_remote_error(response, "sign in")
        return self._session_from(response.json())

    async def get_user(self, session: AuthSession) -> Optional[AuthUser]:
        response = await transmit(
            self._client, "get session", "GET", "/auth/v1/user", headers=self._headers(session.access_token)
        )
        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            return None
        raise_for_remote_error(response, "get session")
        return _user_from(response.json())

    async def sign_out(self, session: AuthSession) -> None:
        response = await transmit(
            self._client, "sign out", "POST", "/auth/v1/logout", headers=self._headers(session.access_token)
        )
        # An already expired token is as good as signed out
        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            return
        raise_for_remote_error(response, "sign out")

    async def update_password(self, session: AuthSession, new_password: str) -> None:
        response = await transmit(
            self._client,
            "update password",
            "PUT",
            "/auth/v1/user",
            json={"password": new_password},
            headers=self._headers(session.access_token),
        )
        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise _invalid_credentials()
        raise_for_remote_error(response, "update password")


def _user_from(body: Dict[str, Any]) -> AuthUser:
    return AuthUser(id=UUID(str(body["id"])), email=str(body.get("email", "")).lower())


class LocalAuthProvider(IdentityProvider):
    """
    Identities kept in the local key-value area ("users" collection).

    Passwords are stored as bcrypt hashes and sessions are locally signed JWTs.
    Successful remote sign-ins are remembered here so the same credentials work offline.
    """

    name = "local"

    def __init__(self, store: LocalStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def _find(self, email: str) -> Optional[Dict[str, Any]]:
        email = email.lower()
        for user in await self._store.load_collection(USERS):
            if user["email"] == email:
                return user
        return None

    def _issue(self, user: AuthUser) -> AuthSession:
        token, expires_at = create_access_token(
            self._settings, subject={"sub": str(user.id), "email": user.email}
        )
        return AuthSession(access_token=token, expires_at=expires_at, provider=self.name, user=user)

    async def sign_up(self, email: str, password: str) -> SignUpResult:
        email = email.lower()
        user = AuthUser(id=uuid4(), email=email)
        entry = {
            "id": str(user.id),
            "email": email,
            "password_hash": hash_password(password),
            "created_at": utcnow().isoformat(),
        }

        def mutate(items):
            if any(u["email"] == email for u in items):
                raise DuplicateError(f"An account with email {email} already exists")
            items.append(entry)

        await self._store.modify_collection(USERS, mutate)
        return SignUpResult(user=user, session=self._issue(user))

    async def sign_in(self, email: str, password: str) -> AuthSession:
        entry = await self._find(email)
        if entry is None or not verify_password(password, entry["password_hash"]):
            raise _invalid_credentials()
        return self._issue(AuthUser(id=UUID(entry["id"]), email=entry["email"]))

    async def get_user(self, session: AuthSession) -> Optional[AuthUser]:
        if session.provider != self.name:
            return None
        claims = decode_access_token(self._settings, session.access_token)
        if not claims:
            return None
        entry = await self._find(claims.get("email", ""))
        if entry is None or entry["id"] != claims.get("sub"):
            return None
        return AuthUser(id=UUID(entry["id"]), email=entry["email"])

    async def sign_out(self, session: AuthSession) -> None:
        # Local tokens are stateless; dropping the cached session is enough
        return None

    async def update_password(self, session: AuthSession, new_password: str) -> None:
        await self.remember(session.user, new_password)

    async def remember(self, user: AuthUser, password: str) -> None:
        """Store (or refresh) the password hash of a remotely authenticated user."""
        email = user.email.lower()
        password_hash = hash_password(password)

        def mutate(items):
            for item in items:
                if item["email"] == email:
                    item["id"] = str(user.id)
                    item["password_hash"] = password_hash
                    return
            items.append(
                {
                    "id": str(user.id),
                    "email": email,
                    "password_hash": password_hash,
                    "created_at": utcnow().isoformat(),
                }
            )

        await self._store.modify_collection(USERS, mutate)
        logger.debug("Remembered credentials for %s for offline sign-in", user.id)
