"""
Identity and session lifecycle.

UNINITIALIZED -> CHECKING -> READY_SESSION | READY_NO_SESSION | DEGRADED

While CHECKING, reachability is probed with a bounded number of retries. A soft
timer forces a decision (DEGRADED) while the probe keeps running and may still
upgrade the state; a hard timer cancels the probe and forces DEGRADED.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError

from rollcall.connection.manager import ConnectionManager
from rollcall.core.config import Settings
from rollcall.core.enums import AuthState, ConnectionMode, ErrorReason, Reachability
from rollcall.core.events import Observable, Subscription
from rollcall.core.exceptions import ConnectivityError, DuplicateError, ServiceError
from rollcall.core.schemas import Teacher
from rollcall.stores.facade import DataStore
from rollcall.stores.remote import RemoteStore

from .providers import IdentityProvider, LocalAuthProvider, RemoteAuthProvider
from .schemas import (
    AuthError,
    AuthOutcome,
    AuthSession,
    AuthSnapshot,
    AuthUser,
    PasswordUpdate,
    SignInRequest,
    SignUpRequest,
)

logger = logging.getLogger(__name__)

SESSION_KEY = "auth_session"


def _validation_message(e: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


def name_from_email(email: str) -> str:
    return email.split("@")[0] or email


class AuthSessionManager:
    def __init__(
        self,
        settings: Settings,
        connection: ConnectionManager,
        store: DataStore,
        local_provider: LocalAuthProvider,
        remote_provider: Optional[RemoteAuthProvider] = None,
        remote_store: Optional[RemoteStore] = None,
    ) -> None:
        self._settings = settings
        self._connection = connection
        self._store = store
        self._local_provider = local_provider
        self._remote_provider = remote_provider
        self._remote_store = remote_store

        self.state = AuthState.UNINITIALIZED
        self.session: Optional[AuthSession] = None
        self.user: Optional[AuthUser] = None
        self.teacher: Optional[Teacher] = None
        self.last_error: Optional[AuthError] = None

        self._checking = False
        self._settle_task: Optional[asyncio.Task] = None
        self._changes: Observable[AuthSnapshot] = Observable()
        self._mode_subscription = connection.subscribe(self._on_mode_change)

    # ----- Observation -----
    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(
            state=self.state,
            mode=self._connection.get_mode(),
            user=self.user,
            teacher=self.teacher,
            last_error=self.last_error,
        )

    def subscribe(self, callback: Callable[[AuthSnapshot], None], emit_current: bool = True) -> Subscription:
        subscription = self._changes.subscribe(callback)
        if emit_current:
            callback(self.snapshot())
        return subscription

    def _notify(self) -> None:
        self._changes.publish(self.snapshot())

    def _set_state(self, state: AuthState) -> None:
        if state != self.state:
            logger.info("Auth state %s -> %s", self.state.value, state.value)
        self.state = state
        self._notify()

    def _settle_state(self) -> None:
        if self._connection.get_mode() == ConnectionMode.LOCAL_FALLBACK:
            self._set_state(AuthState.DEGRADED)
        elif self.user is not None:
            self._set_state(AuthState.READY_SESSION)
        else:
            self._set_state(AuthState.READY_NO_SESSION)

    def _on_mode_change(self, mode: ConnectionMode) -> None:
        if self._checking or self.state == AuthState.UNINITIALIZED:
            return
        self._settle_state()

    # ----- Initialization -----
    async def initialize(self) -> AuthState:
        """Decide the initial state; returns once the soft timer fired or the check completed."""
        if self._checking:
            return self.state
        self._checking = True
        self.last_error = None
        self._set_state(AuthState.CHECKING)

        work = asyncio.ensure_future(self._check_and_restore())
        soft = self._settings.auth_soft_timeout_seconds
        done, _ = await asyncio.wait({work}, timeout=soft)
        if work in done:
            self._finish(work)
            return self.state

        logger.warning("Remote check still running after %gs; continuing degraded", soft)
        self._set_state(AuthState.DEGRADED)
        remaining = max(self._settings.auth_hard_timeout_seconds - soft, 0)
        self._settle_task = asyncio.ensure_future(self._enforce_hard_deadline(work, remaining))
        return self.state

    async def wait_settled(self) -> AuthState:
        """Wait for a check that outlived the soft timer to finish or hit the hard timer."""
        if self._settle_task is not None:
            await self._settle_task
        return self.state

    async def _enforce_hard_deadline(self, work: "asyncio.Future[None]", remaining: float) -> None:
        done, _ = await asyncio.wait({work}, timeout=remaining)
        if work in done:
            self._finish(work)
            return
        work.cancel()
        await asyncio.wait({work})
        self._checking = False
        self._connection.mark_degraded(ErrorReason.TIMEOUT, "authentication check exceeded the hard timeout")
        self.last_error = AuthError(
            reason=ErrorReason.SERVICE_UNAVAILABLE,
            message="The remote service did not answer in time; working offline",
        )
        self._set_state(AuthState.DEGRADED)

    def _finish(self, work: "asyncio.Future[None]") -> None:
        self._checking = False
        try:
            work.result()
        finally:
            self._settle_state()

    async def _check_with_retries(self) -> Reachability:
        if not self._connection.remote_configured:
            return Reachability.UNREACHABLE
        attempts = 1 + max(self._settings.auth_check_retries, 0)
        result = Reachability.UNREACHABLE
        for attempt in range(1, attempts + 1):
            result = await self._connection.retry()
            if result == Reachability.REACHABLE:
                break
            logger.info("Reachability attempt %d/%d: %s", attempt, attempts, result.value)
            if attempt < attempts:
                await asyncio.sleep(self._settings.auth_retry_backoff_seconds)
        return result

    async def _check_and_restore(self) -> None:
        reachability = await self._check_with_retries()
        try:
            cached = await self._load_cached_session()
            if cached is None:
                return
            user: Optional[AuthUser] = None
            if cached.provider == LocalAuthProvider.name:
                if reachability == Reachability.REACHABLE and self._remote_provider is not None:
                    # A local session does not authorize remote access; sign in again online
                    logger.info("Dropping offline session now that the remote service is reachable")
                else:
                    user = await self._local_provider.get_user(cached)
            elif reachability == Reachability.REACHABLE and self._remote_provider is not None:
                try:
                    user = await self._remote_provider.get_user(cached)
                except ConnectivityError as e:
                    self._connection.mark_degraded(e.reason, e.message)
                    user = cached.user
            else:
                # Offline: keep the remote session that was stored on this device
                user = cached.user

            if user is None:
                await self._save_cached_session(None)
                return
            await self._adopt_session(cached.model_copy(update={"user": user}))
            self.teacher = await self._ensure_profile(user.email)
        except ServiceError as e:
            logger.warning("Session restore failed: %s", e.message)
            self._clear_identity()
            self.last_error = AuthError(reason=self._reason_for(e), message=e.message)

    # ----- Helpers -----
    def _provider(self) -> IdentityProvider:
        if self._remote_provider is not None and self._connection.get_mode() == ConnectionMode.REMOTE:
            return self._remote_provider
        return self._local_provider

    def _reason_for(self, error: ServiceError) -> ErrorReason:
        if isinstance(error, ConnectivityError):
            return ErrorReason.NETWORK
        if error.reason == ErrorReason.NOT_FOUND:
            return ErrorReason.SERVICE_ERROR
        return error.reason

    def _fail(self, reason: ErrorReason, message: str) -> AuthOutcome:
        logger.warning("Auth failure (%s): %s", reason.value, message)
        self.last_error = AuthError(reason=reason, message=message)
        self._notify()
        return AuthOutcome.fail(reason, message)

    def _fail_from(self, error: ServiceError) -> AuthOutcome:
        if isinstance(error, ConnectivityError):
            self._connection.mark_degraded(error.reason, error.message)
        return self._fail(self._reason_for(error), error.message)

    def _busy(self) -> Optional[AuthOutcome]:
        if self._checking and self.state == AuthState.CHECKING:
            return self._fail(ErrorReason.SERVICE_UNAVAILABLE, "Authentication is still initializing")
        return None

    async def _load_cached_session(self) -> Optional[AuthSession]:
        items = await self._store.local.load_collection(SESSION_KEY)
        if not items:
            return None
        try:
            return AuthSession.model_validate(items[0])
        except ValidationError as e:
            logger.warning("Discarding unreadable cached session: %s", _validation_message(e))
            await self._save_cached_session(None)
            return None

    async def _save_cached_session(self, session: Optional[AuthSession]) -> None:
        items: List[dict] = [session.model_dump(mode="json")] if session else []
        await self._store.local.save_collection(SESSION_KEY, items)

    def _use_token(self, session: Optional[AuthSession]) -> None:
        if self._remote_store is not None:
            self._remote_store.set_access_token(
                session.access_token if session is not None and session.provider == RemoteAuthProvider.name else None
            )

    async def _adopt_session(self, session: AuthSession) -> None:
        self.session = session
        self.user = session.user
        self._use_token(session)
        await self._save_cached_session(session)

    def _clear_identity(self) -> None:
        self.session = None
        self.user = None
        self.teacher = None
        self._use_token(None)

    async def _remember(self, user: AuthUser, password: str) -> None:
        try:
            await self._local_provider.remember(user, password)
        except ServiceError as e:
            # Offline sign-in for this user will not work until the next successful online sign-in
            logger.warning("Could not cache credentials locally: %s", e.message)

    async def _ensure_profile(self, email: str, name: Optional[str] = None) -> Teacher:
        """Load the teacher profile for email, creating it when missing."""
        teacher = await self._store.get_teacher_by_email(email)
        if teacher is not None:
            return teacher
        logger.info("No teacher profile for %s; creating one", email)
        try:
            return await self._store.create_teacher(email, name or name_from_email(email))
        except DuplicateError:
            teacher = await self._store.get_teacher_by_email(email)
            if teacher is None:
                raise
            return teacher

    # ----- Operations -----
    async def sign_up(self, email: str, password: str, name: str) -> AuthOutcome:
        busy = self._busy()
        if busy:
            return busy
        try:
            request = SignUpRequest(email=email, password=password, name=name)
        except ValidationError as e:
            return self._fail(ErrorReason.SERVICE_ERROR, f"Invalid sign-up data: {_validation_message(e)}")
        email = request.email.lower()

        try:
            if await self._store.get_teacher_by_email(email) is not None:
                return self._fail(ErrorReason.SERVICE_ERROR, f"An account with email {email} already exists")
        except ServiceError as e:
            return self._fail_from(e)

        provider = self._provider()
        try:
            result = await provider.sign_up(email, request.password)
        except ServiceError as e:
            return self._fail_from(e)
        if provider is self._remote_provider:
            await self._remember(result.user, request.password)

        # The profile insert must carry the new user's token for per-teacher access policy
        self._use_token(result.session)
        try:
            teacher = await self._store.create_teacher(email, request.name)
        except ServiceError as e:
            self._use_token(self.session)
            return self._fail(
                ErrorReason.PARTIAL_FAILURE,
                f"Account created but the teacher profile could not be saved: {e.message}",
            )

        if result.session is None:
            self._use_token(self.session)
            logger.info("Sign-up for %s awaits email confirmation", email)
            self.last_error = None
            self._notify()
            return AuthOutcome.ok(teacher, confirmation_required=True)

        await self._adopt_session(result.session)
        self.teacher = teacher
        self.last_error = None
        self._settle_state()
        return AuthOutcome.ok(teacher)

    async def sign_in(self, email: str, password: str) -> AuthOutcome:
        busy = self._busy()
        if busy:
            return busy
        try:
            request = SignInRequest(email=email, password=password)
        except ValidationError as e:
            return self._fail(ErrorReason.INVALID_CREDENTIALS, f"Invalid sign-in data: {_validation_message(e)}")

        provider = self._provider()
        try:
            session = await provider.sign_in(request.email.lower(), request.password)
        except ServiceError as e:
            return self._fail_from(e)
        if provider is self._remote_provider:
            await self._remember(session.user, request.password)

        await self._adopt_session(session)
        try:
            self.teacher = await self._ensure_profile(session.user.email)
        except ServiceError as e:
            # Never keep a session without a persisted profile
            self._clear_identity()
            await self._save_cached_session(None)
            self._settle_state()
            return self._fail(ErrorReason.PROFILE_MISSING, f"Teacher profile could not be loaded: {e.message}")

        self.last_error = None
        self._settle_state()
        return AuthOutcome.ok(self.teacher)

    async def sign_out(self) -> AuthOutcome:
        """Clear identity and cached profile; persisted entities are untouched."""
        session = self.session
        remote_error: Optional[ServiceError] = None
        if session is not None and session.provider == RemoteAuthProvider.name and self._remote_provider is not None:
            if self._connection.get_mode() == ConnectionMode.REMOTE:
                try:
                    await self._remote_provider.sign_out(session)
                except ConnectivityError as e:
                    self._connection.mark_degraded(e.reason, e.message)
                except ServiceError as e:
                    remote_error = e

        self._clear_identity()
        await self._save_cached_session(None)
        self._settle_state()
        if remote_error is not None:
            return self._fail(self._reason_for(remote_error), f"Signed out locally; remote sign-out failed: {remote_error.message}")
        self.last_error = None
        return AuthOutcome.ok()

    async def update_password(self, new_password: str) -> AuthOutcome:
        session = self.session
        if session is None or self.user is None:
            return self._fail(ErrorReason.INVALID_CREDENTIALS, "Not signed in")
        try:
            request = PasswordUpdate(new_password=new_password)
        except ValidationError as e:
            return self._fail(ErrorReason.SERVICE_ERROR, f"Invalid password: {_validation_message(e)}")

        if session.provider == RemoteAuthProvider.name:
            if self._remote_provider is None or self._connection.get_mode() != ConnectionMode.REMOTE:
                return self._fail(ErrorReason.NETWORK, "Changing the password needs a connection to the remote service")
            try:
                await self._remote_provider.update_password(session, request.new_password)
            except ServiceError as e:
                return self._fail_from(e)
            await self._remember(self.user, request.new_password)
        else:
            try:
                await self._local_provider.update_password(session, request.new_password)
            except ServiceError as e:
                return self._fail_from(e)
        self.last_error = None
        return AuthOutcome.ok(self.teacher)

    async def update_profile(self, name: str) -> AuthOutcome:
        if self.teacher is None:
            return self._fail(ErrorReason.PROFILE_MISSING, "No teacher profile is loaded")
        try:
            self.teacher = await self._store.update_teacher(self.teacher.id, name)
        except ServiceError as e:
            return self._fail_from(e)
        self.last_error = None
        self._notify()
        return AuthOutcome.ok(self.teacher)

    async def close(self) -> None:
        self._mode_subscription.unsubscribe()
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
            await asyncio.wait({self._settle_task})
