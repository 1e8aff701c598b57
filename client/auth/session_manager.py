"""
Session Manager for the GPT Toolkit Client.

This module owns the authenticated session: the in-memory access token, the
cached user profile, the persisted refresh token and the refresh protocol.
Every backend call made through SessionManager.request() transparently
recovers from an expired access token by refreshing once and retrying once.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Callable, List, Any, Tuple, Type, TypeVar

from jose import jwt, JWTError

from client.api_client import APIClient, json_body
from client.auth.credential_store import SecureCredentialStore
from shared.exceptions import ToolkitError, APIError, ServerError, CredentialStoreError
from shared.interfaces import ICredentialStore, CredentialKey
from shared.logging_config import AuditLogger, log_structured_error
from shared.models import (
    AuthState, Session, User, EmptyResponse,
    AuthResponse, RefreshResponse, UserResponse,
    LoginRequest, RegisterRequest, RefreshRequest
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionCallback = Callable[[Session], None]


class SessionManager:
    """
    Manages the authenticated session with single-flight token refresh.

    All session fields are read and written under one asyncio lock; no network
    I/O happens while the lock is held. Concurrent callers that hit an expired
    access token share a single in-flight refresh.
    """

    def __init__(
        self,
        api_client: APIClient,
        credential_store: ICredentialStore,
        credential_key: CredentialKey = CredentialKey("GPTToolkitMacApp", "refreshToken")
    ):
        self.api_client = api_client
        self.credential_store = credential_store
        self.credential_key = credential_key

        # Current session state
        self._auth_state = AuthState.LOGGED_OUT
        self._access_token: Optional[str] = None
        self._access_token_expires_at: Optional[datetime] = None
        self._user: Optional[User] = None

        self._state_lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task] = None
        # Bumped on login/logout/teardown so late refresh results are discarded
        self._generation = 0

        self._session_callbacks: List[SessionCallback] = []
        self._last_notified = self._snapshot()
        self._audit = AuditLogger()

        logger.info("Session manager initialized")

    @classmethod
    def from_config(cls, config) -> "SessionManager":
        """Build a session manager from a ClientConfiguration."""
        api_client = APIClient(config.get_server_url(), timeout=config.get_server_timeout())
        key = config.get_credential_key()
        store = SecureCredentialStore(
            storage_path=Path(config.get_credentials_file()),
            service_name=key.service,
            use_keyring=config.use_keyring()
        )
        return cls(api_client, store, key)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Release the HTTP client. A pending refresh is left to finish on its own."""
        await self.api_client.close()

    # =========================================================================
    # State observation
    # =========================================================================

    def _snapshot(self) -> Session:
        return Session(
            auth_state=self._auth_state,
            access_token=self._access_token,
            user=self._user,
            access_token_expires_at=self._access_token_expires_at,
        )

    @property
    def session(self) -> Session:
        """Immutable snapshot of the current session."""
        return self._snapshot()

    @property
    def auth_state(self) -> AuthState:
        return self._auth_state

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    @property
    def access_token_expires_at(self) -> Optional[datetime]:
        """Expiry advertised by the access token, for display only."""
        return self._access_token_expires_at

    def is_authenticated(self) -> bool:
        return self._auth_state == AuthState.AUTHENTICATED

    def add_session_callback(self, callback: SessionCallback) -> None:
        """
        Add callback for session changes.

        Args:
            callback: Function called with a Session snapshot after each change
        """
        self._session_callbacks.append(callback)

    def remove_session_callback(self, callback: SessionCallback) -> None:
        if callback in self._session_callbacks:
            self._session_callbacks.remove(callback)

    def _notify_session_change(self) -> None:
        """Notify callbacks if the session differs from the last notification."""
        snapshot = self._snapshot()
        if snapshot == self._last_notified:
            return
        self._last_notified = snapshot

        for callback in list(self._session_callbacks):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in session callback: {e}")

    # =========================================================================
    # Token handling
    # =========================================================================

    @staticmethod
    def _parse_token_expiration(token: str) -> Optional[datetime]:
        """Read the 'exp' claim without verifying the token."""
        try:
            expires_at = jwt.get_unverified_claims(token).get('exp')
        except JWTError:
            logger.debug("Access token is not a JWT, expiry unknown")
            return None

        if isinstance(expires_at, (int, float)):
            return datetime.fromtimestamp(expires_at, tz=timezone.utc)
        return None

    def _read_refresh_token(self) -> Optional[str]:
        data = self.credential_store.read(self.credential_key)
        if data is None:
            return None
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError:
            logger.warning("Stored refresh token is not valid UTF-8, ignoring it")
            return None

    def _save_refresh_token(self, token: str) -> None:
        self.credential_store.save(self.credential_key, token.encode('utf-8'))

    def _set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token
        self._access_token_expires_at = self._parse_token_expiration(token) if token else None

    async def _current_access_token(self) -> Optional[str]:
        async with self._state_lock:
            return self._access_token

    async def _current_credentials(self) -> Tuple[Optional[str], int]:
        async with self._state_lock:
            return self._access_token, self._generation

    async def _clear_session(
        self,
        delete_persisted: bool = True,
        raise_on_store_error: bool = False,
        generation: Optional[int] = None
    ) -> None:
        """
        Return to LOGGED_OUT, dropping memory state and optionally the stored token.

        With a generation, nothing happens if the session has been replaced or
        cleared since then.
        """
        store_error: Optional[CredentialStoreError] = None

        async with self._state_lock:
            if generation is not None and generation != self._generation:
                logger.debug("Session already replaced, skipping teardown")
                return
            self._generation += 1
            self._set_access_token(None)
            self._user = None
            self._auth_state = AuthState.LOGGED_OUT

            if delete_persisted:
                try:
                    self.credential_store.delete(self.credential_key)
                except CredentialStoreError as e:
                    logger.error(f"Failed to delete stored refresh token: {e.message}")
                    store_error = e

        self._notify_session_change()

        if store_error is not None and raise_on_store_error:
            raise store_error

    async def _install_auth_response(self, response: AuthResponse) -> None:
        """Persist the refresh token, then install access token and profile."""
        async with self._state_lock:
            self._save_refresh_token(response.refresh_token)
            self._generation += 1
            self._set_access_token(response.access_token)
            self._user = response.user
            self._auth_state = AuthState.AUTHENTICATED

        self._notify_session_change()

    # =========================================================================
    # Login / register / logout
    # =========================================================================

    async def login(self, email: str, password: str) -> User:
        """
        Log in with email and password.

        Raises:
            APIError: On rejection or transport failure; session is unchanged
            CredentialStoreError: If the refresh token cannot be persisted
        """
        body = json_body(LoginRequest(email=email, password=password))
        try:
            response = await self.api_client.request('auth/login', 'POST', body, AuthResponse)
        except APIError as e:
            self._audit.log_authentication('login', success=False, failure_reason=e.message)
            raise

        await self._install_auth_response(response)
        self._audit.log_authentication('login', user_id=response.user.id)
        logger.info(f"Logged in as user {response.user.id}")
        return response.user

    async def register(self, name: str, email: str, password: str) -> User:
        """
        Create an account and log into it.

        Raises:
            APIError: On rejection or transport failure; session is unchanged
            CredentialStoreError: If the refresh token cannot be persisted
        """
        body = json_body(RegisterRequest(name=name, email=email, password=password))
        try:
            response = await self.api_client.request('auth/register', 'POST', body, AuthResponse)
        except APIError as e:
            self._audit.log_authentication('register', success=False, failure_reason=e.message)
            raise

        await self._install_auth_response(response)
        self._audit.log_authentication('register', user_id=response.user.id)
        logger.info(f"Registered and logged in as user {response.user.id}")
        return response.user

    async def logout(self) -> None:
        """
        Log out: notify the server if possible, then clear everything locally.

        Raises:
            CredentialStoreError: If the stored refresh token cannot be deleted
                (the in-memory session is cleared regardless)
        """
        async with self._state_lock:
            access_token = self._access_token
            user_id = self._user.id if self._user else None
        refresh_token = self._read_refresh_token()

        server_notified = False
        if refresh_token is not None:
            try:
                await self.api_client.request(
                    'auth/logout', 'POST',
                    json_body(RefreshRequest(refresh_token=refresh_token)),
                    EmptyResponse,
                    bearer_token=access_token
                )
                server_notified = True
            except APIError as e:
                logger.warning(f"Server logout failed, clearing local session anyway: {e.message}")

        try:
            await self._clear_session(raise_on_store_error=True)
        finally:
            self._audit.log_logout(user_id=user_id, server_notified=server_notified)
            logger.info("Logged out")

    async def discard_session(self) -> None:
        """
        End the session locally without contacting the server.

        For callers of refresh() that must tear down after it fails. A failure
        to delete the stored refresh token is logged, not raised.
        """
        logger.info("Discarding local session")
        await self._clear_session()

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> bool:
        """
        Exchange the stored refresh token for a new token pair.

        Joins a refresh that is already in flight instead of starting another.

        Returns:
            True if tokens were replaced, False if there was nothing to refresh

        Raises:
            ToolkitError: If the refresh call or persisting the new token fails.
                The session is left as is; cleanup is up to the caller.
        """
        async with self._state_lock:
            task = self._join_or_start_refresh()
        if task is None:
            return False
        return await asyncio.shield(task)

    def _join_or_start_refresh(self) -> Optional[asyncio.Task]:
        """Return the in-flight refresh task, starting one if needed. Caller holds the lock."""
        if self._refresh_task is not None and not self._refresh_task.done():
            return self._refresh_task

        refresh_token = self._read_refresh_token()
        if refresh_token is None:
            logger.info("No stored refresh token, nothing to refresh")
            return None

        task = asyncio.create_task(self._perform_refresh(refresh_token, self._generation))
        task.add_done_callback(self._on_refresh_done)
        self._refresh_task = task
        return task

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Every waiter may have been cancelled; consume the outcome here
        if not task.cancelled():
            task.exception()

    async def _perform_refresh(self, refresh_token: str, generation: int) -> bool:
        """Run one refresh round trip and install its result."""
        async with self._state_lock:
            resume_state = self._auth_state
            if self._auth_state == AuthState.AUTHENTICATED:
                self._auth_state = AuthState.REFRESHING
        self._notify_session_change()

        logger.info("Refreshing access token")
        try:
            response = await self.api_client.request(
                'auth/refresh', 'POST',
                json_body(RefreshRequest(refresh_token=refresh_token)),
                RefreshResponse
            )
            async with self._state_lock:
                if generation != self._generation:
                    logger.info("Session changed during refresh, discarding refreshed tokens")
                    return False
                # Rotation: the previous refresh token is dead once this returns
                self._save_refresh_token(response.refresh_token)
                self._set_access_token(response.access_token)
                if self._auth_state == AuthState.REFRESHING:
                    self._auth_state = AuthState.AUTHENTICATED
        except ToolkitError as e:
            async with self._state_lock:
                if generation == self._generation and self._auth_state == AuthState.REFRESHING:
                    self._auth_state = resume_state
            self._notify_session_change()
            self._audit.log_token_refresh(success=False, failure_reason=e.message)
            log_structured_error(logger, e, logging.WARNING)
            raise

        self._notify_session_change()
        self._audit.log_token_refresh(success=True)
        logger.info("Token refresh successful")
        return True

    async def _recover_from_unauthorized(self, rejected_token: Optional[str]) -> bool:
        """
        Make a fresh access token available after a 401.

        If the token that was rejected has already been replaced, no refresh
        is made; the caller just retries with the current token.
        """
        async with self._state_lock:
            if self._access_token is not None and self._access_token != rejected_token:
                return True
            task = self._join_or_start_refresh()
        if task is None:
            return False
        return await asyncio.shield(task)

    # =========================================================================
    # Requests
    # =========================================================================

    async def request(
        self,
        path: str,
        method: str = 'GET',
        body: Optional[bytes] = None,
        response_type: Type[T] = dict
    ) -> T:
        """
        Make an authenticated request, refreshing and retrying once on 401.

        Args:
            path: API path relative to the base URL
            method: HTTP method
            body: Encoded request body, see json_body()
            response_type: EmptyResponse, dict/list, or a model with from_dict()

        Returns:
            The decoded response

        Raises:
            APIError: The request's own failure, or the refresh failure if
                recovery from an expired token failed
        """
        access_token, generation = await self._current_credentials()
        try:
            return await self.api_client.request(path, method, body, response_type, bearer_token=access_token)
        except ServerError as e:
            if not e.is_unauthorized:
                raise
            unauthorized = e

        logger.info(f"{method} {path} was rejected with 401, attempting token refresh")
        try:
            recovered = await self._recover_from_unauthorized(access_token)
        except ToolkitError:
            await self._clear_session(generation=generation)
            raise

        if not recovered:
            await self._clear_session(generation=generation)
            raise unauthorized

        retry_token = await self._current_access_token()
        try:
            return await self.api_client.request(path, method, body, response_type, bearer_token=retry_token)
        except ServerError as e:
            if e.is_unauthorized:
                logger.warning(f"{method} {path} rejected again after refresh, ending session")
                await self._clear_session(generation=generation)
            raise

    # =========================================================================
    # Bootstrap
    # =========================================================================

    async def load_current_user(self) -> Optional[User]:
        """
        Restore the session at startup from the stored refresh token.

        Returns:
            The current user, or None if the session could not be restored.
            Failures are logged, never raised; they always end LOGGED_OUT
            with local state cleared.
        """
        async with self._state_lock:
            has_refresh_token = self._read_refresh_token() is not None
            if has_refresh_token:
                generation = self._generation
                self._auth_state = AuthState.BOOTSTRAPPING
        if not has_refresh_token:
            logger.info("No stored session, starting logged out")
            await self._clear_session(delete_persisted=False)
            return None

        self._notify_session_change()

        user: Optional[User] = None
        try:
            user = await self._bootstrap(generation)
        except ToolkitError as e:
            log_structured_error(logger, e, logging.WARNING)
            self._audit.log_authentication('bootstrap', success=False, failure_reason=e.message)
        finally:
            if user is None:
                await self._clear_session(generation=generation)

        if user is not None:
            self._audit.log_authentication('bootstrap', user_id=user.id)
        return user

    async def _bootstrap(self, generation: int) -> Optional[User]:
        if await self._current_access_token() is None:
            if not await self.refresh():
                return None
            token = await self._current_access_token()
            response = await self.api_client.request('auth/me', 'GET', None, UserResponse, bearer_token=token)
        else:
            response = await self.request('auth/me', 'GET', None, UserResponse)

        async with self._state_lock:
            if generation != self._generation or self._access_token is None:
                logger.info("Session changed during bootstrap, not restoring profile")
                return None
            self._user = response.user
            self._auth_state = AuthState.AUTHENTICATED

        self._notify_session_change()
        logger.info(f"Session restored for user {response.user.id}")
        return response.user
