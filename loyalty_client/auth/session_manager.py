"""
Session Manager for the Loyalty Dashboard client.

This module coordinates access-token refresh for every request issued by the
API client. At most one refresh cycle runs at a time; requests that hit an
authorization failure while a refresh is in flight wait for that refresh and
receive its outcome instead of starting their own.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Awaitable, List

from jose import jwt, JWTError

from loyalty_shared.exceptions import ErrorCode, SessionExpiredError, UnauthenticatedError
from loyalty_shared.interfaces import ISessionStore
from loyalty_shared.logging_config import AuditLogger, token_fingerprint
from loyalty_shared.models import TokenPair, StoreResult

logger = logging.getLogger(__name__)

RefreshCall = Callable[[str], Awaitable[TokenPair]]


class SessionManager:
    """
    Owns the shared refresh state for one API client.

    The refresh-in-progress flag and the queue of waiting requests are private
    to this object. The flag is checked and set without a suspension point in
    between, so two tasks can never both start a refresh.
    """

    def __init__(
        self,
        session_store: ISessionStore,
        refresh_timeout: float = 15.0,
        login_path: str = "/login"
    ):
        self.session_store = session_store
        self.refresh_timeout = refresh_timeout
        self.login_path = login_path
        self.audit = AuditLogger()

        self._is_refreshing = False
        self._pending: List[asyncio.Future] = []

        self._session_expired_callbacks: List[Callable[[SessionExpiredError], None]] = []
        self._token_refresh_callbacks: List[Callable[[str], None]] = []

        logger.debug(f"Session manager initialized (refresh timeout: {refresh_timeout}s)")

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    @property
    def pending_count(self) -> int:
        """Number of requests waiting on the in-flight refresh."""
        return len(self._pending)

    def add_session_expired_callback(self, callback: Callable[[SessionExpiredError], None]) -> None:
        """
        Add callback for terminal session failures.

        The presentation layer uses this to navigate to ``error.redirect_to``.

        Args:
            callback: Function called with the terminal error
        """
        self._session_expired_callbacks.append(callback)

    def add_token_refresh_callback(self, callback: Callable[[str], None]) -> None:
        """
        Add callback for successful refreshes.

        Args:
            callback: Function called with the new access token
        """
        self._token_refresh_callbacks.append(callback)

    def _notify_session_expired(self, error: SessionExpiredError) -> None:
        for callback in self._session_expired_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in session expired callback: {e}")

    def _notify_token_refresh(self, access_token: str) -> None:
        for callback in self._token_refresh_callbacks:
            try:
                callback(access_token)
            except Exception as e:
                logger.error(f"Error in token refresh callback: {e}")

    def _parse_token_expiration(self, token: Optional[str]) -> Optional[datetime]:
        """
        Read the expiry from a JWT access token without verifying it.

        Args:
            token: JWT token string

        Returns:
            Expiration datetime or None if not available
        """
        if not token:
            return None
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.debug(f"Access token is not a readable JWT: {e}")
            return None

        expires_at = claims.get('exp') or claims.get('expires_at')
        if isinstance(expires_at, (int, float)):
            return datetime.fromtimestamp(expires_at)
        return None

    async def get_access_token(self) -> Optional[str]:
        """
        Current access token, or None when no valid session is stored.
        """
        lookup = await self.session_store.get_auth_cookies()
        if not lookup.success:
            logger.debug("No valid session stored, sending request without credentials")
            return None
        return lookup.access_token

    async def describe_session(self) -> Dict[str, Any]:
        """Summary of the stored session that is safe to print or log."""
        lookup = await self.session_store.get_auth_cookies()
        expires_at = self._parse_token_expiration(lookup.access_token)
        return {
            'authenticated': lookup.success,
            'access_token': token_fingerprint(lookup.access_token),
            'expires_at': expires_at.isoformat() if expires_at else None,
            'refreshing': self._is_refreshing,
        }

    async def refresh(self, refresh_call: RefreshCall) -> str:
        """
        Obtain a fresh access token, joining the in-flight refresh if any.

        Args:
            refresh_call: Coroutine function exchanging a refresh token for a
                new TokenPair

        Returns:
            The new access token

        Raises:
            SessionExpiredError: The refresh failed, timed out or there was no
                refresh token. The stored session has been destroyed.
        """
        if self._is_refreshing:
            return await self._wait_for_refresh()

        self._is_refreshing = True
        try:
            tokens = await self._run_refresh(refresh_call)
        except asyncio.CancelledError:
            self._is_refreshing = False
            self._settle_pending(error=SessionExpiredError(
                "Token refresh was cancelled",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                redirect_to=self.login_path
            ))
            raise
        except Exception as e:
            error = self._as_terminal_error(e)
            waiting = len(self._pending)
            self.audit.log_session_refresh(False, waiting_requests=waiting, failure_reason=error.message)
            try:
                await self._destroy_session(f"refresh failed: {error.message}")
            finally:
                self._is_refreshing = False
                self._settle_pending(error=error)
            self._notify_session_expired(error)
            if error is e:
                raise
            raise error from e
        finally:
            self._is_refreshing = False

        self.audit.log_session_refresh(
            True,
            waiting_requests=len(self._pending),
            expires_at=self._parse_token_expiration(tokens.access_token)
        )
        self._settle_pending(token=tokens.access_token)
        self._notify_token_refresh(tokens.access_token)
        return tokens.access_token

    async def _run_refresh(self, refresh_call: RefreshCall) -> TokenPair:
        lookup = await self.session_store.get_auth_cookies()
        refresh_token = lookup.refresh_token
        if not refresh_token:
            raise UnauthenticatedError(redirect_to=self.login_path)

        logger.info(f"Refreshing session (refresh token {token_fingerprint(refresh_token)})")
        try:
            tokens = await asyncio.wait_for(refresh_call(refresh_token), timeout=self.refresh_timeout)
        except asyncio.TimeoutError:
            raise SessionExpiredError(
                f"Token refresh timed out after {self.refresh_timeout}s",
                error_code=ErrorCode.AUTH_REFRESH_TIMEOUT,
                redirect_to=self.login_path
            )

        result = await self.session_store.set_auth_cookies(tokens.access_token, tokens.refresh_token)
        if not result.success:
            logger.warning(f"Refreshed session could not be persisted: {result.error}")

        return tokens

    async def _wait_for_refresh(self) -> str:
        future = asyncio.get_running_loop().create_future()
        self._pending.append(future)
        logger.debug(f"Refresh in progress, request queued ({len(self._pending)} waiting)")
        return await future

    def _settle_pending(self, token: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        """Resolve or reject every queued request once, in enqueue order."""
        pending, self._pending = self._pending, []
        for future in pending:
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(token)

    def _as_terminal_error(self, error: Exception) -> SessionExpiredError:
        if isinstance(error, SessionExpiredError):
            return error
        return SessionExpiredError(
            f"Token refresh failed: {error}",
            error_code=ErrorCode.AUTH_REFRESH_FAILED,
            redirect_to=self.login_path,
            cause=error
        )

    async def _destroy_session(self, reason: str) -> StoreResult:
        result = await self.session_store.delete_all_cookies()
        if not result.success:
            logger.error(f"Failed to clear session: {result.error}")
        self.audit.log_session_cleared(reason, success=result.success)
        return result

    async def expire_session(self, error: SessionExpiredError) -> None:
        """
        Handle a terminal failure detected outside a refresh cycle.

        The session is destroyed unless a refresh cycle currently owns the
        store, in which case that cycle decides what happens to it.
        """
        if self._is_refreshing:
            logger.info("Refresh in progress, leaving session cleanup to the active refresh")
        else:
            await self._destroy_session(error.message)
        self._notify_session_expired(error)
