"""
HTTP API Client for the Loyalty Dashboard.

This module dispatches requests to the dashboard backend. Non-public requests
carry the stored access token; an authorization failure triggers one shared
token refresh and a single resend of the rejected request.
"""

import asyncio
import json
import logging
from typing import Optional, Dict, Any, List, Callable, Iterable

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from loyalty_shared.exceptions import (
    DashboardError, ErrorCode, ErrorSeverity, RecoveryAction,
    AuthenticationError, SessionExpiredError, NetworkError, SessionStorageError
)
from loyalty_shared.interfaces import IAPIClient, ISessionStore
from loyalty_shared.logging_config import AuditLogger
from loyalty_shared.models import ApiRequest, ApiResponse, StoreResult, TokenPair
from loyalty_client.auth.session_manager import SessionManager
from loyalty_client.auth.session_store import build_session_store

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/token/refresh"
LOGIN_PATH = "/auth/login"
LOGOUT_PATH = "/auth/logout"

DEFAULT_PUBLIC_PATHS = (
    "/auth/login",
    "/auth/register",
    "/auth/verify",
    "/auth/forgot-password",
    "/auth/reset-password",
    REFRESH_PATH,
    "/public/branch",
)

STATUS_ERROR_CODES = {
    400: ErrorCode.API_BAD_REQUEST,
    401: ErrorCode.API_UNAUTHORIZED,
    403: ErrorCode.API_FORBIDDEN,
    404: ErrorCode.API_NOT_FOUND,
    409: ErrorCode.API_CONFLICT,
    422: ErrorCode.API_VALIDATION_FAILED,
}

STATUS_LABELS = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    409: "Conflict",
    422: "Validation failed",
}


class APIClientError(DashboardError):
    """Request answered with an error status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Any = None,
        error_code: ErrorCode = ErrorCode.API_UNEXPECTED_STATUS,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        if status_code is not None:
            context['status_code'] = status_code
        kwargs.setdefault('recovery_actions', [RecoveryAction.USER_INTERVENTION])
        super().__init__(message=message, error_code=error_code, context=context, **kwargs)
        self.status_code = status_code
        self.response_data = response_data

    def get_http_status_code(self) -> int:
        if self.status_code is not None:
            return self.status_code
        return super().get_http_status_code()


class ServerError(APIClientError):
    """Server-side errors."""

    def __init__(self, message: str, status_code: int = 500, response_data: Any = None, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        kwargs.setdefault('recovery_actions', [RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.CONTACT_ADMIN])
        super().__init__(
            message,
            status_code=status_code,
            response_data=response_data,
            error_code=ErrorCode.API_SERVER_ERROR,
            **kwargs
        )


def _error_detail(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        for key in ('message', 'detail', 'error'):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class LoyaltyAPIClient(IAPIClient):
    """
    HTTP API client for the Loyalty Dashboard backend.

    Provides authenticated request dispatch with transparent session refresh,
    login and logout. Refresh coordination is delegated to a SessionManager so
    that concurrent requests share one refresh cycle.
    """

    def __init__(
        self,
        base_url: str,
        session_store: ISessionStore,
        timeout: float = 30.0,
        refresh_timeout: float = 15.0,
        public_paths: Optional[Iterable[str]] = None,
        login_path: str = "/login"
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self.session_store = session_store
        self.public_paths: List[str] = list(public_paths) if public_paths is not None else list(DEFAULT_PUBLIC_PATHS)
        self.login_path = login_path

        self.session_manager = SessionManager(
            session_store,
            refresh_timeout=refresh_timeout,
            login_path=login_path
        )
        self.audit = AuditLogger()

        self._session: Optional[ClientSession] = None

        logger.info(f"API client initialized for server: {self.base_url}")

    @classmethod
    def from_config(cls, config, session_store: Optional[ISessionStore] = None) -> 'LoyaltyAPIClient':
        """
        Create a client from a ClientConfiguration.

        Args:
            config: ClientConfiguration instance
            session_store: Store to use instead of the configured backend
        """
        if session_store is None:
            session_store = build_session_store(config)

        return cls(
            base_url=config.get_api_url(),
            session_store=session_store,
            timeout=config.get_timeout(),
            refresh_timeout=config.get_refresh_timeout(),
            public_paths=config.get_public_paths(),
            login_path=config.get_login_path()
        )

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': 'LoyaltyDashboardClient/1.0',
                    'Accept': 'application/json'
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def add_session_expired_callback(self, callback: Callable[[SessionExpiredError], None]) -> None:
        """Register a callback for terminal session failures."""
        self.session_manager.add_session_expired_callback(callback)

    def is_public_path(self, path: str) -> bool:
        """Whether requests to ``path`` are sent without session handling."""
        path = path.split('?', 1)[0]
        return any(path.startswith(prefix) for prefix in self.public_paths)

    async def send(self, request: ApiRequest) -> ApiResponse:
        """
        Dispatch a request.

        Public requests are sent as-is. Other requests carry the stored access
        token; on a 401 the session is refreshed once (shared with any other
        request failing at the same time) and the request is resent.

        Args:
            request: Request descriptor

        Returns:
            Successful response

        Raises:
            SessionExpiredError: Session could not be recovered
            APIClientError: Error status other than a recoverable 401
            NetworkError: Transport failure
        """
        if self.is_public_path(request.path):
            response = await self._perform(request, None)
            return self._check_response(request, response)

        access_token = await self.session_manager.get_access_token()
        response = await self._perform(request, access_token)
        if response.status != 401:
            return self._check_response(request, response)

        if request.retried:
            await self._reject_retried(request)

        logger.info(f"{request.method} {request.path} unauthorized, refreshing session")
        retry_request = request.mark_retried()
        access_token = await self.session_manager.refresh(self._request_token_refresh)

        response = await self._perform(retry_request, access_token)
        if response.status == 401:
            await self._reject_retried(retry_request)
        return self._check_response(retry_request, response)

    async def _reject_retried(self, request: ApiRequest) -> None:
        error = SessionExpiredError(
            f"{request.method} {request.path} rejected after session refresh",
            error_code=ErrorCode.AUTH_RETRY_REJECTED,
            redirect_to=self.login_path,
            context={'path': request.path}
        )
        self.audit.log_error(error)
        await self.session_manager.expire_session(error)
        raise error

    async def _perform(self, request: ApiRequest, access_token: Optional[str]) -> ApiResponse:
        """
        Send one HTTP request and decode the response.

        Raises:
            NetworkError: On transport failure or timeout
        """
        await self._ensure_session()

        url = f"{self.base_url}{request.path}"
        headers = request.with_bearer(access_token)
        params = None
        if request.params:
            params = {key: value for key, value in request.params.items() if value is not None}

        logger.debug(f"Making {request.method} request to {url} (retried: {request.retried})")

        try:
            async with self._session.request(
                method=request.method,
                url=url,
                json=request.json,
                params=params,
                headers=headers
            ) as response:
                data = await self._read_body(response)
                return ApiResponse(status=response.status, data=data, headers=dict(response.headers))

        except asyncio.TimeoutError as e:
            logger.warning(f"Request to {request.path} timed out")
            raise NetworkError(
                "Request timeout. Please try again.",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                context={'path': request.path},
                cause=e
            )
        except aiohttp.ClientSSLError as e:
            logger.warning(f"SSL error on {request.path}: {e}")
            raise NetworkError(
                f"SSL error: {e}",
                error_code=ErrorCode.NETWORK_SSL_ERROR,
                context={'path': request.path},
                cause=e
            )
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {request.path}: {e}")
            raise NetworkError(
                f"Network request failed: {e}",
                context={'path': request.path},
                cause=e
            )

    async def _read_body(self, response: aiohttp.ClientResponse) -> Any:
        """Decode a JSON body, falling back to the raw text."""
        try:
            return await response.json(content_type=None)
        except (json.JSONDecodeError, ValueError):
            text = await response.text()
            return {'detail': text} if text else None

    def _check_response(self, request: ApiRequest, response: ApiResponse) -> ApiResponse:
        """Return successful responses, raise the matching error otherwise."""
        if response.ok:
            return response

        status = response.status
        label = STATUS_LABELS.get(status, "Request failed")
        detail = _error_detail(response.data, label)
        context = {'path': request.path, 'method': request.method}

        if status >= 500:
            raise ServerError(
                f"Server error ({status}): {_error_detail(response.data, 'Internal server error')}",
                status_code=status,
                response_data=response.data,
                context=context
            )

        raise APIClientError(
            f"{label} ({status}): {detail}",
            status_code=status,
            response_data=response.data,
            error_code=STATUS_ERROR_CODES.get(status, ErrorCode.API_UNEXPECTED_STATUS),
            context=context
        )

    async def _request_token_refresh(self, refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new token pair.

        Sent without a bearer credential and outside the recovery path.
        """
        request = ApiRequest('POST', REFRESH_PATH, json={'refreshToken': refresh_token})
        response = await self._perform(request, None)

        if not response.ok:
            raise AuthenticationError(
                f"Token refresh rejected ({response.status}): {_error_detail(response.data, 'Unauthorized')}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                context={'status_code': response.status}
            )

        try:
            data = response.data['data']
            return TokenPair(access_token=data['accessToken'], refresh_token=data['refreshToken'])
        except (TypeError, KeyError, ValueError) as e:
            raise AuthenticationError(
                "Token refresh response is malformed",
                error_code=ErrorCode.API_INVALID_RESPONSE,
                cause=e
            )

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """Send a request and return the decoded response body."""
        response = await self.send(ApiRequest(method, path, json=json, params=params))
        return response.data

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('GET', path, params=params)

    async def post(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('POST', path, json=json)

    async def put(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('PUT', path, json=json)

    async def patch(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('PATCH', path, json=json)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('DELETE', path, params=params)

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authenticate with email and password and store the issued session.

        Args:
            email: Account email
            password: Account password

        Returns:
            The ``data`` object of the login response

        Raises:
            AuthenticationError: Credentials rejected or response malformed
            SessionStorageError: Tokens could not be stored
            NetworkError: Transport failure
        """
        logger.info(f"Logging in as {email}")

        try:
            response = await self.send(ApiRequest('POST', LOGIN_PATH, json={'email': email, 'password': password}))
        except NetworkError:
            raise
        except APIClientError as e:
            self.audit.log_authentication(email, success=False, failure_reason=e.message)
            raise AuthenticationError(
                f"Login failed: {_error_detail(e.response_data, e.message)}",
                error_code=ErrorCode.AUTH_LOGIN_FAILED,
                context={'status_code': e.status_code},
                recovery_actions=[RecoveryAction.USER_INTERVENTION],
                cause=e
            )

        try:
            data = response.data['data']
            tokens = data['tokens']
            access_token = tokens['accessToken']
            refresh_token = tokens['refreshToken']
        except (TypeError, KeyError) as e:
            self.audit.log_authentication(email, success=False, failure_reason="malformed login response")
            raise AuthenticationError(
                "Login response did not contain a session",
                error_code=ErrorCode.API_INVALID_RESPONSE,
                cause=e
            )

        result = await self.session_store.set_auth_cookies(access_token, refresh_token)
        if not result.success:
            self.audit.log_authentication(email, success=False, failure_reason=result.error)
            raise SessionStorageError(f"Failed to store session: {result.error}")

        self.audit.log_authentication(email, success=True)
        return data

    async def logout(self) -> StoreResult:
        """
        End the session on the server and clear it locally.

        The local session is cleared even when the server call fails.

        Returns:
            StoreResult; ``success`` is False when the server call failed
        """
        try:
            await self.send(ApiRequest('POST', LOGOUT_PATH))
        except DashboardError as e:
            logger.warning(f"Logout request failed: {e}")
            result = await self.session_store.delete_all_cookies()
            self.audit.log_session_cleared("logout (server call failed)", success=result.success)
            return StoreResult(success=False, error=str(e))

        result = await self.session_store.delete_all_cookies()
        self.audit.log_session_cleared("logout", success=result.success)
        if not result.success:
            return result
        return StoreResult(success=True, message="Logged out successfully")

    async def describe_session(self) -> Dict[str, Any]:
        """Summary of the stored session."""
        return await self.session_manager.describe_session()
