"""
Shared fixtures for the Loyalty Dashboard client tests.
"""

import asyncio
from typing import List, Optional, Tuple

import pytest

from loyalty_client.auth.session_store import MemorySessionStore
from loyalty_shared.models import ApiRequest, ApiResponse, SessionLookup, StoreResult


class RecordingSessionStore(MemorySessionStore):
    """Memory store that counts calls and can be told to fail writes."""

    def __init__(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None):
        super().__init__(access_token, refresh_token)
        self.get_calls = 0
        self.set_calls = 0
        self.delete_calls = 0
        self.fail_writes = False

    async def get_auth_cookies(self) -> SessionLookup:
        self.get_calls += 1
        return await super().get_auth_cookies()

    async def set_auth_cookies(self, access_token: str, refresh_token: str) -> StoreResult:
        self.set_calls += 1
        if self.fail_writes:
            return StoreResult(success=False, error="Something went wrong, try again.")
        return await super().set_auth_cookies(access_token, refresh_token)

    async def delete_all_cookies(self) -> StoreResult:
        self.delete_calls += 1
        return await super().delete_all_cookies()

    @property
    def tokens(self) -> Tuple[Optional[str], Optional[str]]:
        return self._access_token, self._refresh_token


class FakeBackend:
    """
    Scripted stand-in for the dashboard API.

    Protected paths accept only ``valid_token``; the refresh endpoint hands
    out ``issued`` after ``refresh_delay`` seconds.
    """

    def __init__(
        self,
        valid_token: str = "new",
        issued: Tuple[str, str] = ("new", "r2"),
        refresh_delay: float = 0.05,
        refresh_status: int = 200
    ):
        self.valid_token = valid_token
        self.issued = issued
        self.refresh_delay = refresh_delay
        self.refresh_status = refresh_status
        self.refresh_calls = 0
        self.refresh_tokens_seen: List[str] = []
        self.requests: List[Tuple[str, str, Optional[str], bool]] = []
        self.status_overrides = {}

    def calls_to(self, path: str) -> List[Tuple[str, str, Optional[str], bool]]:
        return [call for call in self.requests if call[1] == path]

    async def perform(self, request: ApiRequest, access_token: Optional[str]) -> ApiResponse:
        self.requests.append((request.method, request.path, access_token, request.retried))
        await asyncio.sleep(0)

        if request.path == "/auth/token/refresh":
            self.refresh_calls += 1
            self.refresh_tokens_seen.append(request.json['refreshToken'])
            await asyncio.sleep(self.refresh_delay)
            if self.refresh_status != 200:
                return ApiResponse(self.refresh_status, {'success': False, 'message': "Invalid refresh token"})
            access, refresh = self.issued
            return ApiResponse(200, {'success': True, 'data': {'accessToken': access, 'refreshToken': refresh}})

        if request.path in self.status_overrides:
            status, body = self.status_overrides[request.path]
            return ApiResponse(status, body)

        if request.path.startswith("/auth/") or request.path.startswith("/public/"):
            return ApiResponse(200, {'success': True, 'data': {'path': request.path}})

        if access_token != self.valid_token:
            return ApiResponse(401, {'success': False, 'message': "Token expired"})

        return ApiResponse(200, {'success': True, 'data': {'path': request.path, 'token': access_token}})


@pytest.fixture
def session_store():
    return RecordingSessionStore("old", "r1")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def api_client(session_store, backend):
    from loyalty_client.api_client import LoyaltyAPIClient

    client = LoyaltyAPIClient("http://dashboard.test", session_store)
    client._perform = backend.perform
    return client
