"""
Core data models for the Loyalty Dashboard client.

This module defines the data structures shared by the session stores, the
session manager and the API client.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any
from enum import Enum


class HTTPMethod(Enum):
    """HTTP methods used by the dashboard API."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass
class SessionLookup:
    """
    Result of reading the session store.

    A session is only reported when both tokens are present; a partial
    session is reported as absent.
    """
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    success: bool = False

    @classmethod
    def from_tokens(cls, access_token: Optional[str], refresh_token: Optional[str]) -> 'SessionLookup':
        if not access_token or not refresh_token:
            return cls()
        return cls(access_token=access_token, refresh_token=refresh_token, success=True)


@dataclass
class StoreResult:
    """Outcome of a session store write or delete."""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {'success': self.success}
        if self.message:
            result['message'] = self.message
        if self.error:
            result['error'] = self.error
        return result


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh token pair issued by the token refresh endpoint."""
    access_token: str
    refresh_token: str

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")
        if not self.refresh_token:
            raise ValueError("Refresh token cannot be empty")


@dataclass
class ApiRequest:
    """Outbound request descriptor handled by the dispatcher."""
    method: str
    path: str
    json: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    retried: bool = False

    def __post_init__(self):
        if isinstance(self.method, HTTPMethod):
            self.method = self.method.value
        self.method = self.method.upper()
        if not self.path:
            raise ValueError("Request path cannot be empty")
        if not self.path.startswith('/'):
            self.path = '/' + self.path

    def mark_retried(self) -> 'ApiRequest':
        """Return a copy flagged as already retried once."""
        return replace(self, headers=dict(self.headers), retried=True)

    def with_bearer(self, token: Optional[str]) -> Dict[str, str]:
        """Headers for this request with the bearer credential attached when given."""
        headers = dict(self.headers)
        if token:
            headers['Authorization'] = f'Bearer {token}'
        else:
            headers.pop('Authorization', None)
        return headers


@dataclass
class ApiResponse:
    """Decoded HTTP response."""
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
