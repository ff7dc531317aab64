"""
Core interfaces for the Loyalty Dashboard client.

This module defines the abstract interfaces that session stores and API
clients must implement.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .models import ApiRequest, ApiResponse, SessionLookup, StoreResult


class ISessionStore(ABC):
    """Interface for persisting the access/refresh token pair."""

    @abstractmethod
    async def get_auth_cookies(self) -> SessionLookup:
        """Read the current session. Never raises."""
        pass

    @abstractmethod
    async def set_auth_cookies(self, access_token: str, refresh_token: str) -> StoreResult:
        """Replace both tokens in one write. Never raises."""
        pass

    @abstractmethod
    async def delete_all_cookies(self) -> StoreResult:
        """Destroy the stored session. Never raises, also when nothing is stored."""
        pass


class IAPIClient(ABC):
    """Interface for the dashboard API client."""

    @abstractmethod
    async def send(self, request: ApiRequest) -> ApiResponse:
        """Dispatch a request, recovering from an expired access token once."""
        pass

    @abstractmethod
    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Authenticate and persist the issued session."""
        pass

    @abstractmethod
    async def logout(self) -> StoreResult:
        """End the session on the server and clear it locally."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        pass


class IConfigurationManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get_config(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def set_config(self, key: str, value: Any) -> None:
        """Set configuration value."""
        pass

    @abstractmethod
    def get_api_url(self) -> str:
        """Get the dashboard API base URL."""
        pass

    @abstractmethod
    def get_login_path(self) -> str:
        """Get the login entry point used after a terminal session failure."""
        pass

    @abstractmethod
    def get_session_storage_path(self) -> Optional[str]:
        """Get the encrypted session file path, if one is configured."""
        pass
