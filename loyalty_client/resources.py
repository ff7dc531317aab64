"""
Dashboard resource calls for the Loyalty Dashboard client.

Thin wrappers around ``LoyaltyAPIClient.request`` for account, business,
branch and public branch endpoints. Session handling stays in the client.
"""

import logging
from typing import Optional, Dict, Any, Union

from loyalty_shared.exceptions import ErrorCode
from loyalty_client.api_client import LoyaltyAPIClient, APIClientError

logger = logging.getLogger(__name__)

Number = Union[int, float]


def _require_branch(business_id: Optional[str], branch_id: Optional[str]) -> None:
    if not business_id or not branch_id:
        raise ValueError("Business ID and Branch ID are required")


def _build_query(page: int, limit: int, **filters: Any) -> Dict[str, str]:
    """Paging parameters plus every filter that is set, as strings."""
    params = {'page': str(page), 'limit': str(limit)}
    for key, value in filters.items():
        if value:
            params[key] = str(value)
    return params


def _unwrap(body: Any, default_message: str, field: str = 'data') -> Any:
    """Return ``field`` from a ``{success, data, message}`` envelope."""
    if isinstance(body, dict) and body.get('success'):
        return body.get(field)

    message = body.get('message') if isinstance(body, dict) else None
    raise APIClientError(
        message or default_message,
        response_data=body,
        error_code=ErrorCode.API_INVALID_RESPONSE
    )


class DashboardResources:
    """Endpoint calls used by the dashboard pages."""

    def __init__(self, client: LoyaltyAPIClient):
        self.client = client

    # Account

    async def register(self, name: str, email: str, phone: str, password: str) -> Any:
        return await self.client.post('/auth/register', json={
            'name': name,
            'email': email,
            'phone': phone,
            'password': password
        })

    async def verify_email(self, email: str, otp_code: str) -> Any:
        return await self.client.post('/auth/verify-email', json={'email': email, 'otpCode': otp_code})

    async def resend_verification(self, email: str) -> Any:
        return await self.client.post('/auth/resend-verification', json={'email': email})

    async def request_password_reset(self, email: str) -> Any:
        return await self.client.post('/auth/request-password-reset', json={'email': email})

    async def resend_password_reset(self, email: str) -> Any:
        return await self.client.post('/auth/resend-password-reset', json={'email': email})

    async def reset_password(self, email: str, otp_code: str, new_password: str) -> Any:
        return await self.client.post('/auth/reset-password', json={
            'email': email,
            'otpCode': otp_code,
            'newPassword': new_password
        })

    # Businesses and branches

    async def create_business(self, payload: Dict[str, Any]) -> Any:
        return await self.client.post('/businesses', json=payload)

    async def list_branches(self, business_id: str) -> Any:
        return await self.client.get(f'/businesses/{business_id}/branches')

    async def create_branch(self, business_id: str, payload: Dict[str, Any]) -> Any:
        return await self.client.post(f'/branches/{business_id}', json=payload)

    async def branch_overview(self, business_id: str, branch_id: str) -> Any:
        _require_branch(business_id, branch_id)
        body = await self.client.get(f'/branches/{business_id}/{branch_id}/overview')
        data = _unwrap(body, "Failed to fetch branch overview")
        return data.get('overview') if isinstance(data, dict) else None

    async def branch_stats(self, business_id: str, branch_id: str) -> Any:
        # the stats endpoint puts its payload beside ``success``, not under ``data``
        _require_branch(business_id, branch_id)
        body = await self.client.get(f'/branches/{business_id}/{branch_id}/stats')
        return _unwrap(body, "Failed to fetch branch stats", field='overview')

    async def branch_customers(
        self,
        business_id: str,
        branch_id: str,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        min_amount: Optional[Number] = None,
        max_amount: Optional[Number] = None,
        min_visits: Optional[int] = None,
        max_visits: Optional[int] = None
    ) -> Any:
        """
        Paged customer list for a branch.

        Unset (or zero) filters are left out of the query.
        """
        _require_branch(business_id, branch_id)
        params = _build_query(
            page, limit,
            search=search,
            minAmount=min_amount,
            maxAmount=max_amount,
            minVisits=min_visits,
            maxVisits=max_visits
        )
        body = await self.client.get(f'/branches/{business_id}/{branch_id}/customers', params=params)
        return _unwrap(body, "Failed to fetch branch customers")

    async def branch_purchases(
        self,
        business_id: str,
        branch_id: str,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        min_amount: Optional[Number] = None,
        max_amount: Optional[Number] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None
    ) -> Any:
        """Paged purchase list for a branch."""
        _require_branch(business_id, branch_id)
        params = _build_query(
            page, limit,
            search=search,
            minAmount=min_amount,
            maxAmount=max_amount,
            dateFrom=date_from,
            dateTo=date_to
        )
        body = await self.client.get(f'/branches/{business_id}/{branch_id}/purchases', params=params)
        return _unwrap(body, "Failed to fetch branch purchases")

    # Public branch pages

    async def public_branch(self, slug: str) -> Any:
        return await self.client.get(f'/public/branch/{slug}')

    async def submit_public_purchase(self, slug: str, payload: Dict[str, Any]) -> Any:
        logger.info(f"Submitting purchase for branch {slug}")
        return await self.client.post(f'/public/branch/{slug}/purchase', json=payload)
