"""
Tests for dashboard resource calls.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from loyalty_client.api_client import APIClientError
from loyalty_client.resources import DashboardResources
from loyalty_shared.exceptions import ErrorCode


@pytest.fixture
def client():
    client = Mock()
    client.get = AsyncMock(return_value={'success': True, 'data': {'items': []}})
    client.post = AsyncMock(return_value={'success': True, 'data': {}})
    return client


@pytest.mark.asyncio
async def test_branch_customers_query(client):
    resources = DashboardResources(client)

    data = await resources.branch_customers(
        "biz-1", "br-2", page=2, limit=25, search="ana", min_amount=10.5, max_visits=0
    )

    assert data == {'items': []}
    client.get.assert_awaited_once_with(
        "/branches/biz-1/br-2/customers",
        params={'page': "2", 'limit': "25", 'search': "ana", 'minAmount': "10.5"}
    )


@pytest.mark.asyncio
async def test_branch_purchases_query(client):
    resources = DashboardResources(client)

    await resources.branch_purchases("biz-1", "br-2", date_from="2024-01-01", date_to="2024-01-31", max_amount=300)

    client.get.assert_awaited_once_with(
        "/branches/biz-1/br-2/purchases",
        params={'page': "1", 'limit': "10", 'maxAmount': "300", 'dateFrom': "2024-01-01", 'dateTo': "2024-01-31"}
    )


@pytest.mark.asyncio
async def test_branch_calls_require_ids(client):
    resources = DashboardResources(client)

    with pytest.raises(ValueError, match="Business ID and Branch ID are required"):
        await resources.branch_overview("biz-1", "")

    client.get.assert_not_awaited()


@pytest.mark.asyncio
async def test_branch_overview_and_stats_payloads(client):
    resources = DashboardResources(client)

    client.get.return_value = {'success': True, 'data': {'overview': {'customers': 40}}}
    assert await resources.branch_overview("biz-1", "br-1") == {'customers': 40}
    client.get.assert_awaited_with('/branches/biz-1/br-1/overview')

    client.get.return_value = {'success': True, 'overview': {'visits': 12}}
    assert await resources.branch_stats("biz-1", "br-1") == {'visits': 12}
    client.get.assert_awaited_with('/branches/biz-1/br-1/stats')


@pytest.mark.asyncio
async def test_unsuccessful_envelope_raises(client):
    client.get.return_value = {'success': False, 'message': "Branch is archived"}
    resources = DashboardResources(client)

    with pytest.raises(APIClientError) as exc_info:
        await resources.branch_stats("biz-1", "br-2")

    assert exc_info.value.message == "Branch is archived"
    assert exc_info.value.error_code == ErrorCode.API_INVALID_RESPONSE


@pytest.mark.asyncio
async def test_account_and_public_calls(client):
    resources = DashboardResources(client)

    await resources.verify_email("owner@example.com", "123456")
    await resources.reset_password("owner@example.com", "654321", "n3w-passw0rd")
    await resources.create_branch("biz-1", {'name': "Downtown"})
    await resources.submit_public_purchase("coffee-corner", {'amount': 12.5})
    await resources.list_branches("biz-1")

    posted = [call.args[0] for call in client.post.await_args_list]
    assert posted == [
        "/auth/verify-email",
        "/auth/reset-password",
        "/branches/biz-1",
        "/public/branch/coffee-corner/purchase",
    ]
    assert client.post.await_args_list[1].kwargs['json'] == {
        'email': "owner@example.com", 'otpCode': "654321", 'newPassword': "n3w-passw0rd"
    }
    client.get.assert_awaited_once_with("/businesses/biz-1/branches")


if __name__ == "__main__":
    pytest.main([__file__])
