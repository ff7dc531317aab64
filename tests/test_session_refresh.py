"""
Tests for authenticated request dispatch and shared session refresh.

Covers refresh deduplication across concurrent requests, the single retry
per request, terminal failures and the public path bypass.
"""

import asyncio

import pytest

from loyalty_shared.exceptions import (
    ErrorCode, NetworkError, SessionExpiredError, UnauthenticatedError
)
from loyalty_shared.models import ApiRequest


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_request_resent(api_client, session_store, backend):
    """Stored ("old", "r1") is replaced by ("new", "r2") and the request succeeds."""
    data = await api_client.get("/businesses/42/branches")

    assert data == {'success': True, 'data': {'path': "/businesses/42/branches", 'token': "new"}}
    assert session_store.tokens == ("new", "r2")
    assert backend.refresh_tokens_seen == ["r1"]

    calls = backend.calls_to("/businesses/42/branches")
    assert [(token, retried) for _, _, token, retried in calls] == [("old", False), ("new", True)]


@pytest.mark.asyncio
async def test_concurrent_unauthorized_requests_share_one_refresh(api_client, backend):
    """N requests failing together trigger exactly one refresh."""
    paths = [f"/branches/42/{i}/stats" for i in range(5)]

    results = await asyncio.gather(*(api_client.get(path) for path in paths))

    assert backend.refresh_calls == 1
    assert [result['data']['token'] for result in results] == ["new"] * 5
    for path in paths:
        retried_calls = [call for call in backend.calls_to(path) if call[3]]
        assert len(retried_calls) == 1
        assert retried_calls[0][2] == "new"


@pytest.mark.asyncio
async def test_requests_failing_during_refresh_reuse_its_token(api_client, backend):
    """A starts the refresh; B and C fail while it runs and reuse A's token."""
    backend.refresh_delay = 0.1

    async def delayed_get(path, delay):
        await asyncio.sleep(delay)
        return await api_client.get(path)

    a, b, c = await asyncio.gather(
        api_client.get("/a"),
        delayed_get("/b", 0.02),
        delayed_get("/c", 0.04),
    )

    assert backend.refresh_calls == 1
    assert a['data']['token'] == b['data']['token'] == c['data']['token'] == "new"
    assert api_client.session_manager.pending_count == 0
    assert api_client.session_manager.is_refreshing is False


@pytest.mark.asyncio
async def test_second_unauthorized_response_is_terminal(api_client, session_store, backend):
    """A request is retried once; a 401 on the resend ends the session."""
    backend.valid_token = "never-accepted"
    expired = []
    api_client.add_session_expired_callback(expired.append)

    with pytest.raises(SessionExpiredError) as exc_info:
        await api_client.get("/businesses/42/branches")

    assert exc_info.value.error_code == ErrorCode.AUTH_RETRY_REJECTED
    assert exc_info.value.redirect_to == "/login"
    assert len(backend.calls_to("/businesses/42/branches")) == 2
    assert backend.refresh_calls == 1
    assert session_store.delete_calls == 1
    assert session_store.tokens == (None, None)
    assert expired == [exc_info.value]


@pytest.mark.asyncio
async def test_already_retried_request_is_not_retried_again(api_client, backend):
    request = ApiRequest("GET", "/businesses/42/branches", retried=True)

    with pytest.raises(SessionExpiredError):
        await api_client.send(request)

    assert backend.refresh_calls == 0
    assert len(backend.calls_to("/businesses/42/branches")) == 1


@pytest.mark.asyncio
async def test_refresh_failure_rejects_every_waiting_request(api_client, session_store, backend):
    """All requests in the window fail with the same error; the session is deleted once."""
    backend.refresh_status = 401
    expired = []
    api_client.add_session_expired_callback(expired.append)

    results = await asyncio.gather(
        *(api_client.get(f"/branches/42/{i}/overview") for i in range(4)),
        return_exceptions=True
    )

    assert all(isinstance(result, SessionExpiredError) for result in results)
    assert len({id(result) for result in results}) == 1
    assert results[0].error_code == ErrorCode.AUTH_REFRESH_FAILED
    assert results[0].redirect_to == "/login"
    assert backend.refresh_calls == 1
    assert session_store.delete_calls == 1
    assert session_store.tokens == (None, None)
    assert len(expired) == 1
    # no resend after a failed refresh
    assert not [call for call in backend.requests if call[3]]


@pytest.mark.asyncio
async def test_refresh_timeout_is_a_refresh_failure(session_store, backend):
    from loyalty_client.api_client import LoyaltyAPIClient

    backend.refresh_delay = 1.0
    client = LoyaltyAPIClient("http://dashboard.test", session_store, refresh_timeout=0.05)
    client._perform = backend.perform

    with pytest.raises(SessionExpiredError) as exc_info:
        await client.get("/businesses/42/branches")

    assert exc_info.value.error_code == ErrorCode.AUTH_REFRESH_TIMEOUT
    assert session_store.delete_calls == 1
    assert client.session_manager.is_refreshing is False


@pytest.mark.asyncio
async def test_missing_refresh_token_ends_session(api_client, session_store, backend):
    await session_store.delete_all_cookies()
    session_store.delete_calls = 0

    with pytest.raises(UnauthenticatedError) as exc_info:
        await api_client.get("/businesses/42/branches")

    assert exc_info.value.error_code == ErrorCode.AUTH_NO_REFRESH_TOKEN
    assert backend.refresh_calls == 0
    assert session_store.delete_calls == 1
    # sent without a credential
    assert backend.calls_to("/businesses/42/branches")[0][2] is None


@pytest.mark.asyncio
async def test_malformed_refresh_response_is_a_refresh_failure(api_client, session_store, backend):
    original_perform = backend.perform

    async def perform(request, access_token):
        if request.path == "/auth/token/refresh":
            backend.refresh_calls += 1
            from loyalty_shared.models import ApiResponse
            return ApiResponse(200, {'data': {'accessToken': "only-access"}})
        return await original_perform(request, access_token)

    api_client._perform = perform

    with pytest.raises(SessionExpiredError) as exc_info:
        await api_client.get("/businesses/42/branches")

    assert exc_info.value.error_code == ErrorCode.AUTH_REFRESH_FAILED
    assert session_store.delete_calls == 1


@pytest.mark.asyncio
async def test_refreshed_session_is_used_when_store_write_fails(api_client, session_store, backend):
    session_store.fail_writes = True

    data = await api_client.get("/businesses/42/branches")

    assert data['data']['token'] == "new"
    assert session_store.set_calls == 1
    assert session_store.tokens == ("old", "r1")


@pytest.mark.asyncio
async def test_public_paths_skip_session_handling(api_client, session_store, backend):
    await api_client.send(ApiRequest("POST", "/auth/login", json={'email': "a@b.c", 'password': "x"}))
    await api_client.get("/public/branch/coffee-corner")

    assert session_store.get_calls == 0
    assert [call[2] for call in backend.requests] == [None, None]


@pytest.mark.asyncio
async def test_unauthorized_public_path_passes_through(api_client, session_store, backend):
    from loyalty_client.api_client import APIClientError

    backend.status_overrides["/auth/login"] = (401, {'message': "Invalid credentials"})

    with pytest.raises(APIClientError) as exc_info:
        await api_client.post("/auth/login", json={'email': "a@b.c", 'password': "wrong"})

    assert exc_info.value.status_code == 401
    assert not isinstance(exc_info.value, SessionExpiredError)
    assert backend.refresh_calls == 0
    assert session_store.delete_calls == 0


@pytest.mark.asyncio
async def test_public_path_match_ignores_query_string(api_client):
    assert api_client.is_public_path("/auth/verify-email?code=1")
    assert api_client.is_public_path("/public/branch/slug/purchase")
    assert not api_client.is_public_path("/businesses?next=/auth/login")


@pytest.mark.asyncio
async def test_server_errors_pass_through_without_refresh(api_client, backend):
    from loyalty_client.api_client import ServerError, APIClientError

    backend.valid_token = "old"
    backend.status_overrides["/boom"] = (500, {'message': "Database unavailable"})
    backend.status_overrides["/missing"] = (404, {'message': "Branch not found"})

    with pytest.raises(ServerError) as server_error:
        await api_client.get("/boom")
    with pytest.raises(APIClientError) as client_error:
        await api_client.get("/missing")

    assert server_error.value.status_code == 500
    assert client_error.value.error_code == ErrorCode.API_NOT_FOUND
    assert "Branch not found" in client_error.value.message
    assert backend.refresh_calls == 0
    assert len(backend.calls_to("/boom")) == 1


@pytest.mark.asyncio
async def test_network_errors_pass_through_without_retry(api_client, backend):
    attempts = []

    async def perform(request, access_token):
        attempts.append(request.path)
        raise NetworkError("Network request failed: connection refused")

    api_client._perform = perform

    with pytest.raises(NetworkError):
        await api_client.get("/businesses/42/branches")

    assert attempts == ["/businesses/42/branches"]
    assert backend.refresh_calls == 0


if __name__ == "__main__":
    pytest.main([__file__])
