"""
End-to-end tests against an in-process aiohttp server.

The server issues sequential token pairs and only accepts the most recent
access token, so the client has to log in, refresh and log out for real.
"""

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from loyalty_client.api_client import LoyaltyAPIClient, APIClientError
from loyalty_client.auth.session_store import SecureSessionStore
from loyalty_client.resources import DashboardResources
from loyalty_shared.exceptions import SessionExpiredError


class DashboardState:
    def __init__(self):
        self.generation = 0
        self.access_token = None
        self.refresh_token = None
        self.refresh_calls = 0
        self.logout_calls = 0
        self.refresh_delay = 0.2

    def issue(self):
        self.generation += 1
        self.access_token = f"access-{self.generation}"
        self.refresh_token = f"refresh-{self.generation}"
        return {'accessToken': self.access_token, 'refreshToken': self.refresh_token}

    def expire_access_token(self):
        self.access_token = f"access-expired-{self.generation}"


def build_app(state: DashboardState) -> web.Application:
    def authorized(request) -> bool:
        return request.headers.get('Authorization') == f"Bearer {state.access_token}"

    async def login(request):
        body = await request.json()
        if body.get('password') != "correct-horse":
            return web.json_response({'success': False, 'message': "Invalid credentials"}, status=401)
        return web.json_response({
            'success': True,
            'data': {'user': {'email': body['email']}, 'tokens': state.issue()}
        })

    async def refresh(request):
        state.refresh_calls += 1
        body = await request.json()
        await asyncio.sleep(state.refresh_delay)
        if body.get('refreshToken') != state.refresh_token:
            return web.json_response({'success': False, 'message': "Invalid refresh token"}, status=401)
        return web.json_response({'success': True, 'data': state.issue()})

    async def logout(request):
        state.logout_calls += 1
        if not authorized(request):
            return web.json_response({'success': False, 'message': "Unauthorized"}, status=401)
        return web.json_response({'success': True, 'message': "Logged out"})

    async def branch_stats(request):
        if not authorized(request):
            return web.json_response({'success': False, 'message': "Token expired"}, status=401)
        return web.json_response({
            'success': True,
            'overview': {'branch': request.match_info['branch_id'], 'visits': 12}
        })

    async def public_branch(request):
        if 'Authorization' in request.headers:
            return web.json_response({'success': False, 'message': "Unexpected credential"}, status=400)
        return web.json_response({'success': True, 'data': {'slug': request.match_info['slug']}})

    app = web.Application()
    app.router.add_post('/auth/login', login)
    app.router.add_post('/auth/token/refresh', refresh)
    app.router.add_post('/auth/logout', logout)
    app.router.add_get('/branches/{business_id}/{branch_id}/stats', branch_stats)
    app.router.add_get('/public/branch/{slug}', public_branch)
    return app


@pytest.mark.asyncio
async def test_login_refresh_and_logout(tmp_path):
    state = DashboardState()
    server = test_utils.TestServer(build_app(state))
    await server.start_server()

    store = SecureSessionStore(storage_path=str(tmp_path / "session.enc"), use_keyring=False)
    client = LoyaltyAPIClient(str(server.make_url('/')), store)
    resources = DashboardResources(client)

    try:
        data = await client.login("owner@example.com", "correct-horse")
        assert data['user'] == {'email': "owner@example.com"}
        lookup = await store.get_auth_cookies()
        assert (lookup.access_token, lookup.refresh_token) == ("access-1", "refresh-1")

        stats = await resources.branch_stats("biz-1", "br-1")
        assert stats == {'branch': "br-1", 'visits': 12}
        assert state.refresh_calls == 0

        state.expire_access_token()
        results = await asyncio.gather(*(resources.branch_stats("biz-1", f"br-{i}") for i in range(4)))
        assert [result['branch'] for result in results] == ["br-0", "br-1", "br-2", "br-3"]
        assert state.refresh_calls == 1
        lookup = await store.get_auth_cookies()
        assert (lookup.access_token, lookup.refresh_token) == ("access-2", "refresh-2")

        public = await resources.public_branch("coffee-corner")
        assert public == {'success': True, 'data': {'slug': "coffee-corner"}}

        result = await client.logout()
        assert result.success is True
        assert state.logout_calls == 1
        assert (await store.get_auth_cookies()).success is False
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_revoked_refresh_token_ends_session(tmp_path):
    state = DashboardState()
    server = test_utils.TestServer(build_app(state))
    await server.start_server()

    store = SecureSessionStore(storage_path=str(tmp_path / "session.enc"), use_keyring=False)
    client = LoyaltyAPIClient(str(server.make_url('/')), store)
    expired = []
    client.add_session_expired_callback(expired.append)

    try:
        await client.login("owner@example.com", "correct-horse")
        state.expire_access_token()
        state.refresh_token = "revoked"

        results = await asyncio.gather(
            *(client.get(f"/branches/biz-1/br-{i}/stats") for i in range(3)),
            return_exceptions=True
        )

        assert all(isinstance(result, SessionExpiredError) for result in results)
        assert state.refresh_calls == 1
        assert len(expired) == 1
        assert expired[0].redirect_to == "/login"
        assert (await store.get_auth_cookies()).success is False
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_wrong_password_is_reported(tmp_path):
    from loyalty_shared.exceptions import AuthenticationError, ErrorCode

    state = DashboardState()
    server = test_utils.TestServer(build_app(state))
    await server.start_server()

    store = SecureSessionStore(storage_path=str(tmp_path / "session.enc"), use_keyring=False)
    client = LoyaltyAPIClient(str(server.make_url('/')), store)

    try:
        with pytest.raises(AuthenticationError) as exc_info:
            await client.login("owner@example.com", "wrong")

        assert exc_info.value.error_code == ErrorCode.AUTH_LOGIN_FAILED
        assert "Invalid credentials" in exc_info.value.message
        assert isinstance(exc_info.value.cause, APIClientError)
        assert state.refresh_calls == 0
    finally:
        await client.close()
        await server.close()


@pytest.mark.asyncio
async def test_logout_clears_session_when_server_call_fails(tmp_path):
    state = DashboardState()
    server = test_utils.TestServer(build_app(state))
    await server.start_server()

    store = SecureSessionStore(storage_path=str(tmp_path / "session.enc"), use_keyring=False)
    client = LoyaltyAPIClient(str(server.make_url('/')), store)

    try:
        await client.login("owner@example.com", "correct-horse")
        await server.close()

        result = await client.logout()

        assert result.success is False
        assert result.error
        assert (await store.get_auth_cookies()).success is False
    finally:
        await client.close()
        await server.close()


if __name__ == "__main__":
    pytest.main([__file__])
