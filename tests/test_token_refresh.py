"""
Tests for single-flight token refresh

Covers the concurrent-expiry scenarios: one refresh for many callers, replay
in arrival order, no second refresh for a retried call, stale callers and
refresh failure.
"""

import asyncio

import pytest

from auth.errors import RefreshFailed, SessionExpired, TokenExpired
from auth.models import SessionState

from conftest import EMAIL, PASSWORD, wait_until

REFRESH_PATH = "/auth/refresh-token"


async def _signed_in(client):
    await client.session.login(EMAIL, PASSWORD)
    assert client.session.state == SessionState.AUTHENTICATED


class TestSingleFlight:

    @pytest.mark.asyncio
    async def test_concurrent_expired_calls_share_one_refresh(self, client, server):
        await _signed_in(client)
        server.expire_access_tokens()
        server.refresh_gate = asyncio.Event()

        tasks = [asyncio.create_task(client.http.get("/alerts")) for _ in range(3)]
        await wait_until(lambda: client.coordinator.pending_waiters == 3)
        assert client.coordinator.is_refreshing

        server.refresh_gate.set()
        responses = await asyncio.gather(*tasks)

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert server.calls[REFRESH_PATH] == 1
        # Each call is sent once with the old token and replayed once
        assert server.calls["/alerts"] == 6
        assert client.coordinator.pending_waiters == 0
        assert not client.coordinator.is_refreshing

    @pytest.mark.asyncio
    async def test_waiters_resume_in_arrival_order(self, client, server):
        await _signed_in(client)
        old_token = client.store.read().access_token
        server.refresh_gate = asyncio.Event()
        replayed = []

        def operation(name):
            async def run(access_token):
                if access_token == old_token:
                    raise TokenExpired("expired", 401)
                replayed.append(name)
                return name
            return run

        tasks = [asyncio.create_task(client.coordinator.call(operation(n))) for n in ("a", "b", "c")]
        await wait_until(lambda: client.coordinator.pending_waiters == 3)
        server.refresh_gate.set()

        assert await asyncio.gather(*tasks) == ["a", "b", "c"]
        assert replayed == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_second_expiry_is_not_requeued(self, client, server):
        await _signed_in(client)
        attempts = []

        async def always_expired(access_token):
            attempts.append(access_token)
            raise TokenExpired("expired", 401)

        with pytest.raises(TokenExpired):
            await client.coordinator.call(always_expired)

        assert len(attempts) == 2
        assert attempts[0] != attempts[1]
        assert server.calls[REFRESH_PATH] == 1
        assert client.session.state == SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_stale_caller_retries_without_new_refresh(self, client, server):
        await _signed_in(client)
        old_token = client.store.read().access_token
        release = asyncio.Event()
        seen = []

        async def slow(access_token):
            seen.append(access_token)
            if access_token == old_token:
                await release.wait()
                raise TokenExpired("expired", 401)
            return "slow-done"

        async def fast(access_token):
            if access_token == old_token:
                raise TokenExpired("expired", 401)
            return "fast-done"

        slow_task = asyncio.create_task(client.coordinator.call(slow))
        await wait_until(lambda: len(seen) == 1)

        assert await client.coordinator.call(fast) == "fast-done"
        assert server.calls[REFRESH_PATH] == 1

        release.set()
        assert await slow_task == "slow-done"
        assert server.calls[REFRESH_PATH] == 1
        assert seen[1] == client.store.read().access_token

    @pytest.mark.asyncio
    async def test_generation_advances_on_refresh_and_install(self, client, server):
        await _signed_in(client)
        after_login = client.coordinator.generation

        await client.coordinator.refresh()
        assert client.coordinator.generation == after_login + 1

        client.coordinator.install(server.issue_pair())
        assert client.coordinator.generation == after_login + 2


class TestRefreshFailure:

    @pytest.mark.asyncio
    async def test_failure_rejects_every_waiter_and_clears_session(self, client, server):
        await _signed_in(client)
        states = []
        client.session.subscribe(lambda s: states.append(s.state))
        server.expire_access_tokens()
        server.refresh_fails = True
        server.refresh_gate = asyncio.Event()

        tasks = [asyncio.create_task(client.http.get("/alerts")) for _ in range(3)]
        await wait_until(lambda: client.coordinator.pending_waiters == 3)
        server.refresh_gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, SessionExpired) for r in results)
        assert len({id(r) for r in results}) == 3
        assert all(isinstance(r.__cause__, RefreshFailed) for r in results)
        assert server.calls[REFRESH_PATH] == 1
        assert client.store.read() is None
        assert client.session.state == SessionState.ANONYMOUS
        assert states == [SessionState.REFRESHING, SessionState.EXPIRED, SessionState.ANONYMOUS]

    @pytest.mark.asyncio
    async def test_network_failure_during_refresh_ends_session(self, client, server):
        await _signed_in(client)
        server.expire_access_tokens()

        async def expired_then_offline(access_token):
            server.network_down = True
            raise TokenExpired("expired", 401)

        with pytest.raises(SessionExpired):
            await client.coordinator.call(expired_then_offline)
        assert client.store.read() is None
        assert client.session.state == SessionState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_call_without_session(self, client):
        with pytest.raises(SessionExpired):
            await client.http.get("/alerts")


class TestReset:

    @pytest.mark.asyncio
    async def test_logout_rejects_queued_callers(self, client, server, kv):
        await _signed_in(client)
        server.expire_access_tokens()
        server.refresh_gate = asyncio.Event()

        tasks = [asyncio.create_task(client.http.get("/alerts")) for _ in range(2)]
        await wait_until(lambda: client.coordinator.pending_waiters == 2)

        await client.session.logout()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, SessionExpired) for r in results)

        # A late refresh answer must not bring the session back
        server.refresh_gate.set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert client.store.read() is None
        assert kv.dump() == {}
        assert client.session.state == SessionState.ANONYMOUS


class TestGuard:

    @pytest.mark.asyncio
    async def test_guard_decorator_injects_token_and_retries(self, client, server):
        await _signed_in(client)
        old_token = client.store.read().access_token
        tokens = []

        @client.coordinator.guard
        async def list_alerts(access_token, severity):
            tokens.append(access_token)
            if access_token == old_token:
                raise TokenExpired("expired", 401)
            return f"{severity} alerts"

        assert await list_alerts("high") == "high alerts"
        assert len(tokens) == 2
        assert server.calls[REFRESH_PATH] == 1
