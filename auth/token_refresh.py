"""Single-flight access token refresh

Every authenticated call runs through ``TokenRefreshCoordinator.call``. When
the server rejects the access token, the call joins the one refresh in flight
(starting it if needed), waits for the new pair and retries exactly once.

Bookkeeping:
    generation: bumped whenever a new pair is installed (refresh, login, MFA,
        password change). A call whose snapshot predates the current
        generation already has a newer pair available and does not refresh.
    epoch: bumped by ``reset``. A refresh that settles under an old epoch is
        discarded so a logout cannot be undone by a late refresh response.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar

from .credential_store import CredentialStore
from .errors import RefreshFailed, SessionExpired, TokenExpired
from .identity_client import IdentityClient
from .models import TokenPair

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RefreshListener(Protocol):
    """Receives refresh lifecycle events"""

    def refresh_started(self) -> None:
        ...

    def refresh_succeeded(self, pair: TokenPair) -> None:
        ...

    def refresh_failed(self, error: BaseException) -> None:
        ...


class TokenRefreshCoordinator:
    """Owns the token pair and serializes refreshes"""

    def __init__(self, store: CredentialStore, identity: IdentityClient):
        self.store = store
        self.identity = identity
        self._generation = 0
        self._epoch = 0
        self._refresh_task: Optional[asyncio.Task] = None
        self._waiters: List[asyncio.Future] = []
        self._listeners: List[RefreshListener] = []

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    def current(self) -> Optional[TokenPair]:
        return self.store.read()

    def add_listener(self, listener: RefreshListener) -> Callable[[], None]:
        """Register a listener

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def install(self, pair: TokenPair) -> None:
        """Replace the stored pair after login, MFA completion or password change"""
        self.store.write(pair)
        self._generation += 1
        logger.debug(f"Installed new token pair (generation {self._generation})")

    async def call(self, operation: Callable[[str], Awaitable[T]]) -> T:
        """Run ``operation(access_token)`` with one refresh-and-retry on expiry

        Args:
            operation: Coroutine function taking the access token

        Returns:
            Whatever ``operation`` returns

        Raises:
            SessionExpired: No session, or the refresh failed
            TokenExpired: The retried operation was rejected again
        """
        pair = self.store.read()
        if pair is None:
            raise SessionExpired("Not signed in")

        generation = self._generation
        try:
            return await operation(pair.access_token)
        except TokenExpired:
            logger.info(f"Access token rejected (generation {generation}), waiting for refresh")

        pair = await self._fresh_pair(generation)
        # A second TokenExpired is not re-queued
        return await operation(pair.access_token)

    def guard(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Decorate ``async def func(access_token, *args, **kwargs)``

        The wrapped function is called without the token argument.
        """
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await self.call(lambda access_token: func(access_token, *args, **kwargs))

        return wrapper

    async def refresh(self) -> TokenPair:
        """Refresh now, or join the refresh already in flight

        Raises:
            SessionExpired: No session, or the refresh failed
        """
        if self._refresh_task is None and self.store.read() is None:
            raise SessionExpired("Not signed in")
        return await self._join_refresh()

    async def _fresh_pair(self, generation: int) -> TokenPair:
        if self._refresh_task is None:
            pair = self.store.read()
            if pair is None:
                raise SessionExpired("Session ended while the request was in flight")
            if generation != self._generation:
                logger.debug(f"Token pair already replaced (generation {generation} -> {self._generation}), retrying")
                return pair
        return await self._join_refresh()

    async def _join_refresh(self) -> TokenPair:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        if self._refresh_task is None:
            self._start_refresh()
        else:
            logger.debug(f"Refresh in flight, queued caller ({len(self._waiters)} waiting)")
        return await waiter

    def _start_refresh(self) -> None:
        logger.info("Refreshing access token")
        self._refresh_task = asyncio.create_task(self._run_refresh(self._epoch))
        self._notify("refresh_started")

    async def _run_refresh(self, epoch: int) -> None:
        try:
            pair = self.store.read()
            if pair is None:
                raise RefreshFailed("No refresh token stored")
            result = await self.identity.refresh(pair.refresh_token)
        except Exception as e:
            if epoch != self._epoch:
                logger.debug(f"Ignoring refresh failure after session reset: {e}")
                return
            self._settle_failure(e)
            return

        if epoch != self._epoch:
            logger.info("Discarding refresh result after session reset")
            return
        self._settle_success(result.tokens)

    def _settle_success(self, pair: TokenPair) -> None:
        # No await from here on: store update, flag clearing and waiter
        # resolution happen as one step
        self.store.write(pair)
        self._generation += 1
        self._refresh_task = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(pair)
        logger.info(f"Access token refreshed (generation {self._generation}, {len(waiters)} caller(s) resumed)")
        self._notify("refresh_succeeded", pair)

    def _settle_failure(self, error: BaseException) -> None:
        self._refresh_task = None
        waiters, self._waiters = self._waiters, []
        self.store.clear()
        logger.warning(f"Token refresh failed, ending session: {error}")
        self._reject(waiters, "Session expired, please log in again", error)
        self._notify("refresh_failed", error)

    def reset(self, reason: str = "Signed out") -> None:
        """Tear down: drop any in-flight refresh, reject waiters, clear the store"""
        self._epoch += 1
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
        waiters, self._waiters = self._waiters, []
        self._reject(waiters, reason)
        self.store.clear()
        if waiters:
            logger.info(f"Rejected {len(waiters)} queued caller(s): {reason}")

    def shutdown(self) -> None:
        """Stop an in-flight refresh before the HTTP client is closed

        Unlike ``reset`` the stored pair is kept, so the session can be
        restored by the next process.
        """
        self._epoch += 1
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Cancelled in-flight refresh on shutdown")
        waiters, self._waiters = self._waiters, []
        self._reject(waiters, "Session client closed")

    @staticmethod
    def _reject(waiters: List[asyncio.Future], message: str, cause: Optional[BaseException] = None) -> None:
        for waiter in waiters:
            if waiter.done():
                continue
            error = SessionExpired(message, getattr(cause, "status_code", None))
            error.__cause__ = cause
            waiter.set_exception(error)

    def _notify(self, event: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, event)(*args)
            except Exception:
                logger.exception(f"Refresh listener failed handling {event}")
