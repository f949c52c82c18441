from __future__ import annotations

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Deque

import httpx

from session_guard.api.errors import RefreshError
from session_guard.api.requests import RequestRetryMarker, clone_request, sent_bearer
from session_guard.auth.credential_store import CredentialStore
from session_guard.auth.types import AccessToken
from session_guard.utils import get_logger


logger = get_logger(__name__)

RefreshCall = Callable[[], Awaitable[AccessToken]]
ReplayCall = Callable[[httpx.Request, RequestRetryMarker], Awaitable[httpx.Response]]
LogoutHook = Callable[[], None]


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass(slots=True)
class PendingRequest:
    """A request parked behind the in-flight refresh."""

    request: httpx.Request
    marker: RequestRetryMarker
    future: asyncio.Future[httpx.Response]
    sequence: int

    def resolve(self, response: httpx.Response) -> None:
        if not self.future.done():
            self.future.set_result(response)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)

    def settle_from(self, task: asyncio.Task[httpx.Response]) -> None:
        if task.cancelled():
            self.future.cancel()
            return
        error = task.exception()
        if error is not None:
            self.reject(error)
        else:
            self.resolve(task.result())


class RefreshCoordinator:
    """Single-flight credential refresh with a FIFO queue of waiting requests.

    At most one refresh call runs at a time. Requests that hit a 401 while it
    runs are parked and settled together when it finishes: replayed in the
    order they were parked on success, rejected with the refresh error on
    failure. A failed refresh clears the credential store and fires the
    forced-logout hook exactly once.

    Every mutation of ``state`` and of the credential store happens here, and
    the move from ``IDLE`` to ``REFRESHING`` never straddles an ``await``.
    """

    def __init__(
        self,
        refresh_call: RefreshCall,
        credential_store: CredentialStore,
        replay: ReplayCall,
        *,
        on_force_logout: LogoutHook | None = None,
    ) -> None:
        self._refresh_call = refresh_call
        self._credential_store = credential_store
        self._replay_call = replay
        self._on_force_logout = on_force_logout
        self._state = RefreshState.IDLE
        self._queue: Deque[PendingRequest] = deque()
        self._sequence = itertools.count(1)
        self._replay_tasks: set[asyncio.Task[httpx.Response]] = set()
        self._refresh_task: asyncio.Task[AccessToken] | None = None
        self._refresh_count = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def refresh_count(self) -> int:
        """Number of refresh calls issued since construction."""
        return self._refresh_count

    async def coordinate_refresh(
        self,
        request: httpx.Request,
        marker: RequestRetryMarker,
    ) -> httpx.Response:
        """Recover ``request`` from a 401 by refreshing (or joining a refresh)."""

        if self._state is RefreshState.REFRESHING:
            return await self._enqueue(request, marker)

        current = self._credential_store.get()
        if current is not None and current.token and sent_bearer(request) != current.token:
            logger.debug(
                "Credential changed while request was in flight; replaying",
                method=request.method,
                url=str(request.url),
            )
            return await self._replay(request, marker)

        # Cancelling the caller abandons only its own replay; the refresh
        # keeps running for the requests queued behind it.
        await asyncio.shield(self._start_refresh())
        return await self._replay(request, marker)

    async def refresh_now(self) -> AccessToken | None:
        """Refresh proactively unless a refresh is already running."""

        if self._state is RefreshState.REFRESHING:
            logger.debug("Refresh already in progress, skipping proactive refresh")
            return None
        return await asyncio.shield(self._start_refresh())

    async def aclose(self) -> None:
        """Abandon an in-flight refresh and wait for queued replays to finish."""

        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._replay_tasks:
            await asyncio.gather(*self._replay_tasks, return_exceptions=True)

    # ------------------------------------------------------------- Internals

    def _start_refresh(self) -> asyncio.Task[AccessToken]:
        self._state = RefreshState.REFRESHING
        task = asyncio.create_task(self._run_refresh())
        self._refresh_task = task
        task.add_done_callback(self._refresh_finished)
        return task

    def _refresh_finished(self, task: asyncio.Task[AccessToken]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if task.cancelled():
            # Cancelled before its first step, so _run_refresh never settled.
            if self._state is RefreshState.REFRESHING:
                self._settle_failure(
                    RefreshError("Session refresh was cancelled"), logout=False
                )
            return
        # Retrieved here so a refresh whose trigger went away is not reported
        # as an unhandled task exception.
        task.exception()

    async def _enqueue(
        self,
        request: httpx.Request,
        marker: RequestRetryMarker,
    ) -> httpx.Response:
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            request=request,
            marker=marker,
            future=loop.create_future(),
            sequence=next(self._sequence),
        )
        self._queue.append(pending)
        logger.debug(
            "Refresh in progress, queuing request",
            method=request.method,
            url=str(request.url),
            position=len(self._queue),
        )
        return await pending.future

    async def _run_refresh(self) -> AccessToken:
        self._refresh_count += 1
        logger.info("Refreshing access token", queued=len(self._queue))
        try:
            token = await self._refresh_call()
            if not token.token:
                raise RefreshError("Refresh response did not include an access token")
        except asyncio.CancelledError:
            # Only aclose() cancels this task; waiters see a refresh failure.
            cancelled = RefreshError("Session refresh was cancelled")
            self._settle_failure(cancelled, logout=False)
            raise cancelled from None
        except RefreshError as exc:
            self._settle_failure(exc, logout=True)
            raise
        except Exception as exc:  # noqa: BLE001 - any refresh failure ends the session
            error = RefreshError(f"Session refresh failed: {exc}", inner_error=exc)
            self._settle_failure(error, logout=True)
            raise error from exc
        self._settle_success(token)
        return token

    def _settle_success(self, token: AccessToken) -> None:
        self._credential_store.set(token)
        self._state = RefreshState.IDLE
        queued, self._queue = self._queue, deque()
        logger.info("Access token refreshed", replaying=len(queued))
        # Tasks start in creation order, so queued replays begin FIFO.
        for pending in queued:
            if pending.future.done():
                continue
            task = asyncio.create_task(self._replay(pending.request, pending.marker))
            self._replay_tasks.add(task)
            task.add_done_callback(self._replay_tasks.discard)
            task.add_done_callback(pending.settle_from)

    def _settle_failure(self, error: RefreshError, *, logout: bool) -> None:
        self._state = RefreshState.IDLE
        queued, self._queue = self._queue, deque()
        logger.warning(
            "Access token refresh failed",
            error=str(error),
            status_code=error.status_code,
            rejected=len(queued),
        )
        for pending in queued:
            pending.reject(error)
        if not logout:
            return
        self._credential_store.clear()
        if self._on_force_logout is not None:
            try:
                self._on_force_logout()
            except Exception:  # noqa: BLE001 - logout hook must not mask the refresh error
                logger.exception("Forced logout hook raised an exception")

    async def _replay(
        self,
        request: httpx.Request,
        marker: RequestRetryMarker,
    ) -> httpx.Response:
        return await self._replay_call(clone_request(request), marker)


__all__ = [
    "LogoutHook",
    "PendingRequest",
    "RefreshCall",
    "RefreshCoordinator",
    "RefreshState",
    "ReplayCall",
]
