"""Unified state service: shared store first, local memory when it is not reachable.

Every operation tries the shared store client and, on any exception
(network error, timeout, error reply) or when no client is configured,
serves the call from the process-local fallback store. A failure clears the
client's liveness flag so later calls skip the remote attempt instead of
paying a timeout each; a periodic re-check sets it again.

Consequences of memory mode that callers accept:
- Rate limits and circuit records become per-process, not global.
- ``pipeline`` runs commands one by one, so the batch is not atomic.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from resilient_state.adapters.state_store.base import AbstractSharedStoreClient, PipelineCommand
from resilient_state.adapters.state_store.in_memory import LocalFallbackStore
from resilient_state.adapters.state_store.upstash import UpstashRestClient
from resilient_state.core.config import StateStoreSettings
from resilient_state.schemas.state import StoreStatus
from resilient_state.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[StateStoreSettings], AbstractSharedStoreClient]


def load_state_store_settings() -> StateStoreSettings:
    """Read shared store settings fresh from the environment (picks up reloads)."""

    return StateStoreSettings()  # type: ignore[call-arg]


class StateService:
    """Facade over the shared store client and the local fallback store.

    Attributes exposed through ``get_status()``/``stats()`` only; callers
    never learn which backend served an individual call.
    """

    def __init__(
        self,
        *,
        settings: StateStoreSettings | None = None,
        settings_provider: Callable[[], StateStoreSettings] = load_state_store_settings,
        client_factory: ClientFactory = UpstashRestClient.from_settings,
        local_store: LocalFallbackStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the facade and try to build the shared store client.

        Missing configuration is not an error: the service then runs in
        memory mode until a re-check finds both URL and token.

        Args:
            settings: Settings used at construction, typically the ones the
                application already loaded. Read from ``settings_provider``
                when omitted.
            settings_provider: Returns current shared store settings; called
                on every re-check that has no client yet.
            client_factory: Builds the shared store client from settings.
            local_store: Fallback store; a fresh one is created if omitted.
            clock: Time source function returning UNIX time in seconds.
        """
        self._settings_provider = settings_provider
        self._client_factory = client_factory
        self._clock = clock
        self._local = local_store if local_store is not None else LocalFallbackStore(clock=clock)

        cfg = settings if settings is not None else settings_provider()
        self._timeout_seconds = cfg.timeout_seconds
        self._recheck_interval = cfg.recheck_interval_seconds
        self._sweep_interval = cfg.sweep_interval_seconds

        self._client: AbstractSharedStoreClient | None = None
        self._not_configured_logged = False
        self._last_checked = clock()
        self._fallbacks = 0
        self._rechecks = 0
        self._last_failed_operation: str | None = None
        self._tickers: list[PeriodicTask] = []

        self._client = self._connect(cfg)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    @property
    def available(self) -> bool:
        return self._client is not None and self._client.available

    @property
    def local_store(self) -> LocalFallbackStore:
        return self._local

    def _connect(self, cfg: StateStoreSettings) -> AbstractSharedStoreClient | None:
        if not cfg.is_configured:
            if not self._not_configured_logged:
                logger.warning(
                    "state_store.not_configured",
                    extra={
                        "has_url": bool(cfg.rest_url),
                        "has_token": bool(cfg.rest_token),
                        "mode": "memory",
                    },
                )
                self._not_configured_logged = True
            return None

        try:
            client = self._client_factory(cfg)
        except Exception as exc:
            logger.error(
                "state_store.init_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return None

        client.available = True
        logger.info("state_store.client_initialized", extra={"mode": "redis"})
        return client

    def recheck(self) -> bool:
        """Re-evaluate shared store liveness without issuing a network call.

        Builds the client if it does not exist yet (configuration may have
        appeared) or sets the liveness flag of an existing client again. The
        next real operation proves or disproves it.

        Returns:
            The liveness after the re-check.
        """
        self._last_checked = self._clock()
        self._rechecks += 1

        if self._client is None:
            self._client = self._connect(self._settings_provider())
            if self._client is not None:
                logger.info("state_store.recovered", extra={"mode": "redis", "reason": "configured"})
        elif not self._client.available:
            self._client.available = True
            logger.info("state_store.recovered", extra={"mode": "redis", "reason": "recheck"})

        return self.available

    def _maybe_recheck(self) -> None:
        if self.available:
            return
        if self._clock() - self._last_checked >= self._recheck_interval:
            self.recheck()

    def _mark_failed(self, client: AbstractSharedStoreClient, operation: str, exc: Exception) -> None:
        was_available = client.available
        client.available = False
        self._last_checked = self._clock()
        self._fallbacks += 1
        self._last_failed_operation = operation

        logger.error(
            "state_store.fallback",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        if was_available:
            logger.warning(
                "state_store.degraded",
                extra={"operation": operation, "mode": "memory"},
            )

    async def _execute(
        self,
        operation: str,
        remote: Callable[[AbstractSharedStoreClient], Awaitable[T]],
        local: Callable[[], T],
    ) -> T:
        self._maybe_recheck()

        client = self._client
        if client is not None and client.available:
            try:
                return await asyncio.wait_for(remote(client), timeout=self._timeout_seconds)
            except Exception as exc:  # any failure means "use local memory"
                self._mark_failed(client, operation, exc)

        return local()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        return await self._execute(
            "get",
            lambda client: client.get(key),
            lambda: self._local.get(key),
        )

    async def set(self, key: str, value: Any, *, ex: int | None = None) -> None:
        """Store a value, optionally expiring after ``ex`` seconds."""
        await self._execute(
            "set",
            lambda client: client.set(key, value, ex=ex),
            lambda: self._local.set(key, value, ex),
        )

    async def delete(self, key: str) -> None:
        await self._execute(
            "del",
            lambda client: client.delete(key),
            lambda: self._local.delete(key),
        )

    async def incr(self, key: str) -> int:
        """Atomically increment a counter; the key's TTL is left untouched."""
        return await self._execute(
            "incr",
            lambda client: client.incr(key),
            lambda: self._local.incr(key),
        )

    async def expire(self, key: str, seconds: int) -> None:
        await self._execute(
            "expire",
            lambda client: client.expire(key, seconds),
            lambda: self._local.expire(key, seconds),
        )

    async def ttl(self, key: str) -> int:
        """Remaining seconds; -2 when absent, -1 when the key has no expiry."""
        return await self._execute(
            "ttl",
            lambda client: client.ttl(key),
            lambda: self._local.ttl(key),
        )

    async def exists(self, key: str) -> bool:
        return await self._execute(
            "exists",
            lambda client: client.exists(key),
            lambda: self._local.exists(key),
        )

    async def pipeline(self, commands: list[PipelineCommand]) -> list[Any]:
        """Run a batch of commands.

        Atomic on the shared store. In memory mode the commands run
        sequentially and the batch is not atomic.
        """
        batch = list(commands)
        return await self._execute(
            "pipeline",
            lambda client: client.pipeline(batch),
            lambda: self._local.pipeline(batch),
        )

    def get_status(self) -> StoreStatus:
        available = self.available
        return StoreStatus(available=available, mode="redis" if available else "memory")

    def stats(self) -> dict[str, Any]:
        """Counters describing degraded-mode activity, for health endpoints."""
        return {
            "fallbacks": self._fallbacks,
            "rechecks": self._rechecks,
            "last_failed_operation": self._last_failed_operation,
            "local_store": self._local.stats(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the sweep and re-check tickers on the running event loop.

        Reconnects first when a previous ``stop()`` closed the client.
        """
        if self._tickers:
            return
        if self._client is None:
            self.recheck()
        self._tickers = [
            PeriodicTask("state_store.sweep", self._sweep_interval, self._local.sweep),
            PeriodicTask("state_store.recheck", self._recheck_interval, self.recheck),
        ]
        for ticker in self._tickers:
            ticker.start()

    async def stop(self) -> None:
        """Stop the tickers and close the shared store client.

        The closed client is dropped; a later ``start()`` or re-check builds
        a fresh one from current settings.
        """
        tickers, self._tickers = self._tickers, []
        for ticker in tickers:
            await ticker.stop()
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
