"""Per-user pending selection context store.

While the bot waits for a user to pick among search results, the candidates
are kept here keyed by user id. Entries expire after a configurable TTL
measured from the context's ``created_at``; expired or inactive entries are
indistinguishable from missing ones for every reader.

Usage:
    store = PendingContextStore()
    store.set("user-1", context)

    context = store.get("user-1")  # None if missing, inactive or expired
    store.clear("user-1")

Expired entries are also removed by a periodic sweeper task:
    store.start_sweeper()
    ...
    await store.stop_sweeper()
"""

import asyncio
import os
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from media_concierge.core.logging_config import get_logger
from media_concierge.models.context_models import PendingSelectionContext

logger = get_logger(__name__)

# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class ContextStoreConfig:
    """Configuration for the pending context store.

    Attributes:
        ttl_seconds: Lifetime of a context measured from created_at.
        sweep_interval: Seconds between background sweeps.
    """

    ttl_seconds: float = 600.0  # 10 minutes
    sweep_interval: float = 60.0

    @classmethod
    def from_env(cls) -> "ContextStoreConfig":
        """Create config from environment variables.

        Environment variables:
            PENDING_CONTEXT_TTL_SECONDS: Context lifetime (default: 600)
            PENDING_CONTEXT_SWEEP_INTERVAL: Sweep period (default: 60)

        Returns:
            ContextStoreConfig from environment.
        """
        return cls(
            ttl_seconds=float(os.getenv("PENDING_CONTEXT_TTL_SECONDS", "600")),
            sweep_interval=float(os.getenv("PENDING_CONTEXT_SWEEP_INTERVAL", "60")),
        )


# =============================================================================
# Context Store
# =============================================================================


class PendingContextStore:
    """In-memory map of user id to pending selection context.

    At most one context is held per user; ``set`` overwrites whatever was
    there (last writer wins).

    Args:
        config: Store configuration. If None, loads it from the environment.
        clock: Wall-clock source in unix seconds.
    """

    def __init__(
        self,
        config: ContextStoreConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or ContextStoreConfig.from_env()
        self._clock = clock
        self._contexts: dict[str, PendingSelectionContext] = {}
        self._sweeper_task: asyncio.Task | None = None

    def now(self) -> float:
        """Current time according to the store's clock."""
        return self._clock()

    def is_expired(self, context: PendingSelectionContext) -> bool:
        """Check whether a context has outlived the TTL.

        Args:
            context: The context to check.

        Returns:
            True if expired, False if still valid.
        """
        return self._clock() > context.created_at + self.config.ttl_seconds

    def set(self, user_id: str, context: PendingSelectionContext) -> None:
        """Store a context for a user, replacing any previous one."""
        replaced = user_id in self._contexts
        self._contexts[user_id] = context
        logger.debug(
            "Stored pending context",
            extra={
                "extra_data": {
                    "user_id": user_id,
                    "kind": context.kind,
                    "candidates": len(context.candidates),
                    "replaced": replaced,
                }
            },
        )

    def get(self, user_id: str) -> PendingSelectionContext | None:
        """Get the live context for a user.

        Inactive and expired contexts are dropped and reported as missing.

        Args:
            user_id: The user id.

        Returns:
            The context, or None if missing, inactive or expired.
        """
        context = self._contexts.get(user_id)
        if context is None:
            return None

        if not context.active or self.is_expired(context):
            del self._contexts[user_id]
            logger.debug(
                "Dropped stale pending context",
                extra={
                    "extra_data": {
                        "user_id": user_id,
                        "kind": context.kind,
                        "active": context.active,
                    }
                },
            )
            return None

        return context

    def clear(self, user_id: str) -> bool:
        """Remove a user's context.

        Returns:
            True if a context was removed.
        """
        removed = self._contexts.pop(user_id, None) is not None
        if removed:
            logger.debug(
                "Cleared pending context", extra={"extra_data": {"user_id": user_id}}
            )
        return removed

    def sweep(self) -> int:
        """Remove every expired or inactive context.

        Returns:
            Number of contexts removed.
        """
        stale_users = [
            user_id
            for user_id, context in self._contexts.items()
            if not context.active or self.is_expired(context)
        ]
        for user_id in stale_users:
            del self._contexts[user_id]

        if stale_users:
            logger.info(
                f"Swept {len(stale_users)} expired pending contexts",
                extra={"extra_data": {"removed": len(stale_users), "remaining": self.size()}},
            )
        return len(stale_users)

    def size(self) -> int:
        """Get the number of stored contexts (including not-yet-swept stale ones)."""
        return len(self._contexts)

    # -------------------------------------------------------------------------
    # Background sweeper
    # -------------------------------------------------------------------------

    def start_sweeper(self, interval: float | None = None) -> asyncio.Task:
        """Start the periodic sweep task on the running event loop.

        Args:
            interval: Seconds between sweeps (defaults to config.sweep_interval).

        Returns:
            The sweeper task (the existing one if already running).
        """
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return self._sweeper_task

        period = interval if interval is not None else self.config.sweep_interval
        self._sweeper_task = asyncio.create_task(self._sweep_loop(period))
        logger.info(
            "Started pending context sweeper", extra={"extra_data": {"interval": period}}
        )
        return self._sweeper_task

    async def stop_sweeper(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task = self._sweeper_task
        self._sweeper_task = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped pending context sweeper")

    async def _sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Pending context sweep failed: {e}", exc_info=True)


# =============================================================================
# Per-user turn sequencing
# =============================================================================


class UserTurnSequencer:
    """Registry of per-user asyncio locks.

    Turns from different users never wait on each other; turns from the same
    user run one at a time in arrival order. Locks are discarded once no turn
    for the user is running or waiting.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, int] = {}

    @asynccontextmanager
    async def turn(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._pending[user_id] = self._pending.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._pending[user_id] -= 1
            if self._pending[user_id] == 0:
                del self._pending[user_id]
                self._locks.pop(user_id, None)

    def active_users(self) -> int:
        return len(self._locks)


# =============================================================================
# Global store instance
# =============================================================================


_default_store: PendingContextStore | None = None


def get_context_store() -> PendingContextStore:
    """Get the default pending context store.

    Returns:
        PendingContextStore singleton instance.
    """
    global _default_store
    if _default_store is None:
        _default_store = PendingContextStore()
    return _default_store


def reset_context_store() -> None:
    """Reset the default pending context store.

    Useful for testing to ensure a clean state.
    """
    global _default_store
    _default_store = None
