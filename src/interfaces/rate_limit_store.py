"""Abstract base class for rate-limit counter stores.

A store applies the fixed-window + block algorithm to one client's entry
atomically and returns the decision.  The shared SQLite store keeps
counters consistent across concurrent workers of the same service; the
in-memory store is the per-instance fallback used when the shared store
is unreachable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.resilience import RateLimitConfig, RateLimitResult


# Concrete implementations:
#   InMemoryRateLimitStore  -- process-local dict (src/resilience/rate_limiter.py)
#   SQLiteRateLimitStore    -- shared rate_limits table (src/providers/store/)
class IRateLimitStore(ABC):
    """Contract for fixed-window rate-limit counters."""

    @abstractmethod
    async def hit(
        self,
        client_id: str,
        config: RateLimitConfig,
        now_ms: int,
    ) -> RateLimitResult:
        """Count one request for *client_id* and decide whether it is allowed.

        Parameters
        ----------
        client_id:
            Identifier of the calling client (see
            :func:`~src.resilience.rate_limiter.get_client_id`).
        config:
            Window size, request allowance and penalty block duration.
        now_ms:
            Current time in epoch milliseconds.

        Returns
        -------
        RateLimitResult
            ``allowed``, ``remaining`` requests in the window, and
            ``reset_at`` (epoch ms) -- the block expiry when denied.

        Raises
        ------
        Exception
            Any backend failure; the limiter falls back to its local store.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
