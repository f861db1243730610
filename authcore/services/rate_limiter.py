"""Login lockout and per-client request throttling on the fast store."""

from __future__ import annotations

import logging

from authcore.core.exceptions import StoreUnavailableError
from authcore.services.fast_store import FastStore

logger = logging.getLogger(__name__)


class LockoutService:
    """
    Brute-force lockout keyed by account id.

    A rolling counter (expiry set once, when the window opens) counts
    failures. Reaching the threshold sets a separate lock flag with its own
    TTL, so the lock outlives a counter that would have expired sooner.
    """

    def __init__(
        self,
        store: FastStore,
        *,
        max_attempts: int = 5,
        window_seconds: int = 30 * 60,
        lockout_seconds: int = 30 * 60,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lockout_seconds = lockout_seconds

    @staticmethod
    def _attempts_key(account_id: int) -> str:
        return f"login_attempts:{account_id}"

    @staticmethod
    def _lock_key(account_id: int) -> str:
        return f"account_locked:{account_id}"

    def record_failure(self, account_id: int) -> int:
        attempts = self.store.incr_with_expiry(self._attempts_key(account_id), self.window_seconds)
        if attempts >= self.max_attempts:
            self.store.set(self._lock_key(account_id), "locked", self.lockout_seconds)
            if attempts == self.max_attempts:
                logger.warning("Account %s locked after %d failed logins", account_id, attempts)
        return attempts

    def is_locked(self, account_id: int) -> bool:
        """Fails closed: a store error counts as locked."""
        try:
            return self.store.exists(self._lock_key(account_id))
        except StoreUnavailableError:
            logger.error("Lock check unavailable for account %s; treating as locked", account_id)
            return True

    def retry_after(self, account_id: int) -> int:
        try:
            return max(0, self.store.ttl(self._lock_key(account_id)))
        except StoreUnavailableError:
            return self.lockout_seconds

    def clear(self, account_id: int) -> None:
        self.store.delete(self._attempts_key(account_id), self._lock_key(account_id))


class RequestThrottle:
    """Fixed-window per-client limiter. Fails open; lockout is the real defense."""

    def __init__(self, store: FastStore) -> None:
        self.store = store

    def allow(self, scope: str, client: str, limit: int, window_seconds: int) -> bool:
        key = f"ratelimit:{scope}:{client}:{window_seconds}"
        try:
            count = self.store.incr_with_expiry(key, window_seconds)
        except StoreUnavailableError:
            logger.warning("Rate limit store unavailable for %s; allowing request", scope)
            return True
        return count <= limit
