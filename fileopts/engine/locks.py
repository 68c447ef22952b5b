"""
FileOpts Lock Service — per-destination write locks for the upload resolver.

Two backends share one contract (``acquire(token, timeout) -> bool`` and
``release(token)``):

  MemoryLockService — threading.Condition over a set of held tokens.
                      Correct for a single worker process.
  RedisLockService  — SET NX PX with an owner value and a compare-and-delete
                      release script. Correct across processes and hosts.

Neither backend queues callers: acquire() waits at most ``timeout`` seconds
and then reports failure so the caller can answer with a retry hint.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Dict, Optional, Protocol, Set

logger = logging.getLogger("fileopts.engine.locks")

# Deletes the key only when it still holds our owner value
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockService(Protocol):
    """Contract the upload resolver needs from a lock backend."""

    def acquire(self, token: str, timeout: float = 0.0) -> bool: ...

    def release(self, token: str) -> None: ...


class MemoryLockService:
    """In-process lock registry keyed by token."""

    def __init__(self):
        self._held: Set[str] = set()
        self._cond = threading.Condition()

    def acquire(self, token: str, timeout: float = 0.0) -> bool:
        deadline = time.monotonic() + max(timeout, 0.0)
        with self._cond:
            while token in self._held:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            self._held.add(token)
            return True

    def release(self, token: str) -> None:
        with self._cond:
            self._held.discard(token)
            self._cond.notify_all()

    def is_locked(self, token: str) -> bool:
        with self._cond:
            return token in self._held

    @property
    def is_available(self) -> bool:
        return True


class RedisLockService:
    """
    Redis-backed lock with circuit breaker.

    Key format: {prefix}{token}   Value: per-acquisition owner id
    TTL: ttl_seconds — a crashed holder cannot block a path forever.

    When Redis is unreachable or the circuit is open, acquire() returns
    False; uploads then fail as retryable instead of running unlocked.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "fileopts:lock:",
        ttl_seconds: int = 30,
        db: int = 6,
        poll_interval: float = 0.05,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._ttl_ms = ttl_seconds * 1000
        self._db = db
        self._poll_interval = poll_interval
        self._client = None
        self._available = False
        self._owners: Dict[str, str] = {}
        self._owners_lock = threading.Lock()

        # Circuit breaker state
        self._failure_count = 0
        self._failure_threshold = 5
        self._failure_window = 30  # seconds
        self._first_failure_time = 0.0
        self._circuit_open = False

    def connect(self) -> bool:
        """Initialize Redis connection."""
        try:
            import redis
            self._client = redis.Redis.from_url(
                self._redis_url,
                db=self._db,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            self._client.ping()
            self._available = True
            self._circuit_open = False
            self._failure_count = 0
            logger.info(f"Redis lock service connected: DB {self._db}")
            return True
        except Exception as e:
            logger.warning(f"Redis connection failed (DB {self._db}): {e}")
            self._available = False
            return False

    def _check_circuit(self) -> bool:
        if self._circuit_open:
            if time.time() - self._first_failure_time > self._failure_window:
                self._circuit_open = False
                self._failure_count = 0
                return self.connect()
            return False
        return self._available

    def _record_failure(self) -> None:
        now = time.time()
        if self._failure_count == 0:
            self._first_failure_time = now

        self._failure_count += 1

        if self._failure_count >= self._failure_threshold:
            elapsed = now - self._first_failure_time
            if elapsed <= self._failure_window:
                self._circuit_open = True
                logger.error(
                    f"Redis circuit breaker OPEN: {self._failure_count} failures in {elapsed:.1f}s"
                )

    def _make_key(self, token: str) -> str:
        return f"{self._prefix}{token}"

    def acquire(self, token: str, timeout: float = 0.0) -> bool:
        if not self._check_circuit():
            return False

        owner = uuid.uuid4().hex
        key = self._make_key(token)
        deadline = time.monotonic() + max(timeout, 0.0)

        while True:
            try:
                if self._client.set(key, owner, nx=True, px=self._ttl_ms):
                    with self._owners_lock:
                        self._owners[token] = owner
                    return True
            except Exception as e:
                self._record_failure()
                logger.warning(f"Redis lock SET failed for {token}: {e}")
                return False

            if time.monotonic() + self._poll_interval > deadline:
                return False
            time.sleep(self._poll_interval)

    def release(self, token: str) -> None:
        with self._owners_lock:
            owner = self._owners.pop(token, None)
        if owner is None or self._client is None:
            return
        try:
            self._client.eval(_RELEASE_SCRIPT, 1, self._make_key(token), owner)
        except Exception as e:
            # The key expires on its own after ttl_seconds
            self._record_failure()
            logger.warning(f"Redis lock release failed for {token}: {e}")

    def is_locked(self, token: str) -> bool:
        if not self._check_circuit():
            return False
        try:
            return bool(self._client.exists(self._make_key(token)))
        except Exception:
            self._record_failure()
            return False

    def close(self) -> None:
        """Close the Redis connection and release resources."""
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug(f"Redis close failed: {e}")
            self._client = None
        self._available = False
        self._circuit_open = False
        self._failure_count = 0

    @property
    def is_available(self) -> bool:
        return self._available and not self._circuit_open

    @property
    def is_circuit_open(self) -> bool:
        return self._circuit_open


def create_lock_service(
    backend: str,
    redis_url: Optional[str] = None,
    ttl_seconds: int = 30,
    db: int = 6,
) -> LockService:
    """Build the configured lock backend. Redis backends are connected eagerly."""
    if backend == "redis":
        service = RedisLockService(
            redis_url=redis_url or "redis://localhost:6379/0",
            ttl_seconds=ttl_seconds,
            db=db,
        )
        service.connect()
        return service
    return MemoryLockService()
