"""Circuit breaker for the reasoning provider.

After max_failures within window_seconds the circuit "opens" and the
analyzer goes straight to the deterministic fallback for cooldown_seconds,
so a struggling provider doesn't add its timeout to every request.
"""

import logging
import time as _time
from threading import Lock

logger = logging.getLogger(__name__)

PROVIDER_CATEGORY = "reasoning_provider"


class CircuitBreaker:
    """Per-category failure tracker."""

    def __init__(self, max_failures=3, window_seconds=120, cooldown_seconds=300):
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._lock = Lock()
        self._failures: dict[str, list[float]] = {}  # category -> failure timestamps
        self._open_until: dict[str, float] = {}  # category -> when the circuit closes

    def is_open(self, category: str = PROVIDER_CATEGORY) -> bool:
        with self._lock:
            deadline = self._open_until.get(category)
            if deadline is None:
                return False
            if _time.monotonic() >= deadline:
                # Cooldown over, give the provider another chance
                del self._open_until[category]
                self._failures.pop(category, None)
                logger.info("Circuit breaker closed for '%s'", category)
                return False
            return True

    def record_failure(self, category: str = PROVIDER_CATEGORY):
        now = _time.monotonic()
        with self._lock:
            cutoff = now - self.window_seconds
            failures = [t for t in self._failures.get(category, []) if t > cutoff]
            failures.append(now)
            self._failures[category] = failures
            if len(failures) >= self.max_failures and category not in self._open_until:
                self._open_until[category] = now + self.cooldown_seconds
                logger.warning(
                    "Circuit breaker OPEN for '%s' (%d failures in %ds, cooldown %ds)",
                    category, len(failures), self.window_seconds, self.cooldown_seconds,
                )

    def record_success(self, category: str = PROVIDER_CATEGORY):
        with self._lock:
            self._failures.pop(category, None)
            self._open_until.pop(category, None)

    def reset(self):
        with self._lock:
            self._failures.clear()
            self._open_until.clear()

    def get_status(self) -> dict:
        """Status per category for the /health endpoint."""
        with self._lock:
            status = {}
            now = _time.monotonic()
            for cat in sorted(set(self._failures) | set(self._open_until)):
                deadline = self._open_until.get(cat)
                if deadline is not None and now < deadline:
                    remaining = int(deadline - now)
                    failures = len(self._failures.get(cat, []))
                    status[cat] = f"open ({failures} failures, reopens in {remaining // 60}m{remaining % 60:02d}s)"
                else:
                    status[cat] = "closed"
            return status


# Module-level singleton
circuit_breaker = CircuitBreaker()
