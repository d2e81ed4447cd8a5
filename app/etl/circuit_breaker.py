"""
Per-source admission control: hourly rate limit + circuit breaker.

State machine per source:
- CLOSED: requests admitted while request_count < rate_limit_per_window inside
  the current window. The window resets (count zeroed, window restarted) the
  first time now - window_start >= window_seconds.
- OPEN: entered when consecutive_failures >= failure_threshold. Every
  admission check is rejected for cooldown_seconds measured from the failure
  that tripped it.
- HALF-OPEN (implicit): once the cooldown elapses the next check is admitted,
  consecutive_failures is reset to 0 and the breaker flips back to CLOSED.
  A later failure streak re-opens it; there is no separate probe step.

All mutation of a SourceState happens under that source's lock. acquire()
performs the admission check and the slot reservation as one critical
section so concurrent callers cannot overshoot the rate limit.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from app.errors import RateLimitExceeded, SourceUnavailable
from app.telemetry import record_rate_limited, set_circuit_breaker_state

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 300.0
DEFAULT_WINDOW_SECONDS = 3600.0

STATE_OPEN = "OPEN"
STATE_CLOSED = "CLOSED"

# Admission verdicts
_ADMIT = None
_REJECT_DISABLED = "disabled"
_REJECT_OPEN = "circuit_open"
_REJECT_RATE = "rate_limited"


@dataclass
class SourceState:
    """Health and budget of one configured provider."""

    name: str
    rate_limit_per_window: int
    priority: int
    enabled: bool = True
    capabilities: tuple[str, ...] = ()
    request_count: int = 0
    window_start: Optional[float] = None
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None
    breaker_open: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class CircuitBreakerRegistry:
    """Owns every SourceState; the only component that mutates them."""

    def __init__(
        self,
        states: Iterable[SourceState] = (),
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.window_seconds = window_seconds
        self._clock = clock
        self._states: dict[str, SourceState] = {}
        for state in states:
            self.register(state)

    def register(self, state: SourceState) -> None:
        if state.window_start is None:
            state.window_start = self._clock()
        self._states[state.name] = state
        set_circuit_breaker_state(state.name, state.breaker_open, state.consecutive_failures)

    def get(self, name: str) -> Optional[SourceState]:
        return self._states.get(name)

    def ordered_sources(self) -> list[SourceState]:
        """Sources in ascending priority (1 = tried first)."""
        return sorted(self._states.values(), key=lambda s: s.priority)

    # -----------------------------------------------------------------
    # Admission
    # -----------------------------------------------------------------

    def _evaluate(self, state: SourceState, now: float, commit: bool) -> Optional[str]:
        """
        Decide admission for one source. Caller must hold state._lock.

        With commit=False nothing is mutated (status previews); with
        commit=True the half-open and window-reset transitions are applied.
        """
        if not state.enabled:
            return _REJECT_DISABLED

        if state.breaker_open:
            elapsed = now - (state.last_failure_at or 0.0)
            if elapsed < self.cooldown_seconds:
                if commit:
                    logger.debug(
                        "[BREAKER] %s OPEN, retry in %ds",
                        state.name, int(self.cooldown_seconds - elapsed) + 1,
                    )
                return _REJECT_OPEN
            if commit:
                state.breaker_open = False
                state.consecutive_failures = 0
                logger.info(
                    "[BREAKER] %s circuit CLOSED after %.0fs cooldown",
                    state.name, elapsed,
                    extra={"source": state.name, "transition": "close"},
                )
                set_circuit_breaker_state(state.name, False, 0)

        window_expired = now - state.window_start >= self.window_seconds
        if window_expired and commit:
            logger.info(
                "[BREAKER] %s rate window reset (%d requests in previous window)",
                state.name, state.request_count,
                extra={"source": state.name, "transition": "window_reset"},
            )
            state.request_count = 0
            state.window_start = now

        used = 0 if window_expired else state.request_count
        if used >= state.rate_limit_per_window:
            if commit:
                logger.info(
                    "[BREAKER] %s rate limit exceeded (%d/%d)",
                    state.name, used, state.rate_limit_per_window,
                )
                record_rate_limited(state.name)
            return _REJECT_RATE

        return _ADMIT

    def can_use(self, name: str) -> bool:
        """Admission check. Applies due transitions but reserves nothing."""
        state = self._states.get(name)
        if state is None:
            return False
        with state._lock:
            return self._evaluate(state, self._clock(), commit=True) is _ADMIT

    def acquire(self, name: str) -> bool:
        """
        Admission check plus slot reservation, atomically.

        A successful acquire counts the request; report the result with
        record_outcome(name, success, reserved=True).
        """
        state = self._states.get(name)
        if state is None:
            return False
        with state._lock:
            if self._evaluate(state, self._clock(), commit=True) is not _ADMIT:
                return False
            state.request_count += 1
            return True

    def acquire_or_raise(self, name: str) -> None:
        """Like acquire(), but says why a source was refused."""
        state = self._states.get(name)
        if state is None:
            raise SourceUnavailable(name, "unknown_source")
        with state._lock:
            verdict = self._evaluate(state, self._clock(), commit=True)
            if verdict == _REJECT_RATE:
                raise RateLimitExceeded(name, state.request_count, state.rate_limit_per_window)
            if verdict is not _ADMIT:
                raise SourceUnavailable(name, verdict)
            state.request_count += 1

    # -----------------------------------------------------------------
    # Outcome accounting
    # -----------------------------------------------------------------

    def record_outcome(self, name: str, success: bool, *, reserved: bool = False) -> None:
        """
        Account one finished request.

        request_count grows on every outcome unless the slot was already
        reserved by acquire(). A failure extends the streak and stamps
        last_failure_at; a success clears the streak.
        """
        state = self._states.get(name)
        if state is None:
            return
        with state._lock:
            if not reserved:
                state.request_count += 1

            if success:
                state.consecutive_failures = 0
            else:
                state.consecutive_failures += 1
                state.last_failure_at = self._clock()
                if state.consecutive_failures >= self.failure_threshold and not state.breaker_open:
                    state.breaker_open = True
                    logger.warning(
                        "[BREAKER] %s circuit OPENED after %d consecutive failures",
                        name, state.consecutive_failures,
                        extra={
                            "source": name,
                            "transition": "open",
                            "failures": state.consecutive_failures,
                        },
                    )

            set_circuit_breaker_state(name, state.breaker_open, state.consecutive_failures)

    def reset(self, name: str) -> None:
        """Manually close a breaker and clear its budget (operator action)."""
        state = self._states.get(name)
        if state is None:
            return
        with state._lock:
            state.breaker_open = False
            state.consecutive_failures = 0
            state.last_failure_at = None
            state.request_count = 0
            state.window_start = self._clock()
            set_circuit_breaker_state(name, False, 0)
        logger.info("[BREAKER] %s manually reset", name)

    # -----------------------------------------------------------------
    # Reporting
    # -----------------------------------------------------------------

    def get_status(self) -> dict:
        """Per-source snapshot. Read-only: never consumes a half-open check."""
        now = self._clock()
        status = {}
        for state in self.ordered_sources():
            with state._lock:
                status[state.name] = {
                    "enabled": state.enabled,
                    "available": self._evaluate(state, now, commit=False) is _ADMIT,
                    "requests_used": state.request_count,
                    "rate_limit": state.rate_limit_per_window,
                    "circuit_breaker_state": STATE_OPEN if state.breaker_open else STATE_CLOSED,
                    "failures": state.consecutive_failures,
                    "priority": state.priority,
                    "capabilities": list(state.capabilities),
                }
        return status
