"""Circuit breaker guarding calls to external dependencies.

A breaker starts CLOSED and lets calls through. After `failure_threshold`
consecutive failures it OPENs and rejects calls without running them until
`recovery_timeout_seconds` have passed. The next call then moves it to
HALF_OPEN and runs as a probe. Only one probe may be in flight at a time;
concurrent callers are rejected while it runs. `success_threshold` successful
probes close the breaker again, and a single failed probe reopens it.

State lives in memory for the lifetime of the process. Breakers are looked up
by dependency name through a `CircuitBreakerRegistry` owned by whoever wires
the engine together.
"""

from __future__ import annotations

import asyncio
import datetime
import enum
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.StrEnum):
  CLOSED = "CLOSED"
  OPEN = "OPEN"
  HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
  """Thresholds and timeouts for a single breaker."""

  failure_threshold: int = 5
  recovery_timeout_seconds: float = 30.0
  success_threshold: int = 2
  call_timeout_seconds: float = 10.0

  def __post_init__(self) -> None:
    if self.failure_threshold < 1 or self.success_threshold < 1:
      raise ValueError("Circuit breaker thresholds must be at least 1.")
    if self.recovery_timeout_seconds < 0 or self.call_timeout_seconds <= 0:
      raise ValueError("Circuit breaker timeouts must be positive.")


@dataclass(frozen=True)
class CircuitBreakerMetrics:
  """Point-in-time snapshot of a breaker, safe to log or serialise."""

  name: str
  state: CircuitState
  failure_count: int
  success_count: int
  total_calls: int
  failed_calls: int
  rejected_calls: int
  opened_count: int
  last_failure_at: datetime.datetime | None
  last_success_at: datetime.datetime | None
  retry_in_seconds: float | None

  def as_dict(self) -> dict[str, object]:
    return {
      "name": self.name,
      "state": self.state.value,
      "failure_count": self.failure_count,
      "success_count": self.success_count,
      "total_calls": self.total_calls,
      "failed_calls": self.failed_calls,
      "rejected_calls": self.rejected_calls,
      "opened_count": self.opened_count,
      "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
      "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
      "retry_in_seconds": self.retry_in_seconds,
    }


class CircuitBreakerError(Exception):
  """Base class for failures raised by the breaker itself."""

  def __init__(self, message: str, metrics: CircuitBreakerMetrics) -> None:
    super().__init__(message)
    self.metrics = metrics


class CircuitOpenError(CircuitBreakerError):
  """Raised when a call is rejected without being attempted."""


class CircuitTimeoutError(CircuitBreakerError):
  """Raised when a guarded call exceeds the breaker's call timeout."""


class CircuitBreaker:
  """Per-dependency breaker; safe to share between concurrent tasks."""

  def __init__(self, name: str, config: CircuitBreakerConfig | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
    self.name = name
    self.config = config or CircuitBreakerConfig()
    self._clock = clock
    # Guards every read-modify-write of the fields below; never held across an await.
    self._lock = threading.Lock()
    self._state = CircuitState.CLOSED
    self._failure_count = 0
    self._success_count = 0
    self._next_attempt_at: float | None = None
    self._probe_in_flight = False
    self._total_calls = 0
    self._failed_calls = 0
    self._rejected_calls = 0
    self._opened_count = 0
    self._last_failure_at: datetime.datetime | None = None
    self._last_success_at: datetime.datetime | None = None

  @property
  def state(self) -> CircuitState:
    return self._state

  async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
    """Run `operation` under the breaker, bounded by the call timeout."""
    is_probe = self._admit()

    try:
      result = await asyncio.wait_for(operation(), timeout=self.config.call_timeout_seconds)
    except TimeoutError as exc:
      self._record_failure(exc, is_probe=is_probe)
      raise CircuitTimeoutError(f"Circuit breaker '{self.name}' call timed out after {self.config.call_timeout_seconds}s", self.metrics()) from exc
    except asyncio.CancelledError:
      # Cancellation is not a dependency failure, but the probe slot must be freed.
      self._release_probe(is_probe=is_probe)
      raise
    except Exception as exc:
      self._record_failure(exc, is_probe=is_probe)
      raise

    self._record_success(is_probe=is_probe)
    return result

  def _admit(self) -> bool:
    """Decide whether a call may proceed; returns True when the call is a recovery probe."""
    with self._lock:
      self._total_calls += 1

      if self._state is CircuitState.OPEN:
        if self._next_attempt_at is not None and self._clock() < self._next_attempt_at:
          self._rejected_calls += 1
          logger.debug("Circuit '%s' rejected call (OPEN) retry_in=%.2fs", self.name, self._next_attempt_at - self._clock())
          raise CircuitOpenError(f"Circuit breaker '{self.name}' is OPEN", self._snapshot())
        self._transition(CircuitState.HALF_OPEN)

      if self._state is CircuitState.HALF_OPEN:
        if self._probe_in_flight:
          self._rejected_calls += 1
          logger.debug("Circuit '%s' rejected call (HALF_OPEN probe in flight)", self.name)
          raise CircuitOpenError(f"Circuit breaker '{self.name}' is HALF_OPEN with a probe in flight", self._snapshot())
        self._probe_in_flight = True
        return True

      return False

  def _record_success(self, *, is_probe: bool) -> None:
    with self._lock:
      self._last_success_at = datetime.datetime.now(datetime.UTC)
      if is_probe:
        self._probe_in_flight = False

      if self._state is CircuitState.CLOSED:
        self._success_count += 1
        self._failure_count = 0
      elif self._state is CircuitState.HALF_OPEN and is_probe:
        self._success_count += 1
        self._failure_count = 0
        if self._success_count >= self.config.success_threshold:
          self._transition(CircuitState.CLOSED)
      # Late successes from calls admitted before the circuit opened do not count toward recovery.

      logger.debug("Circuit '%s' call succeeded state=%s success_count=%d", self.name, self._state, self._success_count)

  def _record_failure(self, error: BaseException, *, is_probe: bool) -> None:
    with self._lock:
      self._last_failure_at = datetime.datetime.now(datetime.UTC)
      self._failure_count += 1
      self._failed_calls += 1
      self._success_count = 0
      if is_probe:
        self._probe_in_flight = False

      if self._state is CircuitState.HALF_OPEN and is_probe:
        self._transition(CircuitState.OPEN)
      elif self._state is CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
        self._transition(CircuitState.OPEN)

      logger.warning("Circuit '%s' call failed state=%s failure_count=%d error=%s", self.name, self._state, self._failure_count, _describe(error))

  def _release_probe(self, *, is_probe: bool) -> None:
    if not is_probe:
      return
    with self._lock:
      self._probe_in_flight = False

  def _transition(self, new_state: CircuitState) -> None:
    """Apply a state change; callers must hold the lock."""
    old_state = self._state
    self._state = new_state

    if new_state is CircuitState.OPEN:
      self._opened_count += 1
      self._next_attempt_at = self._clock() + self.config.recovery_timeout_seconds
      self._success_count = 0
      logger.warning("Circuit '%s' OPENED failure_count=%d retry_in=%.1fs", self.name, self._failure_count, self.config.recovery_timeout_seconds)
    elif new_state is CircuitState.HALF_OPEN:
      self._success_count = 0
      self._probe_in_flight = False
      logger.info("Circuit '%s' attempting recovery (HALF_OPEN)", self.name)
    else:
      self._failure_count = 0
      self._success_count = 0
      self._next_attempt_at = None
      self._probe_in_flight = False
      logger.info("Circuit '%s' recovered (CLOSED) previous_state=%s", self.name, old_state)

  def metrics(self) -> CircuitBreakerMetrics:
    with self._lock:
      return self._snapshot()

  def _snapshot(self) -> CircuitBreakerMetrics:
    retry_in = None
    if self._state is CircuitState.OPEN and self._next_attempt_at is not None:
      retry_in = max(0.0, self._next_attempt_at - self._clock())

    return CircuitBreakerMetrics(
      name=self.name,
      state=self._state,
      failure_count=self._failure_count,
      success_count=self._success_count,
      total_calls=self._total_calls,
      failed_calls=self._failed_calls,
      rejected_calls=self._rejected_calls,
      opened_count=self._opened_count,
      last_failure_at=self._last_failure_at,
      last_success_at=self._last_success_at,
      retry_in_seconds=retry_in,
    )

  def force_state(self, state: CircuitState) -> None:
    """Force the breaker into `state` (operations and tests)."""
    with self._lock:
      logger.warning("Circuit '%s' force-set to %s", self.name, state)
      self._transition(state)

  def reset(self) -> None:
    """Return to CLOSED with cleared streaks; lifetime counters are kept."""
    with self._lock:
      self._state = CircuitState.CLOSED
      self._failure_count = 0
      self._success_count = 0
      self._next_attempt_at = None
      self._probe_in_flight = False
      logger.info("Circuit '%s' reset", self.name)


class CircuitBreakerRegistry:
  """Name to breaker map; breakers are created on first reference and never evicted."""

  def __init__(self, default_config: CircuitBreakerConfig | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
    self._default_config = default_config or CircuitBreakerConfig()
    self._clock = clock
    self._lock = threading.Lock()
    self._breakers: dict[str, CircuitBreaker] = {}

  def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
    """Return the breaker for `name`, creating it with `config` (or the default) if missing."""
    with self._lock:
      breaker = self._breakers.get(name)
      if breaker is None:
        breaker = CircuitBreaker(name, config or self._default_config, clock=self._clock)
        self._breakers[name] = breaker
      return breaker

  def find(self, name: str) -> CircuitBreaker | None:
    with self._lock:
      return self._breakers.get(name)

  def all_metrics(self) -> list[CircuitBreakerMetrics]:
    with self._lock:
      breakers = list(self._breakers.values())
    return [breaker.metrics() for breaker in breakers]

  def reset_all(self) -> None:
    with self._lock:
      breakers = list(self._breakers.values())
    for breaker in breakers:
      breaker.reset()


def _describe(error: BaseException) -> str:
  message = str(error)
  return f"{type(error).__name__}: {message}" if message else type(error).__name__
