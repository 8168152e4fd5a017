"""
Uniform, circuit-breaking access to language-model providers.

Every call goes through a per-provider circuit breaker: after
`failure_threshold` consecutive failures the provider is rejected for
`cooldown_seconds` without any network I/O, then one trial call is allowed.
"""

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from ..exceptions import ProviderError, ProviderTimeout, ProviderUnavailable
from ..logger import get_logger
from .base import Provider, ProviderOptions

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    """A prompt on its way to a provider."""
    correlation_id: str
    provider: str
    prompt: str
    options: ProviderOptions


@dataclass(frozen=True)
class ProviderResponse:
    """A completed provider call."""
    correlation_id: str
    provider: str
    prompt: str
    text: str
    tokens: int
    latency_ms: float


class CircuitBreaker:
    """Consecutive-failure circuit breaker with a half-open trial after cool-down."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 3, cooldown_seconds: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = self.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def allow_request(self) -> bool:
        """Decide whether a call may go out now."""
        with self._lock:
            if self._state == self.CLOSED:
                return True
            if self._state == self.OPEN:
                if self._clock() - self._opened_at < self.cooldown_seconds:
                    return False
                self._state = self.HALF_OPEN
                self._trial_in_flight = False
            # Half-open: exactly one trial call
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self):
        with self._lock:
            self._state = self.CLOSED
            self._consecutive_failures = 0
            self._trial_in_flight = False

    def record_failure(self):
        with self._lock:
            self._consecutive_failures += 1
            self._trial_in_flight = False
            if self._state == self.HALF_OPEN or self._consecutive_failures >= self.failure_threshold:
                if self._state != self.OPEN:
                    logger.warning(
                        f"Circuit breaker OPENED after {self._consecutive_failures} consecutive failures"
                    )
                self._state = self.OPEN
                self._opened_at = self._clock()

    def retry_after(self) -> float:
        """Seconds until an open breaker allows a trial call."""
        with self._lock:
            if self._state != self.OPEN:
                return 0.0
            return max(0.0, self.cooldown_seconds - (self._clock() - self._opened_at))

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "state": self._state,
                "consecutive_failures": self._consecutive_failures,
            }


class ProviderGateway:
    """Routes completion requests to providers with timeouts and circuit breaking."""

    def __init__(
        self,
        providers: Iterable[Provider] = (),
        default_provider: Optional[str] = None,
        failure_threshold: int = 3,
        cooldown_seconds: float = 30.0,
        timeout: Optional[float] = 120.0,
        max_workers: int = 8,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.timeout = timeout
        self._clock = clock
        self._providers: Dict[str, Provider] = {}
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="provider")
        self.default_provider = default_provider
        for provider in providers:
            self.register(provider)

    def register(self, provider: Provider):
        """Add (or replace) a provider and give it a fresh circuit breaker."""
        with self._lock:
            self._providers[provider.name] = provider
            self._breakers[provider.name] = CircuitBreaker(
                self.failure_threshold, self.cooldown_seconds, self._clock
            )
        if self.default_provider is None:
            self.default_provider = provider.name

    def providers(self) -> List[str]:
        with self._lock:
            return list(self._providers)

    def breaker(self, name: str) -> CircuitBreaker:
        with self._lock:
            if name not in self._breakers:
                raise ValueError(f"Unknown provider '{name}'. Registered: {list(self._providers)}")
            return self._breakers[name]

    def complete(self, prompt: str, options: Optional[ProviderOptions] = None,
                 provider: Optional[str] = None) -> ProviderResponse:
        """
        Run a completion through the named (or default) provider.

        Args:
            prompt: Prompt text
            options: Generation options
            provider: Provider id; defaults to the gateway's default provider

        Returns:
            ProviderResponse with text, token count and latency

        Raises:
            ProviderUnavailable: Circuit open or backend down
            ProviderTimeout: The call exceeded the gateway timeout
            RateLimited: Backend throttled the request
            ProviderError: Any other backend failure
        """
        name = provider or self.default_provider
        if name is None:
            raise ValueError("No provider registered")
        breaker = self.breaker(name)
        backend = self._providers[name]

        if not breaker.allow_request():
            raise ProviderUnavailable(
                name, f"Circuit open; retry in {breaker.retry_after():.1f}s"
            )

        request = ProviderRequest(
            correlation_id=uuid.uuid4().hex,
            provider=name,
            prompt=prompt,
            options=options or ProviderOptions()
        )
        started = time.monotonic()
        future = self._executor.submit(backend.complete, request.prompt, request.options)
        try:
            result = future.result(timeout=self.timeout)
        except FutureTimeout as e:
            # The call keeps running in the background; its result is ignored
            breaker.record_failure()
            raise ProviderTimeout(name, f"No response within {self.timeout}s") from e
        except ProviderError:
            breaker.record_failure()
            raise
        except Exception as e:
            breaker.record_failure()
            raise ProviderError(name, f"Unexpected error: {e}") from e

        breaker.record_success()
        latency_ms = (time.monotonic() - started) * 1000
        logger.debug(
            f"[{request.correlation_id}] {name} completed in {latency_ms:.0f}ms "
            f"({result.tokens_used} tokens)"
        )
        return ProviderResponse(
            correlation_id=request.correlation_id,
            provider=name,
            prompt=prompt,
            text=result.text,
            tokens=result.tokens_used,
            latency_ms=latency_ms
        )

    def health(self) -> Dict[str, Dict[str, object]]:
        """Breaker state per provider."""
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.snapshot() for name, breaker in breakers.items()}

    def shutdown(self):
        """Stop accepting calls; in-flight calls run to completion."""
        self._executor.shutdown(wait=False)
