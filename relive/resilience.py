# resilience.py
import time
from typing import Callable, List, Optional, Type, TypeVar

from . import config
from .errors import RateLimitError, ServiceUnavailableError, TransientProviderError

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED", "rate limit", "quota")
UNAVAILABLE_MARKERS = ("503", "UNAVAILABLE", "overloaded")


def _status_code(exc: Exception) -> Optional[int]:
    # google-genai APIError carries .code, requests errors carry .response
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_provider_error(exc: Exception) -> Optional[Type[TransientProviderError]]:
    """Map a provider exception to a transient kind, or None if it should not be retried."""
    if isinstance(exc, TransientProviderError):
        return type(exc)
    status = _status_code(exc)
    if status == 429:
        return RateLimitError
    if status == 503:
        return ServiceUnavailableError
    if status is not None:
        return None
    message = str(exc)
    if any(m.lower() in message.lower() for m in RATE_LIMIT_MARKERS):
        return RateLimitError
    if any(m.lower() in message.lower() for m in UNAVAILABLE_MARKERS):
        return ServiceUnavailableError
    return None


class RetryPolicy:
    """Bounded exponential backoff for rate-limit and unavailable errors only."""

    def __init__(self, retries: int = None, base_delay: float = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.retries = config.MAX_RETRIES if retries is None else retries
        self.base_delay = config.RETRY_BASE_DELAY if base_delay is None else base_delay
        self.sleep = sleep

    def delays(self) -> List[float]:
        return [self.base_delay * (2 ** i) for i in range(self.retries)]

    def call(self, fn: Callable[[], T], label: str = "provider call") -> T:
        delays = self.delays()
        attempt = 0
        while True:
            try:
                return fn()
            except Exception as e:
                kind = classify_provider_error(e)
                if kind is None:
                    raise
                err = e if isinstance(e, TransientProviderError) else kind(str(e), cause=e)
                if attempt >= len(delays):
                    print(
                        f"[ERROR] {label} still failing after {self.retries} retries: {e}")
                    if err is e:
                        raise
                    raise err from e
                delay = delays[attempt]
                attempt += 1
                print(
                    f"[WARN] {label} hit {kind.__name__} (attempt {attempt}); retrying in {delay:.1f}s...")
                self.sleep(delay)
