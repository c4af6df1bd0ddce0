"""Explicit outcomes for upstream fetches and the retry policy over them."""

from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx

T = TypeVar("T")


@dataclass(frozen=True)
class Fetched(Generic[T]):
    value: T


@dataclass(frozen=True)
class TransientFailure:
    """Worth retrying: transport errors, throttling, server errors."""

    reason: str
    retry_after: float | None = None


@dataclass(frozen=True)
class PermanentFailure:
    """Not worth retrying: missing package, rejected request."""

    reason: str
    status_code: int | None = None


FetchResult = Fetched | TransientFailure | PermanentFailure


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int
    base_delay: float
    max_delay: float

    def delay_for(self, attempt: int, result: TransientFailure | None = None) -> float:
        """Exponential delay for the 1-based ``attempt``, capped at ``max_delay``."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if result is not None and result.retry_after:
            delay = max(delay, min(result.retry_after, self.max_delay))
        return delay


def should_retry(result: FetchResult, attempt: int, policy: RetryPolicy) -> bool:
    """True when ``result`` is transient and ``attempt`` is within budget."""
    return isinstance(result, TransientFailure) and attempt <= policy.max_retries


def classify_response(response: httpx.Response) -> FetchResult:
    """Map an HTTP response onto a fetch result carrying the decoded JSON body."""
    status = response.status_code
    if 200 <= status < 300:
        try:
            return Fetched(response.json())
        except ValueError as exc:
            return TransientFailure(f"malformed JSON body: {exc}")
    if status == 429:
        retry_after = response.headers.get("retry-after")
        try:
            seconds = float(retry_after) if retry_after else None
        except ValueError:
            seconds = None
        return TransientFailure("HTTP 429", retry_after=seconds)
    if status >= 500:
        return TransientFailure(f"HTTP {status}")
    return PermanentFailure(f"HTTP {status}", status_code=status)
