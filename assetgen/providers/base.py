"""
Error types shared by the generation provider clients and pollers.

Providers are reached through submit-then-poll HTTP APIs. Failures are
split by what the caller should do next: give up on the sub-job
(not found, terminal failure, timeout), or back off and poll again
(transport, rate limit, transient API errors).
"""


class ProviderError(Exception):
    """Base exception for provider errors."""
    pass


class ProviderAPIError(ProviderError):
    """API returned an error."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class ProviderRateLimitError(ProviderAPIError):
    """API rate limit hit."""
    pass


class ProviderTransportError(ProviderError):
    """The request never got an HTTP answer (connect, read, timeout)."""
    pass


class GenerationNotFoundError(ProviderError):
    """The tracking id is unknown to the provider or has expired."""
    pass


class GenerationFailedError(ProviderError):
    """The provider reported a terminal failure for the task."""
    pass


class PollTimeoutError(ProviderError):
    """Attempt ceiling reached without a terminal status."""

    def __init__(self, message: str, attempts: int, last_status: str):
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status


class GenerationCancelledError(Exception):
    """The run this sub-job belongs to was cancelled."""
    pass


class StorageError(Exception):
    """Fetching a generated asset or writing it to durable storage failed."""
    pass


def check_response(resp, provider: str, tracking_id: str = "") -> None:
    """Raise the matching provider error for a non-2xx response."""
    if resp.status_code == 404 and tracking_id:
        raise GenerationNotFoundError(
            f"{provider} generation {tracking_id} not found. "
            "It may have expired or was never created."
        )
    if resp.status_code == 429:
        raise ProviderRateLimitError(f"{provider} rate limit exceeded", resp.status_code)
    if resp.status_code in (401, 403):
        raise ProviderAPIError(
            f"{provider} authentication failed ({resp.status_code}). "
            "Check the configured API key.",
            resp.status_code,
        )
    if resp.status_code >= 400:
        raise ProviderAPIError(
            f"{provider} API error {resp.status_code}: {resp.text[:500]}",
            resp.status_code,
        )


def is_not_found(exc: Exception) -> bool:
    """True when polling again can never succeed for this tracking id."""
    if isinstance(exc, GenerationNotFoundError):
        return True
    message = str(exc).lower()
    return "not found" in message or "expired" in message
