class ProviderError(Exception):
    """Base exception for provider invocation failures."""


class ProviderTransientError(ProviderError):
    """Retryable failure: timeout, throttling or a server-side error."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ProviderFatalError(ProviderError):
    """Non-retryable failure: authentication, malformed request or content rejection."""
