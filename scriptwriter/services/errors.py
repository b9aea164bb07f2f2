"""
Model client errors.
Provider SDK exceptions are normalized into these before leaving a client.
"""

from typing import Optional


class ModelClientError(Exception):
    """Base error for model client failures."""
    pass


class ModelRateLimitError(ModelClientError):
    """Provider rejected the call for rate/capacity reasons. Always retryable."""

    def __init__(self, message: str, retry_after_ms: Optional[int] = None):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms


class ModelApiError(ModelClientError):
    """Provider call failed; retried only when `is_retryable` is set."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.is_retryable = is_retryable


class EmptyModelResponseError(ModelApiError):
    """The model returned no text. Never retried by the client."""

    def __init__(self, message: str = "Model returned an empty response."):
        super().__init__(message, status_code=None, is_retryable=False)


class PersistenceError(Exception):
    """Raised when a scenelet persistence operation fails."""
    pass
