"""
Provider Exceptions - Exception hierarchy for external token data providers.

None of these escape a provider client: the client boundary turns every
one of them into an absent ProviderResult.
"""

from datetime import datetime, timezone
from typing import Any, Optional


class ProviderError(Exception):
    """Base exception for all provider errors."""
    
    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "provider_name": self.provider_name,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }
    
    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.provider_name:
            parts.append(f"[provider={self.provider_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class ProviderRequestError(ProviderError):
    """HTTP-level failure talking to a provider."""
    
    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data
    
    def is_server_error(self) -> bool:
        """Check if error is server-side."""
        return self.status_code is not None and 500 <= self.status_code < 600
    
    def is_client_error(self) -> bool:
        """Check if error is client-side."""
        return self.status_code is not None and 400 <= self.status_code < 500


class ProviderTransientError(ProviderRequestError):
    """Network error, timeout or 5xx. Retried with backoff."""
    pass


class ProviderPermanentError(ProviderRequestError):
    """4xx (other than 429) or unusable response. Never retried."""
    pass


class RateLimited(ProviderError):
    """
    Rate limit hit.
    
    Raised locally by the RateLimiter when the wait for a slot would exceed
    the configured maximum (``remote=False``), and by clients on HTTP 429
    (``remote=True``).
    """
    
    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        retry_after_seconds: Optional[float] = None,
        remote: bool = False,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, original_error, context)
        self.retry_after_seconds = retry_after_seconds
        self.remote = remote
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        data["remote"] = self.remote
        return data


class NormalizationError(ProviderError):
    """Raw provider payload could not be mapped at all."""
    
    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        raw_data: Optional[Any] = None,
        field_name: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, original_error, context)
        self.raw_data = raw_data
        self.field_name = field_name
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "raw_data": str(self.raw_data)[:500] if self.raw_data else None,
            "field_name": self.field_name,
        })
        return data
