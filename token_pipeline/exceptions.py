"""
Pipeline Exceptions.

Provider failures never surface here; they become absent stages. These
errors are for problems the caller has to fix.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(PipelineError):
    """Malformed input rejected before any network call."""
    
    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        value: Any = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, context)
        self.field_name = field_name
        self.value = value
    
    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "field_name": self.field_name,
            "value": str(self.value)[:100] if self.value is not None else None,
        })
        return data
