"""
Exception hierarchy for the Bitcoin forecast pipeline
"""
from typing import Any, Dict, Optional


class ForecastError(Exception):
    """Base class for every failure that aborts a pipeline run"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(ForecastError):
    """Invalid configuration value"""


class NetworkError(ForecastError):
    """Transport failure or timeout talking to an upstream service"""


class AuthError(ForecastError):
    """Missing or rejected credentials"""


class ApiError(ForecastError):
    """Upstream returned a non-success status or an unexpected payload"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code


class RateLimitError(ApiError):
    """Upstream throttled the request"""


class InsufficientDataError(ForecastError):
    """Too few bars for the configured lookback windows"""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Need at least {required} bars, got {available}",
            {"required": required, "available": available},
        )
        self.required = required
        self.available = available


class MissingFieldError(ForecastError):
    """Intermediate data is incomplete"""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"Missing required field: {field}", {"field": field})
        self.field = field


class DeliveryError(ForecastError):
    """Delivering the result to its destination failed"""
