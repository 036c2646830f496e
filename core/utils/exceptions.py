# Structured exception hierarchy for the trade orchestrator

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class TradeOrchestratorError(Exception):
    """Base exception for all trade orchestrator specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


class TransientError(TradeOrchestratorError):
    """Base class for transient errors the outer consumer may retry"""

    def __init__(self, message: str, retry_count: int = 0, max_retries: int = 5,
                 details: Optional[Dict[str, Any]] = None, correlation_id: Optional[str] = None):
        super().__init__(message, details, correlation_id)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.retryable = retry_count < max_retries


class PermanentError(TradeOrchestratorError):
    """Base class for permanent errors that must not be retried"""
    pass


# Exchange Integration Errors
class ExchangeError(TransientError):
    """Base class for exchange integration errors"""

    def __init__(self, message: str, exchange: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exchange = exchange


class ExchangeAPIError(ExchangeError):
    """Exchange API errors - rate limits, temporary service issues"""

    def __init__(self, message: str, exchange: Optional[str] = None,
                 api_error_code: Optional[str] = None,
                 api_response: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, exchange, **kwargs)
        self.api_error_code = api_error_code
        self.api_response = api_response or {}


class OrderCancelError(ExchangeError):
    """Order cancellation failed; the order may still be resting on the book"""

    def __init__(self, message: str, order_id: str, symbol: str, **kwargs):
        super().__init__(message, **kwargs)
        self.order_id = order_id
        self.symbol = symbol


class DataUnavailableError(TransientError):
    """Price or balance data could not be fetched"""

    def __init__(self, message: str, resource: str, symbol: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.resource = resource
        self.symbol = symbol


# Run control
class LockLostError(PermanentError):
    """The per-user trade lock is no longer held; the run must stop"""

    def __init__(self, message: str, user_id: Optional[str] = None,
                 reason: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.user_id = user_id
        self.reason = reason


# Infrastructure Errors
class InfrastructureError(TransientError):
    """Base class for infrastructure failures"""
    pass


class DatabaseError(InfrastructureError):
    """Database connection or query failures"""

    def __init__(self, message: str, operation: str, table: Optional[str] = None,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.table = table


class RedisError(InfrastructureError):
    """Redis connection or operation failures"""

    def __init__(self, message: str, operation: str, key: Optional[str] = None,
                 **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.key = key


# Validation Errors
class ValidationError(PermanentError):
    """Data validation errors"""

    def __init__(self, message: str, field: str, value: Any,
                 expected_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.expected_type = expected_type


class RecommendationPayloadError(ValidationError):
    """Recommendation payload could not be normalized"""
    pass


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error should be retried by the outer consumer

    Returns:
        True if error is transient and retryable, False otherwise
    """
    if isinstance(error, TransientError):
        return error.retryable
    return False


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, TradeOrchestratorError):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, TransientError):
            context["retry_count"] = error.retry_count
            context["max_retries"] = error.max_retries

        if isinstance(error, ExchangeError) and error.exchange:
            context["exchange"] = error.exchange

        if isinstance(error, LockLostError):
            context["user_id"] = error.user_id
            context["lock_reason"] = error.reason

    if additional_context:
        context.update(additional_context)

    return context
