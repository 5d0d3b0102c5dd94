"""
Error handling for InvoiceGen.

Exceptions carry the HTTP status and error code the API answers with.
Outbound calls to payment, email and messaging providers go through
``retry`` and a per-provider ``CircuitBreaker``; optional side effects run
inside an ``ErrorBoundary`` so they never fail the request that caused them.
"""

import functools
import logging
import random
import threading
import time
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast

import requests

from utils.logging_config import get_current_trace_id

T = TypeVar('T')
F = TypeVar('F', bound=Callable[..., Any])

# -----------------------------------------------------------------------------
# Exception Hierarchy
# -----------------------------------------------------------------------------

class ErrorSeverity(Enum):
    """How loudly an error is logged."""
    LOW = "low"           # Caller mistakes: bad input, unknown ids, wrong password
    MEDIUM = "medium"     # Provider hiccups and other recoverable failures
    HIGH = "high"         # Bugs and infrastructure failures


class InvoiceGenError(Exception):
    """Base exception for all InvoiceGen errors."""

    http_status = 500

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """
        Args:
            message: Message shown to the API caller
            severity: Log level bucket
            error_code: Stable code returned next to the message
            details: Extra fields merged into the response body
            cause: The exception that caused this one
        """
        self.message = message
        self.severity = severity
        self.error_code = error_code or "ERR_UNDEFINED"
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now().isoformat()
        self.trace_id = get_current_trace_id()
        super().__init__(f"{self.error_code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Log record form of the error."""
        result = {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "http_status": self.http_status,
            "timestamp": self.timestamp,
            "trace_id": self.trace_id,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def to_response(self) -> Dict[str, Any]:
        """Body returned to API callers."""
        body = {"error": self.message, "error_code": self.error_code}
        body.update(self.details)
        return body


class ConfigurationError(InvoiceGenError):
    """Missing or unusable configuration, such as an absent signing secret."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_CONFIG")
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class ValidationError(InvoiceGenError):
    """Invalid input from the caller."""

    http_status = 400

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_VALIDATION")
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class AuthenticationError(InvoiceGenError):
    """Missing or invalid credentials."""

    http_status = 401

    def __init__(self, message: str = "Unauthorized", **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_AUTH")
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class AuthorizationError(InvoiceGenError):
    """Authenticated caller may not perform the action."""

    http_status = 403

    def __init__(self, message: str = "Forbidden", **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_AUTHZ")
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class NotFoundError(InvoiceGenError):
    """Requested record does not exist."""

    http_status = 404

    def __init__(self, message: str, resource: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_NOT_FOUND")
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)
        self.resource = resource


class ConflictError(InvoiceGenError):
    """Record already exists."""

    http_status = 409

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_CONFLICT")
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)


class AccountLockedError(AuthenticationError):
    """Account locked after repeated failed logins."""

    http_status = 423

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_LOCKED")
        super().__init__(message, **kwargs)


class RateLimitError(InvoiceGenError):
    """Too many requests inside the current window."""

    http_status = 429

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_RATE_LIMIT")
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        super().__init__(message, **kwargs)
        self.headers = headers or {}


class StorageError(InvoiceGenError):
    """The database could not be reached or refused the transaction."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_STORAGE")
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class ExternalServiceError(InvoiceGenError):
    """A payment, email or messaging provider failed."""

    http_status = 502

    def __init__(self, message: str, service_name: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_EXT_SERVICE")
        super().__init__(message, **kwargs)
        self.service_name = service_name


class PaymentProviderError(ExternalServiceError):
    """A payment gateway rejected or failed a request."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("error_code", "ERR_PAYMENT_PROVIDER")
        super().__init__(message, service_name=provider, **kwargs)


# -----------------------------------------------------------------------------
# Error Reporting
# -----------------------------------------------------------------------------

class ErrorManager:
    """
    Logs handled errors by severity and keeps per-code counts plus the most
    recent errors for the ``/status`` endpoint.
    """

    _instance: Optional['ErrorManager'] = None
    _lock = threading.Lock()

    MAX_RECENT = 50

    @classmethod
    def get_instance(cls) -> 'ErrorManager':
        """Get the singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self):
        if self.__class__._instance is not None:
            raise RuntimeError("This class is a singleton. Use get_instance() instead.")

        self.logger = logging.getLogger("invoicegen.errors")
        self.error_counts: Dict[str, int] = {}
        self.recent_errors: Deque[Dict[str, Any]] = deque(maxlen=self.MAX_RECENT)
        self._counts_lock = threading.Lock()

    def handle_error(self, error: Union[InvoiceGenError, Exception]) -> InvoiceGenError:
        """
        Record an error. Anything that is not an InvoiceGenError is wrapped
        as ``ERR_UNEXPECTED`` with high severity.

        Returns:
            InvoiceGenError: The recorded error
        """
        if not isinstance(error, InvoiceGenError):
            error = InvoiceGenError(
                str(error) or type(error).__name__,
                severity=ErrorSeverity.HIGH,
                error_code="ERR_UNEXPECTED",
                cause=error
            )

        record = error.to_dict()
        log_line = f"[{error.trace_id}] {error.error_code} ({error.http_status}): {error.message}"
        if error.severity == ErrorSeverity.HIGH:
            self.logger.error(log_line, exc_info=error.cause or error, extra={"error": record})
        elif error.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(log_line, extra={"error": record})
        else:
            self.logger.info(log_line)

        with self._counts_lock:
            self.error_counts[error.error_code] = self.error_counts.get(error.error_code, 0) + 1
            self.recent_errors.append(record)

        return error

    def reset(self) -> None:
        with self._counts_lock:
            self.error_counts.clear()
            self.recent_errors.clear()


# -----------------------------------------------------------------------------
# Retries
# -----------------------------------------------------------------------------

def is_retryable_http_error(error: Exception) -> bool:
    """Timeouts, connection failures and 5xx responses are worth retrying."""
    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code >= 500
    return False


def _backoff_delays(attempts: int, delay: float, backoff: float, jitter: float) -> List[float]:
    """Waits between consecutive attempts, each grown by ``backoff``."""
    waits = []
    for step in range(attempts - 1):
        base = delay * (backoff ** step)
        waits.append(max(base + random.uniform(-jitter, jitter) * base, 0.0))
    return waits


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    jitter: float = 0.1,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = Exception,
    retry_if: Optional[Callable[[Exception], bool]] = None
) -> Callable[[F], F]:
    """
    Retry a provider call with exponential backoff.

    Args:
        max_attempts: Attempts including the first one
        delay: Wait before the second attempt, in seconds
        backoff: Multiplier for each further wait
        jitter: Random spread applied to every wait (0.1 = 10%)
        exceptions: Exception type(s) that may be retried
        retry_if: Predicate deciding whether a caught exception is retried;
            rejected exceptions propagate at once

    Returns:
        Decorator applying the retry policy
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            logger = logging.getLogger(func.__module__)
            waits = _backoff_delays(max_attempts, delay, backoff, jitter)

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise
                    if attempt == max_attempts:
                        logger.error(f"{func.__name__} gave up after {attempt} attempt(s): {e}")
                        raise

                    wait = waits[attempt - 1]
                    logger.warning(f"{func.__name__} attempt {attempt}/{max_attempts} failed ({e}); "
                                   f"retrying in {wait:.2f}s")
                    time.sleep(wait)

            raise RuntimeError(f"{func.__name__} was never attempted")

        return cast(F, wrapper)

    return decorator


# -----------------------------------------------------------------------------
# Circuit Breaker
# -----------------------------------------------------------------------------

class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops calling a provider after ``failure_threshold`` consecutive failures.

    After ``recovery_timeout`` seconds one trial call is let through: success
    closes the circuit, failure opens it again. Exceptions accepted by
    ``ignore`` (caller mistakes such as a 400 response) pass through
    without counting.
    """

    _instances: Dict[str, 'CircuitBreaker'] = {}
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls, name: str, **kwargs: Any) -> 'CircuitBreaker':
        """The shared breaker for ``name``, created on first use."""
        if name not in cls._instances:
            with cls._lock:
                if name not in cls._instances:
                    cls._instances[name] = cls(name=name, **kwargs)
        return cls._instances[name]

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        ignore: Optional[Callable[[Exception], bool]] = None
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.ignore = ignore
        self.logger = logging.getLogger(f"invoicegen.circuit.{name}")

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._lock = threading.Lock()

    def _transition(self, state: CircuitState, reason: str) -> None:
        self.logger.warning(f"Circuit {self.name}: {self.state.value} -> {state.value} ({reason})")
        self.state = state

    def _before_call(self) -> None:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            elapsed = time.time() - (self.last_failure_time or 0.0)
            if elapsed >= self.recovery_timeout:
                self._transition(CircuitState.HALF_OPEN, f"trial call after {elapsed:.0f}s")
                return
        raise ExternalServiceError(
            f"{self.name} is temporarily unavailable. Please try again later.",
            service_name=self.name,
            error_code="ERR_CIRCUIT_OPEN",
        )

    def _record_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED, "trial call succeeded")
            self.failure_count = 0

    def _record_failure(self, error: Exception) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()
            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, f"trial call failed: {error}")
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
                self._transition(CircuitState.OPEN, f"{self.failure_count} consecutive failures")

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Call ``func`` unless the circuit is open.

        Raises:
            ExternalServiceError: ``ERR_CIRCUIT_OPEN`` while the circuit is open
        """
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self.ignore is None or not self.ignore(e):
                self._record_failure(e)
            raise
        self._record_success()
        return result


# -----------------------------------------------------------------------------
# User-facing messages
# -----------------------------------------------------------------------------

STATUS_MESSAGES = {
    401: "Please sign in to continue.",
    403: "You do not have permission to perform this action.",
    429: "Too many requests. Please wait a moment and try again.",
    500: "Server error. Please try again later.",
    503: "Service temporarily unavailable. Please try again later.",
}


def _provider_message(response: requests.Response) -> Optional[str]:
    """Pull the error message out of a provider's JSON error body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return body.get("error_description") or error
    return body.get("message")


def format_error_message(error: Exception, context: str = "Resource") -> str:
    """
    Turn a failed provider request into a message safe to show a user.

    Args:
        error: The exception raised while talking to the provider
        context: Name of the thing being fetched, used for 404 messages
    """
    if isinstance(error, requests.Timeout):
        return "Request timed out. Please check your connection and try again."

    response = getattr(error, "response", None)
    if isinstance(error, requests.RequestException) and response is not None:
        status = response.status_code
        if status == 400:
            return _provider_message(response) or "Invalid request. Please check your input."
        if status == 404:
            return f"{context} not found."
        if status in STATUS_MESSAGES:
            return STATUS_MESSAGES[status]
        return f"Error {status}: Something went wrong."

    return str(error) or "An unexpected error occurred"


# -----------------------------------------------------------------------------
# Error Boundary
# -----------------------------------------------------------------------------

class ErrorBoundary:
    """
    Runs optional work, such as generating a payment link after an invoice
    is saved, so that its failure is reported but never reaches the caller.
    """

    def __init__(
        self,
        boundary_name: str,
        fallback_value: Any = None,
        retries: int = 0,
        error_manager: Optional[ErrorManager] = None
    ):
        self.boundary_name = boundary_name
        self.fallback_value = fallback_value
        self.retries = retries
        self.error_manager = error_manager or ErrorManager.get_instance()
        self.logger = logging.getLogger(f"invoicegen.boundary.{boundary_name}")

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Union[T, Any]:
        """
        Returns:
            The function's result, or ``fallback_value`` once every attempt failed
        """
        attempts = 1 + self.retries
        for attempt in range(1, attempts + 1):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if attempt < attempts:
                    self.logger.warning(f"{self.boundary_name} attempt {attempt}/{attempts} failed: {e}")
                    continue
                self.logger.warning(f"{self.boundary_name} failed, continuing without it: {e}")
                self.error_manager.handle_error(e)
        return self.fallback_value
