"""
Logging setup for InvoiceGen.

Every record carries the id of the request (or CLI command) that produced
it: ``TraceContext`` sets the id for the current context and
``TraceIDLogFormatter`` stamps it on each line.
"""

import json
import logging
import os
import sys
import time
from contextvars import ContextVar
from typing import Any, Dict, Optional
from uuid import uuid4

NO_TRACE = 'no-trace'
LOG_FORMAT = '%(asctime)s - %(trace_id)s - %(name)s - %(levelname)s - %(message)s'

# Loggers that are too chatty at DEBUG
QUIET_LOGGERS = ('urllib3', 'sqlalchemy.engine', 'multipart')

_current_trace_id: ContextVar[str] = ContextVar('invoicegen_trace_id', default=NO_TRACE)

# Keys never written to logs
SENSITIVE_KEYS = (
    'secret_key', 'client_secret', 'password', 'authorization',
    'api_key', 'auth_token', 'access_token', 'credentials',
)


def get_current_trace_id() -> str:
    return _current_trace_id.get()


class TraceIDLogFormatter(logging.Formatter):
    """Adds ``trace_id`` to records that were logged without one."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'trace_id'):
            record.trace_id = get_current_trace_id()
        return super().format(record)


class TraceContext:
    """
    Binds a trace id to the current context for the duration of a ``with``
    block and restores the previous id on exit. Exceptions propagate.

    Args:
        trace_id: Id to bind; a ``trace-xxxxxxxx`` id is generated when omitted
        parent_id: Id of the enclosing trace, for the start-of-trace log line
    """

    def __init__(self, trace_id: Optional[str] = None, parent_id: Optional[str] = None):
        self.trace_id = trace_id if trace_id is not None else f"trace-{uuid4().hex[:8]}"
        self.parent_id = parent_id
        self.logger = logging.getLogger('invoicegen.trace')
        self._started = 0.0
        self._token = None

    def __enter__(self) -> 'TraceContext':
        self._token = _current_trace_id.set(self.trace_id)
        self._started = time.perf_counter()
        if self.parent_id:
            self.logger.debug(f"Trace {self.trace_id} started under {self.parent_id}")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        elapsed = time.perf_counter() - self._started
        if exc_type:
            self.logger.error(f"Trace {self.trace_id} failed after {elapsed:.3f}s: {exc_val!r}")
        else:
            self.logger.debug(f"Trace {self.trace_id} finished in {elapsed:.3f}s")

        if self._token is not None:
            _current_trace_id.reset(self._token)
            self._token = None
        return False


def _filter_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Drop secrets, binary values and long strings from a payload before logging it."""
    return {
        k: v for k, v in payload.items()
        if k.lower() not in SENSITIVE_KEYS
        and not isinstance(v, (bytes, bytearray))
        and (not isinstance(v, str) or len(v) < 1000)
    }


def _log_provider_event(logger: logging.Logger, level: int, message: str, provider: str,
                        event_type: str, **extra: Any) -> None:
    trace_id = get_current_trace_id()
    logger.log(level, f"[{trace_id}] {message}", extra={
        'trace_id': trace_id,
        'provider': provider,
        'event_type': event_type,
        **extra,
    })


def log_provider_call(logger: logging.Logger, provider: str, operation: str,
                      payload: Dict[str, Any], level: int = logging.INFO) -> None:
    """Log an outbound call to a payment, email or messaging provider, minus its secrets."""
    _log_provider_event(
        logger, level, f"Calling {provider}.{operation}", provider, 'provider_call',
        payload=json.dumps(_filter_payload(payload), default=str),
    )


def log_provider_response(logger: logging.Logger, provider: str, operation: str,
                          status_code: Optional[int], level: int = logging.INFO) -> None:
    _log_provider_event(
        logger, level, f"{provider}.{operation} answered {status_code}", provider, 'provider_response',
        status_code=status_code,
    )


def configure_logging(log_level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Replace the root handlers with a stdout handler (and a file handler when
    ``log_file`` is given), all using ``TraceIDLogFormatter``.

    ``log_level`` defaults to ``INVOICEGEN_LOG_LEVEL``, then INFO.
    """
    level_name = (log_level or os.environ.get('INVOICEGEN_LOG_LEVEL') or 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    formatter = TraceIDLogFormatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger('invoicegen').setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.getLogger('invoicegen').info(
        "Logging at %s%s", level_name, f", also to {log_file}" if log_file else ""
    )
