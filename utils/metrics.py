"""
In-process metrics for the InvoiceGen service.

Counters, gauges and histograms are kept per label set in a single registry
and served by ``GET /metrics`` as JSON or Prometheus text.
"""

import json
import logging
import threading
import time
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar

F = TypeVar('F', bound=Callable[..., Any])

LabelKey = Tuple[Tuple[str, str], ...]

REQUEST_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10]


def _label_key(labels: Optional[Dict[str, Any]]) -> LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def _format_labels(labels: Dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"


class MetricType(Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class Metric:
    """A named series of values keyed by label set."""

    metric_type: MetricType

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._values: Dict[LabelKey, Any] = {}
        self._lock = threading.Lock()

    def samples(self) -> List[Tuple[Dict[str, str], float]]:
        """Current (labels, value) pairs."""
        with self._lock:
            return [(dict(key), value) for key, value in self._values.items()]

    def prometheus_lines(self) -> List[str]:
        return [f"{self.name}{_format_labels(labels)} {value}" for labels, value in self.samples()]


class Counter(Metric):
    """Monotonic count per label set."""

    metric_type = MetricType.COUNTER

    def inc(self, amount: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> float:
        key = _label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount
            return self._values[key]

    def get_value(self, labels: Optional[Dict[str, Any]] = None) -> float:
        """Value for one label set, or the sum over all of them."""
        with self._lock:
            if labels is None:
                return sum(self._values.values())
            return self._values.get(_label_key(labels), 0.0)


class Gauge(Counter):
    """A value that moves both ways, such as requests in flight."""

    metric_type = MetricType.GAUGE

    def set(self, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self._values[_label_key(labels)] = value

    def dec(self, amount: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> float:
        return self.inc(-amount, labels)


class Histogram(Metric):
    """
    Cumulative bucket counts plus sum and count per label set, in the shape
    Prometheus expects for ``_bucket``, ``_sum`` and ``_count`` series.
    """

    metric_type = MetricType.HISTOGRAM

    def __init__(self, name: str, description: str = "", buckets: Optional[List[float]] = None):
        super().__init__(name, description)
        self.buckets = sorted(buckets or REQUEST_BUCKETS)

    def observe(self, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
        key = _label_key(labels)
        with self._lock:
            series = self._values.setdefault(
                key, {"buckets": [0] * len(self.buckets), "sum": 0.0, "count": 0}
            )
            for index, bound in enumerate(self.buckets):
                if value <= bound:
                    series["buckets"][index] += 1
            series["sum"] += value
            series["count"] += 1

    def get_count(self, labels: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            if labels is None:
                return sum(series["count"] for series in self._values.values())
            series = self._values.get(_label_key(labels))
            return series["count"] if series else 0

    def samples(self) -> List[Tuple[Dict[str, str], float]]:
        with self._lock:
            return [(dict(key), series["sum"]) for key, series in self._values.items()]

    def prometheus_lines(self) -> List[str]:
        lines = []
        with self._lock:
            series_items = [(dict(key), dict(series)) for key, series in self._values.items()]
        for labels, series in series_items:
            for bound, count in zip(self.buckets, series["buckets"]):
                lines.append(f"{self.name}_bucket{_format_labels({**labels, 'le': str(bound)})} {count}")
            lines.append(f"{self.name}_bucket{_format_labels({**labels, 'le': '+Inf'})} {series['count']}")
            lines.append(f"{self.name}_sum{_format_labels(labels)} {series['sum']}")
            lines.append(f"{self.name}_count{_format_labels(labels)} {series['count']}")
        return lines


class RequestTimer:
    """Observes the time spent inside the ``with`` block into a histogram."""

    def __init__(self, histogram: Histogram, labels: Dict[str, str]):
        self.histogram = histogram
        self.labels = labels
        self.start_time = 0.0

    def __enter__(self) -> 'RequestTimer':
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.histogram.observe(time.perf_counter() - self.start_time, self.labels)


class MetricsRegistry:
    """Process-wide registry; creating a metric twice returns the first one."""

    _instance: Optional['MetricsRegistry'] = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> 'MetricsRegistry':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self):
        if self.__class__._instance is not None:
            raise RuntimeError("This class is a singleton. Use get_instance() instead.")

        self.metrics: Dict[str, Metric] = {}
        self._metrics_lock = threading.Lock()
        self.logger = logging.getLogger("invoicegen.metrics")

    def _register(self, metric: Metric) -> Any:
        with self._metrics_lock:
            existing = self.metrics.get(metric.name)
            if existing is not None:
                return existing
            self.metrics[metric.name] = metric
            self.logger.debug(f"Registered {metric.metric_type.value} {metric.name}")
            return metric

    def create_counter(self, name: str, description: str = "") -> Counter:
        return self._register(Counter(name, description))

    def create_gauge(self, name: str, description: str = "") -> Gauge:
        return self._register(Gauge(name, description))

    def create_histogram(self, name: str, description: str = "", buckets: Optional[List[float]] = None) -> Histogram:
        return self._register(Histogram(name, description, buckets))

    def get_metric(self, name: str) -> Optional[Metric]:
        return self.metrics.get(name)

    def __iter__(self) -> Iterator[Metric]:
        with self._metrics_lock:
            return iter(list(self.metrics.values()))


class AppMetricsCollector:
    """
    The metrics InvoiceGen records: HTTP traffic and errors, payment links,
    payments, emails and WhatsApp messages.
    """

    _instance: Optional['AppMetricsCollector'] = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> 'AppMetricsCollector':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self):
        if self.__class__._instance is not None:
            raise RuntimeError("This class is a singleton. Use get_instance() instead.")

        self.registry = MetricsRegistry.get_instance()
        counter = self.registry.create_counter

        self.request_count = counter("app_request_count", "HTTP requests per endpoint")
        self.request_failures = counter("app_request_failures", "Requests that raised past every handler")
        self.error_count = counter("app_error_count", "Handled errors per type and code")
        self.payment_link_count = counter("app_payment_link_count", "Payment links per provider and outcome")
        self.payment_count = counter("app_payment_count", "Payments recorded per provider")
        self.email_count = counter("app_email_count", "Emails per outcome")
        self.whatsapp_message_count = counter("app_whatsapp_message_count", "WhatsApp messages per direction")

        self.active_requests = self.registry.create_gauge("app_active_requests", "Requests in flight")
        self.request_duration = self.registry.create_histogram(
            "app_request_duration_seconds", "HTTP request duration"
        )

    def track_request(self, endpoint: str) -> RequestTimer:
        """Count a request and time it; pair with ``end_request``."""
        self.request_count.inc(labels={"endpoint": endpoint})
        self.active_requests.inc()
        return RequestTimer(self.request_duration, {"endpoint": endpoint})

    def end_request(self, endpoint: str) -> None:
        self.active_requests.dec()

    def track_request_failure(self, method: str, endpoint: str, error: Exception) -> None:
        self.request_failures.inc(labels={
            "method": method, "endpoint": endpoint, "error": type(error).__name__
        })

    def track_error(self, error_type: str, error_code: str) -> None:
        self.error_count.inc(labels={"type": error_type, "code": error_code})

    def track_payment_link(self, provider: str, success: bool) -> None:
        self.payment_link_count.inc(labels={
            "provider": provider,
            "status": "success" if success else "failure"
        })

    def track_payment(self, provider: str) -> None:
        self.payment_count.inc(labels={"provider": provider})

    def track_email(self, success: bool) -> None:
        self.email_count.inc(labels={"status": "sent" if success else "failed"})

    def track_whatsapp_message(self, direction: str) -> None:
        self.whatsapp_message_count.inc(labels={"direction": direction})

    def export_prometheus(self) -> str:
        """Prometheus text exposition of every registered metric."""
        lines = []
        for metric in self.registry:
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.metric_type.value}")
            lines.extend(metric.prometheus_lines())
        return "\n".join(lines) + "\n"

    def export_json(self) -> str:
        """
        Every metric as ``{name, description, type, samples}``; histogram
        samples carry the observed sum.
        """
        return json.dumps([
            {
                "name": metric.name,
                "description": metric.description,
                "type": metric.metric_type.value,
                "samples": [{"labels": labels, "value": value} for labels, value in metric.samples()],
            }
            for metric in self.registry
        ], indent=2)


def count_invocations(name: Optional[str] = None, labels: Optional[Dict[str, str]] = None) -> Callable[[F], F]:
    """
    Count calls of the decorated function by outcome.

    Successful calls are labelled ``status="success"``; failures are labelled
    ``status="error"`` with the exception class as ``error_type`` and re-raised.
    """
    def decorator(func: F) -> F:
        metric_name = name or f"{func.__name__}_invocations"

        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            counter = MetricsRegistry.get_instance().create_counter(metric_name, f"Calls of {func.__name__}")
            outcome = dict(labels or {})
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                outcome.update(status="error", error_type=type(e).__name__)
                counter.inc(labels=outcome)
                raise
            outcome["status"] = "success"
            counter.inc(labels=outcome)
            return result

        return wrapper  # type: ignore
    return decorator
