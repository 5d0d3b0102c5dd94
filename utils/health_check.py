"""
Health checks for the InvoiceGen service.

Checks the database, configured secrets and the host (memory, disk).
The database check is critical: when it fails the service reports ``error``.
"""

import logging
import os
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import psutil
from sqlalchemy import func, select

from storage.database import Database, utcnow
from utils.metrics import MetricsRegistry

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status values."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ServiceCheck:
    """A named health check function and its last result."""

    def __init__(
        self,
        name: str,
        check_function: Callable[[], Dict[str, Any]],
        critical: bool = False
    ):
        self.name = name
        self.check_function = check_function
        self.critical = critical
        self.last_check_time = 0.0
        self.last_status = HealthStatus.UNKNOWN
        self.last_result: Optional[Dict[str, Any]] = None

    def run_check(self) -> Dict[str, Any]:
        """Run the check; exceptions mark it unhealthy instead of propagating."""
        start_time = time.time()
        try:
            result = self.check_function()
            status = result.get("status", HealthStatus.UNKNOWN)
            if isinstance(status, str):
                status = HealthStatus(status)
            full_result = {
                **result,
                "name": self.name,
                "status": status,
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
                "critical": self.critical,
            }
        except Exception as e:
            logger.error(f"Health check {self.name} failed: {e}")
            status = HealthStatus.UNHEALTHY
            full_result = {
                "name": self.name,
                "status": status,
                "error": str(e),
                "error_type": type(e).__name__,
                "critical": self.critical,
            }

        self.last_status = status
        self.last_check_time = time.time()
        self.last_result = full_result
        return full_result


class HealthCheckManager:
    """
    Runs the registered checks on demand.

    Args:
        config: Loaded application configuration
        database: Database to check; without one the database check is skipped
    """

    def __init__(self, config: Dict[str, Any], database: Optional[Database] = None):
        self.config = config
        self.database = database
        self.logger = logging.getLogger("invoicegen.health")
        self.health_gauge = MetricsRegistry.get_instance().create_gauge(
            "service_health", "1 healthy, 0.5 degraded, 0 unhealthy"
        )
        self.checks: Dict[str, ServiceCheck] = {}
        self.last_health_status = HealthStatus.UNKNOWN

        if database is not None:
            self.register_check("database", self._check_database, critical=True)
        self.register_check("environment", self._check_environment)
        self.register_check("system.memory", self._check_memory)
        self.register_check("system.disk", self._check_disk)

    def register_check(
        self,
        name: str,
        check_function: Callable[[], Dict[str, Any]],
        critical: bool = False
    ) -> None:
        self.checks[name] = ServiceCheck(name, check_function, critical)
        self.logger.debug(f"Registered health check: {name}")

    def run_check(self, name: str) -> Dict[str, Any]:
        if name not in self.checks:
            raise ValueError(f"Check not found: {name}")
        return self.checks[name].run_check()

    def run_all_checks(self) -> Dict[str, Any]:
        """
        Run every check and build the health report.

        Returns:
            Dict with ``status`` (``ok`` or ``error``), timestamp, version,
            per-check ``services``, ``environment`` flags and response time
        """
        start = time.time()
        results = {name: check.run_check() for name, check in self.checks.items()}
        overall = self._calculate_overall_health()

        for name, result in results.items():
            self.health_gauge.set(_status_value(result["status"]), labels={"check": name})

        environment = results.get("environment", {})
        return {
            "status": "error" if overall == HealthStatus.UNHEALTHY else "ok",
            "health": overall.value,
            "timestamp": utcnow().isoformat() + "Z",
            "version": self.config.get("app", {}).get("version", "1.0.0"),
            "services": {
                name: _public_result(result) for name, result in results.items()
                if name != "environment"
            },
            "environment": environment.get("flags", {}),
            "response_time": f"{round((time.time() - start) * 1000)}ms",
        }

    def _calculate_overall_health(self) -> HealthStatus:
        if not self.checks:
            return HealthStatus.UNKNOWN

        statuses: List[HealthStatus] = []
        for check in self.checks.values():
            if check.critical and check.last_status == HealthStatus.UNHEALTHY:
                overall = HealthStatus.UNHEALTHY
                break
            statuses.append(check.last_status)
        else:
            if any(s in (HealthStatus.UNHEALTHY, HealthStatus.DEGRADED) for s in statuses):
                overall = HealthStatus.DEGRADED
            elif all(s == HealthStatus.UNKNOWN for s in statuses):
                overall = HealthStatus.UNKNOWN
            else:
                overall = HealthStatus.HEALTHY

        if overall != self.last_health_status:
            self.logger.info(f"System health changed from {self.last_health_status.value} to {overall.value}")
        self.last_health_status = overall
        return overall

    # Check implementations

    def _check_database(self) -> Dict[str, Any]:
        from storage.tables import User

        response_time = self.database.check_connection()
        if response_time is None:
            return {"status": HealthStatus.UNHEALTHY, "state": "disconnected"}

        start = time.time()
        try:
            with self.database.session_scope() as session:
                user_count = session.execute(select(func.count()).select_from(User)).scalar_one()
        except Exception as e:
            return {"status": HealthStatus.UNHEALTHY, "state": "error", "error": str(e)}

        query_ms = round((time.time() - start) * 1000, 2)
        return {
            "status": HealthStatus.DEGRADED if query_ms > 1000 else HealthStatus.HEALTHY,
            "state": "connected",
            "connection_ms": response_time,
            "query_performance": f"{query_ms}ms",
            "user_count": user_count,
        }

    def _check_environment(self) -> Dict[str, Any]:
        security = self.config.get("security", {})
        flags = {
            "app_env": self.config.get("environment", "development"),
            "has_database_url": bool(self.config.get("database", {}).get("url")),
            "has_jwt_secret": bool(security.get("jwt_secret")),
            "has_encryption_key": bool(security.get("encryption_key")),
            "has_email_api_key": bool(self.config.get("email", {}).get("resend_api_key")),
        }
        required = ("has_database_url", "has_jwt_secret")
        status = HealthStatus.HEALTHY if all(flags[k] for k in required) else HealthStatus.DEGRADED
        return {"status": status, "flags": flags}

    def _check_memory(self) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        return {
            "status": _usage_status(memory.percent),
            "memory_percent": memory.percent,
            "memory_available_mb": round(memory.available / (1024 * 1024), 1),
        }

    def _check_disk(self) -> Dict[str, Any]:
        cwd = os.getcwd()
        disk_usage = psutil.disk_usage(cwd)
        return {
            "status": _usage_status(disk_usage.percent),
            "disk_percent": disk_usage.percent,
            "disk_free_gb": round(disk_usage.free / (1024 ** 3), 2),
            "path": cwd,
        }


def _usage_status(percent: float) -> HealthStatus:
    """Resource usage above 85% degrades the service, above 95% makes it unhealthy."""
    if percent > 95:
        return HealthStatus.UNHEALTHY
    if percent > 85:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def _status_value(status: HealthStatus) -> float:
    return {
        HealthStatus.HEALTHY: 1.0,
        HealthStatus.DEGRADED: 0.5,
        HealthStatus.UNHEALTHY: 0.0,
    }.get(status, -1.0)


def _public_result(result: Dict[str, Any]) -> Dict[str, Any]:
    public = dict(result)
    public["status"] = public["status"].value if isinstance(public["status"], HealthStatus) else public["status"]
    return public
