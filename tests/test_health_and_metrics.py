"""
Tests for health checks, application metrics and trace logging.
"""

import json
import logging
import unittest
from unittest.mock import patch

from tests.mocks import create_user, make_config, make_database
from utils.health_check import HealthCheckManager, HealthStatus, ServiceCheck
from utils.logging_config import TraceContext, TraceIDLogFormatter, _filter_payload, get_current_trace_id
from utils.metrics import AppMetricsCollector, MetricsRegistry, count_invocations


class TestHealthCheckManager(unittest.TestCase):

    def setUp(self):
        self.config = make_config()
        self.database = make_database()
        with self.database.session_scope() as session:
            create_user(session)

    def tearDown(self):
        self.database.dispose()

    def test_report_with_database(self):
        report = HealthCheckManager(self.config, self.database).run_all_checks()

        self.assertEqual(report["status"], "ok")
        self.assertEqual(report["version"], "1.0.0")
        self.assertTrue(report["timestamp"].endswith("Z"))
        database = report["services"]["database"]
        self.assertEqual(database["status"], "healthy")
        self.assertEqual(database["state"], "connected")
        self.assertEqual(database["user_count"], 1)
        self.assertNotIn("environment", report["services"])
        self.assertEqual(report["environment"], {
            "app_env": "development",
            "has_database_url": True,
            "has_jwt_secret": True,
            "has_encryption_key": True,
            "has_email_api_key": False,
        })

    def test_database_failure_is_critical(self):
        manager = HealthCheckManager(self.config, self.database)
        with patch.object(self.database, "check_connection", return_value=None):
            report = manager.run_all_checks()

        self.assertEqual(report["status"], "error")
        self.assertEqual(report["health"], "unhealthy")
        self.assertEqual(report["services"]["database"]["state"], "disconnected")

    def test_missing_secret_degrades(self):
        config = make_config(security={"jwt_secret": None})
        manager = HealthCheckManager(config)
        result = manager.run_check("environment")
        self.assertEqual(result["status"], HealthStatus.DEGRADED)
        self.assertNotIn("database", manager.checks)

    def test_unknown_check(self):
        with self.assertRaises(ValueError):
            HealthCheckManager(self.config).run_check("redis")

    def test_check_exceptions_mark_unhealthy(self):
        def broken():
            raise ConnectionError("refused")

        result = ServiceCheck("cache", broken, critical=True).run_check()
        self.assertEqual(result["status"], HealthStatus.UNHEALTHY)
        self.assertEqual(result["error_type"], "ConnectionError")


class TestAppMetrics(unittest.TestCase):

    def setUp(self):
        self.metrics = AppMetricsCollector.get_instance()

    def test_singletons(self):
        self.assertIs(AppMetricsCollector.get_instance(), self.metrics)
        with self.assertRaises(RuntimeError):
            MetricsRegistry()

    def test_counters_by_label(self):
        before = self.metrics.payment_link_count.get_value({"provider": "stripe", "status": "failure"})
        self.metrics.track_payment_link("stripe", success=False)
        self.metrics.track_payment_link("stripe", success=True)
        after = self.metrics.payment_link_count.get_value({"provider": "stripe", "status": "failure"})
        self.assertEqual(after - before, 1)

    def test_request_tracking(self):
        active = self.metrics.active_requests.get_value()
        with self.metrics.track_request("/api/invoices"):
            self.assertEqual(self.metrics.active_requests.get_value(), active + 1)
            self.metrics.end_request("/api/invoices")
        self.assertEqual(self.metrics.active_requests.get_value(), active)

    def test_exports(self):
        self.metrics.track_email(success=True)

        prometheus = self.metrics.export_prometheus()
        self.assertIn("# TYPE app_email_count counter", prometheus)
        self.assertIn('app_email_count{status="sent"}', prometheus)

        exported = {metric["name"]: metric for metric in json.loads(self.metrics.export_json())}
        self.assertEqual(exported["app_email_count"]["type"], "counter")
        self.assertIn({"status": "sent"}, [s["labels"] for s in exported["app_email_count"]["samples"]])

    def test_count_invocations(self):
        @count_invocations(name="test_reconcile_invocations")
        def reconcile(fail=False):
            if fail:
                raise ValueError("bad")
            return "done"

        self.assertEqual(reconcile(), "done")
        with self.assertRaises(ValueError):
            reconcile(fail=True)

        counter = MetricsRegistry.get_instance().get_metric("test_reconcile_invocations")
        self.assertGreaterEqual(counter.get_value({"status": "success"}), 1)
        self.assertGreaterEqual(counter.get_value({"status": "error", "error_type": "ValueError"}), 1)


class TestTraceLogging(unittest.TestCase):

    def test_trace_context(self):
        self.assertEqual(get_current_trace_id(), "no-trace")
        with TraceContext("req-1"):
            self.assertEqual(get_current_trace_id(), "req-1")
            with TraceContext(parent_id="req-1") as inner:
                self.assertTrue(inner.trace_id.startswith("trace-"))
                self.assertEqual(get_current_trace_id(), inner.trace_id)
            self.assertEqual(get_current_trace_id(), "req-1")
        self.assertEqual(get_current_trace_id(), "no-trace")

    def test_exceptions_propagate(self):
        with self.assertRaises(KeyError):
            with TraceContext("req-2"):
                raise KeyError("invoice")
        self.assertEqual(get_current_trace_id(), "no-trace")

    def test_formatter_adds_trace_id(self):
        formatter = TraceIDLogFormatter("%(trace_id)s %(message)s")
        record = logging.LogRecord("invoicegen", logging.INFO, __file__, 1, "saved", None, None)
        with TraceContext("req-3"):
            self.assertEqual(formatter.format(record), "req-3 saved")

    def test_payload_filtering(self):
        payload = {"email": "a@b.test", "secret_key": "sk_live", "Authorization": "Bearer x", "blob": b"pdf"}
        self.assertEqual(_filter_payload(payload), {"email": "a@b.test"})


if __name__ == "__main__":
    unittest.main()
