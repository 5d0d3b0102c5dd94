"""
Unit tests for config_loader.
"""

import os
import shutil
import tempfile
import unittest
from typing import Any, Dict
from unittest.mock import MagicMock, patch

import yaml

from config.config_loader import ConfigLoader, _deep_merge, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for the config_loader module."""

    def setUp(self):
        """Write a base and a local override file into a scratch directory."""
        self.config_dir = tempfile.mkdtemp()
        self.base_config: Dict[str, Any] = {
            "app": {"name": "InvoiceGen", "url": "http://localhost:3000"},
            "database": {"url": "sqlite:///base.db", "echo": False},
            "security": {"jwt_secret": "base-secret-0123456789abcdef0123", "access_token_minutes": 15},
            "whatsapp": {"verify_token": None, "default_due_days": 14},
        }
        self._write("development.yaml", self.base_config)

    def tearDown(self):
        shutil.rmtree(self.config_dir)

    def _write(self, name: str, data: Dict[str, Any]) -> None:
        with open(os.path.join(self.config_dir, name), "w") as handle:
            yaml.safe_dump(data, handle)

    @patch.dict(os.environ, {}, clear=True)
    def test_load_config_development(self):
        """Test loading development config with provider defaults merged in."""
        config = ConfigLoader(env="development", config_dir=self.config_dir).load_config()

        self.assertEqual(config["environment"], "development")
        self.assertEqual(config["database"]["url"], "sqlite:///base.db")
        # YAML values win over provider defaults
        self.assertEqual(config["whatsapp"]["default_due_days"], 14)
        self.assertEqual(config["whatsapp"]["twilio_base_url"], "https://api.twilio.com/2010-04-01")
        self.assertEqual(config["payments"]["paystack"]["base_url"], "https://api.paystack.co")
        self.assertEqual(config["rate_limit"]["limits"]["auth"]["max_requests"], 5)

    @patch.dict(os.environ, {}, clear=True)
    def test_load_config_with_local_override(self):
        """Test loading config with local override."""
        self._write("development.local.yaml", {"security": {"access_token_minutes": 60}})

        config = ConfigLoader(env="development", config_dir=self.config_dir).load_config()

        self.assertEqual(config["security"]["access_token_minutes"], 60)
        self.assertEqual(config["security"]["jwt_secret"], "base-secret-0123456789abcdef0123")

    @patch.dict(os.environ, {
        "DATABASE_URL": "postgresql://db/invoicegen",
        "JWT_SECRET": "env-secret",
        "WHATSAPP_VERIFY_TOKEN": "hub-token",
    }, clear=True)
    def test_environment_overrides(self):
        """Secrets and URLs from the environment replace file values."""
        config = ConfigLoader(env="development", config_dir=self.config_dir).load_config()

        self.assertEqual(config["database"]["url"], "postgresql://db/invoicegen")
        self.assertEqual(config["security"]["jwt_secret"], "env-secret")
        self.assertEqual(config["whatsapp"]["verify_token"], "hub-token")

    @patch.dict(os.environ, {"INVOICEGEN_ENV": "qa"}, clear=True)
    def test_invalid_environment_defaults_to_development(self):
        loader = ConfigLoader(config_dir=self.config_dir)
        self.assertEqual(loader.env, "development")

    @patch.dict(os.environ, {}, clear=True)
    def test_cached_until_reload(self):
        loader = ConfigLoader(env="development", config_dir=self.config_dir)
        first = loader.load_config()
        self.assertIs(loader.load_config(), first)
        self.assertIsNot(loader.load_config(reload=True), first)

    def test_validate_config(self):
        loader = ConfigLoader(env="development", config_dir=self.config_dir)
        self.assertTrue(loader.validate_config(self.base_config))
        self.assertFalse(loader.validate_config({"database": {"url": "sqlite://"}}))
        self.assertFalse(loader.validate_config({"database": {}, "security": {"jwt_secret": "x"}}))

    @patch('os.path.exists')
    def test_load_config_file_not_found(self, mock_path_exists: MagicMock):
        """Test error when config file not found."""
        mock_path_exists.return_value = False

        with self.assertRaises(FileNotFoundError):
            load_config(env="staging")

    def test_deep_merge(self):
        """Test the deep merge function."""
        base = {"security": {"jwt_secret": "a", "lockout_minutes": 15}, "app": {"name": "InvoiceGen"}}
        override = {"security": {"lockout_minutes": 30}, "email": {"resend_api_key": "re_1"}}

        result = _deep_merge(base, override)

        self.assertEqual(result, {
            "security": {"jwt_secret": "a", "lockout_minutes": 30},
            "app": {"name": "InvoiceGen"},
            "email": {"resend_api_key": "re_1"},
        })
        # The base is modified in place
        self.assertIs(result, base)

        self.assertEqual(_deep_merge({}, {}), {})
        self.assertEqual(_deep_merge({"a": 1}, {}), {"a": 1})


if __name__ == "__main__":
    unittest.main()
