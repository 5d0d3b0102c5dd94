"""
Configuration loader for InvoiceGen.

A configuration is built in layers, later layers winning:

1. provider defaults from ``config.provider_config``
2. ``<env>.yaml``
3. ``<env>.local.yaml`` when present (not committed)
4. secrets and URLs from environment variables (``.env`` is read first)
"""

import copy
import os
import logging
import yaml
from typing import Dict, Any, List, Optional
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

VALID_ENVIRONMENTS = ('development', 'staging', 'production')

REQUIRED_SETTINGS = ("database.url", "security.jwt_secret")

# Environment variable -> dotted config path
ENV_OVERRIDES = {
    "DATABASE_URL": "database.url",
    "JWT_SECRET": "security.jwt_secret",
    "ENCRYPTION_KEY": "security.encryption_key",
    "CRON_SECRET": "security.cron_secret",
    "APP_URL": "app.url",
    "RESEND_API_KEY": "email.resend_api_key",
    "EMAIL_FROM": "email.from_address",
    "STRIPE_WEBHOOK_SECRET": "webhooks.stripe_secret",
    "PAYSTACK_SECRET_KEY": "webhooks.paystack_secret",
    "STRIPE_SECRET_KEY": "subscriptions.stripe_secret_key",
    "STRIPE_PUBLISHABLE_KEY": "subscriptions.stripe_publishable_key",
    "PAYPAL_CLIENT_ID": "subscriptions.paypal_client_id",
    "PAYPAL_CLIENT_SECRET": "subscriptions.paypal_client_secret",
    "WHATSAPP_VERIFY_TOKEN": "whatsapp.verify_token",
}


class ConfigLoader:
    """
    Builds and caches the configuration for one environment.

    An unknown environment name falls back to ``development`` with a warning.
    """

    def __init__(self, env: Optional[str] = None, config_dir: Optional[str] = None):
        requested = env or os.environ.get('INVOICEGEN_ENV', 'development')
        if requested not in VALID_ENVIRONMENTS:
            logger.warning(f"Unknown environment '{requested}', using development")
            requested = 'development'

        self.env = requested
        self.config_dir = config_dir or os.path.dirname(os.path.abspath(__file__))
        self._cached: Optional[Dict[str, Any]] = None

    def _path(self, suffix: str) -> str:
        return os.path.join(self.config_dir, f"{self.env}{suffix}")

    def _file_layers(self) -> List[Dict[str, Any]]:
        base_path = self._path(".yaml")
        if not os.path.exists(base_path):
            logger.error(f"No configuration for {self.env} at {base_path}")
            raise FileNotFoundError(f"Configuration file not found: {base_path}")

        layers = [_read_yaml(base_path)]
        local_path = self._path(".local.yaml")
        if os.path.exists(local_path):
            logger.info(f"Applying local overrides from {local_path}")
            layers.append(_read_yaml(local_path))
        return layers

    def load_config(self, reload: bool = False) -> Dict[str, Any]:
        """
        Build the configuration, or return the cached one.

        Args:
            reload: Re-read the files and environment instead of using the cache

        Raises:
            FileNotFoundError: ``<env>.yaml`` does not exist
        """
        if self._cached is not None and not reload:
            return self._cached

        from config.provider_config import get_provider_config
        config = copy.deepcopy(get_provider_config())
        for layer in self._file_layers():
            _deep_merge(config, layer)

        applied = [name for name in ENV_OVERRIDES if os.environ.get(name)]
        for name in applied:
            _set_path(config, ENV_OVERRIDES[name], os.environ[name])

        config['environment'] = self.env
        logger.info(
            f"Loaded {self.env} configuration from {self.config_dir}"
            + (f" with overrides from {', '.join(applied)}" if applied else "")
        )

        if not self.validate_config(config):
            logger.warning(f"The {self.env} configuration is incomplete; some features will fail")

        self._cached = config
        return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """True when every setting in ``REQUIRED_SETTINGS`` has a value."""
        missing = [path for path in REQUIRED_SETTINGS if not _get_path(config, path)]
        if missing:
            logger.error(f"Missing required settings: {', '.join(missing)}")
            return False

        if len(str(config["security"]["jwt_secret"])) < 32:
            logger.warning("jwt_secret is shorter than 32 characters")
        return True


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, 'r') as handle:
        return yaml.safe_load(handle) or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into ``base`` in place; nested dicts merge key by key."""
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            base[key] = value
    return base


def _get_path(config: Dict[str, Any], path: str) -> Any:
    node: Any = config
    for key in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _set_path(config: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path inside a nested dictionary."""
    *parents, leaf = path.split(".")
    node = config
    for key in parents:
        if not isinstance(node.get(key), dict):
            node[key] = {}
        node = node[key]
    node[leaf] = value


def load_config(reload: bool = False, env: Optional[str] = None) -> Dict[str, Any]:
    """Load the configuration for ``env`` (default: ``INVOICEGEN_ENV``)."""
    return ConfigLoader(env=env).load_config(reload=reload)
