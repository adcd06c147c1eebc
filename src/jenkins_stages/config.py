# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("~/.jenkins.yaml")
DEFAULT_PIPELINE = "master"
DEFAULT_DEPLOYMENT_DOMAIN = "dev.bomgar.com"
DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_MONITOR_INTERVAL = 5.0
DEFAULT_FETCH_WORKERS = 10
DEFAULT_MAX_STAGE_DEPTH = 32

# Environment variables consulted when a value is not given on the command line.
ENV_VARS = {
    "host": "JENKINS_HOST",
    "user": "JENKINS_USER",
    "key": "JENKINS_KEY",
    "pipeline": "JENKINS_PIPELINE",
}


@dataclass(frozen=True)
class ProductConfig:
    """How a product alias (``rs``/``pra``) maps onto the PRODUCT build parameter."""
    search_name: str
    display_name: str


def _default_products() -> Dict[str, ProductConfig]:
    return {
        "rs": ProductConfig(search_name="ingredi", display_name="RS"),
        "pra": ProductConfig(search_name="bpam", display_name="PRA"),
    }


@dataclass(frozen=True)
class Settings:
    """
    Everything a command needs to talk to Jenkins.

    Built once per invocation by ``load_settings`` and passed down explicitly;
    nothing reads configuration from module globals.
    """
    host: Optional[str] = None
    user: Optional[str] = None
    key: Optional[str] = None
    pipeline: str = DEFAULT_PIPELINE
    timeout: float = DEFAULT_TIMEOUT
    products: Dict[str, ProductConfig] = field(default_factory=_default_products)
    deployment_domain: str = DEFAULT_DEPLOYMENT_DOMAIN
    poll_interval: float = DEFAULT_POLL_INTERVAL
    monitor_interval: float = DEFAULT_MONITOR_INTERVAL
    fetch_workers: int = DEFAULT_FETCH_WORKERS
    max_stage_depth: int = DEFAULT_MAX_STAGE_DEPTH
    config_file: Optional[Path] = None

    def validate(self) -> "Settings":
        """
        Check that the connection settings are present.

        Raises:
            ConfigError: If host, user or key is missing
        """
        if not self.host:
            raise ConfigError("host", "you must provide a host")
        if not self.user or not self.key:
            raise ConfigError("user/key", "you must provide both a username and an API key")
        return self

    def product(self, alias: str) -> Optional[ProductConfig]:
        """Look up a product by alias or by its search name."""
        alias = alias.lower()
        if alias in self.products:
            return self.products[alias]
        for product in self.products.values():
            if product.search_name == alias:
                return product
        return None


def read_config_file(path: Path) -> Dict[str, Any]:
    """
    Read the YAML config file.

    A missing file is treated as empty. A file that exists but cannot be parsed
    into a mapping is a configuration error.
    """
    path = path.expanduser()
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError("config", f"could not read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("config", f"{path} must contain a mapping at the top level")
    return data


def _products_from(raw: Any) -> Dict[str, ProductConfig]:
    products = _default_products()
    if not raw:
        return products
    if not isinstance(raw, dict):
        raise ConfigError("products", "must be a mapping of alias -> {search_name, display_name}")
    for alias, entry in raw.items():
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ConfigError("products", f"entry for {alias} must be a mapping")
        base = products.get(alias, ProductConfig(search_name=str(alias), display_name=str(alias).upper()))
        products[str(alias).lower()] = ProductConfig(
            search_name=str(entry.get("search_name", base.search_name)),
            display_name=str(entry.get("display_name", base.display_name)),
        )
    return products


def load_settings(
    config_path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build Settings from defaults, the YAML file, the environment and overrides.

    Args:
        config_path: Config file to read (defaults to ~/.jenkins.yaml)
        overrides: Values given on the command line; None values are ignored
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Settings (not yet validated)
    """
    environ = os.environ if environ is None else environ
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    raw = read_config_file(path)
    deployment = raw.get("deployment") or {}
    if not isinstance(deployment, dict):
        raise ConfigError("deployment", "must be a mapping with a domain key")

    values: Dict[str, Any] = {
        "host": raw.get("host"),
        "user": raw.get("user"),
        "key": raw.get("key"),
        "pipeline": raw.get("pipeline") or DEFAULT_PIPELINE,
        "timeout": raw.get("timeout", DEFAULT_TIMEOUT),
        "products": _products_from(raw.get("products")),
        "deployment_domain": deployment.get("domain", DEFAULT_DEPLOYMENT_DOMAIN),
        "poll_interval": raw.get("poll_interval", DEFAULT_POLL_INTERVAL),
        "monitor_interval": raw.get("monitor_interval", DEFAULT_MONITOR_INTERVAL),
        "fetch_workers": raw.get("fetch_workers", DEFAULT_FETCH_WORKERS),
        "max_stage_depth": raw.get("max_stage_depth", DEFAULT_MAX_STAGE_DEPTH),
    }

    for name, var in ENV_VARS.items():
        if environ.get(var):
            values[name] = environ[var]

    values.update(overrides)

    try:
        settings = Settings(
            host=str(values["host"]).rstrip("/") if values["host"] else None,
            user=str(values["user"]) if values["user"] else None,
            key=str(values["key"]) if values["key"] else None,
            pipeline=str(values["pipeline"]),
            timeout=float(values["timeout"]),
            products=values["products"],
            deployment_domain=str(values["deployment_domain"]),
            poll_interval=float(values["poll_interval"]),
            monitor_interval=float(values["monitor_interval"]),
            fetch_workers=int(values["fetch_workers"]),
            max_stage_depth=int(values["max_stage_depth"]),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError("config", f"invalid value in {path}: {e}") from e

    if path.expanduser().exists():
        settings = replace(settings, config_file=path.expanduser())
    return settings
