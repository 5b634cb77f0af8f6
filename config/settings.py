"""
Configuration loader for the notification scheduling service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_ENV_PATTERN = re.compile(r'\$\{(\w+)\}')


@dataclass
class QueueConfig:
    backend: str = "redis"              # "redis" for production, "memory" for dev, "disabled"
    redis_url: str = "${REDIS_URL}"
    key_prefix: str = "notify"
    worker_concurrency: int = 5         # max jobs processed in parallel per worker
    max_attempts: int = 3
    retry_backoff_base: int = 60        # base seconds for exponential retry backoff
    poll_interval: float = 1.0          # seconds between due-job scans
    lease_seconds: int = 300            # executing jobs not settled by then are redelivered
    completed_retention_seconds: int = 7 * 24 * 60 * 60
    completed_retention_count: int = 1000
    failed_retention_seconds: int = 30 * 24 * 60 * 60

    @property
    def redis_configured(self) -> bool:
        """False when the URL is empty or still holds an unresolved ${VAR}."""
        return bool(self.redis_url) and not _ENV_PATTERN.search(self.redis_url)


@dataclass
class BackendConfig:
    base_url: str = ""
    auth_type: str = "bearer"
    auth_credentials: dict[str, Any] = field(default_factory=dict)
    timeout: float = 30.0
    endpoints: dict[str, str] = field(default_factory=lambda: {
        "get_prospect": "/prospects/{id}",
        "get_investor": "/investors/{id}",
        "get_capital_call_item": "/capital-call-items/{id}",
        "get_team_invite": "/team-invites/{id}",
        "notify": "/notifications/send",
    })


@dataclass
class LoggingConfig:
    json: bool = True
    level: str = "INFO"


@dataclass
class Settings:
    app_name: str = "FundNotify"
    environment: str = "development"
    queue: QueueConfig = field(default_factory=QueueConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return _ENV_PATTERN.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    if config_path is None:
        config_path = os.environ.get(
            "NOTIFY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()
    raw: dict[str, Any] = {}

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    raw = _process_values(raw)

    settings.app_name = raw.get("app_name", settings.app_name)
    settings.environment = raw.get("environment", settings.environment)

    q = raw.get("queue", {})
    defaults = QueueConfig()
    settings.queue = QueueConfig(
        backend=q.get("backend", defaults.backend),
        redis_url=q.get("redis_url", _substitute_env_vars(defaults.redis_url)),
        key_prefix=q.get("key_prefix", defaults.key_prefix),
        worker_concurrency=q.get("worker_concurrency", defaults.worker_concurrency),
        max_attempts=q.get("max_attempts", defaults.max_attempts),
        retry_backoff_base=q.get("retry_backoff_base", defaults.retry_backoff_base),
        poll_interval=q.get("poll_interval", defaults.poll_interval),
        lease_seconds=q.get("lease_seconds", defaults.lease_seconds),
        completed_retention_seconds=q.get(
            "completed_retention_seconds", defaults.completed_retention_seconds),
        completed_retention_count=q.get(
            "completed_retention_count", defaults.completed_retention_count),
        failed_retention_seconds=q.get(
            "failed_retention_seconds", defaults.failed_retention_seconds),
    )

    if "backend" in raw:
        be = raw["backend"]
        base = BackendConfig()
        settings.backend = BackendConfig(
            base_url=be.get("base_url", ""),
            auth_type=be.get("auth_type", "bearer"),
            auth_credentials=be.get("auth_credentials", {}),
            timeout=be.get("timeout", base.timeout),
            endpoints={**base.endpoints, **be.get("endpoints", {})},
        )

    if "logging" in raw:
        lg = raw["logging"]
        settings.logging = LoggingConfig(
            json=lg.get("json", True),
            level=str(lg.get("level", "INFO")).upper(),
        )

    return settings
