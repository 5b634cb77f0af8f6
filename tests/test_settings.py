"""
Tests — Settings loading and logging configuration.

Run:
  pytest tests/test_settings.py -v
"""
import pytest
import structlog

from config.log_setup import configure_logging
import config.settings as settings_module
from config.settings import QueueConfig, Settings, load_settings


class TestQueueConfig:

    def test_defaults(self):
        cfg = QueueConfig()
        assert cfg.backend == "redis"
        assert cfg.worker_concurrency == 5
        assert cfg.max_attempts == 3
        assert cfg.retry_backoff_base == 60
        assert cfg.completed_retention_seconds == 7 * 24 * 3600
        assert cfg.completed_retention_count == 1000
        assert cfg.failed_retention_seconds == 30 * 24 * 3600

    def test_unresolved_url_is_not_configured(self):
        assert not QueueConfig(redis_url="${REDIS_URL}").redis_configured
        assert not QueueConfig(redis_url="").redis_configured
        assert QueueConfig(redis_url="redis://cache:6379/0").redis_configured


class TestLoadSettings:

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        monkeypatch.setenv("PLATFORM_API_TOKEN", "secret")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "queue:\n"
            "  redis_url: ${REDIS_URL}\n"
            "  worker_concurrency: 8\n"
            "backend:\n"
            "  base_url: https://platform.test\n"
            "  auth_credentials:\n"
            "    token: ${PLATFORM_API_TOKEN}\n"
            "  endpoints:\n"
            "    get_prospect: /v2/prospects/{id}\n"
            "logging:\n"
            "  json: false\n"
            "  level: debug\n"
        )
        settings = load_settings(str(path))

        assert settings.queue.redis_url == "redis://cache:6379/1"
        assert settings.queue.redis_configured
        assert settings.queue.worker_concurrency == 8
        assert settings.queue.max_attempts == 3
        assert settings.backend.auth_credentials == {"token": "secret"}
        assert settings.backend.endpoints["get_prospect"] == "/v2/prospects/{id}"
        assert settings.backend.endpoints["get_investor"] == "/investors/{id}"
        assert settings.logging.json is False
        assert settings.logging.level == "DEBUG"

    def test_missing_env_leaves_queue_unconfigured(self, tmp_path, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("queue:\n  backend: redis\n  redis_url: ${REDIS_URL}\n")
        assert load_settings(str(path)).queue.redis_configured is False

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("app_name: Test Notify\nqueue:\n  backend: memory\n")
        monkeypatch.setenv("NOTIFY_CONFIG", str(path))
        settings = load_settings()
        assert settings.app_name == "Test Notify"
        assert settings.queue.backend == "memory"

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.queue.key_prefix == "notify"

    def test_each_load_returns_a_fresh_object(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("queue:\n  backend: memory\n")
        first = load_settings(str(path))
        first.queue.backend = "redis"
        second = load_settings(str(path))

        assert second is not first
        assert second.queue.backend == "memory"
        # nothing is cached on the module between loads
        assert not any(isinstance(v, Settings) for v in vars(settings_module).values())


class TestLogging:

    @pytest.mark.parametrize("json_logs", [True, False])
    def test_configure(self, json_logs, capsys):
        configure_logging(json_logs=json_logs, level="INFO")
        try:
            structlog.get_logger().info("notification_job", job_id="job_1", status="started")
            out = capsys.readouterr().out
            assert "notification_job" in out
            assert "job_1" in out
        finally:
            structlog.reset_defaults()
