"""Tests for environment-driven configuration."""

from fleetwatch.config import ClientConfig, FleetwatchConfig, ServerConfig


class TestConfig:
    """Test defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        for name in ("FLEETWATCH_DB_PATH", "FLEETWATCH_PORT", "FLEETWATCH_TIMEOUT_THRESHOLD_MS"):
            monkeypatch.delenv(name, raising=False)

        config = FleetwatchConfig.from_env()

        assert config.store.db_path == "./events.sqlite"
        assert config.store.busy_timeout_ms == 5000
        assert config.redaction.max_stdout_bytes == 4096
        assert config.redaction.max_stderr_bytes == 2048
        assert config.detection.timeout_threshold_ms == 30_000
        assert config.detection.failure_threshold == 3
        assert config.sessions.inactivity_timeout_s == 600
        assert config.trace.max_ancestor_depth == 25
        assert config.server.port == 4000

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("FLEETWATCH_DB_PATH", "/data/ev.sqlite")
        monkeypatch.setenv("FLEETWATCH_TIMEOUT_THRESHOLD_MS", "1000")
        monkeypatch.setenv("FLEETWATCH_SESSION_TIMEOUT_S", "5")

        config = FleetwatchConfig.from_env()

        assert config.store.db_path == "/data/ev.sqlite"
        assert config.detection.timeout_threshold_ms == 1000
        assert config.sessions.inactivity_timeout_s == 5.0

    def test_cors_list(self, monkeypatch):
        monkeypatch.setenv("FLEETWATCH_CORS_ORIGINS", "http://a.test, http://b.test,")
        assert ServerConfig.from_env().cors_origins == ["http://a.test", "http://b.test"]

    def test_client_url(self, monkeypatch):
        monkeypatch.setenv("FLEETWATCH_URL", "http://obs:9000")
        assert ClientConfig.from_env().base_url == "http://obs:9000"
