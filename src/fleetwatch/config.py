"""
Configuration for the event engine.

All configuration is loaded from environment variables with FLEETWATCH_
prefixes. The defaults are the limits the engine is designed around; the
bounds (query caps, trace depths, truncation budgets) keep every request
to a fixed amount of work.
"""

import os
from dataclasses import dataclass, field


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class StoreConfig:
    """Configuration for the SQLite event store."""
    db_path: str = "./events.sqlite"
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> "StoreConfig":
        return cls(
            db_path=os.getenv("FLEETWATCH_DB_PATH", "./events.sqlite"),
            busy_timeout_ms=int(os.getenv("FLEETWATCH_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass
class RedactionConfig:
    """Byte budgets for captured process output."""
    max_stdout_bytes: int = 4096
    max_stderr_bytes: int = 2048

    @classmethod
    def from_env(cls) -> "RedactionConfig":
        return cls(
            max_stdout_bytes=int(os.getenv("FLEETWATCH_MAX_STDOUT_BYTES", "4096")),
            max_stderr_bytes=int(os.getenv("FLEETWATCH_MAX_STDERR_BYTES", "2048")),
        )


@dataclass
class DetectionConfig:
    """Thresholds for the pattern detector rules."""
    timeout_threshold_ms: int = 30_000
    failure_window_minutes: int = 5
    failure_threshold: int = 3

    @classmethod
    def from_env(cls) -> "DetectionConfig":
        return cls(
            timeout_threshold_ms=int(os.getenv("FLEETWATCH_TIMEOUT_THRESHOLD_MS", "30000")),
            failure_window_minutes=int(os.getenv("FLEETWATCH_FAILURE_WINDOW_MINUTES", "5")),
            failure_threshold=int(os.getenv("FLEETWATCH_FAILURE_THRESHOLD", "3")),
        )


@dataclass
class SessionConfig:
    """
    Configuration for session boundary detection.

    A session is considered ended once no event has been seen for
    inactivity_timeout_s; the sweep runs every sweep_interval_s.
    """
    inactivity_timeout_s: float = 600.0
    sweep_interval_s: float = 60.0

    @classmethod
    def from_env(cls) -> "SessionConfig":
        return cls(
            inactivity_timeout_s=float(os.getenv("FLEETWATCH_SESSION_TIMEOUT_S", "600")),
            sweep_interval_s=float(os.getenv("FLEETWATCH_SESSION_SWEEP_INTERVAL_S", "60")),
        )


@dataclass
class TraceConfig:
    """Bounds for trace reconstruction and context-window queries."""
    max_ancestor_depth: int = 25
    max_descendant_depth: int = 10
    descendant_window_minutes: int = 30
    context_window_sec: int = 300
    context_window_min_sec: int = 60
    context_window_max_sec: int = 600
    context_limit: int = 200

    @classmethod
    def from_env(cls) -> "TraceConfig":
        return cls(
            max_ancestor_depth=int(os.getenv("FLEETWATCH_MAX_ANCESTOR_DEPTH", "25")),
            max_descendant_depth=int(os.getenv("FLEETWATCH_MAX_DESCENDANT_DEPTH", "10")),
            descendant_window_minutes=int(os.getenv("FLEETWATCH_DESCENDANT_WINDOW_MINUTES", "30")),
            context_window_sec=int(os.getenv("FLEETWATCH_CONTEXT_WINDOW_SEC", "300")),
            context_window_min_sec=int(os.getenv("FLEETWATCH_CONTEXT_WINDOW_MIN_SEC", "60")),
            context_window_max_sec=int(os.getenv("FLEETWATCH_CONTEXT_WINDOW_MAX_SEC", "600")),
            context_limit=int(os.getenv("FLEETWATCH_CONTEXT_LIMIT", "200")),
        )


@dataclass
class ServerConfig:
    """Configuration for the HTTP/WebSocket server."""
    host: str = "0.0.0.0"
    port: int = 4000
    snapshot_size: int = 50
    heartbeat_interval_s: float = 30.0
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            host=os.getenv("FLEETWATCH_HOST", "0.0.0.0"),
            port=int(os.getenv("FLEETWATCH_PORT", "4000")),
            snapshot_size=int(os.getenv("FLEETWATCH_SNAPSHOT_SIZE", "50")),
            heartbeat_interval_s=float(os.getenv("FLEETWATCH_HEARTBEAT_INTERVAL_S", "30")),
            cors_origins=_env_list("FLEETWATCH_CORS_ORIGINS", "*"),
        )


@dataclass
class ClientConfig:
    """Configuration for the event emitter client."""
    base_url: str = "http://localhost:4000"
    timeout_s: float = 2.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            base_url=os.getenv("FLEETWATCH_URL", "http://localhost:4000"),
            timeout_s=float(os.getenv("FLEETWATCH_CLIENT_TIMEOUT_S", "2.0")),
        )


@dataclass
class HookConfig:
    """Identity stamped on events forwarded from agent hooks."""
    source_app: str = "claude-agent"
    agent_id: str | None = None
    run_id: str | None = None

    @classmethod
    def from_env(cls) -> "HookConfig":
        source_app = os.getenv("FLEETWATCH_SOURCE", "claude-agent")
        return cls(
            source_app=source_app,
            agent_id=os.getenv("FLEETWATCH_AGENT_ID") or source_app,
            run_id=os.getenv("FLEETWATCH_RUN_ID") or None,
        )


@dataclass
class FleetwatchConfig:
    """Combined configuration for the engine and its server."""
    store: StoreConfig = field(default_factory=StoreConfig)
    redaction: RedactionConfig = field(default_factory=RedactionConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    trace: TraceConfig = field(default_factory=TraceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "FleetwatchConfig":
        """Load all configuration from environment variables."""
        return cls(
            store=StoreConfig.from_env(),
            redaction=RedactionConfig.from_env(),
            detection=DetectionConfig.from_env(),
            sessions=SessionConfig.from_env(),
            trace=TraceConfig.from_env(),
            server=ServerConfig.from_env(),
        )
