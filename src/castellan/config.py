"""Configuration management for Castellan using pydantic-settings."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class ServerConfig(BaseModel):
    """Downstream WebSocket and HTTP listener configuration."""

    host: str = Field(default="0.0.0.0", description="Interface the listeners bind to")
    ws_port: int = Field(default=3002, description="WebSocket port overlays connect to")
    http_port: int = Field(default=3001, description="HTTP API port")
    outbox_size: int = Field(default=256, ge=1, le=10000, description="Queued frames per client before drops")


class StreamerbotConfig(BaseModel):
    """Upstream Streamer.bot WebSocket server configuration."""

    enabled: bool = Field(default=True, description="Connect to Streamer.bot at startup")
    host: str = Field(default="127.0.0.1", description="Streamer.bot WebSocket server host")
    port: int = Field(default=8080, description="Streamer.bot WebSocket server port")
    endpoint: str = Field(default="/", description="Streamer.bot WebSocket server endpoint")
    password: str | None = Field(default=None, description="Streamer.bot WebSocket server password")
    hello_timeout: float = Field(default=5.0, ge=0.5, le=60.0, description="Seconds to wait for the Hello frame")
    reconnect_floor: float = Field(default=1.0, gt=0, description="First reconnect delay in seconds")
    reconnect_cap_factor: int = Field(default=30, ge=1, description="Reconnect delay ceiling as a multiple of floor")

    @property
    def url(self) -> str:
        endpoint = self.endpoint if self.endpoint.startswith("/") else f"/{self.endpoint}"
        return f"ws://{self.host}:{self.port}{endpoint}"


class GoalsConfig(BaseModel):
    """Goal counters persistence and defaults."""

    state_file: str = Field(default="./goals-config.json", description="JSON file holding the goal counters")
    followers_target: int = Field(default=1000, ge=0, description="Default followers target")
    subscribers_target: int = Field(default=50, ge=0, description="Default subscribers target")


class OverlayConfig(BaseModel):
    """Headless overlay consumer configuration."""

    url: str = Field(default="ws://localhost:3002", description="Castellan WebSocket URL")
    reconnect_floor: float = Field(default=1.0, gt=0, description="First reconnect delay in seconds")
    reconnect_cap_factor: int = Field(default=30, ge=1, description="Reconnect delay ceiling as a multiple of floor")
    alert_duration: float = Field(default=5.0, gt=0, description="Seconds each alert stays on screen")
    chat_history: int = Field(default=50, ge=1, le=1000, description="Chat messages kept by the chat page")


class CastellanConfig(BaseSettings):
    """Main Castellan configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CASTELLAN_",
        env_nested_delimiter="__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = Field(default="castellan", description="Service name for logging")

    server: ServerConfig = Field(default_factory=ServerConfig)
    streamerbot: StreamerbotConfig = Field(default_factory=StreamerbotConfig)
    goals: GoalsConfig = Field(default_factory=GoalsConfig)
    overlay: OverlayConfig = Field(default_factory=OverlayConfig)

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$", description="Logging level")
    json_logs: bool = Field(default=True, description="Enable JSON structured logging")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            list[str]: List of validation error messages, empty if valid
        """
        errors = []

        if not (1024 <= self.server.ws_port <= 65535):
            errors.append(f"WebSocket port {self.server.ws_port} is out of valid range (1024-65535)")
        if not (1024 <= self.server.http_port <= 65535):
            errors.append(f"HTTP port {self.server.http_port} is out of valid range (1024-65535)")
        if self.server.ws_port == self.server.http_port:
            errors.append(f"WebSocket port and HTTP port cannot be the same ({self.server.ws_port})")

        if not (1 <= self.streamerbot.port <= 65535):
            errors.append(f"Streamer.bot port {self.streamerbot.port} is out of valid range (1-65535)")
        if not self.streamerbot.host:
            errors.append("Streamer.bot host cannot be empty")

        if not self.goals.state_file:
            errors.append("Goals state file path cannot be empty")

        if not self.overlay.url.startswith(("ws://", "wss://")):
            errors.append(f"Overlay URL must be a ws:// or wss:// URL, got '{self.overlay.url}'")

        return errors

    def ensure_valid(self) -> "CastellanConfig":
        errors = self.validate()
        if errors:
            raise ConfigurationError(errors)
        return self


def get_config() -> CastellanConfig:
    """Load configuration from environment and .env."""
    return CastellanConfig()
