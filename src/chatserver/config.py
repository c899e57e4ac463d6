"""Configuration schema for the chat session server.

Defines Pydantic models for loading and validating server configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from chatserver.models import ServerSettings

DEFAULT_ALLOWED_EXTENSIONS = [
    ".jpeg",
    ".jpg",
    ".png",
    ".gif",
    ".mp4",
    ".mov",
    ".avi",
    ".pdf",
    ".doc",
    ".docx",
    ".txt",
]

DEFAULT_ALLOWED_MIMETYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "video/mp4",
    "video/quicktime",
    "video/x-msvideo",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
]


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3000, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(default=200, ge=1, description="Maximum concurrent connections")
    max_frame_bytes: int = Field(
        default=2**20, ge=1024, description="Maximum inbound WebSocket frame size"
    )
    outbox_size: int = Field(
        default=256, ge=10, description="Outbound event buffer size per connection"
    )


class HttpConfig(BaseModel):
    """HTTP side (uploads, health, metrics) configuration."""

    enabled: bool = Field(default=True, description="Serve the HTTP application")
    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3001, ge=1024, le=65535, description="Bind port")


class UploadConfig(BaseModel):
    """Upload service configuration."""

    directory: Path = Field(default=Path("uploads"), description="Storage directory")
    max_size_bytes: int = Field(
        default=100 * 1024 * 1024, ge=1, description="Maximum accepted upload size"
    )
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS),
        description="Accepted file extensions",
    )
    allowed_mimetypes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIMETYPES),
        description="Accepted content types",
    )

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lowercase extensions and make sure each carries a leading dot."""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized

    @field_validator("allowed_mimetypes")
    @classmethod
    def normalize_mimetypes(cls, v: list[str]) -> list[str]:
        """Lowercase content types."""
        return [m.strip().lower() for m in v if m.strip()]


class ChatConfig(BaseModel):
    """Initial server-wide chat settings."""

    allow_history_for_new_users: bool = Field(
        default=True, description="Replay the message log to joining users"
    )
    max_message_length: int = Field(
        default=1000, ge=1, description="Maximum message length after sanitization"
    )
    allow_attachments: bool = Field(default=True, description="Accept message attachments")
    allow_voice_chat: bool = Field(default=True, description="Allow joining voice rooms")
    server_name: str = Field(default="Chat Server", min_length=1, description="Display name")

    def to_settings(self) -> ServerSettings:
        """Build the initial ServerSettings (no owner yet)."""
        return ServerSettings(
            allow_history_for_new_users=self.allow_history_for_new_users,
            max_message_length=self.max_message_length,
            allow_attachments=self.allow_attachments,
            allow_voice_chat=self.allow_voice_chat,
            server_name=self.server_name,
        )


class ServerConfig(BaseModel):
    """Root server configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    uploads: UploadConfig = Field(default_factory=UploadConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the logging level is known."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()
        if level not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return level

    @classmethod
    def from_yaml(cls, path: Path) -> "ServerConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(_apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "ServerConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(_apply_env_overrides({}))


def _apply_env_overrides(data: dict) -> dict:
    """Overlay supported environment variables onto raw config data."""
    import os

    if port := os.getenv("PORT"):
        data.setdefault("websocket", {})["port"] = int(port)

    if http_port := os.getenv("HTTP_PORT"):
        data.setdefault("http", {})["port"] = int(http_port)

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    if server_name := os.getenv("CHAT_SERVER_NAME"):
        data.setdefault("chat", {})["server_name"] = server_name

    if upload_dir := os.getenv("UPLOAD_DIR"):
        data.setdefault("uploads", {})["directory"] = upload_dir

    return data
