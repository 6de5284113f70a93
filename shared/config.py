"""
Shared configuration management for the Platform API.

Every section reads its values from environment variables (or a local
``.env`` file). Empty variables are ignored, and a malformed value falls back
to the field default with a warning instead of aborting startup.
"""

import re
from typing import Annotated, Any, Union

from pydantic import BaseModel, BeforeValidator, Field, SecretStr, ValidationInfo, ValidatorFunctionWrapHandler, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.logging import get_logger

logger = get_logger(__name__)

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigurationError(ValueError):
    """Raised when the loaded configuration cannot be used."""


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration such as ``"1m30s"`` or ``"250ms"`` into seconds.

    Bare numbers are taken as seconds. Negative durations are rejected.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            position = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != position:
                    raise ValueError(f"invalid duration: {value!r}")
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                position = match.end()
            if position == 0 or position != len(text):
                raise ValueError(f"invalid duration: {value!r}")
    if seconds < 0:
        raise ValueError(f"negative duration: {value!r}")
    return seconds


Duration = Annotated[float, BeforeValidator(parse_duration)]


class _EnvSection(BaseSettings):
    """Base for configuration sections read from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def _fallback_to_default(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except PydanticValidationError:
            default = cls.model_fields[info.field_name].default
            logger.warning(
                "Invalid configuration value, falling back to default",
                field=info.field_name,
                value=str(value),
                default=str(default),
            )
            return default


class ServerConfig(_EnvSection):
    """HTTP server settings."""

    port: int = Field(default=8000, validation_alias="PORT")
    addr: str = Field(default="0.0.0.0", validation_alias="ADDR")
    read_timeout: Duration = Field(default=15.0, validation_alias="READ_TIMEOUT")
    write_timeout: Duration = Field(default=15.0, validation_alias="WRITE_TIMEOUT")
    idle_timeout: Duration = Field(default=60.0, validation_alias="IDLE_TIMEOUT")
    max_header_bytes: int = Field(default=1 << 20, validation_alias="MAX_HEADER_BYTES")


class ProvisioningServiceConfig(_EnvSection):
    """Connection settings for the downstream provisioning service (gRPC)."""

    host: str = Field(default="localhost", validation_alias="PROVISIONING_HOST")
    port: int = Field(default=50051, validation_alias="PROVISIONING_PORT")

    # Connection settings
    max_connections: int = Field(default=100, validation_alias="PROVISIONING_MAX_CONN")
    connection_timeout: Duration = Field(default=5.0, validation_alias="PROVISIONING_CONN_TIMEOUT")
    request_timeout: Duration = Field(default=30.0, validation_alias="PROVISIONING_REQUEST_TIMEOUT")

    # Retry policy
    max_retries: int = Field(default=3, validation_alias="PROVISIONING_MAX_RETRIES")
    initial_backoff: Duration = Field(default=0.1, validation_alias="PROVISIONING_INITIAL_BACKOFF")
    max_backoff: Duration = Field(default=10.0, validation_alias="PROVISIONING_MAX_BACKOFF")

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"


class ObservabilityConfig(_EnvSection):
    """Logging, tracing and metrics toggles."""

    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # Tracing (OpenTelemetry)
    tracing_enabled: bool = Field(default=False, validation_alias="TRACING_ENABLED")
    tracing_service_name: str = Field(default="platform-api", validation_alias="TRACING_SERVICE_NAME")
    tracing_endpoint: str = Field(default="http://localhost:4317", validation_alias="TRACING_ENDPOINT")

    # Metrics
    metrics_enabled: bool = Field(default=True, validation_alias="METRICS_ENABLED")
    metrics_port: int = Field(default=9090, validation_alias="METRICS_PORT")


class AuthConfig(_EnvSection):
    """OIDC provider settings."""

    enabled: bool = Field(default=False, validation_alias="AUTH_ENABLED")
    issuer_url: str = Field(default="", validation_alias="OIDC_ISSUER_URL")
    client_id: str = Field(default="", validation_alias="OIDC_CLIENT_ID")
    client_secret: SecretStr = Field(default=SecretStr(""), validation_alias="OIDC_CLIENT_SECRET")

    # JWT validation
    jwt_audience: str = Field(default="platform-api", validation_alias="JWT_AUDIENCE")
    token_cache_ttl: Duration = Field(default=300.0, validation_alias="TOKEN_CACHE_TTL")


class Config(BaseModel):
    """Complete application configuration."""

    server: ServerConfig
    provisioning_service: ProvisioningServiceConfig
    observability: ObservabilityConfig
    auth: AuthConfig

    def validate_settings(self) -> None:
        """Reject configurations the service cannot start with."""
        if not 1 <= self.server.port <= 65535:
            raise ConfigurationError(f"invalid server port: {self.server.port}")

        if not self.provisioning_service.host.strip():
            raise ConfigurationError("provisioning service host is required")


def load_config() -> Config:
    """Load configuration from environment variables with defaults."""
    return Config(
        server=ServerConfig(),
        provisioning_service=ProvisioningServiceConfig(),
        observability=ObservabilityConfig(),
        auth=AuthConfig(),
    )
