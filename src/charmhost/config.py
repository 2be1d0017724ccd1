"""Configuration for the charmhost federated microblogging backend."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class InstanceConfig(BaseSettings):
    """Identity of this instance."""

    model_config = SettingsConfigDict(env_prefix="INSTANCE_")

    hostname: str = Field(
        default="charmhost.social",
        description="Bare hostname of this instance (e.g., charmhost.social)"
    )
    base_url: str = Field(
        default="https://charmhost.social",
        description="Public URL of this instance (must be HTTPS for federation)"
    )
    name: str = Field(
        default="Charmhost",
        description="Human-readable instance name"
    )

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        """Normalize hostname to lowercase without scheme or trailing slash."""
        v = v.strip().lower()
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix):]
        return v.rstrip("/")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base URL uses HTTPS (required for ActivityPub)."""
        if v and not v.startswith("https://"):
            # Allow http for development
            import warnings
            warnings.warn("Instance base URL should use HTTPS for production")
        return v.rstrip("/")


class FederationConfig(BaseSettings):
    """Outbound federation settings."""

    model_config = SettingsConfigDict(env_prefix="FEDERATION_")

    fetch_timeout_seconds: float = Field(
        default=10.0,
        ge=1,
        le=120,
        description="Total timeout for outbound WebFinger/ActivityPub fetches"
    )
    user_agent: str = Field(
        default="Charmhost/0.1",
        description="User-Agent header sent on outbound requests"
    )


class SecurityConfig(BaseSettings):
    """Credential handling settings."""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    bcrypt_rounds: int = Field(
        default=12,
        ge=4,
        le=16,
        description="bcrypt work factor for password hashes"
    )


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = Field(
        default="sqlite+aiosqlite:///charmhost.db",
        description="SQLAlchemy database URL"
    )


class ServerConfig(BaseSettings):
    """HTTP server bind settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(
        default="0.0.0.0",
        description="Host address for HTTP server"
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port for HTTP server"
    )


class AppConfig(BaseSettings):
    """Main configuration combining all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-configs
    instance: InstanceConfig = Field(default_factory=InstanceConfig)
    federation: FederationConfig = Field(default_factory=FederationConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @classmethod
    def from_yaml(cls, path: str) -> "AppConfig":
        """Load configuration from YAML file."""
        import yaml
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})


def load_config() -> AppConfig:
    """Load configuration from environment and .env file."""
    return AppConfig()
