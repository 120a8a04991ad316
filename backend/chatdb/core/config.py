"""Application configuration loaded from the environment."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import TYPE_CHECKING, Optional

from dotenv import load_dotenv

if TYPE_CHECKING:
    from ..llm.base import LLMConfig

load_dotenv(override=True)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y")


@dataclass(frozen=True)
class ConnectionConfig:
    """Configuration for the MySQL connection."""
    host: str
    database: str
    user: str = ""
    password: str = ""
    port: int = 3306
    driver: str = "MySQL ODBC 8.0 Unicode Driver"
    use_ssl: bool = False
    timeout: int = 30

    @property
    def connection_string(self) -> str:
        """Generate pyodbc connection string."""
        ssl_mode = "REQUIRED" if self.use_ssl else "PREFERRED"
        return (
            f"DRIVER={{{self.driver}}};"
            f"SERVER={self.host};"
            f"PORT={self.port};"
            f"DATABASE={self.database};"
            f"UID={self.user};"
            f"PWD={self.password};"
            f"SSLMODE={ssl_mode};"
        )

    @property
    def masked_connection_string(self) -> str:
        """Connection string safe for logs."""
        return f"mysql://{self.user}:****@{self.host}:{self.port}/{self.database}"

    @property
    def connection_id(self) -> str:
        """Stable key used to persist schema metadata for this connection."""
        return f"{self.host}_{self.port}_{self.database}"

    @property
    def is_valid(self) -> bool:
        return bool(self.host and self.user and self.database) and 0 < self.port <= 65535


@dataclass(frozen=True)
class Settings:
    """Application settings."""
    # LLM
    llm_provider: str
    llm_api_key: str
    llm_model: str
    llm_endpoint: str
    llm_temperature: float
    llm_max_tokens: int
    request_timeout: int

    # Database
    connection: ConnectionConfig
    max_rows: int

    # Chat
    max_context_messages: int
    max_history_messages: int
    sample_data_limit: int

    # Paths
    data_dir: str
    audit_log_dir: str
    masking_patterns_path: str

    # HTTP
    cors_origins: tuple[str, ...]

    def llm_config(self) -> "LLMConfig":
        """Build the LLM configuration described by these settings."""
        from ..llm.base import LLMConfig, LLMProvider

        provider = LLMProvider(self.llm_provider)
        return LLMConfig(
            provider=provider,
            api_key=self.llm_api_key or None,
            model=self.llm_model or provider.default_models[0],
            endpoint=self.llm_endpoint or None,
            temperature=self.llm_temperature,
            max_tokens=self.llm_max_tokens,
            timeout=self.request_timeout,
        )


def get_settings() -> Settings:
    """Load settings from environment variables."""
    base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
    default_data_dir = os.path.join(base_dir, "data")

    connection = ConnectionConfig(
        host=os.getenv("MYSQL_HOST", "localhost"),
        port=int(os.getenv("MYSQL_PORT", "3306")),
        user=os.getenv("MYSQL_USER", ""),
        password=os.getenv("MYSQL_PASSWORD", ""),
        database=os.getenv("MYSQL_DATABASE", ""),
        driver=os.getenv("MYSQL_DRIVER", "MySQL ODBC 8.0 Unicode Driver"),
        use_ssl=_env_bool("MYSQL_SSL", "no"),
        timeout=int(os.getenv("MYSQL_TIMEOUT", "30")),
    )

    data_dir = os.getenv("DATA_DIR", default_data_dir)
    return Settings(
        # LLM
        llm_provider=os.getenv("LLM_PROVIDER", "ollama").lower(),
        llm_api_key=os.getenv("LLM_API_KEY", ""),
        llm_model=os.getenv("LLM_MODEL", ""),
        llm_endpoint=os.getenv("LLM_ENDPOINT", ""),
        llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
        llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4096")),
        request_timeout=int(os.getenv("REQUEST_TIMEOUT", "90")),

        # Database
        connection=connection,
        max_rows=int(os.getenv("MAX_ROWS", "500")),

        # Chat
        max_context_messages=int(os.getenv("MAX_CONTEXT_MESSAGES", "10")),
        max_history_messages=int(os.getenv("MAX_HISTORY_MESSAGES", "5")),
        sample_data_limit=int(os.getenv("SAMPLE_DATA_LIMIT", "5")),

        # Paths
        data_dir=data_dir,
        audit_log_dir=os.getenv("AUDIT_LOG_DIR", os.path.join(data_dir, "audit_logs")),
        masking_patterns_path=os.getenv("MASKING_PATTERNS_PATH", ""),

        # HTTP
        cors_origins=tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
            if origin.strip()
        ),
    )


# Singleton for caching settings
_settings_cache: Optional[Settings] = None


def get_cached_settings() -> Settings:
    """Get cached settings (loads once)."""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = get_settings()
    return _settings_cache


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    global _settings_cache
    _settings_cache = None
