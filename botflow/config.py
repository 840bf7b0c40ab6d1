"""Configuration management for the botflow workflow service."""

import os
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class TraceLocale(str, Enum):
    """Language of the human-readable trace lines."""
    PT = "pt"
    EN = "en"


class CustomerReplyMode(str, Enum):
    """What the inbound-message driver sends back to the customer."""
    TRACE = "trace"
    REPLIES = "replies"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Botflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./botflow.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    query_database_url: Optional[str] = Field(
        default=None,
        description="Database used by 'database' nodes; defaults to database_url"
    )

    # Execution settings
    max_concurrent_executions: int = Field(
        default=10,
        description="Maximum number of workflow runs executing at once"
    )
    max_wait_seconds: float = Field(
        default=300.0,
        description="Upper bound applied to the delay of 'wait' nodes"
    )
    trace_locale: TraceLocale = Field(default=TraceLocale.PT, description="Language of trace lines")
    customer_reply_mode: CustomerReplyMode = Field(
        default=CustomerReplyMode.TRACE,
        description="Whether inbound runs send trace lines or customer replies"
    )
    default_workflow_type: str = Field(
        default="atendimento",
        description="Workflow type used when an identity has no bound workflow"
    )

    # External call timeouts, in seconds
    http_timeout: float = Field(default=10.0, description="Timeout for webhook and http nodes")
    ai_timeout: float = Field(default=15.0, description="Timeout for text generation calls")
    query_timeout: float = Field(default=10.0, description="Timeout for database node queries")
    transport_timeout: float = Field(default=10.0, description="Timeout for outbound chat messages")

    # Text generation provider
    cohere_api_key: Optional[str] = Field(default=None, description="Cohere API key")
    cohere_model: str = Field(default="command", description="Cohere generation model")
    cohere_api_url: str = Field(
        default="https://api.cohere.ai/v1/generate",
        description="Cohere generate endpoint"
    )

    # WhatsApp Cloud API
    whatsapp_token: Optional[str] = Field(default=None, description="WhatsApp Cloud API token")
    whatsapp_phone_number_id: Optional[str] = Field(default=None, description="Sender phone number id")
    whatsapp_verify_token: Optional[str] = Field(default=None, description="Webhook verification token")
    whatsapp_api_version: str = Field(default="v18.0", description="Graph API version")
    whatsapp_api_base_url: str = Field(
        default="https://graph.facebook.com",
        description="Graph API base URL"
    )

    # Cache settings
    cache_ttl_seconds: float = Field(default=60.0, description="TTL of cached workflow lookups")
    cache_max_entries: int = Field(default=256, description="Maximum cached workflow lookups")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    structured_logging: bool = Field(default=False, description="Emit JSON log lines")

    # HTTP layer settings
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )
    enable_performance_monitoring: bool = Field(
        default=True,
        description="Enable performance monitoring middleware"
    )
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST", "PUT", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('database_url', 'query_database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if v is None:
            return v
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_concurrent_executions', 'cache_max_entries')
    @classmethod
    def validate_positive_count(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator('http_timeout', 'ai_timeout', 'query_timeout', 'transport_timeout', 'max_wait_seconds')
    @classmethod
    def validate_timeouts(cls, v):
        """Validate timeout values."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @property
    def database_type(self) -> DatabaseType:
        """Get the database type from the URL."""
        scheme = self.database_url.split('://')[0].lower()
        if scheme == 'sqlite':
            return DatabaseType.SQLITE
        elif scheme.startswith('postgresql'):
            return DatabaseType.POSTGRESQL
        elif scheme.startswith('mysql'):
            return DatabaseType.MYSQL
        else:
            raise ValueError(f"Unknown database type: {scheme}")

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_type == DatabaseType.SQLITE

    @property
    def effective_query_database_url(self) -> str:
        return self.query_database_url or self.database_url

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from BOTFLOW_* environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"BOTFLOW_{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "Botflow"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./botflow.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            query_database_url=get_env("QUERY_DATABASE_URL", None),
            max_concurrent_executions=get_env("MAX_CONCURRENT_EXECUTIONS", 10, int),
            max_wait_seconds=get_env("MAX_WAIT_SECONDS", 300.0, float),
            trace_locale=TraceLocale(get_env("TRACE_LOCALE", "pt")),
            customer_reply_mode=CustomerReplyMode(get_env("CUSTOMER_REPLY_MODE", "trace")),
            default_workflow_type=get_env("DEFAULT_WORKFLOW_TYPE", "atendimento"),
            http_timeout=get_env("HTTP_TIMEOUT", 10.0, float),
            ai_timeout=get_env("AI_TIMEOUT", 15.0, float),
            query_timeout=get_env("QUERY_TIMEOUT", 10.0, float),
            transport_timeout=get_env("TRANSPORT_TIMEOUT", 10.0, float),
            # Provider credentials keep the names the hosting platform exports.
            cohere_api_key=get_env("COHERE_API_KEY", os.getenv("COHERE_API_KEY")),
            cohere_model=get_env("COHERE_MODEL", os.getenv("COHERE_MODEL", "command")),
            cohere_api_url=get_env("COHERE_API_URL", "https://api.cohere.ai/v1/generate"),
            whatsapp_token=get_env("WHATSAPP_TOKEN", os.getenv("WHATSAPP_TOKEN")),
            whatsapp_phone_number_id=get_env("WHATSAPP_PHONE_NUMBER_ID", os.getenv("WHATSAPP_PHONE_NUMBER_ID")),
            whatsapp_verify_token=get_env("WHATSAPP_VERIFY_TOKEN", os.getenv("WHATSAPP_VERIFY_TOKEN")),
            whatsapp_api_version=get_env("WHATSAPP_API_VERSION", "v18.0"),
            whatsapp_api_base_url=get_env("WHATSAPP_API_BASE_URL", "https://graph.facebook.com"),
            cache_ttl_seconds=get_env("CACHE_TTL_SECONDS", 60.0, float),
            cache_max_entries=get_env("CACHE_MAX_ENTRIES", 256, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO")),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            structured_logging=get_env("STRUCTURED_LOGGING", False, bool),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            enable_performance_monitoring=get_env("ENABLE_PERFORMANCE_MONITORING", True, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PUT", "DELETE"], list)
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and the environment."""
    global _config
    from dotenv import load_dotenv

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings that depend on the environment."""
    errors = []

    if config.is_sqlite:
        db_path = config.database_url.replace("sqlite:///", "")
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.whatsapp_token and not config.whatsapp_phone_number_id:
        errors.append("WHATSAPP_PHONE_NUMBER_ID is required when WHATSAPP_TOKEN is set")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True,
        enable_performance_monitoring=True
    )


def get_production_config() -> AppConfig:
    """Get production configuration."""
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        database_echo=False,
        enable_performance_monitoring=True,
        structured_logging=True,
        cors_origins=[]
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        max_wait_seconds=5.0,
        http_timeout=2.0,
        ai_timeout=2.0,
        transport_timeout=2.0,
        cache_ttl_seconds=1.0
    )
