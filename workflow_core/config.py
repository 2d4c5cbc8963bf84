"""Configuration management for the workflow core service."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .core.exceptions import ConfigurationError
from .models.core import ExecutionConfig, ValidationConfig

ENV_PREFIX = "WORKFLOW_CORE_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Workflow Core", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Execution engine settings
    node_timeout: Optional[float] = Field(
        default=None,
        description="Per-node attempt timeout in seconds; unset disables it"
    )
    node_max_retries: int = Field(
        default=0,
        description="Extra attempts for a failing node"
    )

    # Validation settings
    max_chain_depth: int = Field(
        default=10,
        description="Chain length above which a node is reported"
    )
    strict_validation: bool = Field(
        default=False,
        description="Report validation warnings as errors"
    )
    check_ssrf: bool = Field(
        default=True,
        description="Reject HTTP request URLs pointing at private networks"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Performance monitoring settings
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )
    enable_performance_monitoring: bool = Field(
        default=True,
        description="Enable performance monitoring middleware"
    )

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST"],
        description="CORS allowed methods"
    )

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('node_timeout')
    @classmethod
    def validate_node_timeout(cls, v):
        """Validate timeout value."""
        if v is not None and v <= 0:
            raise ValueError("Node timeout must be a positive number of seconds")
        return v

    @field_validator('node_max_retries')
    @classmethod
    def validate_node_max_retries(cls, v):
        """Validate retry count."""
        if v < 0:
            raise ValueError("Node max retries cannot be negative")
        return v

    @field_validator('max_chain_depth')
    @classmethod
    def validate_max_chain_depth(cls, v):
        """Validate chain depth."""
        if v < 1:
            raise ValueError("Max chain depth must be at least 1")
        return v

    def get_execution_config(self) -> ExecutionConfig:
        """Build the execution engine limits from these settings."""
        return ExecutionConfig(timeout=self.node_timeout, max_retries=self.node_max_retries)

    def get_validation_config(self) -> ValidationConfig:
        """Build the validator switches from these settings."""
        return ValidationConfig(
            check_ssrf=self.check_ssrf,
            strict_mode=self.strict_validation,
            max_chain_depth=self.max_chain_depth
        )

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "Workflow Core"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            node_timeout=get_env("NODE_TIMEOUT", None, float),
            node_max_retries=get_env("NODE_MAX_RETRIES", 0, int),
            max_chain_depth=get_env("MAX_CHAIN_DEPTH", 10, int),
            strict_validation=get_env("STRICT_VALIDATION", False, bool),
            check_ssrf=get_env("CHECK_SSRF", True, bool),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            log_file=get_env("LOG_FILE", None),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            enable_performance_monitoring=get_env("ENABLE_PERFORMANCE_MONITORING", True, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST"], list)
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
    """Load configuration from a .env file and environment variables."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
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

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.node_timeout is not None and config.node_max_retries > 0:
        worst_case = config.node_timeout * (config.node_max_retries + 1)
        if worst_case > 3600:
            errors.append(f"Node timeout with retries allows a single node to run for {worst_case:.0f}s")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        log_level=LogLevel.WARNING,
        node_timeout=10,
        enable_performance_monitoring=False
    )
