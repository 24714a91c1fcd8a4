"""
Configuration Management Module

Centralized, environment-driven configuration using pydantic-settings.
Every field can be overridden with a WORKFLOWS_<FIELD> environment variable
or a .env file.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class WorkflowConfig(BaseSettings):
    """Workflow engine configuration"""

    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    sqlite_path: str = "workflows.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095
    api_title: str = "Entity Workflows API"

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Engine behaviour
    default_priority: str = "medium"
    max_save_retries: int = 3
    validate_entities: bool = False
    validate_actors: bool = False
    seed_builtin_templates: bool = True

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "WORKFLOWS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = WorkflowConfig()


def get_config() -> WorkflowConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> WorkflowConfig:
    """Reload configuration from environment"""
    global config
    config = WorkflowConfig()
    return config
