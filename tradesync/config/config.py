"""
Configuration models for the broker synchronization service.

Uses Pydantic for validation and type safety.
"""
from typing import Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml
from pathlib import Path
import os
import re

from tradesync.constants import (
    CLIENT_BASE_URL_TEMPLATE,
    DEALS_WINDOW_DAYS,
    DEFAULT_API_TIMEOUT,
    DEFAULT_REGION,
    PROVISIONING_BASE_URL,
)
from tradesync.exceptions import ConfigurationError

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')


class GatewayConfig(BaseSettings):
    """Brokerage gateway (MetaApi) configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    # Loaded from METAAPI_TOKEN via yaml expansion; None = gateway not configured
    api_token: Optional[str] = None
    provisioning_url: str = PROVISIONING_BASE_URL
    client_url_template: str = CLIENT_BASE_URL_TEMPLATE
    default_region: str = DEFAULT_REGION

    # Mandatory timeout for every gateway call
    request_timeout_seconds: float = Field(default=DEFAULT_API_TIMEOUT, gt=0.0, le=120.0)

    deploy_on_provision: bool = True
    magic: int = Field(default=0, ge=0)

    @field_validator("api_token", mode="before")
    @classmethod
    def drop_unexpanded_token(cls, v):
        # "${METAAPI_TOKEN}" left in place means the variable was not set
        if v is None:
            return None
        v = str(v).strip()
        if not v or _ENV_PATTERN.fullmatch(v):
            return None
        return v

    @field_validator("client_url_template")
    @classmethod
    def validate_client_template(cls, v):
        if "{region}" not in v:
            raise ValueError("client_url_template must contain '{region}'")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token)


class SyncConfig(BaseSettings):
    """Synchronization configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    deals_window_days: int = Field(default=DEALS_WINDOW_DAYS, ge=1, le=365)
    sync_on_connect: bool = Field(default=False, description="Run one sync right after a successful connect")


class DataConfig(BaseSettings):
    """Storage configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    database_url: Optional[str] = None


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = "logs/tradesync.log"


class ApiConfig(BaseSettings):
    """HTTP surface configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    # Identity is resolved upstream; this header carries the trusted user id
    user_header: str = "X-User-Id"


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    environment: Literal["dev", "test", "prod"] = "dev"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")
        
        with open(yaml_path, "r") as f:
            raw_content = f.read()
            
        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found
            
        expanded_content = _ENV_PATTERN.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}
            
        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        data = config_dict.setdefault("data", {}) or {}
        if not data.get("database_url") or _ENV_PATTERN.fullmatch(str(data["database_url"])):
            data["database_url"] = os.getenv("DATABASE_URL")
        config_dict["data"] = data

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Perform additional validation checks."""
        if self.environment == "prod":
            if not self.data.database_url:
                raise ConfigurationError("DATABASE_URL must be set in production")
            if not self.data.database_url.startswith("postgresql"):
                raise ConfigurationError("Production requires a postgresql:// DATABASE_URL")


def load_config(config_path: str | None = None) -> Config:
    """
    Load and validate configuration.
    
    Args:
        config_path: Path to config.yaml file. If None, uses tradesync/config/config.yaml
    
    Returns:
        Validated Config object
    
    Raises:
        FileNotFoundError: If config file not found
        ConfigurationError: If production requirements are not met
    """
    from tradesync.config.dotenv_loader import load_dotenv_files

    load_dotenv_files()

    if config_path is None:
        config_path = Path(__file__).parent / "config.yaml"
    
    config = Config.from_yaml(config_path)
    config.validate_config()
    
    return config


_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide Config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config(os.getenv("TRADESYNC_CONFIG"))
    return _config


def reset_config() -> None:
    """Drop the cached Config (tests)."""
    global _config
    _config = None
