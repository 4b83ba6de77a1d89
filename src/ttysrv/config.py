"""
ttysrv Configuration
====================

This module handles configuration loading for the tap server.

Configuration Sources (in order of precedence):
    1. Command-line overrides (highest priority)
    2. Environment variables
    3. YAML config file
    4. Default values (lowest priority)

Environment Variable Mapping:
    TTYSRV_DEVICE          -> serial.device
    TTYSRV_BAUD            -> serial.baud
    TTYSRV_LOG_FILE        -> log_file.path
    TTYSRV_HOST            -> server.host
    TTYSRV_PORT            -> server.port
    TTYSRV_QUEUE_SIZE      -> hub.subscriber_queue_size
    TTYSRV_OVERFLOW_POLICY -> hub.overflow_policy
    TTYSRV_STATUS_PORT     -> status.port (also enables the status API)
    TTYSRV_LOG_LEVEL       -> logging.level

Example:
    from ttysrv.config import load_config
    
    settings = load_config("ttysrv.yaml", overrides={"server": {"port": 7000}})
    print(settings.serial.device)
"""

import os
import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from ttysrv.errors import ConfigError
from ttysrv.stream.buffer import OverflowPolicy


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class SerialConfig(BaseModel):
    """Upstream serial device configuration."""
    
    device: str = Field(default="/dev/ttyUSB0", description="Serial device to listen on")
    baud: int = Field(default=115200, gt=0, description="Baud rate")
    read_size: int = Field(
        default=64,
        ge=1,
        description="Maximum bytes per frame read from the device",
    )
    read_timeout: float = Field(
        default=0.5,
        gt=0,
        description="Per-read timeout in seconds (bounds shutdown latency)",
    )


class LogFileConfig(BaseModel):
    """Capture log configuration."""
    
    path: str = Field(default="ttysrv.log", description="Log file used to capture serial output")
    append: bool = Field(default=True, description="Append to an existing file instead of truncating")
    echo: bool = Field(default=True, description="Echo captured output to stdout")


class ServerConfig(BaseModel):
    """TCP tap server configuration."""
    
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=666, ge=0, le=65535, description="Port to serve the stream on (0 = ephemeral)")
    drain_timeout: float = Field(
        default=5.0,
        ge=0,
        description="Seconds clients get to flush their backlog on shutdown",
    )


class HubConfig(BaseModel):
    """Broadcast hub configuration."""
    
    subscriber_queue_size: int = Field(
        default=256,
        ge=1,
        description="Frames buffered per subscriber",
    )
    overflow_policy: OverflowPolicy = Field(
        default=OverflowPolicy.DROP_OLDEST,
        description="block, drop_oldest, drop_newest or disconnect",
    )
    delivery_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds a blocked delivery may wait before the subscriber is dropped (block only)",
    )


class StatusConfig(BaseModel):
    """HTTP status API configuration."""
    
    enabled: bool = Field(default=False, description="Serve the status API")
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8666, ge=0, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for ttysrv.
    
    Loads configuration from YAML file, environment variables and
    command-line overrides.
    """
    
    serial: SerialConfig = Field(default_factory=SerialConfig)
    log_file: LogFileConfig = Field(default_factory=LogFileConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    hub: HubConfig = Field(default_factory=HubConfig)
    status: StatusConfig = Field(default_factory=StatusConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Settings:
    """
    Load configuration from YAML file, environment and overrides.
    
    Priority (highest to lowest):
        1. overrides (command line)
        2. Environment variables
        3. YAML config file
        4. Default values
    
    Args:
        config_path: Path to a YAML file. If None, searches the working
            directory for ttysrv.yaml / config.yaml.
        overrides: Nested dict of section -> field -> value
    
    Returns:
        Settings: Loaded configuration
    
    Raises:
        ConfigError: If the file is unreadable or values are invalid
    """
    if config_path is None:
        for path in (Path("ttysrv.yaml"), Path("ttysrv.yml"), Path("config.yaml")):
            if path.exists():
                config_path = str(path)
                break
    elif not Path(config_path).exists():
        raise ConfigError(f"Config file not found: {config_path}")
    
    config_data: Dict[str, Any] = {}
    if config_path:
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {config_path}: {e}") from e
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config {config_path} must be a mapping")
    else:
        logger.debug("No config file found, using defaults and environment variables")
    
    _apply_env_overrides(config_data)
    
    for section, values in (overrides or {}).items():
        config_data.setdefault(section, {}).update(values)
    
    try:
        return Settings.model_validate(config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""
    
    # Serial settings
    if env_dev := os.environ.get("TTYSRV_DEVICE"):
        config_data.setdefault("serial", {})["device"] = env_dev
    if env_baud := os.environ.get("TTYSRV_BAUD"):
        config_data.setdefault("serial", {})["baud"] = env_baud
    
    # Capture log
    if env_log := os.environ.get("TTYSRV_LOG_FILE"):
        config_data.setdefault("log_file", {})["path"] = env_log
    
    # Tap server
    if env_host := os.environ.get("TTYSRV_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_port := os.environ.get("TTYSRV_PORT"):
        config_data.setdefault("server", {})["port"] = env_port
    
    # Hub
    if env_queue := os.environ.get("TTYSRV_QUEUE_SIZE"):
        config_data.setdefault("hub", {})["subscriber_queue_size"] = env_queue
    if env_policy := os.environ.get("TTYSRV_OVERFLOW_POLICY"):
        config_data.setdefault("hub", {})["overflow_policy"] = env_policy
    
    # Status API
    if env_status := os.environ.get("TTYSRV_STATUS_PORT"):
        status = config_data.setdefault("status", {})
        status["port"] = env_status
        status["enabled"] = True
    
    # Logging settings
    if env_level := os.environ.get("TTYSRV_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_level


# =============================================================================
# Logging
# =============================================================================

LOG_FORMATS = {
    "text": "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    "json": '{"ts": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "msg": "%(message)s"}',
}


def setup_logging(settings: Settings) -> None:
    """
    Route service logs to stderr.
    
    stdout is left alone because it carries the raw echo of the capture.
    An unknown level name falls back to INFO.
    """
    level = logging.getLevelName(settings.logging.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        LOG_FORMATS.get(settings.logging.format, LOG_FORMATS["text"]),
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    logging.basicConfig(level=level, handlers=[handler])
