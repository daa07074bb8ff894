"""
Centralized configuration settings for EdgeRelay.

This module provides the main configuration interface for the entire
application, including singleton access to configuration.
"""

from typing import List, Optional

from .env_loader import get_environment_info, load_application_config
from .models import ApplicationConfig

# Global configuration instance
_config: Optional[ApplicationConfig] = None


def get_config() -> ApplicationConfig:
    """Get the global application configuration instance."""
    global _config
    if _config is None:
        _config = load_application_config()
    return _config


def reload_config() -> ApplicationConfig:
    """Reload configuration from environment variables."""
    global _config
    _config = load_application_config()
    return _config


def set_config(config: Optional[ApplicationConfig]) -> None:
    """Set a custom configuration instance (useful for testing)."""
    global _config
    _config = config


def validate_configuration() -> List[str]:
    """Validate the current configuration and return any errors."""
    return get_config().validate()


def print_configuration_summary() -> None:
    """Print a summary of the current configuration."""
    config = get_config()
    env_info = get_environment_info()

    print("=== EdgeRelay Configuration Summary ===")
    print(f"Environment: {config.server.environment.value}")
    print(f"Server: {config.server.host}:{config.server.port}{config.server.ws_path}")
    print(f"OpenAI model: {config.openai.model}")
    print(
        f"Flush policy: {config.flush.max_chunks_per_batch} chunks / "
        f"{config.flush.max_bytes_per_batch} bytes / {config.flush.max_idle_ms}ms idle"
    )
    print(
        f"Sequencer: settle={config.sequencer.settle_delay_ms}ms, "
        f"pre-ready={config.sequencer.pre_ready_policy}"
    )
    print(f"Recording: {config.recording.enabled} ({config.recording.output_dir})")
    print(f"Log level: {config.logging.level.value}")
    print(f"Environment variables loaded: {env_info['environment_variables_loaded']}")
    print(f".env file present: {env_info['dotenv_loaded']}")

    errors = validate_configuration()
    if errors:
        print("\nConfiguration Issues:")
        for error in errors:
            print(f"  - {error}")
    else:
        print("\nConfiguration is valid")


# Convenience aliases for common configurations
def server_config():
    """Get server configuration."""
    return get_config().server


def openai_config():
    """Get upstream configuration."""
    return get_config().openai


def audio_config():
    """Get device audio configuration."""
    return get_config().audio


def flush_config():
    """Get flush policy configuration."""
    return get_config().flush


def sequencer_config():
    """Get sequencer configuration."""
    return get_config().sequencer


def recording_config():
    """Get recording configuration."""
    return get_config().recording


def logging_config():
    """Get logging configuration."""
    return get_config().logging


def is_development() -> bool:
    """Check if running in development mode."""
    return get_config().is_development()


def is_production() -> bool:
    """Check if running in production mode."""
    return get_config().is_production()
