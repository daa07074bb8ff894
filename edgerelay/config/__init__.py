"""
Configuration module for the edge audio relay.

This module provides centralized configuration management, including
constants, logging setup, and environment-based configuration.

Usage:

```python
from edgerelay.config import get_config, load_env_file

load_env_file()
config = get_config()
print(f"Flush after {config.flush.max_chunks_per_batch} chunks")
```
"""

from .constants import LOGGER_NAME
from .env_loader import load_env_file
from .logging_config import configure_logging
from .models import (
    ApplicationConfig,
    AudioConfig,
    Environment,
    FlushConfig,
    LoggingConfig,
    LogLevel,
    OpenAIConfig,
    RecordingConfig,
    SecurityConfig,
    SequencerConfig,
    ServerConfig,
)
from .settings import (
    audio_config,
    flush_config,
    get_config,
    is_development,
    is_production,
    logging_config,
    openai_config,
    print_configuration_summary,
    recording_config,
    reload_config,
    sequencer_config,
    server_config,
    set_config,
    validate_configuration,
)

__all__ = [
    "LOGGER_NAME",
    "load_env_file",
    "configure_logging",
    "get_config",
    "reload_config",
    "set_config",
    "server_config",
    "openai_config",
    "audio_config",
    "flush_config",
    "sequencer_config",
    "recording_config",
    "logging_config",
    "validate_configuration",
    "print_configuration_summary",
    "is_development",
    "is_production",
    "ApplicationConfig",
    "ServerConfig",
    "OpenAIConfig",
    "AudioConfig",
    "FlushConfig",
    "SequencerConfig",
    "RecordingConfig",
    "LoggingConfig",
    "SecurityConfig",
    "Environment",
    "LogLevel",
]
