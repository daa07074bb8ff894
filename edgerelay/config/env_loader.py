"""
Environment variable loader for EdgeRelay configuration.

This module handles loading configuration from environment variables,
with type conversion, validation, and fallback to defaults.

Environment variables must be explicitly loaded using load_env_file() before
accessing any configuration functions.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, cast, get_origin

from dotenv import load_dotenv

from .constants import (
    DEFAULT_MAX_BYTES_PER_BATCH,
    DEFAULT_MAX_CHUNKS_PER_BATCH,
    DEFAULT_MAX_IDLE_MS,
    DEFAULT_OPENAI_HTTP_BASE_URL,
    DEFAULT_OPENAI_MODEL,
    DEFAULT_OPENAI_WS_BASE_URL,
    DEFAULT_PRE_READY_QUEUE_LIMIT,
    DEFAULT_RESPONSE_INSTRUCTIONS,
    DEFAULT_RESPONSE_MODALITIES,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_SETTLE_DELAY_MS,
    DEFAULT_VOICE,
    PRE_READY_POLICY_QUEUE,
)
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

# Track if environment variables have been loaded
_env_loaded = False


def load_env_file(env_file: Optional[str] = None) -> None:
    """Load environment variables from a .env file.

    This function must be called before accessing any configuration functions.

    Args:
        env_file: Path to the .env file. If None, uses default behavior.
    """
    global _env_loaded
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    _env_loaded = True


def _check_env_loaded() -> None:
    """Check if environment variables have been loaded, raise error if not."""
    if not _env_loaded:
        raise RuntimeError(
            "Environment variables not loaded. Call load_env_file() before accessing configuration."
        )


T = TypeVar("T")


def safe_convert(value: Optional[str], target_type: Type[T], default: T) -> T:
    """Safely convert environment variable string to target type."""
    if value is None:
        return default

    try:
        if target_type == bool:
            return cast(T, value.strip().lower() in ("true", "1", "yes"))
        elif target_type == int:
            return cast(T, int(value))
        elif target_type == float:
            return cast(T, float(value))
        elif target_type == str:
            return cast(T, value)
        elif target_type == Path:
            return cast(T, Path(value))
        elif get_origin(target_type) == list:
            items = [item.strip() for item in value.split(",") if item.strip()]
            return cast(T, items or default)
        else:
            return default
    except (ValueError, TypeError):
        return default


def safe_string_or_none(value: Optional[str]) -> Optional[str]:
    """Convert environment variable to string or None if empty."""
    if value is None or value.strip() == "":
        return None
    return value.strip()


def load_server_config() -> ServerConfig:
    """Load server configuration from environment variables."""
    _check_env_loaded()

    env_str = os.getenv("ENV", "production").lower()
    environment = {
        "development": Environment.DEVELOPMENT,
        "testing": Environment.TESTING,
    }.get(env_str, Environment.PRODUCTION)

    return ServerConfig(
        host=os.getenv("HOST", "0.0.0.0"),
        port=safe_convert(os.getenv("PORT"), int, 10000),
        ws_path=os.getenv("WS_PATH", "/ws"),
        environment=environment,
        debug=safe_convert(os.getenv("DEBUG"), bool, False),
        timeout_keep_alive=safe_convert(os.getenv("TIMEOUT_KEEP_ALIVE"), int, 5),
        max_sessions=safe_convert(os.getenv("MAX_SESSIONS"), int, 100),
        http_protocol=os.getenv("HTTP_PROTOCOL", "h11"),
        access_log=safe_convert(os.getenv("ACCESS_LOG"), bool, False),
        ws_ping_interval=safe_convert(os.getenv("WS_PING_INTERVAL"), int, 5),
        ws_ping_timeout=safe_convert(os.getenv("WS_PING_TIMEOUT"), int, 10),
        ws_max_size=safe_convert(os.getenv("WS_MAX_SIZE"), int, 16 * 1024 * 1024),
    )


def load_openai_config() -> OpenAIConfig:
    """Load upstream configuration from environment variables."""
    _check_env_loaded()

    return OpenAIConfig(
        api_key=safe_string_or_none(os.getenv("OPENAI_API_KEY")),
        model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        voice=os.getenv("OPENAI_VOICE", DEFAULT_VOICE),
        base_url=os.getenv("OPENAI_API_BASE_URL", DEFAULT_OPENAI_WS_BASE_URL),
        http_base_url=os.getenv("OPENAI_HTTP_BASE_URL", DEFAULT_OPENAI_HTTP_BASE_URL),
        credential_timeout=safe_convert(
            os.getenv("OPENAI_CREDENTIAL_TIMEOUT"), float, 10.0
        ),
        connect_timeout=safe_convert(os.getenv("OPENAI_CONNECT_TIMEOUT"), float, 10.0),
        send_timeout=safe_convert(os.getenv("OPENAI_SEND_TIMEOUT"), float, 5.0),
        ping_interval=safe_convert(os.getenv("OPENAI_PING_INTERVAL"), int, 20),
        ping_timeout=safe_convert(os.getenv("OPENAI_PING_TIMEOUT"), int, 30),
        close_timeout=safe_convert(os.getenv("OPENAI_CLOSE_TIMEOUT"), int, 10),
    )


def load_audio_config() -> AudioConfig:
    """Load device audio configuration from environment variables."""
    _check_env_loaded()

    return AudioConfig(
        sample_rate=safe_convert(
            os.getenv("AUDIO_SAMPLE_RATE"), int, DEFAULT_SAMPLE_RATE
        ),
        channels=safe_convert(os.getenv("AUDIO_CHANNELS"), int, 1),
        bits_per_sample=safe_convert(os.getenv("AUDIO_BITS_PER_SAMPLE"), int, 16),
    )


def load_flush_config() -> FlushConfig:
    """Load batching policy from environment variables."""
    _check_env_loaded()

    return FlushConfig(
        max_chunks_per_batch=safe_convert(
            os.getenv("FLUSH_MAX_CHUNKS"), int, DEFAULT_MAX_CHUNKS_PER_BATCH
        ),
        max_bytes_per_batch=safe_convert(
            os.getenv("FLUSH_MAX_BYTES"), int, DEFAULT_MAX_BYTES_PER_BATCH
        ),
        max_idle_ms=safe_convert(
            os.getenv("FLUSH_MAX_IDLE_MS"), int, DEFAULT_MAX_IDLE_MS
        ),
    )


def load_sequencer_config() -> SequencerConfig:
    """Load sequencer settings from environment variables."""
    _check_env_loaded()

    return SequencerConfig(
        settle_delay_ms=safe_convert(
            os.getenv("SEQUENCER_SETTLE_DELAY_MS"), int, DEFAULT_SETTLE_DELAY_MS
        ),
        pre_ready_queue_limit=safe_convert(
            os.getenv("SEQUENCER_PRE_READY_QUEUE_LIMIT"),
            int,
            DEFAULT_PRE_READY_QUEUE_LIMIT,
        ),
        pre_ready_policy=os.getenv(
            "SEQUENCER_PRE_READY_POLICY", PRE_READY_POLICY_QUEUE
        ).lower(),
        commit_on_idle=safe_convert(os.getenv("SEQUENCER_COMMIT_ON_IDLE"), bool, False),
        response_modalities=safe_convert(
            os.getenv("SEQUENCER_RESPONSE_MODALITIES"),
            List[str],
            list(DEFAULT_RESPONSE_MODALITIES),
        ),
        response_instructions=safe_string_or_none(
            os.getenv("SEQUENCER_RESPONSE_INSTRUCTIONS", DEFAULT_RESPONSE_INSTRUCTIONS)
        ),
    )


def load_recording_config() -> RecordingConfig:
    """Load recording configuration from environment variables."""
    _check_env_loaded()

    return RecordingConfig(
        enabled=safe_convert(os.getenv("RECORDING_ENABLED"), bool, False),
        output_dir=Path(os.getenv("RECORDING_DIR", "recordings")),
        transcode_command=safe_string_or_none(os.getenv("RECORDING_TRANSCODE_COMMAND")),
        transcode_extension=os.getenv("RECORDING_TRANSCODE_EXTENSION", "mp3"),
    )


def load_logging_config() -> LoggingConfig:
    """Load logging configuration from environment variables."""
    _check_env_loaded()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = LogLevel.INFO
    try:
        log_level = LogLevel(log_level_str)
    except ValueError:
        pass

    return LoggingConfig(
        level=log_level,
        format=os.getenv(
            "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        log_filename=os.getenv("LOG_FILENAME", "edgerelay.log"),
        max_log_size=safe_convert(os.getenv("LOG_MAX_SIZE"), int, 10 * 1024 * 1024),
        backup_count=safe_convert(os.getenv("LOG_BACKUP_COUNT"), int, 5),
        console_output=safe_convert(os.getenv("LOG_CONSOLE_OUTPUT"), bool, True),
        file_output=safe_convert(os.getenv("LOG_FILE_OUTPUT"), bool, True),
    )


def load_security_config() -> SecurityConfig:
    """Load security configuration from environment variables."""
    _check_env_loaded()

    allowed_origins = os.getenv("ALLOWED_ORIGINS", "*")
    origins_list = [origin.strip() for origin in allowed_origins.split(",")]

    return SecurityConfig(allowed_origins=origins_list)


def load_application_config() -> ApplicationConfig:
    """Load complete application configuration from environment variables."""
    _check_env_loaded()

    config = ApplicationConfig(
        server=load_server_config(),
        openai=load_openai_config(),
        audio=load_audio_config(),
        flush=load_flush_config(),
        sequencer=load_sequencer_config(),
        recording=load_recording_config(),
        logging=load_logging_config(),
        security=load_security_config(),
    )

    validation_errors = config.validate()
    if validation_errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(
            f"  - {error}" for error in validation_errors
        )
        raise ValueError(error_msg)

    return config


def get_environment_info() -> Dict[str, Any]:
    """Get information about current environment variables for debugging."""
    _check_env_loaded()

    return {
        "environment_variables_loaded": len(
            [
                k
                for k in os.environ.keys()
                if k.startswith(("OPENAI_", "FLUSH_", "SEQUENCER_", "RECORDING_", "LOG_"))
            ]
        ),
        "dotenv_loaded": Path(".env").exists(),
        "current_environment": os.getenv("ENV", "production"),
        "openai_api_key_set": bool(os.getenv("OPENAI_API_KEY")),
    }
