"""
Configuration models for the EdgeRelay application.

This module defines dataclasses for the different configuration domains,
providing type safety and validation for all relay settings.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from edgerelay.config.constants import (
    DEFAULT_BITS_PER_SAMPLE,
    DEFAULT_CHANNELS,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_CREDENTIAL_TIMEOUT,
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
    DEFAULT_SEND_TIMEOUT,
    DEFAULT_SETTLE_DELAY_MS,
    DEFAULT_VOICE,
    PRE_READY_POLICY_DROP,
    PRE_READY_POLICY_QUEUE,
)


class Environment(Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class ServerConfig:
    """Server configuration settings."""

    host: str = "0.0.0.0"
    port: int = 10000
    ws_path: str = "/ws"
    environment: Environment = Environment.PRODUCTION
    debug: bool = False
    timeout_keep_alive: int = 5
    max_sessions: int = 100

    # HTTP/WebSocket server settings
    http_protocol: str = "h11"
    access_log: bool = False
    ws_ping_interval: int = 5
    ws_ping_timeout: int = 10
    ws_max_size: int = 16 * 1024 * 1024  # 16MB


@dataclass
class OpenAIConfig:
    """Upstream realtime service configuration."""

    api_key: Optional[str] = None
    model: str = DEFAULT_OPENAI_MODEL
    voice: str = DEFAULT_VOICE
    base_url: str = DEFAULT_OPENAI_WS_BASE_URL
    http_base_url: str = DEFAULT_OPENAI_HTTP_BASE_URL
    credential_timeout: float = DEFAULT_CREDENTIAL_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    send_timeout: float = DEFAULT_SEND_TIMEOUT
    ping_interval: int = 20
    ping_timeout: int = 30
    close_timeout: int = 10

    def get_sessions_url(self) -> str:
        """Get the URL that issues ephemeral realtime credentials."""
        return f"{self.http_base_url}/v1/realtime/sessions"

    def get_websocket_url(self, model: Optional[str] = None) -> str:
        """Get the realtime WebSocket URL for a model."""
        return f"{self.base_url}/v1/realtime?model={model or self.model}"

    def get_headers(self) -> Dict[str, str]:
        """Get headers for authenticating the credential request."""
        if not self.api_key:
            raise ValueError("OpenAI API key is required")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }


@dataclass
class AudioConfig:
    """Device audio format."""

    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    bits_per_sample: int = DEFAULT_BITS_PER_SAMPLE

    @property
    def sample_width(self) -> int:
        return self.bits_per_sample // 8


@dataclass
class FlushConfig:
    """Batching policy for audio sent upstream."""

    max_chunks_per_batch: int = DEFAULT_MAX_CHUNKS_PER_BATCH
    max_bytes_per_batch: int = DEFAULT_MAX_BYTES_PER_BATCH
    max_idle_ms: int = DEFAULT_MAX_IDLE_MS


@dataclass
class SequencerConfig:
    """Upstream control-frame sequencing settings."""

    settle_delay_ms: int = DEFAULT_SETTLE_DELAY_MS
    pre_ready_queue_limit: int = DEFAULT_PRE_READY_QUEUE_LIMIT
    pre_ready_policy: str = PRE_READY_POLICY_QUEUE
    commit_on_idle: bool = False
    response_modalities: List[str] = field(
        default_factory=lambda: list(DEFAULT_RESPONSE_MODALITIES)
    )
    response_instructions: Optional[str] = DEFAULT_RESPONSE_INSTRUCTIONS


@dataclass
class RecordingConfig:
    """Best-effort local recording of device audio."""

    enabled: bool = False
    output_dir: Path = field(default_factory=lambda: Path("recordings"))
    transcode_command: Optional[str] = None  # e.g. "ffmpeg -y -i {input} {output}"
    transcode_extension: str = "mp3"


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_filename: str = "edgerelay.log"
    max_log_size: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    console_output: bool = True
    file_output: bool = True


@dataclass
class SecurityConfig:
    """Security-related configuration."""

    allowed_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class ApplicationConfig:
    """Master application configuration containing all domain configs."""

    server: ServerConfig = field(default_factory=ServerConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    flush: FlushConfig = field(default_factory=FlushConfig)
    sequencer: SequencerConfig = field(default_factory=SequencerConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.openai.api_key and self.server.environment != Environment.TESTING:
            errors.append(
                "OpenAI API key is required. Please set the OPENAI_API_KEY environment variable"
            )

        if self.server.port <= 0 or self.server.port > 65535:
            errors.append("Server port must be between 1 and 65535")

        if self.server.max_sessions <= 0:
            errors.append("Maximum sessions must be positive")

        if self.audio.sample_rate <= 0:
            errors.append("Audio sample rate must be positive")

        if self.flush.max_chunks_per_batch <= 0:
            errors.append("Flush chunk threshold must be positive")
        if self.flush.max_bytes_per_batch <= 0:
            errors.append("Flush byte threshold must be positive")
        if self.flush.max_idle_ms <= 0:
            errors.append("Flush idle window must be positive")

        if self.sequencer.settle_delay_ms < 0:
            errors.append("Settle delay cannot be negative")
        if self.sequencer.pre_ready_queue_limit < 0:
            errors.append("Pre-ready queue limit cannot be negative")
        if self.sequencer.pre_ready_policy not in (
            PRE_READY_POLICY_QUEUE,
            PRE_READY_POLICY_DROP,
        ):
            errors.append(
                f"Pre-ready policy must be '{PRE_READY_POLICY_QUEUE}' or '{PRE_READY_POLICY_DROP}'"
            )

        if self.openai.send_timeout <= 0:
            errors.append("Upstream send timeout must be positive")

        return errors

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.server.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.server.environment == Environment.PRODUCTION
