"""
Constants and default values used throughout the relay.

This module keeps the defaults in one place so the configuration models,
the environment loader and the tests all agree on them.
"""

# Logger name used throughout the application
LOGGER_NAME = "edgerelay"

# Upstream realtime service
DEFAULT_OPENAI_MODEL = "gpt-4o-realtime-preview-2024-12-17"
DEFAULT_OPENAI_WS_BASE_URL = "wss://api.openai.com"
DEFAULT_OPENAI_HTTP_BASE_URL = "https://api.openai.com"
DEFAULT_VOICE = "verse"
DEFAULT_RESPONSE_MODALITIES = ["text"]
DEFAULT_RESPONSE_INSTRUCTIONS = "Return only the raw transcription of the spoken audio."

# Device audio (16-bit linear PCM, mono)
DEFAULT_SAMPLE_RATE = 24000
DEFAULT_CHANNELS = 1
DEFAULT_BITS_PER_SAMPLE = 16

# Flush policy
DEFAULT_MAX_CHUNKS_PER_BATCH = 50
DEFAULT_MAX_BYTES_PER_BATCH = 96000  # 2 seconds at 24kHz 16-bit
DEFAULT_MAX_IDLE_MS = 2000

# Sequencer
DEFAULT_SETTLE_DELAY_MS = 300
DEFAULT_PRE_READY_QUEUE_LIMIT = 200
PRE_READY_POLICY_QUEUE = "queue"
PRE_READY_POLICY_DROP = "drop"

# Upstream link timeouts (seconds)
DEFAULT_SEND_TIMEOUT = 5.0
DEFAULT_CREDENTIAL_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 10.0

# Device-facing control keywords, checked in this order
STREAM_STARTED_KEYWORDS = ("STREAM_STARTED", "STREAM STARTED")
STREAM_STOPPED_KEYWORDS = ("STREAM_STOPPED", "STREAM STOPPED", "STOP")
