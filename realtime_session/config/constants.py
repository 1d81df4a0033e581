"""
Constants and configuration values used throughout the realtime session client.

This module defines the protocol endpoints, headers, timeouts and buffer bounds
shared by the transport, the session controller and the conversation store,
keeping the wire-level values in one place.
"""

# Logger name used throughout the package
LOGGER_NAME = "realtime_session"

# Realtime API endpoint and default model
REALTIME_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_REALTIME_MODEL = "gpt-4o-realtime-preview-2024-12-17"

# Handshake headers and subprotocol
OPENAI_BETA_HEADER = "OpenAI-Beta"
OPENAI_BETA_VALUE = "realtime=v1"
REALTIME_SUBPROTOCOL = "realtime"

# Timeouts (seconds)
CONNECTION_TIMEOUT = 30
SESSION_CREATED_TIMEOUT = 10.0
SESSION_UPDATE_TIMEOUT = 5.0
TOOL_TIMEOUT = 30.0

# WebSocket configuration
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio deltas
WS_PING_INTERVAL = 20
WS_PING_TIMEOUT = 20
WS_NORMAL_CLOSURE = 1000
WS_POLICY_VIOLATION = 1008

# Close codes reported by the server when the credential is rejected
AUTH_CLOSE_CODES = frozenset({WS_POLICY_VIOLATION, 4001, 4003})

# Audio defaults: PCM16, 24 kHz, mono
DEFAULT_SAMPLE_RATE = 24000

# Upper bound on entries kept in each out-of-order side table
MAX_QUEUED_ITEMS = 256

# Symbolic value for unbounded max_response_output_tokens
UNBOUNDED_TOKENS = "inf"
