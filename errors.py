"""Shared error codes and user-facing messages."""

from __future__ import annotations

CONNECTION_ERROR = "CONNECTION_ERROR"
NOT_CONNECTED = "NOT_CONNECTED"
CODECS_EXHAUSTED = "CODECS_EXHAUSTED"
AUTH_FAILED = "AUTH_FAILED"
AUDIO_SEND_FAILED = "AUDIO_SEND_FAILED"
SEND_FAILED = "SEND_FAILED"
INVALID_AUDIO = "INVALID_AUDIO"
SESSION_TIMEOUT = "SESSION_TIMEOUT"
RECORDER_ERROR = "RECORDER_ERROR"

ERROR_MESSAGES = {
    CONNECTION_ERROR: "Connection to the recognition service failed, please retry.",
    NOT_CONNECTED: "Not connected to the recognition service.",
    CODECS_EXHAUSTED: "The service rejected every supported audio codec.",
    AUTH_FAILED: "Authentication failed, check the API key.",
    AUDIO_SEND_FAILED: "Sending audio failed, some audio may have been lost.",
    SEND_FAILED: "Sending a command to the service failed.",
    INVALID_AUDIO: "Audio frame is not valid 16-bit PCM.",
    SESSION_TIMEOUT: "The service did not confirm the session in time.",
    RECORDER_ERROR: "Audio capture could not be started.",
}


class ConfigError(ValueError):
    """Raised when the stored/environment settings cannot build a client config."""


class MalformedMessageError(ValueError):
    """Raised when an inbound result payload cannot be parsed."""
