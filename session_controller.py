"""Recording session orchestration: microphone in, transcript out."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from errors import (
    AUTH_FAILED,
    CODECS_EXHAUSTED,
    CONNECTION_ERROR,
    ERROR_MESSAGES,
    NOT_CONNECTED,
    RECORDER_ERROR,
    SESSION_TIMEOUT,
)
from interfaces import Recorder
from models import AudioFrame, RecognitionResult, RecordingState
from recognizer import RecognitionClient

logger = logging.getLogger(__name__)

StateCallback = Callable[[RecordingState, RecordingState], None]
TranscriptCallback = Callable[[str, str], None]
ErrorCallback = Callable[[str, str], None]

_FATAL_CODES = (CONNECTION_ERROR, AUTH_FAILED, CODECS_EXHAUSTED)


class TranscriptSession:
    """Runs one recording against a connected client.

    Final results are appended to the transcript, interim results replace
    the pending interim text.  Audio arrives on the recorder's own thread
    and is handed to the event loop before it reaches the client.
    """

    def __init__(
        self,
        client: RecognitionClient,
        recorder: Recorder,
        start_timeout_s: float = 3.0,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._client = client
        self._recorder = recorder
        self._start_timeout_s = start_timeout_s
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_error = on_error

        self._state = RecordingState.IDLE
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._finals: List[str] = []
        self._interim = ""

        client.set_on_result(self._handle_result)
        client.set_on_error(self._handle_error)

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def transcript(self) -> str:
        return " ".join(self._finals)

    @property
    def interim(self) -> str:
        return self._interim

    async def start(self) -> bool:
        if self._state != RecordingState.IDLE:
            return False
        self._loop = asyncio.get_running_loop()
        self._finals = []
        self._interim = ""
        self._transition(RecordingState.STARTING)

        if not self._client.request_session_start():
            self._fail(NOT_CONNECTED, ERROR_MESSAGES[NOT_CONNECTED])
            return False
        if not await self._client.wait_until_active(self._start_timeout_s):
            if self._state == RecordingState.STARTING:
                self._fail(SESSION_TIMEOUT, ERROR_MESSAGES[SESSION_TIMEOUT])
            return False

        try:
            self._recorder.start(self._on_frame)
        except Exception as exc:
            self._client.request_session_end()
            self._fail(RECORDER_ERROR, f"{ERROR_MESSAGES[RECORDER_ERROR]} ({exc})")
            return False
        self._transition(RecordingState.RECORDING)
        return True

    def stop(self) -> str:
        if self._state != RecordingState.RECORDING:
            return self.transcript
        self._safe_stop_recorder()
        self._client.request_session_end()
        self._transition(RecordingState.IDLE)
        return self.transcript

    def _on_frame(self, frame: AudioFrame) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._feed, frame)
        except RuntimeError:
            logger.debug("Dropping audio frame: event loop is closed")

    def _feed(self, frame: AudioFrame) -> None:
        if self._state == RecordingState.RECORDING:
            self._client.feed_audio(frame)

    def _handle_result(self, result: RecognitionResult) -> None:
        if result.is_final:
            self._finals.append(result.text)
            self._interim = ""
        else:
            self._interim = result.text
        if self._on_transcript:
            self._on_transcript(self.transcript, self._interim)

    def _handle_error(self, code: str, message: str) -> None:
        if code in _FATAL_CODES and self._state != RecordingState.IDLE:
            self._fail(code, message)
            return
        self._emit_error(code, message)

    def _fail(self, code: str, message: str) -> None:
        self._transition(RecordingState.ERROR)
        self._emit_error(code, message)
        self._safe_stop_recorder()
        self._transition(RecordingState.IDLE)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception as exc:
            logger.warning("Failed to stop recorder: %s", exc)

    def _transition(self, to_state: RecordingState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
