"""Connection/session state machine and codec negotiation.

The machine owns the socket-level ``ConnectionState`` and the
protocol-level ``SessionState``.  It never performs I/O itself: commands go
out through the ``send`` callable and buffered audio is drained through
``drain_audio``, both supplied by the client.

Negotiation walks the codec catalog by index.  A rejected codec moves to
the next one after a short delay; running off the end of the catalog, or
an authentication failure at any point, leaves the session ``FAILED``
until the next ``connect``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Tuple

from codec_catalog import codec_catalog
from dispatcher import AckStatus, InboundKind, InboundMessage
from errors import AUTH_FAILED, CODECS_EXHAUSTED, ERROR_MESSAGES
from models import DEFAULT_GRAMMAR, ClientConfig, ConnectionState, SessionPhase, SessionState

logger = logging.getLogger(__name__)

END_COMMAND = "e"
RETRY_DELAY_S = 0.1
END_GRACE_S = 0.1

StateCallback = Callable[[SessionState, SessionState], None]
ErrorCallback = Callable[[str, str], None]


def build_start_command(codec: str, config: ClientConfig) -> str:
    grammar = config.grammar_profile or DEFAULT_GRAMMAR
    return (
        f"s {codec} {grammar} authorization={config.credential} "
        f"resultUpdatedInterval={config.result_interval_ms} keepFillerToken=0"
    )


class SessionStateMachine:
    def __init__(
        self,
        config: ClientConfig,
        send: Callable[[str], None],
        drain_audio: Callable[[], int],
        on_error: ErrorCallback,
        on_state_change: Optional[StateCallback] = None,
        retry_delay_s: float = RETRY_DELAY_S,
        end_grace_s: float = END_GRACE_S,
    ) -> None:
        self._config = config
        self._send = send
        self._drain_audio = drain_audio
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._retry_delay_s = retry_delay_s
        self._end_grace_s = end_grace_s

        self._catalog = codec_catalog(config.codec)
        self._connection = ConnectionState.IDLE
        self._state = SessionState.not_started()
        self._codec_index = 0
        self._retry_task: Optional[asyncio.Task] = None
        self._end_task: Optional[asyncio.Task] = None

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._connection == ConnectionState.CONNECTED and self._state.is_active

    @property
    def catalog(self) -> Tuple[str, ...]:
        return self._catalog

    @property
    def codec_index(self) -> int:
        return self._codec_index

    @property
    def current_codec(self) -> str:
        return self._catalog[self._codec_index]

    # ------------------------------------------------------------------
    # Socket lifecycle
    # ------------------------------------------------------------------

    def mark_connecting(self) -> None:
        self._cancel_timers()
        self._connection = ConnectionState.CONNECTING
        self._transition(SessionState.not_started())

    def on_socket_open(self) -> None:
        self._cancel_timers()
        self._codec_index = 0
        self._connection = ConnectionState.CONNECTED
        self._transition(SessionState.not_started())

    def mark_disconnecting(self) -> None:
        self._connection = ConnectionState.DISCONNECTED

    def on_socket_closed(self) -> None:
        self._cancel_timers()
        self._connection = ConnectionState.IDLE
        self._transition(SessionState.not_started())

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def start_session(self) -> bool:
        if self._connection != ConnectionState.CONNECTED:
            logger.warning("Cannot start session: not connected")
            return False
        if self._state.phase != SessionPhase.NOT_STARTED:
            logger.warning("Cannot start session in state %s", self._state)
            return False
        self._transition(SessionState.negotiating(self._codec_index))
        self._send_start()
        return True

    def end_session(self, immediate: bool = False) -> bool:
        """Flush audio and close the session; a no-op unless active.

        With ``immediate`` the end marker is sent right away instead of after
        the grace delay, including for an end that is already pending.
        """
        if self._state.phase == SessionPhase.ENDING:
            if immediate and self._end_task is not None and not self._end_task.done():
                self._end_task.cancel()
                self._end_task = None
                self._send_end()
                return True
            return False
        if not self._state.is_active:
            return False

        self._drain_audio()
        self._transition(SessionState.ending())
        if immediate:
            self._send_end()
        else:
            self._end_task = asyncio.create_task(self._end_after_grace())
        return True

    def on_control_message(self, message: InboundMessage) -> None:
        if message.kind == InboundKind.START_ACK:
            self._handle_start_ack(message)
        elif message.kind == InboundKind.END_ACK:
            logger.info("Session ended by service")
            if self._state.phase in (SessionPhase.ACTIVE, SessionPhase.ENDING):
                self._cancel_end_task()
                self._transition(SessionState.not_started())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _handle_start_ack(self, message: InboundMessage) -> None:
        if self._state.phase != SessionPhase.NEGOTIATING:
            logger.warning("Ignoring start acknowledgement in state %s: %r", self._state, message.raw)
            return
        if self._retry_task is not None and not self._retry_task.done():
            logger.warning("Ignoring start acknowledgement before %s was offered: %r", self.current_codec, message.raw)
            return
        index = self._state.codec_index
        codec = self._catalog[index]

        if message.ack == AckStatus.AUTH_FAILED:
            self._fail(AUTH_FAILED, f"{ERROR_MESSAGES[AUTH_FAILED]} ({message.raw})")
            return

        if message.ack == AckStatus.CODEC_REJECTED:
            next_index = index + 1
            if next_index >= len(self._catalog):
                self._fail(CODECS_EXHAUSTED, f"All codecs failed. Last error: {message.raw}")
                return
            logger.warning("Codec %s failed, trying %s", codec, self._catalog[next_index])
            self._codec_index = next_index
            self._transition(SessionState.negotiating(next_index))
            self._retry_task = asyncio.create_task(self._retry_start(next_index))
            return

        logger.info("Session started with codec %s", codec)
        self._transition(SessionState.active(index))

    async def _retry_start(self, codec_index: int) -> None:
        await asyncio.sleep(self._retry_delay_s)
        if self._connection != ConnectionState.CONNECTED:
            return
        if self._state != SessionState.negotiating(codec_index):
            return
        self._send_start()

    async def _end_after_grace(self) -> None:
        await asyncio.sleep(self._end_grace_s)
        self._end_task = None
        self._send_end()

    def _send_start(self) -> None:
        codec = self.current_codec
        logger.info("Sending session start command (codec=%s, grammar=%s)", codec, self._config.grammar_profile)
        self._send(build_start_command(codec, self._config))

    def _send_end(self) -> None:
        self._send(END_COMMAND)
        if self._state.phase == SessionPhase.ENDING:
            self._transition(SessionState.not_started())

    def _fail(self, code: str, message: str) -> None:
        logger.error("Session failed: %s", message)
        self._cancel_timers()
        self._transition(SessionState.failed())
        self._on_error(code, message)

    def _cancel_end_task(self) -> None:
        if self._end_task is not None:
            self._end_task.cancel()
            self._end_task = None

    def _cancel_timers(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None
        self._cancel_end_task()

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("Session state %s -> %s", from_state, to_state)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
