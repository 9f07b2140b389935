"""Streaming recognition client over a websocket.

``RecognitionClient`` composes the audio buffer, the message dispatcher and
the session state machine around one socket.  All socket I/O runs on the
event loop: a writer task drains an ordered outbox and a reader task feeds
inbound messages to the dispatcher.  Nothing here raises to the caller;
failures come back as ``False`` or through the error callback.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from audio_buffer import FLUSH_THRESHOLD_SAMPLES, AudioInput, AudioBuffer
from dispatcher import InboundKind, InboundMessage, MessageDispatcher
from errors import AUDIO_SEND_FAILED, CONNECTION_ERROR, INVALID_AUDIO, SEND_FAILED
from interfaces import Connector, Message, Transport
from models import (
    DEFAULT_ENDPOINT,
    ClientConfig,
    ConnectionState,
    RecognitionResult,
    SessionPhase,
    SessionState,
)
from session_machine import END_GRACE_S, RETRY_DELAY_S, SessionStateMachine
from text_filter import filter_text

logger = logging.getLogger(__name__)

ResultCallback = Callable[[RecognitionResult], None]
ErrorCallback = Callable[[str, str], None]

OPEN_TIMEOUT_S = 10.0
DRAIN_TIMEOUT_S = 2.0


async def open_websocket(url: str) -> Transport:
    return await websockets.connect(url, open_timeout=OPEN_TIMEOUT_S, max_size=None)


class RecognitionClient:
    def __init__(
        self,
        config: ClientConfig,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        connector: Connector = open_websocket,
        flush_threshold: int = FLUSH_THRESHOLD_SAMPLES,
        retry_delay_s: float = RETRY_DELAY_S,
        end_grace_s: float = END_GRACE_S,
        drain_timeout_s: float = DRAIN_TIMEOUT_S,
    ) -> None:
        self._config = config
        self._on_result = on_result
        self._on_error = on_error
        self._connector = connector
        self._drain_timeout_s = drain_timeout_s

        self._transport: Optional[Transport] = None
        self._outbox: Optional[asyncio.Queue[Message]] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._settled_event = asyncio.Event()
        self._ended_event = asyncio.Event()
        self._ended_event.set()

        self._buffer = AudioBuffer(self._enqueue, lambda: self._session.is_active, flush_threshold)
        self._session = SessionStateMachine(
            config,
            send=self._enqueue,
            drain_audio=self._buffer.drain_and_flush,
            on_error=self._emit_error,
            on_state_change=self._on_session_change,
            retry_delay_s=retry_delay_s,
            end_grace_s=end_grace_s,
        )
        self._dispatcher = MessageDispatcher(
            on_result=self._deliver_result,
            on_control=self._on_control,
            on_marker=self._on_marker,
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def set_on_result(self, callback: Optional[ResultCallback]) -> None:
        self._on_result = callback

    def set_on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._on_error = callback

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._session.connection_state

    @property
    def session_state(self) -> SessionState:
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self._session.connection_state == ConnectionState.CONNECTED

    @property
    def current_codec(self) -> str:
        return self._session.current_codec

    @property
    def buffered_samples(self) -> int:
        return self._buffer.sample_count

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        if self._transport is not None:
            await self.disconnect()

        url = self._config.endpoint or DEFAULT_ENDPOINT
        self._session.mark_connecting()
        self._buffer.clear()
        try:
            transport = await self._connector(url)
        except Exception as exc:
            logger.error("Connection to %s failed: %s", url, exc)
            self._session.on_socket_closed()
            self._emit_error(CONNECTION_ERROR, f"Connection error: {exc}")
            return False

        self._transport = transport
        self._outbox = asyncio.Queue()
        self._buffer.clear()
        self._session.on_socket_open()
        self._writer_task = asyncio.create_task(self._write_loop(transport, self._outbox))
        self._reader_task = asyncio.create_task(self._read_loop(transport))
        logger.info("Connected to %s", url)
        return True

    def feed_audio(self, frame: AudioInput) -> bool:
        try:
            return self._buffer.push(frame)
        except ValueError as exc:
            self._emit_error(INVALID_AUDIO, f"Feed data error: {exc}")
            return False

    def request_session_start(self) -> bool:
        if not self.is_connected:
            logger.warning("Cannot start session: not connected")
            return False
        return self._session.start_session()

    def request_session_end(self) -> bool:
        if not self._session.end_session():
            return False
        self._ended_event.clear()
        return True

    async def wait_until_active(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._settled_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self._session.is_active

    async def wait_for_session_end(self, timeout: float) -> bool:
        """Wait for the service to acknowledge the end of the session.

        Results still in flight arrive before the acknowledgement, so callers
        that want the last utterance wait here before disconnecting.
        """
        try:
            await asyncio.wait_for(self._ended_event.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Session end was not acknowledged within %.1fs", timeout)
            return False
        return True

    async def drain(self) -> None:
        """Wait until every queued outbound message has been handed to the socket."""
        outbox = self._outbox
        if outbox is None or self._writer_task is None or self._writer_task.done():
            return
        try:
            await asyncio.wait_for(outbox.join(), self._drain_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Timed out with %d outbound messages unsent", outbox.qsize())

    async def disconnect(self) -> None:
        if self._transport is None:
            self._buffer.clear()
            self._session.on_socket_closed()
            return
        try:
            self._session.end_session(immediate=True)
            self._session.mark_disconnecting()
            await self.drain()
        finally:
            await self._teardown()
        logger.info("Disconnected")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _enqueue(self, message: Message) -> None:
        if self._outbox is None:
            logger.warning("Dropping outbound message: no open socket")
            return
        self._outbox.put_nowait(message)

    async def _write_loop(self, transport: Transport, outbox: asyncio.Queue[Message]) -> None:
        while True:
            message = await outbox.get()
            try:
                await transport.send(message)
            except Exception as exc:
                if isinstance(message, bytes):
                    logger.warning("Audio send failed: %s", exc)
                    self._emit_error(AUDIO_SEND_FAILED, f"Buffer flush error: {exc}")
                else:
                    logger.warning("Command send failed: %s", exc)
                    self._emit_error(SEND_FAILED, f"Send error: {exc}")
            finally:
                outbox.task_done()

    async def _read_loop(self, transport: Transport) -> None:
        try:
            while True:
                self._dispatcher.dispatch(await transport.recv())
        except ConnectionClosedOK:
            logger.info("Connection closed by service")
        except (ConnectionClosed, OSError) as exc:
            logger.error("Connection lost: %s", exc)
            if self._transport is transport:
                self._emit_error(CONNECTION_ERROR, f"Connection lost: {exc}")
        except Exception as exc:
            logger.exception("Reader stopped unexpectedly")
            if self._transport is transport:
                self._emit_error(CONNECTION_ERROR, f"Connection lost: {exc}")
        if self._transport is transport:
            await self._teardown()

    async def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        current = asyncio.current_task()
        tasks = [t for t in (self._reader_task, self._writer_task) if t is not None and t is not current]
        self._reader_task = self._writer_task = None
        self._outbox = None
        self._buffer.clear()
        self._session.on_socket_closed()
        self._ended_event.set()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if transport is not None:
            try:
                await transport.close()
            except Exception as exc:
                logger.debug("Error while closing socket: %s", exc)

    def _deliver_result(self, result: RecognitionResult) -> None:
        if result.is_final:
            text = filter_text(result.text) if self._config.enable_filtering else result.text
            if not text.strip():
                logger.debug("Dropping empty final result")
                return
            result = replace(result, text=text)
        if self._on_result is None:
            return
        try:
            self._on_result(result)
        except Exception:
            logger.exception("Error in result callback")

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(code, message)
        except Exception:
            logger.exception("Error in error callback")

    def _on_session_change(self, from_state: SessionState, to_state: SessionState) -> None:
        if to_state.is_active or to_state.phase == SessionPhase.FAILED:
            self._settled_event.set()
        else:
            self._settled_event.clear()

    def _on_control(self, message: InboundMessage) -> None:
        self._session.on_control_message(message)
        if message.kind == InboundKind.END_ACK:
            self._ended_event.set()

    def _on_marker(self, message: InboundMessage) -> None:
        logger.info("Service event %s", message.kind.name)
