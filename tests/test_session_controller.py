from __future__ import annotations

import asyncio
import threading

import pytest

from errors import AUTH_FAILED, AUDIO_SEND_FAILED, NOT_CONNECTED, RECORDER_ERROR, SESSION_TIMEOUT
from models import AudioFrame, RecognitionResult, RecordingState
from session_controller import TranscriptSession


class FakeRecorder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.started = False
        self.stopped = False
        self.on_frame = None

    def start(self, on_frame) -> None:  # noqa: ANN001
        if self.fail:
            raise RuntimeError("no microphone")
        self.started = True
        self.on_frame = on_frame

    def stop(self) -> None:
        self.stopped = True

    def emit(self, frame: AudioFrame) -> None:
        assert self.on_frame is not None
        self.on_frame(frame)


class FakeClient:
    def __init__(self, connected: bool = True, activates: bool = True) -> None:
        self.connected = connected
        self.activates = activates
        self.on_result = None
        self.on_error = None
        self.fed: list[AudioFrame] = []
        self.start_requests = 0
        self.end_requests = 0

    def set_on_result(self, callback) -> None:  # noqa: ANN001
        self.on_result = callback

    def set_on_error(self, callback) -> None:  # noqa: ANN001
        self.on_error = callback

    def request_session_start(self) -> bool:
        self.start_requests += 1
        return self.connected

    async def wait_until_active(self, timeout: float) -> bool:
        if not self.activates:
            await asyncio.sleep(timeout)
        return self.activates

    def request_session_end(self) -> bool:
        self.end_requests += 1
        return True

    def feed_audio(self, frame: AudioFrame) -> bool:
        self.fed.append(frame)
        return True

    def emit_result(self, text: str, is_final: bool) -> None:
        self.on_result(RecognitionResult(text=text, is_final=is_final))

    def emit_error(self, code: str, message: str) -> None:
        self.on_error(code, message)


def _make_session(client: FakeClient, recorder: FakeRecorder, **kwargs):
    transitions: list[tuple[RecordingState, RecordingState]] = []
    errors: list[tuple[str, str]] = []
    session = TranscriptSession(
        client,  # type: ignore[arg-type]
        recorder,
        start_timeout_s=0.05,
        on_state_change=lambda f, t: transitions.append((f, t)),
        on_error=lambda c, m: errors.append((c, m)),
        **kwargs,
    )
    return session, transitions, errors


@pytest.mark.asyncio
async def test_happy_path_records_and_accumulates_transcript() -> None:
    client = FakeClient()
    recorder = FakeRecorder()
    updates: list[tuple[str, str]] = []
    session, transitions, errors = _make_session(
        client, recorder, on_transcript=lambda t, i: updates.append((t, i))
    )

    assert await session.start() is True
    assert recorder.started is True
    assert session.state == RecordingState.RECORDING

    client.emit_result("こんに", is_final=False)
    assert session.interim == "こんに"
    client.emit_result("こんにちは", is_final=True)
    client.emit_result("元気", is_final=False)
    client.emit_result("元気です", is_final=True)

    transcript = session.stop()

    assert transcript == "こんにちは 元気です"
    assert session.interim == ""
    assert updates[0] == ("", "こんに")
    assert updates[1] == ("こんにちは", "")
    assert recorder.stopped is True
    assert client.end_requests == 1
    assert session.state == RecordingState.IDLE
    assert (RecordingState.STARTING, RecordingState.RECORDING) in transitions
    assert (RecordingState.RECORDING, RecordingState.IDLE) in transitions
    assert errors == []


@pytest.mark.asyncio
async def test_frames_from_audio_thread_reach_client() -> None:
    client = FakeClient()
    recorder = FakeRecorder()
    session, _, _ = _make_session(client, recorder)
    await session.start()

    frame = AudioFrame(pcm16_bytes=b"\x00\x00" * 1600)
    thread = threading.Thread(target=recorder.emit, args=(frame,))
    thread.start()
    thread.join()
    await asyncio.sleep(0.01)

    assert client.fed == [frame]

    session.stop()
    recorder.on_frame(frame)
    await asyncio.sleep(0.01)
    assert client.fed == [frame]


@pytest.mark.asyncio
async def test_start_fails_when_not_connected() -> None:
    client = FakeClient(connected=False)
    recorder = FakeRecorder()
    session, transitions, errors = _make_session(client, recorder)

    assert await session.start() is False
    assert recorder.started is False
    assert session.state == RecordingState.IDLE
    assert [c for c, _ in errors] == [NOT_CONNECTED]
    assert (RecordingState.ERROR, RecordingState.IDLE) in transitions


@pytest.mark.asyncio
async def test_start_times_out_when_session_never_activates() -> None:
    client = FakeClient(activates=False)
    recorder = FakeRecorder()
    session, _, errors = _make_session(client, recorder)

    assert await session.start() is False
    assert recorder.started is False
    assert [c for c, _ in errors] == [SESSION_TIMEOUT]


@pytest.mark.asyncio
async def test_recorder_failure_ends_session() -> None:
    client = FakeClient()
    recorder = FakeRecorder(fail=True)
    session, _, errors = _make_session(client, recorder)

    assert await session.start() is False
    assert client.end_requests == 1
    assert [c for c, _ in errors] == [RECORDER_ERROR]
    assert session.state == RecordingState.IDLE


@pytest.mark.asyncio
async def test_fatal_error_while_recording_stops_recorder() -> None:
    client = FakeClient()
    recorder = FakeRecorder()
    session, _, errors = _make_session(client, recorder)
    await session.start()

    client.emit_error(AUTH_FAILED, "bad key")

    assert recorder.stopped is True
    assert session.state == RecordingState.IDLE
    assert errors == [(AUTH_FAILED, "bad key")]


@pytest.mark.asyncio
async def test_non_fatal_error_is_forwarded_only() -> None:
    client = FakeClient()
    recorder = FakeRecorder()
    session, _, errors = _make_session(client, recorder)
    await session.start()

    client.emit_error(AUDIO_SEND_FAILED, "lost a frame")

    assert session.state == RecordingState.RECORDING
    assert recorder.stopped is False
    assert errors == [(AUDIO_SEND_FAILED, "lost a frame")]
    session.stop()
