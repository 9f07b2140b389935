"""Tests for SoundDeviceRecorder."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from models import AudioFrame
from recorder import SoundDeviceRecorder, input_level


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

def _make_fake_audio_data(n_samples: int = 1600, value: int = 0) -> np.ndarray:
    """Shaped like the (frames, channels) int16 block sounddevice hands the callback."""
    return np.full((n_samples, 1), value, dtype=np.int16)


# ---------------------------------------------------------------
# Basic start / stop
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_start_creates_stream_and_runs(mock_sd: MagicMock) -> None:
    mock_stream = MagicMock()
    mock_sd.InputStream.return_value = mock_stream

    recorder = SoundDeviceRecorder()
    recorder.start(lambda frame: None)

    mock_sd.InputStream.assert_called_once()
    assert mock_sd.InputStream.call_args.kwargs["blocksize"] == 1600
    assert mock_sd.InputStream.call_args.kwargs["dtype"] == "int16"
    mock_stream.start.assert_called_once()

    recorder.stop()
    mock_stream.stop.assert_called_once()
    mock_stream.close.assert_called_once()


@patch("recorder.sd")
def test_start_is_idempotent(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    recorder = SoundDeviceRecorder()
    recorder.start(lambda frame: None)
    recorder.start(lambda frame: None)  # second call should be no-op

    assert mock_sd.InputStream.call_count == 1
    recorder.stop()


@patch("recorder.sd")
def test_stop_is_idempotent(mock_sd: MagicMock) -> None:
    mock_stream = MagicMock()
    mock_sd.InputStream.return_value = mock_stream

    recorder = SoundDeviceRecorder()
    recorder.start(lambda frame: None)
    recorder.stop()
    recorder.stop()

    mock_stream.close.assert_called_once()


# ---------------------------------------------------------------
# Audio callback delivers frames
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_callback_delivers_audio_frames(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()
    frames: list[AudioFrame] = []

    recorder = SoundDeviceRecorder(sample_rate=16000, channels=1, chunk_ms=100)
    recorder.start(frames.append)
    recorder._on_audio(_make_fake_audio_data(1600), frames=1600, time_info=None, status=None)

    assert len(frames) == 1
    frame = frames[0]
    assert frame.sample_rate == 16000
    assert frame.channels == 1
    assert len(frame.pcm16_bytes) == 1600 * 2
    assert frame.sample_count == 1600

    recorder.stop()


@patch("recorder.sd")
def test_callback_after_stop_is_noop(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()
    frames: list[AudioFrame] = []

    recorder = SoundDeviceRecorder()
    recorder.start(frames.append)
    recorder.stop()
    recorder._on_audio(_make_fake_audio_data(1600), frames=1600, time_info=None, status=None)

    assert frames == []


@patch("recorder.sd")
def test_callback_updates_level(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    recorder = SoundDeviceRecorder()
    recorder.start(lambda frame: None)
    recorder._on_audio(_make_fake_audio_data(160, value=16384), frames=160, time_info=None, status=None)
    assert recorder.level == 50

    recorder.stop()
    assert recorder.level == 0


# ---------------------------------------------------------------
# No sounddevice installed
# ---------------------------------------------------------------

def test_start_raises_without_sounddevice(monkeypatch) -> None:  # noqa: ANN001
    import recorder as rec_mod
    monkeypatch.setattr(rec_mod, "sd", None)

    recorder = SoundDeviceRecorder()
    with pytest.raises(RuntimeError, match="sounddevice is not installed"):
        recorder.start(lambda frame: None)


# ---------------------------------------------------------------
# input_level
# ---------------------------------------------------------------

def test_input_level_silence_and_full_scale() -> None:
    assert input_level(b"") == 0
    assert input_level(b"\x00\x00" * 100) == 0
    full = np.full(100, -32768, dtype="<i2").tobytes()
    assert input_level(full) == 100
