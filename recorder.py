"""Microphone recorder adapter."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

import numpy as np

from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore


def input_level(pcm16_bytes: bytes) -> int:
    """Loudness of a PCM16 block on a 0-100 scale, from its RMS."""
    if len(pcm16_bytes) < 2:
        return 0
    samples = np.frombuffer(pcm16_bytes[: len(pcm16_bytes) // 2 * 2], dtype="<i2").astype(np.float64)
    rms = float(np.sqrt(np.mean(samples * samples)))
    return min(100, round(rms / 32768.0 * 100))


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.level = 0
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._on_frame: Optional[Callable[[AudioFrame], None]] = None

    def start(self, on_frame: Callable[[AudioFrame], None]) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise RuntimeError("sounddevice is not installed")
            self._on_frame = on_frame
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            self._stream.start()
            self._running = True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None
            self._on_frame = None
            self.level = 0

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        on_frame = self._on_frame
        if not self._running or on_frame is None:
            return
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        self.level = input_level(payload)
        on_frame(
            AudioFrame(
                pcm16_bytes=payload,
                sample_rate=self.sample_rate,
                channels=self.channels,
                timestamp_ms=int(time.time() * 1000),
            )
        )
