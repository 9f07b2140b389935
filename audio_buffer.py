"""Accumulates PCM frames and emits threshold-sized wire frames.

Frames are pushed by the capture source at whatever cadence it produces
them.  Once at least ``FLUSH_THRESHOLD_SAMPLES`` samples are buffered the
whole buffer is sent as one binary message: the ``b"p "`` marker followed by
the samples as little-endian int16.  Frames are never split between two
flushes.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Union

import numpy as np

from models import AudioFrame

logger = logging.getLogger(__name__)

AUDIO_MARKER = b"p "
FLUSH_THRESHOLD_SAMPLES = 1600  # ~100 ms at 16 kHz

_INT16_MIN = -32768
_INT16_MAX = 32767
_PCM16 = np.dtype("<i2")

AudioInput = Union[AudioFrame, bytes, bytearray, np.ndarray]


def to_pcm16(samples: AudioInput) -> np.ndarray:
    """Convert a frame to a 1-D little-endian int16 array.

    Raw bytes are read as PCM16-LE.  Float input is taken as normalized
    [-1.0, 1.0] audio; integer input as sample values.  Out-of-range values
    saturate at the int16 limits.
    """
    if isinstance(samples, AudioFrame):
        samples = samples.pcm16_bytes
    if isinstance(samples, (bytes, bytearray)):
        if len(samples) % 2:
            raise ValueError(f"PCM16 payload has odd length {len(samples)}")
        return np.frombuffer(bytes(samples), dtype=_PCM16)

    array = np.asarray(samples).reshape(-1)
    if np.issubdtype(array.dtype, np.floating):
        array = np.clip(array, -1.0, 1.0)
        scaled = np.where(array < 0, array * 0x8000, array * 0x7FFF)
        return scaled.astype(_PCM16)
    if not np.issubdtype(array.dtype, np.integer):
        raise ValueError(f"unsupported sample dtype {array.dtype}")
    return np.clip(array.astype(np.int64), _INT16_MIN, _INT16_MAX).astype(_PCM16)


class AudioBuffer:
    def __init__(
        self,
        send: Callable[[bytes], None],
        is_accepting: Callable[[], bool],
        threshold: int = FLUSH_THRESHOLD_SAMPLES,
    ) -> None:
        self._send = send
        self._is_accepting = is_accepting
        self._threshold = threshold
        self._frames: List[np.ndarray] = []
        self._sample_count = 0

    @property
    def sample_count(self) -> int:
        return self._sample_count

    def push(self, frame: AudioInput) -> bool:
        if not self._is_accepting():
            logger.debug("Rejected audio frame: session is not active")
            return False
        samples = to_pcm16(frame)
        self._frames.append(samples)
        self._sample_count += len(samples)
        if self._sample_count >= self._threshold:
            self.flush()
        return True

    def flush(self) -> int:
        """Send everything buffered as one wire frame; returns samples sent."""
        if not self._frames:
            return 0
        flushed = self._sample_count
        payload = AUDIO_MARKER + np.concatenate(self._frames).astype(_PCM16).tobytes()
        self.clear()
        logger.debug("Sending audio: %d bytes (%d samples)", len(payload) - len(AUDIO_MARKER), flushed)
        self._send(payload)
        return flushed

    def drain_and_flush(self) -> int:
        """Flush the remainder even when it is below the threshold."""
        if self._sample_count:
            logger.debug("Flushing %d remaining samples", self._sample_count)
        return self.flush()

    def clear(self) -> None:
        self._frames = []
        self._sample_count = 0
