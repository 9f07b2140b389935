"""Inbound protocol message classification.

Every message from the service starts with a one-character tag:

    U  interim result        A  final result
    s  start acknowledgement e  end acknowledgement
    S  speech start          E  speech end
    C  processing started

Result messages carry a JSON payload after a two-character prefix
(tag and a space).  Start acknowledgements carry a free-form body whose
content tells success from codec rejection or an authentication failure.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from errors import MalformedMessageError
from models import RecognitionResult

logger = logging.getLogger(__name__)

RESULT_PREFIX_LEN = 2
CODEC_FAILURE_MARKERS = ("unsupported", "error", "failed")
AUTH_FAILURE_MARKER = "can't verify"


class InboundKind(str, Enum):
    INTERIM_RESULT = "U"
    FINAL_RESULT = "A"
    START_ACK = "s"
    END_ACK = "e"
    SPEECH_START = "S"
    SPEECH_END = "E"
    PROCESSING_START = "C"
    UNRECOGNIZED = "?"


_TAGS = {kind.value: kind for kind in InboundKind if kind is not InboundKind.UNRECOGNIZED}
_CONTROL_KINDS = (InboundKind.START_ACK, InboundKind.END_ACK)
_RESULT_KINDS = (InboundKind.INTERIM_RESULT, InboundKind.FINAL_RESULT)


class AckStatus(str, Enum):
    OK = "ok"
    CODEC_REJECTED = "codec_rejected"
    AUTH_FAILED = "auth_failed"


@dataclass(frozen=True)
class InboundMessage:
    kind: InboundKind
    raw: str
    result: Optional[RecognitionResult] = None
    ack: Optional[AckStatus] = None


def classify_ack(body: str) -> AckStatus:
    if AUTH_FAILURE_MARKER in body:
        return AckStatus.AUTH_FAILED
    if any(marker in body for marker in CODEC_FAILURE_MARKERS):
        return AckStatus.CODEC_REJECTED
    return AckStatus.OK


def parse_result(raw: str, is_final: bool) -> RecognitionResult:
    payload = raw[RESULT_PREFIX_LEN:]
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedMessageError(f"invalid result JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedMessageError(f"result payload is {type(data).__name__}, expected object")

    text = data.get("text") or ""
    if not isinstance(text, str):
        raise MalformedMessageError("result text is not a string")

    confidence = data.get("confidence")
    if confidence is None:
        results = data.get("results")
        if isinstance(results, list) and results and isinstance(results[0], dict):
            confidence = results[0].get("confidence")
    if confidence is not None:
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = None
    return RecognitionResult(text=text, confidence=confidence, is_final=is_final)


def parse_message(raw: str) -> InboundMessage:
    """Classify ``raw`` by its tag; raises MalformedMessageError for bad results."""
    kind = _TAGS.get(raw[:1], InboundKind.UNRECOGNIZED)
    if kind in _RESULT_KINDS:
        return InboundMessage(kind, raw, result=parse_result(raw, kind == InboundKind.FINAL_RESULT))
    if kind == InboundKind.START_ACK:
        return InboundMessage(kind, raw, ack=classify_ack(raw))
    return InboundMessage(kind, raw)


class MessageDispatcher:
    def __init__(
        self,
        on_result: Callable[[RecognitionResult], None],
        on_control: Callable[[InboundMessage], None],
        on_marker: Optional[Callable[[InboundMessage], None]] = None,
    ) -> None:
        self._on_result = on_result
        self._on_control = on_control
        self._on_marker = on_marker

    def dispatch(self, raw: Union[str, bytes]) -> Optional[InboundMessage]:
        """Route one inbound message; returns None when it was dropped."""
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = bytes(raw).decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Dropping undecodable binary message (%d bytes)", len(raw))
                return None
        if not raw:
            logger.warning("Dropping empty message")
            return None

        try:
            message = parse_message(raw)
        except MalformedMessageError as exc:
            logger.warning("Dropping malformed result message: %s (data=%r)", exc, raw)
            return None

        logger.debug("Received %s message: %r", message.kind.name, raw)
        if message.kind in _RESULT_KINDS:
            if message.result is not None and message.result.text:
                self._on_result(message.result)
        elif message.kind in _CONTROL_KINDS:
            self._on_control(message)
        elif message.kind == InboundKind.UNRECOGNIZED:
            logger.info("Unknown message type: %r", raw)
        elif self._on_marker is not None:
            self._on_marker(message)
        return message
