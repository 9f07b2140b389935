"""Console entrypoint: dictate from the microphone until Enter is pressed."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from config import JsonConfigStore, load_config
from errors import ConfigError
from models import ENGINE_OPTIONS
from recognizer import RecognitionClient
from recorder import SoundDeviceRecorder
from session_controller import TranscriptSession

logger = logging.getLogger(__name__)

END_ACK_TIMEOUT_S = 5.0


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Stream microphone audio to the recognition service.")
    parser.add_argument(
        "--engine",
        choices=[option.id for option in ENGINE_OPTIONS],
        help="recognition engine (defaults to the stored setting)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log protocol traffic")
    return parser.parse_args(argv)


def _print_transcript(transcript: str, interim: str) -> None:
    sys.stdout.write(f"\r\033[K{transcript} {interim}".rstrip())
    sys.stdout.flush()


def _print_error(code: str, message: str) -> None:
    sys.stderr.write(f"\n[{code}] {message}\n")


async def run(engine: str | None) -> int:
    try:
        config = load_config(JsonConfigStore(), engine=engine)
    except ConfigError as exc:
        _print_error("CONFIG", str(exc))
        return 2

    client = RecognitionClient(config, on_error=_print_error)
    if not await client.connect():
        return 1

    session = TranscriptSession(
        client,
        SoundDeviceRecorder(),
        on_transcript=_print_transcript,
        on_error=_print_error,
    )
    try:
        if not await session.start():
            return 1
        sys.stderr.write("Recording, press Enter to stop.\n")
        await asyncio.get_running_loop().run_in_executor(None, sys.stdin.readline)
        session.stop()
        await client.wait_for_session_end(END_ACK_TIMEOUT_S)
        transcript = session.transcript
    finally:
        await client.disconnect()

    sys.stdout.write(f"\r\033[K{transcript}\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args.engine))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
