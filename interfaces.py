"""Protocol interfaces used by the recognition client and session."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, Union

from models import AudioFrame

Message = Union[str, bytes]


class Transport(Protocol):
    async def send(self, message: Message) -> None: ...

    async def recv(self) -> Message: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


class Recorder(Protocol):
    def start(self, on_frame: Callable[[AudioFrame], None]) -> None: ...

    def stop(self) -> None: ...
