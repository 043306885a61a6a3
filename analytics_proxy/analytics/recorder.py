from typing import List, Optional, Tuple

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import Message, Send


class ResponseRecorder:
    """Captures the output of an ASGI app in memory so it can be inspected and replayed.

    Pass `send` to the wrapped app in place of the server's send callable. Once
    the app returns, the recorded status, headers and body are available, and
    `replay` writes them to the real connection exactly once.
    """

    def __init__(self) -> None:
        self.start_message: Optional[Message] = None
        self.raw_headers: List[Tuple[bytes, bytes]] = []
        self._body = bytearray()
        self._trailing: List[Message] = []
        self._replayed = False

    async def send(self, message: Message) -> None:
        message_type = message["type"]
        if message_type == "http.response.start":
            self.start_message = message
            self.raw_headers = list(message.get("headers", []))
        elif message_type == "http.response.body":
            self._body.extend(message.get("body", b""))
        else:
            self._trailing.append(message)

    @property
    def status_code(self) -> Optional[int]:
        if self.start_message is None:
            return None
        return self.start_message["status"]

    @property
    def headers(self) -> Headers:
        """Case-insensitive, read-only view of the recorded headers."""
        return Headers(raw=self.raw_headers)

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    def append_header(self, name: str, value: str) -> None:
        """Adds a header to the recording, keeping any existing headers of the same name."""
        MutableHeaders(raw=self.raw_headers).append(name, value)

    async def replay(self, send: Send) -> None:
        """Writes the recorded response to `send`.

        Raises:
            RuntimeError: If nothing was recorded, or the recording was already replayed.
        """
        if self.start_message is None:
            raise RuntimeError("No response was recorded.")
        if self._replayed:
            raise RuntimeError("Recorded response has already been replayed.")
        self._replayed = True

        await send({**self.start_message, "headers": self.raw_headers})
        await send({"type": "http.response.body", "body": self.body, "more_body": False})
        for message in self._trailing:
            await send(message)
