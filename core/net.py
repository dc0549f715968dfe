"""Network layer — Telnet server with asyncio."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

log = logging.getLogger(__name__)

# Telnet IAC commands
IAC = 255
DONT = 254
DO = 253
WONT = 252
WILL = 251
SB = 250
SE = 240
ECHO = 1
SGA = 3  # Suppress Go-Ahead
NAWS = 31  # Negotiate About Window Size

_IO_ERRORS = (ConnectionResetError, BrokenPipeError, OSError)


def strip_iac(data: bytes) -> tuple[bytes, bytes]:
    """Split raw socket bytes into (clean payload, negotiation replies)."""
    clean = bytearray()
    replies = bytearray()
    i = 0
    while i < len(data):
        b = data[i]
        if b != IAC or i + 1 >= len(data):
            clean.append(b)
            i += 1
            continue
        cmd = data[i + 1]
        if cmd in (DO, DONT, WILL, WONT) and i + 2 < len(data):
            opt = data[i + 2]
            if cmd == DO and opt not in (SGA, ECHO):
                replies += bytes([IAC, WONT, opt])
            elif cmd == WILL:
                replies += bytes([IAC, DO if opt == NAWS else DONT, opt])
            i += 3
        elif cmd == SB:
            end = data.find(bytes([IAC, SE]), i)
            i = len(data) if end == -1 else end + 2
        elif cmd == IAC:
            clean.append(IAC)
            i += 2
        else:
            i += 2
    return bytes(clean), bytes(replies)


class TelnetConnection:
    """A single Telnet client connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        conn_id: int,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.id = conn_id
        self.addr = writer.get_extra_info("peername")
        self.closed = False
        self._input_queue: asyncio.Queue[str] = asyncio.Queue()
        self._echo = True
        self._line_buf = bytearray()

    async def send(self, text: str) -> None:
        if self.closed:
            return
        try:
            # Telnet requires \r\n line endings
            text = text.replace("\r\n", "\n").replace("\n", "\r\n")
            self.writer.write(text.encode("utf-8"))
            await self.writer.drain()
        except _IO_ERRORS:
            self.closed = True

    async def send_line(self, text: str) -> None:
        await self.send(text + "\r\n")

    async def get_input(self) -> str:
        """Next input line (blocks until available)."""
        return await self._input_queue.get()

    def has_input(self) -> bool:
        return not self._input_queue.empty()

    def _erase_last_char(self) -> bytes:
        if not self._line_buf:
            return b""
        idx = len(self._line_buf) - 1
        while idx > 0 and (self._line_buf[idx] & 0xC0) == 0x80:
            idx -= 1
        del self._line_buf[idx:]
        return b"\b \b"

    async def feed(self, data: bytes) -> None:
        """Apply server-side line editing to clean bytes; queue complete lines."""
        for b in data:
            if b == 0 or b == ord("\r"):
                continue
            if b in (8, 127):  # BS or DEL
                erase = self._erase_last_char()
                if self._echo and erase:
                    self.writer.write(erase)
                continue
            if b == ord("\n"):
                if self._echo:
                    self.writer.write(b"\r\n")
                text = bytes(self._line_buf).decode("utf-8", errors="replace")
                self._line_buf.clear()
                await self._input_queue.put(text)
                continue
            self._line_buf.append(b)
            if self._echo:
                self.writer.write(bytes([b]))

    async def read_loop(self) -> None:
        while not self.closed:
            try:
                data = await self.reader.read(4096)
            except (ConnectionResetError, asyncio.CancelledError):
                self.closed = True
                break
            if not data:
                self.closed = True
                break

            clean, replies = strip_iac(data)
            if replies:
                self.writer.write(replies)
            await self.feed(clean)
            try:
                await self.writer.drain()
            except _IO_ERRORS:
                self.closed = True
                break

    async def set_echo(self, enabled: bool) -> None:
        """Toggle server-side echo (disabled for password prompts)."""
        self._echo = enabled

    async def close(self) -> None:
        self.closed = True
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (OSError, ConnectionError):
            pass


OnConnectCallback = Callable[[TelnetConnection], Coroutine[Any, Any, None]]


class TelnetServer:
    """Async Telnet server."""

    def __init__(self, host: str, port: int, on_connect: OnConnectCallback) -> None:
        self.host = host
        self.port = port
        self._on_connect = on_connect
        self._server: asyncio.Server | None = None
        self._next_id = 0
        self._connections: dict[int, TelnetConnection] = {}

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_client, self.host, self.port,
        )
        log.info("Telnet server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
        for conn in list(self._connections.values()):
            await conn.close()
        self._connections.clear()
        log.info("Telnet server stopped")

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._next_id += 1
        conn = TelnetConnection(reader, writer, self._next_id)
        self._connections[conn.id] = conn
        addr = conn.addr
        log.info("New connection #%d from %s", conn.id, addr)

        read_task: asyncio.Task | None = None
        try:
            # Suppress go-ahead, echo server-side
            writer.write(bytes([IAC, WILL, SGA, IAC, WILL, ECHO]))
            await writer.drain()
            read_task = asyncio.create_task(conn.read_loop())
            await self._on_connect(conn)
        except Exception:
            log.exception("Error handling connection #%d", conn.id)
        finally:
            if read_task is not None:
                read_task.cancel()
            self._connections.pop(conn.id, None)
            await conn.close()
            log.info("Connection #%d from %s closed", conn.id, addr)

    @property
    def connection_count(self) -> int:
        return len(self._connections)
