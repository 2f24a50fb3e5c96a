"""
Source RCON client: authenticate, send one command, collect the reply.

Packets are little-endian `size, request id, type` followed by the body and
two NUL bytes; `size` counts everything after itself. See
https://developer.valvesoftware.com/wiki/Source_RCON_Protocol

The exchange is a small state machine fed by protocol callbacks:

    CONNECTING --auth ack--> AUTHENTICATED --command sent--> AWAITING_RESPONSE
        any state --error / end / second response--> DONE

Callers only see CommandExchange.result, a future resolved once the exchange
is DONE. RemoteCommandClient races that future against a fixed timeout.
"""

from __future__ import annotations

import asyncio
import struct
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from pug.servers.types import CommandResult, parse_address

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()

SERVERDATA_AUTH = 3
SERVERDATA_AUTH_RESPONSE = 2
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_RESPONSE_VALUE = 0

AUTH_REQUEST_ID = 1
COMMAND_REQUEST_ID = 2
AUTH_FAILED_ID = -1

COMMAND_SENT = "Command sent."
CHANGELEVEL_COMMAND = "changelevel"
KICK_ALL_COMMAND = "kickall"

_SIZE = struct.Struct("<i")
_ID_AND_TYPE = struct.Struct("<ii")
_MIN_PACKET_SIZE = 10  # id + type + two NUL terminators
_MAX_PACKET_SIZE = 4096 + _MIN_PACKET_SIZE


class RconProtocolError(Exception):
    """The server sent bytes that are not a valid RCON packet."""


@dataclass(frozen=True)
class Packet:
    request_id: int
    packet_type: int
    body: str


def encode_packet(request_id: int, packet_type: int, body: str) -> bytes:
    payload = body.encode("utf-8")
    if b"\x00" in payload:
        raise ValueError("RCON body must not contain NUL bytes")
    size = _ID_AND_TYPE.size + len(payload) + 2
    return _SIZE.pack(size) + _ID_AND_TYPE.pack(request_id, packet_type) + payload + b"\x00\x00"


class PacketDecoder:
    """Reassemble packets from a TCP byte stream."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[Packet]:
        self._buffer.extend(data)
        packets: list[Packet] = []
        while len(self._buffer) >= _SIZE.size:
            (size,) = _SIZE.unpack_from(self._buffer)
            if not _MIN_PACKET_SIZE <= size <= _MAX_PACKET_SIZE:
                raise RconProtocolError(f"Invalid packet size {size}")
            end = _SIZE.size + size
            if len(self._buffer) < end:
                break
            request_id, packet_type = _ID_AND_TYPE.unpack_from(self._buffer, _SIZE.size)
            raw_body = bytes(self._buffer[_SIZE.size + _ID_AND_TYPE.size : end])
            body = raw_body.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
            packets.append(Packet(request_id=request_id, packet_type=packet_type, body=body))
            del self._buffer[:end]
        return packets


class ExchangeState(StrEnum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    AWAITING_RESPONSE = "awaiting_response"
    DONE = "done"


class CommandExchange:
    """State of one authenticate-and-send exchange.

    Two response-bearing events complete it: the auth acknowledgement and the
    command response. An error completes it with the error text. The end of
    the connection completes it with whatever was collected, unless
    authentication never succeeded.
    """

    def __init__(self, command: str) -> None:
        self.command = command
        self.state = ExchangeState.CONNECTING
        self._response_events = 0
        self._texts: list[str] = []
        self.result: asyncio.Future[CommandResult] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self.state is ExchangeState.DONE

    def on_auth(self) -> None:
        if self.state is not ExchangeState.CONNECTING:
            return
        self.state = ExchangeState.AUTHENTICATED
        self._response_events += 1

    def on_command_sent(self) -> None:
        if self.state is ExchangeState.AUTHENTICATED:
            self.state = ExchangeState.AWAITING_RESPONSE

    def on_response(self, text: str) -> None:
        if self.done:
            return
        self._response_events += 1
        if text.strip():
            self._texts.append(text.strip())
        if self._response_events >= 2:
            self._finish(CommandResult(ok=True, message=self._collected()))

    def on_error(self, message: str) -> None:
        if self.done:
            return
        self._finish(CommandResult(ok=False, message=message))

    def on_end(self) -> None:
        if self.done:
            return
        if self.state is ExchangeState.CONNECTING:
            self._finish(CommandResult(ok=False, message="Connection closed before authentication."))
        else:
            self._finish(CommandResult(ok=True, message=self._collected()))

    def _collected(self) -> str:
        return "\n".join(self._texts) if self._texts else COMMAND_SENT

    def _finish(self, result: CommandResult) -> None:
        self.state = ExchangeState.DONE
        if not self.result.done():
            self.result.set_result(result)


class RconClientProtocol(asyncio.Protocol):
    """Drive a CommandExchange from socket events."""

    def __init__(self, exchange: CommandExchange, password: str, close_grace_seconds: float) -> None:
        self._exchange = exchange
        self._password = password
        self._close_grace = close_grace_seconds
        self._decoder = PacketDecoder()
        self._transport: asyncio.Transport | None = None
        self._close_handle: asyncio.TimerHandle | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]
        self._write(encode_packet(AUTH_REQUEST_ID, SERVERDATA_AUTH, self._password))

    def data_received(self, data: bytes) -> None:
        try:
            packets = self._decoder.feed(data)
        except RconProtocolError as exc:
            self._exchange.on_error(str(exc))
            packets = []
        for packet in packets:
            self._dispatch(packet)
        if self._exchange.done:
            self.close()

    def connection_lost(self, exc: Exception | None) -> None:
        if self._close_handle is not None:
            self._close_handle.cancel()
            self._close_handle = None
        if exc is not None:
            self._exchange.on_error(str(exc) or type(exc).__name__)
        else:
            self._exchange.on_end()

    def close(self) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()

    def _dispatch(self, packet: Packet) -> None:
        if self._exchange.done:
            return
        # Servers answer auth with an empty RESPONSE_VALUE followed by AUTH_RESPONSE
        if packet.packet_type == SERVERDATA_AUTH_RESPONSE and self._exchange.state is ExchangeState.CONNECTING:
            if packet.request_id == AUTH_FAILED_ID:
                self._exchange.on_error("Authentication failed.")
                return
            self._exchange.on_auth()
            self._write(encode_packet(COMMAND_REQUEST_ID, SERVERDATA_EXECCOMMAND, self._exchange.command))
            self._exchange.on_command_sent()
            self._close_handle = asyncio.get_running_loop().call_later(self._close_grace, self.close)
        elif packet.packet_type == SERVERDATA_RESPONSE_VALUE and packet.request_id == COMMAND_REQUEST_ID:
            self._exchange.on_response(packet.body)

    def _write(self, data: bytes) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.write(data)


class RemoteCommandClient:
    """Send single administrative commands to game servers over RCON."""

    def __init__(
        self,
        password: str,
        *,
        timeout_seconds: float = 5,
        close_grace_seconds: float = 1,
        protocol_factory: Callable[[CommandExchange, str, float], asyncio.Protocol] = RconClientProtocol,
    ) -> None:
        self._password = password
        self._timeout = timeout_seconds
        self._close_grace = close_grace_seconds
        self._protocol_factory = protocol_factory

    async def execute(self, address: str, command: str) -> CommandResult:
        """Run one command. Never raises for network or protocol failures."""
        try:
            host, port = parse_address(address)
        except ValueError as exc:
            return CommandResult(ok=False, message=str(exc))

        loop = asyncio.get_running_loop()
        exchange = CommandExchange(command)
        transport: asyncio.BaseTransport | None = None
        try:
            async with asyncio.timeout(self._timeout):
                transport, _ = await loop.create_connection(
                    lambda: self._protocol_factory(exchange, self._password, self._close_grace), host, port
                )
                result = await exchange.result
        except TimeoutError:
            result = CommandResult(ok=False, message=f"Timed out after {self._timeout:g} seconds talking to {address}.")
        except OSError as exc:
            result = CommandResult(ok=False, message=f"Could not connect to {address}: {exc}")
        finally:
            if transport is not None and not transport.is_closing():
                transport.close()

        logger.info("rcon command finished", address=address, command=command.split(" ", 1)[0], ok=result.ok)
        return result

    async def set_map(self, address: str, map_name: str) -> CommandResult:
        return await self.execute(address, f"{CHANGELEVEL_COMMAND} {map_name}")

    async def kick_all(self, address: str) -> CommandResult:
        return await self.execute(address, KICK_ALL_COMMAND)
