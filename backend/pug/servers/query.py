"""
Source engine A2S_INFO status query over UDP.

Only the single-packet reply is supported; game servers answer A2S_INFO in one
datagram. A server may first answer with a challenge (0x41), in which case the
request is sent again with the 4-byte challenge appended.

Reply layout after the 0xFFFFFFFF header:
    0x49, protocol (byte), name, map, folder, game (C strings),
    app id (short), players (byte), max players (byte), bots (byte), ...
"""

from __future__ import annotations

import asyncio
import struct

import structlog

from pug.servers.types import ServerQueryError, ServerStatus, parse_address

logger = structlog.get_logger()

SIMPLE_HEADER = b"\xff\xff\xff\xff"
A2S_INFO_REQUEST = SIMPLE_HEADER + b"TSource Engine Query\x00"
S2C_CHALLENGE = 0x41
S2A_INFO = 0x49
_CHALLENGE_LENGTH = 4


class _InfoReader:
    """Cursor over an A2S_INFO payload."""

    def __init__(self, data: bytes, offset: int) -> None:
        self._data = data
        self._offset = offset

    def byte(self) -> int:
        if self._offset >= len(self._data):
            raise ValueError("reply truncated")
        value = self._data[self._offset]
        self._offset += 1
        return value

    def short(self) -> int:
        try:
            (value,) = struct.unpack_from("<h", self._data, self._offset)
        except struct.error as exc:
            raise ValueError("reply truncated") from exc
        self._offset += 2
        return value

    def string(self) -> str:
        end = self._data.find(b"\x00", self._offset)
        if end < 0:
            raise ValueError("unterminated string in reply")
        value = self._data[self._offset : end].decode("utf-8", errors="replace")
        self._offset = end + 1
        return value


def parse_info_response(address: str, data: bytes) -> ServerStatus:
    """Decode an S2A_INFO datagram. Raise ServerQueryError on anything else."""
    if len(data) < 5 or not data.startswith(SIMPLE_HEADER):
        raise ServerQueryError(address, "unexpected reply header")
    if data[4] != S2A_INFO:
        raise ServerQueryError(address, f"unexpected reply type 0x{data[4]:02x}")

    reader = _InfoReader(data, 5)
    try:
        reader.byte()  # protocol version
        name = reader.string()
        map_name = reader.string()
        reader.string()  # folder
        reader.string()  # game
        reader.short()  # steam app id
        player_count = reader.byte()
        max_players = reader.byte()
        bot_count = reader.byte()
    except ValueError as exc:
        raise ServerQueryError(address, f"malformed info reply: {exc}") from exc

    return ServerStatus(
        address=address,
        name=name,
        map_name=map_name,
        player_count=player_count,
        max_players=max_players,
        bot_count=bot_count,
    )


class _QueryProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self._replies: asyncio.Queue[bytes | OSError] = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: tuple[str | object, int]) -> None:
        self._replies.put_nowait(data)

    def error_received(self, exc: OSError) -> None:
        self._replies.put_nowait(exc)

    async def receive(self) -> bytes:
        reply = await self._replies.get()
        if isinstance(reply, OSError):
            raise reply
        return reply


async def query_server(address: str, timeout: float = 2.0) -> ServerStatus:
    """Ask a server for its name, map and player count."""
    try:
        host, port = parse_address(address)
    except ValueError as exc:
        raise ServerQueryError(address, str(exc)) from exc

    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await loop.create_datagram_endpoint(_QueryProtocol, remote_addr=(host, port))
    except OSError as exc:
        raise ServerQueryError(address, str(exc)) from exc

    try:
        async with asyncio.timeout(timeout):
            transport.sendto(A2S_INFO_REQUEST)
            reply = await protocol.receive()
            if len(reply) >= 5 + _CHALLENGE_LENGTH and reply.startswith(SIMPLE_HEADER) and reply[4] == S2C_CHALLENGE:
                challenge = reply[5 : 5 + _CHALLENGE_LENGTH]
                transport.sendto(A2S_INFO_REQUEST + challenge)
                reply = await protocol.receive()
    except TimeoutError as exc:
        raise ServerQueryError(address, f"no reply within {timeout:g}s") from exc
    except OSError as exc:
        raise ServerQueryError(address, str(exc)) from exc
    finally:
        transport.close()

    status = parse_info_response(address, reply)
    logger.debug("server queried", address=address, players=status.player_count, map=status.map_name)
    return status
