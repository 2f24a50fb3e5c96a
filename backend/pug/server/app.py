from __future__ import annotations

import contextlib
import json
import re
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from pug.chat.relay import HttpChatPlatform, LoggingChatPlatform
from pug.logic.enums import GameMode
from pug.registry.maps import MapCatalog
from pug.registry.servers import ServerRegistry
from pug.server.settings import PugServerSettings
from pug.server.types import ReadyRequest, SetModeRequest, VoteRequest
from pug.servers.locator import ServerLocator
from pug.servers.query import query_server
from pug.servers.rcon import RemoteCommandClient
from pug.servers.types import parse_address
from pug.session.manager import SessionManager
from pug.session.recorder import SessionRecorder
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging
from shared.storage import LocalChannelStorage, LocalSessionRecordStorage

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from pydantic import BaseModel
    from starlette.requests import Request

    from pug.chat.protocol import ChatPlatform
    from pug.session.types import ActionResult

_MAX_REQUEST_BODY_SIZE = 4096
_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

T = TypeVar("T", bound="BaseModel")


class _BadRequestError(Exception):
    pass


def _path_id(request: Request, name: str) -> str:
    value = request.path_params[name]
    if not _ID_PATTERN.match(value):
        raise _BadRequestError(f"Invalid {name}")
    return value


async def _parse_body(request: Request, model: type[T], *, allow_empty: bool = False) -> T:
    raw_body = await request.body()
    if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
        raise _BadRequestError("Request body too large")
    try:
        body = {} if allow_empty and not raw_body.strip() else json.loads(raw_body)
        if not isinstance(body, dict):
            raise TypeError("body must be a JSON object")
        return model(**body)
    except (ValueError, TypeError, UnicodeDecodeError, ValidationError) as e:  # fmt: skip
        raise _BadRequestError("Invalid request body") from e


def _result_response(result: ActionResult) -> JSONResponse:
    return JSONResponse(result.model_dump())


def _manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


async def status(request: Request) -> JSONResponse:
    summary = _manager(request).status_summary()
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT, **summary.model_dump()})


async def get_channel(request: Request) -> JSONResponse:
    channel_id = _path_id(request, "channel_id")
    manager = _manager(request)
    channel = manager.get_channel(channel_id)
    if channel is None:
        return JSONResponse({"error": "Channel not set up"}, status_code=HTTPStatus.NOT_FOUND)
    session = manager.get_session(channel_id)
    return JSONResponse(
        {
            "channel": channel.model_dump(mode="json"),
            "session": session.model_dump(mode="json") if session is not None else None,
        },
    )


async def set_mode(request: Request) -> JSONResponse:
    channel_id = _path_id(request, "channel_id")
    body = await _parse_body(request, SetModeRequest)
    return _result_response(await _manager(request).setup_channel(channel_id, body.mode))


async def start_game(request: Request) -> JSONResponse:
    return _result_response(await _manager(request).start(_path_id(request, "channel_id")))


async def stop_game(request: Request) -> JSONResponse:
    return _result_response(await _manager(request).stop(_path_id(request, "channel_id")))


async def channel_status(request: Request) -> JSONResponse:
    return _result_response(await _manager(request).status(_path_id(request, "channel_id")))


async def join(request: Request) -> JSONResponse:
    channel_id = _path_id(request, "channel_id")
    player_id = _path_id(request, "player_id")
    return _result_response(await _manager(request).add_player(channel_id, player_id))


async def leave(request: Request) -> JSONResponse:
    channel_id = _path_id(request, "channel_id")
    player_id = _path_id(request, "player_id")
    return _result_response(await _manager(request).remove_player(channel_id, player_id))


async def ready(request: Request) -> JSONResponse:
    channel_id = _path_id(request, "channel_id")
    player_id = _path_id(request, "player_id")
    body = await _parse_body(request, ReadyRequest, allow_empty=True)
    seconds = body.minutes * 60 if body.minutes is not None else None
    return _result_response(await _manager(request).ready_player(channel_id, player_id, seconds))


async def vote(request: Request) -> JSONResponse:
    channel_id = _path_id(request, "channel_id")
    player_id = _path_id(request, "player_id")
    body = await _parse_body(request, VoteRequest)
    return _result_response(await _manager(request).vote_map(channel_id, player_id, body.map_name))


async def vacate(request: Request) -> JSONResponse:
    address = request.path_params["address"]
    try:
        parse_address(address)
    except ValueError as e:
        raise _BadRequestError(str(e)) from e
    return _result_response(await _manager(request).vacate(address))


async def _bad_request_handler(_request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=HTTPStatus.BAD_REQUEST)


def _build_session_manager(settings: PugServerSettings, chat: ChatPlatform) -> SessionManager:
    session_settings = settings.to_session_settings()
    maps = MapCatalog.from_yaml(Path(settings.maps_path) if settings.maps_path else None)
    maps.require_modes(GameMode)
    registry = ServerRegistry(Path(settings.servers_path) if settings.servers_path else None)
    if not registry.get_servers():
        logger.warning("no game servers configured")

    locator = ServerLocator(
        registry.get_addresses(),
        query_server,
        attempts=session_settings.server_search_attempts,
        interval_seconds=session_settings.server_search_interval_seconds,
        query_timeout_seconds=session_settings.server_query_timeout_seconds,
    )
    commands = RemoteCommandClient(
        settings.rcon_password,
        timeout_seconds=session_settings.rcon_timeout_seconds,
        close_grace_seconds=session_settings.rcon_close_grace_seconds,
    )
    return SessionManager(
        session_settings,
        maps,
        chat,
        locator,
        commands,
        recorder=SessionRecorder(LocalSessionRecordStorage(str(settings.records_dir))),
        channel_storage=LocalChannelStorage(str(settings.channels_dir)),
    )


def create_app(
    settings: PugServerSettings | None = None,
    session_manager: SessionManager | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = PugServerSettings()  # ty: ignore[missing-argument]

    # When the app builds its own SessionManager it also owns the chat client.
    owned_chat: ChatPlatform | None = None
    if session_manager is None:
        if settings.chat_relay_url:
            owned_chat = HttpChatPlatform(settings.chat_relay_url)
        else:
            owned_chat = LoggingChatPlatform()
        session_manager = _build_session_manager(settings, owned_chat)

    manager = session_manager

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        await manager.load_channels()
        logger.info("pug coordinator ready")
        yield
        await manager.shutdown()
        if owned_chat is not None:
            await owned_chat.aclose()

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        Route("/channels/{channel_id}", get_channel, methods=["GET"]),
        Route("/channels/{channel_id}/mode", set_mode, methods=["PUT"]),
        Route("/channels/{channel_id}/start", start_game, methods=["POST"]),
        Route("/channels/{channel_id}/stop", stop_game, methods=["POST"]),
        Route("/channels/{channel_id}/status", channel_status, methods=["GET"]),
        Route("/channels/{channel_id}/players/{player_id}", join, methods=["POST"]),
        Route("/channels/{channel_id}/players/{player_id}", leave, methods=["DELETE"]),
        Route("/channels/{channel_id}/players/{player_id}/ready", ready, methods=["POST"]),
        Route("/channels/{channel_id}/players/{player_id}/vote", vote, methods=["POST"]),
        Route("/servers/{address}/vacate", vacate, methods=["POST"]),
    ]

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={_BadRequestError: _bad_request_handler},
    )
    app.state.settings = settings
    app.state.session_manager = manager
    return app


def get_app() -> Starlette:  # pragma: no cover  # deadcode: ignore
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    _settings = PugServerSettings()  # ty: ignore[missing-argument]
    setup_logging(log_dir=_settings.log_dir)
    return create_app(settings=_settings)
