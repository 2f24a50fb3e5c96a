"""Chat platform implementations.

HttpChatPlatform forwards every notice as JSON to a relay service that owns
the real chat connection (the bot front-end). LoggingChatPlatform only logs and
is used when no relay is configured.
"""

from http import HTTPStatus

import httpx
import structlog

from pug.chat.protocol import ChatDeliveryError, ChatPlatform, choice_id

logger = structlog.get_logger()

_DEFAULT_TIMEOUT = 5.0


class HttpChatPlatform(ChatPlatform):
    """
    POST notices to a chat relay.

    Endpoints, relative to base_url:
        POST /channels/{channel_id}/messages  {"text", "mentions"} -> {"message_id"?}
        POST /users/{player_id}/messages      {"text"}
        POST /channels/{channel_id}/choices   {"text", "options": [{"id", "label"}]}
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=_DEFAULT_TIMEOUT)
        self._owns_client = client is None

    async def send_channel_message(self, channel_id: str, text: str, mentions: list[str] | None = None) -> str | None:
        response = await self._post(f"/channels/{channel_id}/messages", {"text": text, "mentions": mentions or []})
        try:
            body = response.json()
        except ValueError:
            return None
        message_id = body.get("message_id") if isinstance(body, dict) else None
        return str(message_id) if message_id is not None else None

    async def send_direct_message(self, player_id: str, text: str) -> None:
        await self._post(f"/users/{player_id}/messages", {"text": text})

    async def present_choices(self, channel_id: str, text: str, options: list[str]) -> None:
        await self._post(
            f"/channels/{channel_id}/choices",
            {"text": text, "options": [{"id": choice_id(option), "label": option} for option in options]},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.RequestError as e:
            raise ChatDeliveryError(f"Failed to reach chat relay: {e}") from e
        if response.status_code >= HTTPStatus.BAD_REQUEST:
            raise ChatDeliveryError(f"Chat relay returned {response.status_code}: {response.text}")
        return response


class LoggingChatPlatform(ChatPlatform):
    async def send_channel_message(self, channel_id: str, text: str, mentions: list[str] | None = None) -> str | None:
        logger.info("channel message", channel_id=channel_id, text=text, mentions=mentions or [])
        return None

    async def send_direct_message(self, player_id: str, text: str) -> None:
        logger.info("direct message", player_id=player_id, text=text)

    async def present_choices(self, channel_id: str, text: str, options: list[str]) -> None:
        logger.info("choices presented", channel_id=channel_id, text=text, options=options)
