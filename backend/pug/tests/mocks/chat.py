from pug.chat.protocol import ChatDeliveryError, ChatPlatform


class RecordingChatPlatform(ChatPlatform):
    """In-memory chat platform that records every delivery."""

    def __init__(self, *, fail: bool = False) -> None:
        self.channel_messages: list[tuple[str, str, list[str]]] = []  # (channel_id, text, mentions)
        self.direct_messages: list[tuple[str, str]] = []  # (player_id, text)
        self.choices: list[tuple[str, str, list[str]]] = []  # (channel_id, text, options)
        self.fail = fail

    async def send_channel_message(self, channel_id: str, text: str, mentions: list[str] | None = None) -> str | None:
        if self.fail:
            raise ChatDeliveryError("relay down")
        self.channel_messages.append((channel_id, text, list(mentions or [])))
        return str(len(self.channel_messages))

    async def send_direct_message(self, player_id: str, text: str) -> None:
        if self.fail:
            raise ChatDeliveryError("relay down")
        self.direct_messages.append((player_id, text))

    async def present_choices(self, channel_id: str, text: str, options: list[str]) -> None:
        if self.fail:
            raise ChatDeliveryError("relay down")
        self.choices.append((channel_id, text, list(options)))

    def texts(self, channel_id: str) -> list[str]:
        """All channel message texts for one channel, in delivery order."""
        return [text for cid, text, _ in self.channel_messages if cid == channel_id]

    def joined(self, channel_id: str) -> str:
        return "\n".join(self.texts(channel_id))

    def clear(self) -> None:
        self.channel_messages.clear()
        self.direct_messages.clear()
        self.choices.clear()
