"""Abstract chat platform the session engine talks to."""

from abc import ABC, abstractmethod

MAP_VOTE_PREFIX = "map-vote-"


class ChatDeliveryError(Exception):
    """A message could not be delivered to the chat platform."""


class ChatPlatform(ABC):
    """
    Outbound side of the chat front-end.

    The engine never waits on these calls inside a session action: notices
    are queued and delivered afterwards, and failures are logged and dropped.
    Implementations raise ChatDeliveryError for delivery failures.
    """

    @abstractmethod
    async def send_channel_message(self, channel_id: str, text: str, mentions: list[str] | None = None) -> str | None:
        """
        Post a message to a channel, optionally pinging players.

        Return the platform's message id when it provides one.
        """
        ...

    @abstractmethod
    async def send_direct_message(self, player_id: str, text: str) -> None:
        """
        Send a private message to one player.
        """
        ...

    @abstractmethod
    async def present_choices(self, channel_id: str, text: str, options: list[str]) -> None:
        """
        Show one button per option. Button ids are `map-vote-<option>`.
        """
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Release any held resources."""


def choice_id(option: str) -> str:
    return f"{MAP_VOTE_PREFIX}{option}"


def option_from_choice_id(choice: str) -> str | None:
    """Inverse of choice_id; None for ids that are not map votes."""
    if not choice.startswith(MAP_VOTE_PREFIX):
        return None
    return choice.removeprefix(MAP_VOTE_PREFIX) or None
