from pydantic import BaseModel


class GameServer(BaseModel):
    address: str  # host:port, also used for RCON
    name: str | None = None
