from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


class ClientEvent(BaseModel):
    """Envelope of every WebSocket frame: {"event": name, "data": payload}."""
    event: str
    data: Any = None

class RoomEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")

class CodeChangeEvent(RoomEvent):
    code: str

class SignalEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: Optional[str] = Field(None, alias="roomId")
    payload: Any = None
    to: str


def parse_room_event(data: Any) -> RoomEvent:
    # join-room / leave-room accept either the bare room id or {"roomId": ...}
    if isinstance(data, str):
        return RoomEvent(room_id=data)
    return RoomEvent.model_validate(data)
