from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class SaveCodeRequest(BaseModel):
    code: str

class CodeResponse(BaseModel):
    code: str

class MessageResponse(BaseModel):
    message: str

class NewRoomResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")

class KeepAliveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    deleted_count: int = Field(alias="deletedCount")
    failed_count: int = Field(0, alias="failedCount")

class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None

class HealthResponse(BaseModel):
    status: str
