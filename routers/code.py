from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from schemas.code import SaveCodeRequest, CodeResponse, MessageResponse, NewRoomResponse, KeepAliveResponse, ErrorResponse
from backend import StorageError
from context import ServiceContext, get_context
from synchronizer import InvalidRoomRequest, CodeTooLarge
from logging_config import get_logger
import uuid

logger = get_logger(__name__)

code_router = APIRouter(prefix="/api", tags=["code"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(status_code: int, error: str, message: str = None) -> JSONResponse:
    content = {"error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def invalid_request_response(e: InvalidRoomRequest) -> JSONResponse:
    return error_response(413 if isinstance(e, CodeTooLarge) else 400, str(e))


@code_router.get("/code/{room_id}", response_model=CodeResponse, responses=ERROR_RESPONSES)
async def get_code(room_id: str, context: ServiceContext = Depends(get_context)):
    logger.info(f"Code fetch request for room {room_id}")
    try:
        code = await context.synchronizer.read_room(room_id)
    except InvalidRoomRequest as e:
        return invalid_request_response(e)
    except StorageError as e:
        logger.error(f"Error fetching code for room {room_id}: {e}", exc_info=True)
        return error_response(500, "Failed to fetch code")
    return CodeResponse(code=code)


@code_router.post("/code/{room_id}", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def save_code(room_id: str, body: SaveCodeRequest, context: ServiceContext = Depends(get_context)):
    logger.info(f"Code save request for room {room_id} ({len(body.code)} chars)")
    try:
        await context.synchronizer.write_room(room_id, body.code)
    except InvalidRoomRequest as e:
        return invalid_request_response(e)
    except StorageError as e:
        logger.error(f"Error saving code for room {room_id}: {e}", exc_info=True)
        return error_response(500, "Failed to save code")
    return MessageResponse(message="Code saved successfully")


@code_router.get("/new", response_model=NewRoomResponse)
async def new_room():
    room_id = str(uuid.uuid4())
    logger.debug(f"Generated room id {room_id}")
    return NewRoomResponse(room_id=room_id)


@code_router.get("/keep-alive", response_model=KeepAliveResponse, responses=ERROR_RESPONSES)
async def keep_alive(context: ServiceContext = Depends(get_context)):
    """
    Liveness probe that also runs the retention sweep.

    Pinged externally about every 14 minutes so the hosting process does not
    idle out. Rooms whose lastAccessedAt is older than the retention window, or
    whose code is empty, are deleted.
    """
    logger.info("Request accepted on keep-alive")
    result = await context.sweeper.sweep()
    if result.error is not None:
        return error_response(500, result.error, message="Server is alive but error in cleanup")
    message = "Server is alive" if result.ok else "Server is alive but error in cleanup"
    return KeepAliveResponse(message=message, deleted_count=result.deleted_count, failed_count=result.failed_count)
