from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import get_context, get_user
from room_doc_chat.app_context import AppContext
from room_doc_chat.auth.identity import UserIdentity
from room_doc_chat.exception.custom_exception import AuthorizationDenied, ValidationError
from room_doc_chat.logger import GLOBAL_LOGGER as log

router = APIRouter()

UNAUTHORIZED = {"message": "Unauthorized"}
INTERNAL_ERROR = {"message": "Internal server error"}


class AskRequest(BaseModel):
    """Either `file` (single document) or `roomId` (room conversation) plus the question."""

    model_config = ConfigDict(populate_by_name=True)

    file: Optional[str] = None
    room_id: Optional[str] = Field(None, alias="roomId")
    question: str = ""


@router.post("/files/ask")
async def ask(
    req: AskRequest,
    user: Optional[UserIdentity] = Depends(get_user),
    ctx: AppContext = Depends(get_context),
):
    """
    Question endpoint:
      1. Identify the caller (X-User-Id header)
      2. Access gate for the room or file
      3. contextualize -> retrieve -> generate in the session's chain
    Only "unauthorized" and "internal error" are distinguished to the caller.
    """
    if user is None:
        log.warning("Ask rejected: no caller identity")
        return JSONResponse(status_code=401, content=UNAUTHORIZED)

    try:
        if bool(req.file) == bool(req.room_id):
            raise ValidationError("Exactly one of 'file' or 'roomId' is required")

        if req.room_id:
            log.info("Room question received | room_id=%s | user_id=%s", req.room_id, user.id)
            result = await ctx.qa.ask_room(req.room_id, req.question, user)
        else:
            log.info("File question received | file=%s | user_id=%s", req.file, user.id)
            result = await ctx.qa.ask_file(req.file, req.question, user)

    except AuthorizationDenied:
        log.warning(
            "Ask denied | user_id=%s | file=%s | room_id=%s", user.id, req.file, req.room_id
        )
        return JSONResponse(status_code=401, content=UNAUTHORIZED)
    except Exception as e:
        log.error("Ask failed | user_id=%s | error=%s", user.id, e)
        return JSONResponse(status_code=500, content=INTERNAL_ERROR)

    return {"results": result.to_dict()}
