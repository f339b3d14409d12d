from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from api.dependencies import get_context, get_user
from room_doc_chat.app_context import AppContext
from room_doc_chat.auth.identity import UserIdentity
from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.src.document_ingestion.data_ingestion import split_csv_field

router = APIRouter()

UNAUTHORIZED = {"message": "Unauthorized"}


@router.post("/files")
async def upload_file(
    file: UploadFile = File(...),
    room_ids: str = Form(""),
    roles_allowed: str = Form(""),
    users_allowed: str = Form(""),
    ctx: AppContext = Depends(get_context),
):
    """
    Upload endpoint:
      - Creates the DocumentRecord in 'pending' state
      - Extracts, chunks and indexes the file
      - Responds once the record is 'ready' (or reports failure)
    """
    try:
        data = await file.read()
        record = await ctx.ingestor.ingest(
            filename=file.filename or "",
            data=data,
            room_ids=split_csv_field(room_ids),
            roles_allowed=split_csv_field(roles_allowed),
            users_allowed=split_csv_field(users_allowed),
        )
    except Exception as e:
        # the caller only learns that the upload failed; detail stays in the logs
        log.error("Upload failed | filename=%s | error=%s", file.filename, e)
        return JSONResponse(status_code=500, content={"message": "Failed to save file"})

    log.info("Upload completed | id=%s | file=%s", record.id, record.file)
    return {"message": "File added successfully", "id": record.id}


@router.get("/files")
async def list_files(
    user: Optional[UserIdentity] = Depends(get_user),
    ctx: AppContext = Depends(get_context),
):
    """Documents the caller may read, without their permission lists."""
    if user is None:
        log.warning("File listing rejected: no caller identity")
        return JSONResponse(status_code=401, content=UNAUTHORIZED)

    records = await ctx.gate.readable(await ctx.repository.list_documents(), user)
    return [r.to_public_dict() for r in records]


@router.get("/files/{file}")
async def get_file(
    file: str,
    user: Optional[UserIdentity] = Depends(get_user),
    ctx: AppContext = Depends(get_context),
):
    # unknown and forbidden files look the same to the caller
    if user is None or not await ctx.gate.authorize(file, user):
        log.warning("File lookup denied | file=%s | user_id=%s", file, user.id if user else None)
        return JSONResponse(status_code=401, content=UNAUTHORIZED)

    record = await ctx.repository.get_by_file(file)
    if record is None:
        return JSONResponse(status_code=401, content=UNAUTHORIZED)
    return record.to_public_dict()
