from typing import Optional

from fastapi import Header, Request

from room_doc_chat.app_context import AppContext
from room_doc_chat.auth.identity import UserIdentity


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx


async def get_user(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
) -> Optional[UserIdentity]:
    """Caller identity from request headers. None when the caller did not identify."""
    if not x_user_id or not x_user_id.strip():
        return None
    return UserIdentity(id=x_user_id.strip(), name=x_user_name)
