from typing import FrozenSet, Iterable, List, Sequence

from db.document_repository import DocumentRepository
from db.models import INDEXING_READY, DocumentRecord
from room_doc_chat.auth.identity import RoleResolver, UserIdentity
from room_doc_chat.logger import GLOBAL_LOGGER as log


def _decide(
    allowed_roles: Iterable[str],
    user_roles: Iterable[str],
    allowed_users: Iterable[str],
    user_id: str,
) -> bool:
    has_role_access = bool(set(allowed_roles) & set(user_roles))
    is_listed = user_id in set(allowed_users)
    return has_role_access or is_listed


class AccessGate:
    """
    Decides whether a user may query a file or a room.

    decision = (file roles ∩ user roles ≠ ∅) OR (user id in the file's allow-list)

    Any lookup failure is a denial. Callers only ever see True/False, never
    the reason.
    """

    def __init__(self, repository: DocumentRepository, role_resolver: RoleResolver):
        self.repository = repository
        self.role_resolver = role_resolver

    async def authorize(self, file: str, user: UserIdentity) -> bool:
        try:
            allowed_roles = await self.repository.roles_allowed_for_file(file)
            user_roles = await self.role_resolver.roles_for(user)
            allowed_users = await self.repository.users_allowed_for_file(file)
        except Exception as e:
            log.error(
                "Access lookup failed, denying | file=%s | user_id=%s | error=%r",
                file,
                user.id,
                e,
            )
            return False

        allowed = _decide(allowed_roles, user_roles, allowed_users, user.id)
        log.info("Access decision | file=%s | user_id=%s | allowed=%s", file, user.id, allowed)
        return allowed

    async def cleared_documents(self, room_id: str, user: UserIdentity) -> FrozenSet[str]:
        """
        Ids of the ready documents in a room that the user may read.

        Empty unless the room holds at least one ready document and the user
        may read every one of them, since room retrieval draws on all of them.
        Retrieval for the turn is then restricted to exactly these ids.
        """
        try:
            records = await self.repository.list_by_room(room_id, status=INDEXING_READY)
            user_roles = await self.role_resolver.roles_for(user)
        except Exception as e:
            log.error(
                "Access lookup failed, denying | room_id=%s | user_id=%s | error=%r",
                room_id,
                user.id,
                e,
            )
            return frozenset()

        if not records:
            log.info("Access denied, no ready documents | room_id=%s | user_id=%s", room_id, user.id)
            return frozenset()

        allowed = all(
            _decide(r.roles_allowed or [], user_roles, r.users_allowed or [], user.id)
            for r in records
        )
        log.info("Access decision | room_id=%s | user_id=%s | allowed=%s", room_id, user.id, allowed)
        return frozenset(r.id for r in records) if allowed else frozenset()

    async def authorize_room(self, room_id: str, user: UserIdentity) -> bool:
        return bool(await self.cleared_documents(room_id, user))

    async def readable(
        self, records: Sequence[DocumentRecord], user: UserIdentity
    ) -> List[DocumentRecord]:
        """The subset of records the user may read; empty on a lookup failure."""
        try:
            user_roles = await self.role_resolver.roles_for(user)
        except Exception as e:
            log.error("Role lookup failed, denying | user_id=%s | error=%r", user.id, e)
            return []

        return [
            r
            for r in records
            if _decide(r.roles_allowed or [], user_roles, r.users_allowed or [], user.id)
        ]
