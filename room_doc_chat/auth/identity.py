from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel

from room_doc_chat.logger import GLOBAL_LOGGER as log


class UserIdentity(BaseModel):
    """The caller of a query, as established by the HTTP layer."""

    id: str
    name: Optional[str] = None


class RoleResolver(ABC):
    """Resolves the roles a user holds. How roles are sourced is up to the implementation."""

    @abstractmethod
    async def roles_for(self, user: UserIdentity) -> Set[str]:
        ...


class ConfigRoleResolver(RoleResolver):
    """
    Roles from the `auth` section of the config: an explicit per-user mapping,
    falling back to `default_roles` for users that are not listed.
    """

    def __init__(
        self,
        user_roles: Dict[str, List[str]],
        default_roles: Optional[Iterable[str]] = None,
    ):
        self.user_roles = {uid: set(roles) for uid, roles in user_roles.items()}
        self.default_roles = set(default_roles or [])

    async def roles_for(self, user: UserIdentity) -> Set[str]:
        roles = self.user_roles.get(user.id, self.default_roles)
        log.debug("Resolved user roles | user_id=%s | roles=%s", user.id, sorted(roles))
        return set(roles)
