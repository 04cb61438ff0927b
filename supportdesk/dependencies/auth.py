from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    REQUESTER = "requester"
    VIEWER = "viewer"


class User:
    """Identity supplied by the administrative session collaborator."""

    def __init__(self, user_id: str, display_name: str, roles: tuple[Role, ...]):
        self.user_id = user_id
        self.display_name = display_name
        self.roles = roles

    def has_role(self, role: Role) -> bool:
        return role in self.roles


TOKEN_USER_MAP: dict[str, tuple[str, str, tuple[Role, ...]]] = {
    "admin-token": ("admin-1", "Alice", (Role.ADMIN, Role.VIEWER)),
    "admin2-token": ("admin-2", "Bob", (Role.ADMIN, Role.VIEWER)),
    "requester-token": ("user-1", "Carol", (Role.REQUESTER, Role.VIEWER)),
    "viewer-token": ("viewer", "Viewer", (Role.VIEWER,)),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return the user associated with the provided bearer token.

    Authentication lives outside this service; the static map stands in for the
    session store during development.
    """

    if token is None:
        return User(user_id="anonymous", display_name="Anonymous", roles=())

    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user_id, display_name, roles = TOKEN_USER_MAP[token]
    return User(user_id=user_id, display_name=display_name, roles=roles)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)]
) -> User:
    token = credentials.credentials if credentials is not None else None
    return resolve_user_from_token(token)


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
