from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ticketbox.core.config import Settings, get_settings


class Role(str, Enum):
    """Roles for the operations API."""

    ADMIN = "admin"
    STAFF = "staff"
    VIEWER = "viewer"


ROLE_GRANTS: dict[Role, tuple[Role, ...]] = {
    Role.ADMIN: (Role.ADMIN, Role.STAFF, Role.VIEWER),
    Role.STAFF: (Role.STAFF, Role.VIEWER),
    Role.VIEWER: (Role.VIEWER,),
}


class User:
    """Simple representation of an authenticated API caller."""

    def __init__(self, username: str, roles: tuple[Role, ...]):
        self.username = username
        self.roles = roles

    def has_role(self, role: Role) -> bool:
        return role in self.roles


bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None, settings: Settings) -> User:
    """Map a bearer token to a user through the ``api_tokens`` setting.

    ``api_tokens`` maps each token to a role name; the role name doubles as
    the username.
    """

    if token is None:
        return User(username="anonymous", roles=(Role.VIEWER,))

    role_name = settings.api_tokens.get(token)
    if role_name is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    try:
        role = Role(role_name)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials") from exc
    return User(username=role.value, roles=ROLE_GRANTS[role])


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token, get_settings())
    request.state.user = user
    return user


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
