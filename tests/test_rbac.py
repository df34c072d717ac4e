import pytest
from fastapi import HTTPException

from ticketbox.core.config import Settings
from ticketbox.dependencies.auth import Role, User, resolve_user_from_token, role_required


@pytest.mark.asyncio
async def test_role_required_allows_authorized_user():
    dependency = role_required(Role.ADMIN)
    user = User("alice", (Role.ADMIN,))
    result = await dependency(user)  # type: ignore[arg-type]
    assert result.username == "alice"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_user():
    dependency = role_required(Role.STAFF)
    user = User("bob", (Role.VIEWER,))
    with pytest.raises(HTTPException) as exc:
        await dependency(user)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == "Insufficient permissions"


def test_tokens_map_to_role_grants():
    settings = Settings(api_tokens={"s3cret": "staff", "root": "admin"})

    staff = resolve_user_from_token("s3cret", settings)
    admin = resolve_user_from_token("root", settings)

    assert staff.has_role(Role.STAFF) and staff.has_role(Role.VIEWER)
    assert not staff.has_role(Role.ADMIN)
    assert admin.has_role(Role.ADMIN) and admin.has_role(Role.STAFF)


def test_missing_token_is_anonymous_viewer():
    user = resolve_user_from_token(None, Settings())
    assert user.username == "anonymous"
    assert user.roles == (Role.VIEWER,)


@pytest.mark.parametrize("token_map", [{}, {"bad": "superuser"}])
def test_unknown_tokens_are_rejected(token_map):
    with pytest.raises(HTTPException) as exc:
        resolve_user_from_token("bad", Settings(api_tokens=token_map))
    assert exc.value.status_code == 401
