from types import SimpleNamespace

import pytest
from discord import app_commands

from souldraw.config import RoleConfig
from souldraw.permissions import (
    allowed_commands,
    has_permission,
    highest_role,
    require_permission,
)

ROLES = RoleConfig(admin_role_ids=(1,), moderator_role_ids=(2,), participant_role_ids=(3,))


def member(*role_ids: int, administrator: bool = False):
    return SimpleNamespace(
        roles=[SimpleNamespace(id=role_id) for role_id in role_ids],
        guild_permissions=SimpleNamespace(administrator=administrator),
    )


@pytest.mark.parametrize(
    "role_ids,command,expected",
    [
        ((1,), "sd", True),
        ((1,), "skulls_admin", True),
        ((2,), "st", True),
        ((2,), "an", True),
        ((2,), "cnl", False),
        ((3,), "sd", False),
        ((3,), "hlp", True),
        ((), "skulls", True),
        ((), "st", False),
    ],
)
def test_role_permissions(role_ids, command, expected):
    assert has_permission(member(*role_ids), command, ROLES) is expected


def test_guild_administrator_can_do_everything():
    admin = member(administrator=True)

    assert has_permission(admin, "draw", ROLES)
    assert highest_role(admin, ROLES) == "admin"


def test_direct_messages_only_allow_public_commands():
    dm_user = SimpleNamespace(roles=[])

    assert has_permission(dm_user, "hlp", ROLES)
    assert not has_permission(dm_user, "st", ROLES)


def test_highest_role_prefers_admin():
    assert highest_role(member(3, 2), ROLES) == "moderator"
    assert highest_role(member(), ROLES) == "none"


def test_allowed_commands_for_moderator():
    assert allowed_commands(member(2), ROLES) == {"st", "an", "hlp", "skulls"}


@pytest.mark.asyncio
async def test_require_permission_raises_check_failure():
    decorator = require_permission("cnl", ROLES)

    async def command(interaction):  # pragma: no cover - never invoked
        return None

    decorated = decorator(command)
    [predicate] = decorated.__discord_app_commands_checks__

    assert await predicate(SimpleNamespace(user=member(1))) is True
    with pytest.raises(app_commands.CheckFailure):
        await predicate(SimpleNamespace(user=member(2)))
