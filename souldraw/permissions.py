"""Role based command permissions."""

from __future__ import annotations

import discord
from discord import app_commands

from .config import RoleConfig

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset(
        {"sd", "rsd", "cnl", "rm", "draw", "st", "an", "hlp", "skulls_admin"}
    ),
    "moderator": frozenset({"st", "an", "hlp"}),
    "participant": frozenset({"hlp"}),
}

# usable by anyone, including in DMs
PUBLIC_COMMANDS = frozenset({"hlp", "skulls"})


def member_roles(member: object, roles: RoleConfig) -> list[str]:
    """Return the permission roles ``member`` holds, highest first."""
    role_ids = {getattr(role, "id", None) for role in getattr(member, "roles", None) or []}
    held = []
    if role_ids & set(roles.admin_role_ids):
        held.append("admin")
    if role_ids & set(roles.moderator_role_ids):
        held.append("moderator")
    if role_ids & set(roles.participant_role_ids):
        held.append("participant")
    return held


def highest_role(member: object, roles: RoleConfig) -> str:
    guild_perms = getattr(member, "guild_permissions", None)
    if getattr(guild_perms, "administrator", False):
        return "admin"
    held = member_roles(member, roles)
    return held[0] if held else "none"


def has_permission(member: object, command: str, roles: RoleConfig) -> bool:
    if command in PUBLIC_COMMANDS:
        return True
    guild_perms = getattr(member, "guild_permissions", None)
    if guild_perms is None:
        # not a guild member (DM)
        return False
    if getattr(guild_perms, "administrator", False):
        return True
    return any(
        command in ROLE_PERMISSIONS[role] for role in member_roles(member, roles)
    )


def allowed_commands(member: object, roles: RoleConfig) -> set[str]:
    every = set().union(*ROLE_PERMISSIONS.values()) | PUBLIC_COMMANDS
    return {command for command in every if has_permission(member, command, roles)}


def missing_permission_message(command: str) -> str:
    return f"You need the Moderator or Admin role to use the `/{command}` command."


def require_permission(command: str, roles: RoleConfig):
    async def predicate(interaction: discord.Interaction) -> bool:
        if has_permission(interaction.user, command, roles):
            return True
        raise app_commands.CheckFailure(missing_permission_message(command))

    return app_commands.check(predicate)


__all__ = [
    "ROLE_PERMISSIONS",
    "PUBLIC_COMMANDS",
    "member_roles",
    "highest_role",
    "has_permission",
    "allowed_commands",
    "missing_permission_message",
    "require_permission",
]
