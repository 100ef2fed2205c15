"""Configuration helpers for the SoulDraw runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

from lottery_bot.models import HOUR_MS, MINUTE_MS, LotterySettings

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_list(name: str) -> list[str]:
    """Split a comma separated variable, dropping blanks."""
    raw = os.getenv(name) or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass(frozen=True)
class RoleConfig:
    admin_role_ids: tuple[int, ...] = ()
    moderator_role_ids: tuple[int, ...] = ()
    participant_role_ids: tuple[int, ...] = ()


def _role_ids(name: str) -> tuple[int, ...]:
    ids = []
    for value in env_list(name):
        try:
            ids.append(int(value))
        except ValueError:
            continue
    return tuple(ids)


def read_role_config() -> RoleConfig:
    return RoleConfig(
        admin_role_ids=_role_ids("ADMIN_ROLE_ID"),
        moderator_role_ids=_role_ids("MODERATOR_ROLE_ID"),
        participant_role_ids=_role_ids("PARTICIPANT_ROLE_ID"),
    )


def read_lottery_settings() -> LotterySettings:
    defaults = LotterySettings()
    min_minutes = env_int("LOTTERY_MIN_DURATION_MINUTES", default=None)
    max_hours = env_int("LOTTERY_MAX_DURATION_HOURS", default=None)
    grace_minutes = env_int("LOTTERY_ANNOUNCEMENT_GRACE_MINUTES", default=None)
    return LotterySettings(
        min_duration_ms=(
            min_minutes * MINUTE_MS if min_minutes else defaults.min_duration_ms
        ),
        max_duration_ms=max_hours * HOUR_MS if max_hours else defaults.max_duration_ms,
        max_winners=env_int("LOTTERY_MAX_WINNERS", default=defaults.max_winners)
        or defaults.max_winners,
        announcement_grace_ms=(
            grace_minutes * MINUTE_MS
            if grace_minutes is not None and grace_minutes >= 0
            else defaults.announcement_grace_ms
        ),
        refund_on_removal=env_bool(
            "LOTTERY_REFUND_ON_REMOVAL", default=defaults.refund_on_removal
        ),
    )


@dataclass(slots=True)
class EnvironmentConfig:
    discord_token: str
    lottery_table_name: str
    skulls_table_name: str
    analytics_table_name: str | None
    aws_region: str
    log_level: str
    roles: RoleConfig
    settings: LotterySettings

    @classmethod
    def load(cls) -> "EnvironmentConfig":
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")
        lottery_table_name = need("LOTTERY_TABLE_NAME")
        skulls_table_name = need("SKULLS_TABLE_NAME")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        return cls(
            discord_token=discord_token,
            lottery_table_name=lottery_table_name,
            skulls_table_name=skulls_table_name,
            analytics_table_name=os.getenv("ANALYTICS_TABLE_NAME") or None,
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            roles=read_role_config(),
            settings=read_lottery_settings(),
        )


__all__ = [
    "env_bool",
    "env_int",
    "env_list",
    "RoleConfig",
    "read_role_config",
    "read_lottery_settings",
    "EnvironmentConfig",
]
