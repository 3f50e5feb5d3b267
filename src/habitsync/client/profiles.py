"""Named tuning presets for the request coordinator and refresh scheduler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SyncProfile:
    """Cache and polling parameters, in seconds.

    ``cache_ttl`` of 0 disables caching, ``request_cooldown`` of 0 disables the
    cooldown and ``poll_interval`` of ``None`` disables background polling.
    ``batched`` selects the single dashboard read over separate collection reads.
    """

    name: str
    cache_ttl: float
    request_cooldown: float
    poll_interval: Optional[float]
    batched: bool


BASIC = SyncProfile("basic", cache_ttl=0, request_cooldown=0, poll_interval=None, batched=False)
STANDARD = SyncProfile(
    "standard", cache_ttl=5 * 60, request_cooldown=30, poll_interval=5 * 60, batched=False
)
AGGRESSIVE = SyncProfile(
    "aggressive", cache_ttl=10 * 60, request_cooldown=60, poll_interval=None, batched=True
)
EXTREME = SyncProfile(
    "extreme", cache_ttl=30 * 60, request_cooldown=5 * 60, poll_interval=30 * 60, batched=True
)

PROFILES: dict[str, SyncProfile] = {
    profile.name: profile for profile in (BASIC, STANDARD, AGGRESSIVE, EXTREME)
}


def get_profile(name: str) -> SyncProfile:
    """Look up a preset by (case-insensitive) name."""

    try:
        return PROFILES[name.strip().lower()]
    except KeyError as exc:
        known = ", ".join(sorted(PROFILES))
        raise ValueError(f"Unknown sync profile {name!r}; expected one of: {known}") from exc


__all__ = ["AGGRESSIVE", "BASIC", "EXTREME", "PROFILES", "STANDARD", "SyncProfile", "get_profile"]
