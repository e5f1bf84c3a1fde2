"""Credential rotation for HTTP-API providers."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

DEFAULT_COOLDOWN_MINUTES = 5.0


@dataclass(slots=True)
class AuthProfile:
    api_key: str
    label: str | None = None
    cooldown_minutes: float | None = None
    _cooldown_until: float | None = field(default=None, init=False, repr=False)
    _last_used_at: float | None = field(default=None, init=False, repr=False)

    @property
    def cooldown_until(self) -> float | None:
        return self._cooldown_until

    @property
    def last_used_at(self) -> float | None:
        return self._last_used_at

    def cooling_down(self, now: float) -> bool:
        return self._cooldown_until is not None and self._cooldown_until > now


class AuthProfilePool:
    """Round-robin over API keys, skipping keys that recently failed auth.

    The pool never refuses to hand out a key: when every profile is
    cooling down the current one is returned anyway.
    """

    def __init__(
        self,
        profiles: Sequence[AuthProfile],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not profiles:
            raise ValueError("auth profile pool requires at least one profile")
        self._profiles = list(profiles)
        self._index = 0
        self._clock = clock

    def __len__(self) -> int:
        return len(self._profiles)

    @property
    def index(self) -> int:
        return self._index

    def active_profile(self) -> AuthProfile:
        now = self._clock()
        count = len(self._profiles)
        for offset in range(count):
            idx = (self._index + offset) % count
            profile = self._profiles[idx]
            if not profile.cooling_down(now):
                self._index = idx
                profile._last_used_at = now
                return profile
        profile = self._profiles[self._index]
        profile._last_used_at = now
        return profile

    def mark_failure(self) -> AuthProfile:
        """Put the active profile on cooldown and advance to the next one."""
        now = self._clock()
        profile = self._profiles[self._index]
        minutes = profile.cooldown_minutes or DEFAULT_COOLDOWN_MINUTES
        profile._cooldown_until = now + minutes * 60
        self._index = (self._index + 1) % len(self._profiles)
        return profile

    def snapshot(self) -> list[dict[str, object]]:
        now = self._clock()
        rows: list[dict[str, object]] = []
        for idx, profile in enumerate(self._profiles):
            remaining = 0.0
            if profile.cooling_down(now) and profile.cooldown_until is not None:
                remaining = round(profile.cooldown_until - now, 1)
            rows.append(
                {
                    "label": profile.label or f"profile-{idx + 1}",
                    "active": idx == self._index,
                    "cooling_down": remaining > 0,
                    "cooldown_remaining_seconds": remaining,
                }
            )
        return rows
