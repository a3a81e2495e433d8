"""Authenticated session context passed into every query and mutation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Session:
    """The signed-in user. ``user_id`` is the owner scope for every row."""

    user_id: str
    access_token: str | None = None

    def owner_filter(self) -> dict[str, str]:
        return {"user_id": self.user_id}
