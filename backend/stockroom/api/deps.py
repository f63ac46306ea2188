from __future__ import annotations

from fastapi import Header

SYSTEM_USER = "system"


def acting_user(x_user_id: str | None = Header(default=None)) -> str:
    """User id recorded on history rows; authentication happens upstream."""
    user_id = (x_user_id or "").strip()
    return user_id or SYSTEM_USER
