"""Notification repository -- read-only, used by the workspace context pack."""

from app.repos.db import get_pool


async def list_notifications(user_id: str, limit: int = 10) -> list[dict]:
    """The user's newest notifications."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, type, title, message, read, created_at
        FROM notifications
        WHERE user_id = $1
        ORDER BY created_at DESC
        LIMIT $2
        """,
        user_id,
        limit,
    )
    return [dict(r) for r in rows]
