"""User repository -- reads against the users table."""

from app.repos.db import get_pool


async def get_user_by_id(user_id: str) -> dict | None:
    """Fetch a user by primary key. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        """
        SELECT id, name, email, image, active_organization_id
        FROM users
        WHERE id = $1
        """,
        user_id,
    )
    return dict(row) if row else None
