"""Event repository -- public event feed plus event, comment, RSVP and like writes."""

from datetime import datetime

from app.repos.db import get_pool


# ---------------------------------------------------------------------------
# events
# ---------------------------------------------------------------------------


async def list_public_events(limit: int = 30) -> list[dict]:
    """Newest events with author name and like/comment counts."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT e.id, e.title, e.description, e.event_date, e.region,
               e.image_url, e.enable_rsvp, e.created_by_id, e.created_at,
               u.name AS author_name,
               (SELECT count(*) FROM event_likes l WHERE l.event_id = e.id) AS like_count,
               (SELECT count(*) FROM event_comments c WHERE c.event_id = e.id) AS comment_count
        FROM events e
        LEFT JOIN users u ON u.id = e.created_by_id
        ORDER BY e.created_at DESC
        LIMIT $1
        """,
        limit,
    )
    return [dict(r) for r in rows]


async def get_event(event_id: int, conn=None) -> dict | None:
    executor = conn if conn is not None else await get_pool()
    row = await executor.fetchrow(
        """
        SELECT id, title, description, event_date, region, image_url,
               enable_rsvp, send_reminders, created_by_id, created_at
        FROM events
        WHERE id = $1
        """,
        event_id,
    )
    return dict(row) if row else None


async def create_event(
    conn,
    *,
    user_id: str,
    title: str,
    description: str,
    event_date: datetime,
    region: str,
    enable_rsvp: bool,
    send_reminders: bool,
    image_url: str | None,
    client_request_id: str,
) -> tuple[int, bool]:
    """Insert an event, idempotent on ``(created_by_id, client_request_id)``.

    Returns ``(event_id, created)``.
    """
    event_id = await conn.fetchval(
        """
        INSERT INTO events (title, description, event_date, region, image_url,
                            enable_rsvp, send_reminders, created_by_id,
                            client_request_id)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
        ON CONFLICT (created_by_id, client_request_id)
            WHERE client_request_id IS NOT NULL
            DO NOTHING
        RETURNING id
        """,
        title,
        description,
        event_date,
        region,
        image_url,
        enable_rsvp,
        send_reminders,
        user_id,
        client_request_id,
    )
    if event_id is None:
        existing = await conn.fetchval(
            "SELECT id FROM events WHERE created_by_id = $1 AND client_request_id = $2",
            user_id,
            client_request_id,
        )
        return existing, False
    return event_id, True


async def update_event(conn, event_id: int, patch: dict) -> None:
    """Apply a partial update.  Keys of *patch* are column names."""
    if not patch:
        return
    columns = list(patch.keys())
    assignments = ", ".join(f"{col} = ${i + 2}" for i, col in enumerate(columns))
    await conn.execute(
        f"UPDATE events SET {assignments} WHERE id = $1",
        event_id,
        *patch.values(),
    )


async def delete_event(conn, event_id: int) -> None:
    await conn.execute("DELETE FROM events WHERE id = $1", event_id)


# ---------------------------------------------------------------------------
# comments / rsvps / likes
# ---------------------------------------------------------------------------


async def get_comment(conn, comment_id: int) -> dict | None:
    row = await conn.fetchrow(
        "SELECT id, event_id, created_by_id FROM event_comments WHERE id = $1",
        comment_id,
    )
    return dict(row) if row else None


async def add_comment(conn, event_id: int, user_id: str, text: str) -> int:
    return await conn.fetchval(
        """
        INSERT INTO event_comments (event_id, created_by_id, text)
        VALUES ($1, $2, $3)
        RETURNING id
        """,
        event_id,
        user_id,
        text,
    )


async def delete_comment(conn, comment_id: int) -> None:
    await conn.execute("DELETE FROM event_comments WHERE id = $1", comment_id)


async def set_rsvp(conn, event_id: int, user_id: str, status: str) -> None:
    await conn.execute(
        """
        INSERT INTO event_rsvps (event_id, user_id, status)
        VALUES ($1, $2, $3)
        ON CONFLICT (event_id, user_id)
        DO UPDATE SET status = EXCLUDED.status, updated_at = now()
        """,
        event_id,
        user_id,
        status,
    )


async def toggle_like(conn, event_id: int, user_id: str) -> bool:
    """Flip the user's like on an event.  Returns True when now liked."""
    removed = await conn.execute(
        "DELETE FROM event_likes WHERE event_id = $1 AND created_by_id = $2",
        event_id,
        user_id,
    )
    if removed != "DELETE 0":
        return False
    await conn.execute(
        "INSERT INTO event_likes (event_id, created_by_id) VALUES ($1, $2)",
        event_id,
        user_id,
    )
    return True
