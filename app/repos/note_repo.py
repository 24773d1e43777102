"""Sticky-note repository -- reads for context packs, owner-scoped writes."""

from app.repos.db import get_pool


async def list_notes_by_owner(user_id: str, limit: int = 50) -> list[dict]:
    """The user's newest notes.  ``is_locked`` is derived from the password hash,
    which itself is never returned."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT id, content, share_status, created_at,
               (password_hash IS NOT NULL) AS is_locked
        FROM sticky_notes
        WHERE created_by_id = $1
        ORDER BY created_at DESC
        LIMIT $2
        """,
        user_id,
        limit,
    )
    return [dict(r) for r in rows]


async def get_note(note_id: int, conn=None) -> dict | None:
    executor = conn if conn is not None else await get_pool()
    row = await executor.fetchrow(
        """
        SELECT id, created_by_id, share_status, created_at,
               (password_hash IS NOT NULL) AS is_locked
        FROM sticky_notes
        WHERE id = $1
        """,
        note_id,
    )
    return dict(row) if row else None


async def create_note(conn, user_id: str, content: str) -> int:
    return await conn.fetchval(
        """
        INSERT INTO sticky_notes (content, created_by_id, share_status)
        VALUES ($1, $2, 'private')
        RETURNING id
        """,
        content,
        user_id,
    )


async def update_note_content(conn, note_id: int, content: str) -> None:
    await conn.execute(
        "UPDATE sticky_notes SET content = $2 WHERE id = $1",
        note_id,
        content,
    )


async def delete_note(conn, note_id: int) -> None:
    await conn.execute("DELETE FROM sticky_notes WHERE id = $1", note_id)
