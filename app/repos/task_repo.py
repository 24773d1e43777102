"""Task repository -- task reads and the typed writes used by apply.

Write functions take an explicit ``conn`` so they run inside the apply
transaction; every mutation also appends a row to ``task_activity_log``.
"""

from datetime import datetime

from app.repos.db import get_pool

_TASK_COLUMNS = """
    id, project_id, title, description, status, priority, assigned_to_id,
    order_index, due_date, created_at, updated_at
"""


async def list_tasks(project_id: int, limit: int = 50) -> list[dict]:
    """Newest tasks of a project."""
    pool = await get_pool()
    rows = await pool.fetch(
        f"""
        SELECT {_TASK_COLUMNS}
        FROM tasks
        WHERE project_id = $1
        ORDER BY created_at DESC
        LIMIT $2
        """,
        project_id,
        limit,
    )
    return [dict(r) for r in rows]


async def get_task(task_id: int, conn=None) -> dict | None:
    """Fetch a task by primary key. Returns None if not found."""
    executor = conn if conn is not None else await get_pool()
    row = await executor.fetchrow(
        f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = $1",
        task_id,
    )
    return dict(row) if row else None


async def create_task(
    conn,
    *,
    project_id: int,
    created_by_id: str,
    title: str,
    description: str,
    priority: str,
    client_request_id: str,
    assigned_to_id: str | None = None,
    order_index: int | None = None,
    due_date: datetime | None = None,
) -> tuple[int, bool]:
    """Insert a task, idempotent on ``(project_id, client_request_id)``.

    Returns ``(task_id, created)``; ``created`` is False when a task with
    the same client request id already existed.
    """
    if order_index is None:
        order_index = await conn.fetchval(
            "SELECT COALESCE(MAX(order_index), 0) + 1 FROM tasks WHERE project_id = $1",
            project_id,
        )
    task_id = await conn.fetchval(
        """
        INSERT INTO tasks (project_id, title, description, priority, status,
                           assigned_to_id, order_index, due_date,
                           created_by_id, client_request_id)
        VALUES ($1, $2, $3, $4, 'pending', $5, $6, $7, $8, $9)
        ON CONFLICT (project_id, client_request_id)
            WHERE client_request_id IS NOT NULL
            DO NOTHING
        RETURNING id
        """,
        project_id,
        title,
        description,
        priority,
        assigned_to_id,
        order_index,
        due_date,
        created_by_id,
        client_request_id,
    )
    if task_id is None:
        existing = await conn.fetchval(
            "SELECT id FROM tasks WHERE project_id = $1 AND client_request_id = $2",
            project_id,
            client_request_id,
        )
        return existing, False
    await _log_activity(conn, task_id, created_by_id, "created", "Task created")
    return task_id, True


async def update_task(conn, task_id: int, user_id: str, patch: dict) -> None:
    """Apply a partial update.  Keys of *patch* are column names."""
    if not patch:
        return
    columns = list(patch.keys())
    assignments = ", ".join(f"{col} = ${i + 3}" for i, col in enumerate(columns))
    await conn.execute(
        f"""
        UPDATE tasks
           SET {assignments},
               last_edited_by_id = $2,
               last_edited_at = now(),
               updated_at = now()
         WHERE id = $1
        """,
        task_id,
        user_id,
        *patch.values(),
    )
    await _log_activity(conn, task_id, user_id, "updated", "Task updated")


async def update_task_status(conn, task_id: int, user_id: str, status: str) -> None:
    """Set a task's status, stamping completion fields when completed."""
    await conn.execute(
        """
        UPDATE tasks
           SET status = $3,
               completed_at = CASE WHEN $3 = 'completed' THEN now() ELSE NULL END,
               completed_by_id = CASE WHEN $3 = 'completed' THEN $2 ELSE NULL END,
               last_edited_by_id = $2,
               last_edited_at = now(),
               updated_at = now()
         WHERE id = $1
        """,
        task_id,
        user_id,
        status,
    )
    await _log_activity(conn, task_id, user_id, "status_changed", status)


async def delete_task(conn, task_id: int) -> None:
    await conn.execute("DELETE FROM tasks WHERE id = $1", task_id)


async def _log_activity(conn, task_id: int, user_id: str, action: str, new_value: str) -> None:
    await conn.execute(
        """
        INSERT INTO task_activity_log (task_id, user_id, action, new_value)
        VALUES ($1, $2, $3, $4)
        """,
        task_id,
        user_id,
        action,
        new_value,
    )
