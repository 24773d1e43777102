"""Project repository -- projects, collaborators and access checks."""

from app.repos.db import get_pool


async def get_project_access(project_id: int, user_id: str, conn=None) -> dict | None:
    """Resolve what *user_id* may do on *project_id*.

    Returns None when the project does not exist, otherwise
    ``{"project": {...}, "can_read": bool, "can_write": bool}``.

    Read access: owner, member of the project's organization, or any
    collaborator.  Write access: owner, organization member, or a
    collaborator with ``write`` permission.

    Pass *conn* to run the check inside an open transaction.
    """
    executor = conn if conn is not None else await get_pool()
    row = await executor.fetchrow(
        """
        SELECT p.id, p.title, p.description, p.status, p.created_by_id,
               p.organization_id,
               EXISTS (
                   SELECT 1 FROM organization_members om
                   WHERE p.organization_id IS NOT NULL
                     AND om.organization_id = p.organization_id
                     AND om.user_id = $2
               ) AS is_org_member,
               pc.permission AS collaborator_permission
        FROM projects p
        LEFT JOIN project_collaborators pc
               ON pc.project_id = p.id AND pc.collaborator_id = $2
        WHERE p.id = $1
        """,
        project_id,
        user_id,
    )
    if row is None:
        return None
    d = dict(row)
    is_owner = d["created_by_id"] == user_id
    is_member = bool(d.pop("is_org_member"))
    permission = d.pop("collaborator_permission")
    return {
        "project": d,
        "can_read": is_owner or is_member or permission is not None,
        "can_write": is_owner or is_member or permission == "write",
    }


async def list_projects_for_user(user_id: str, limit: int = 10) -> list[dict]:
    """Projects the user owns or collaborates on, most recently updated first."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT DISTINCT p.id, p.title, p.description, p.status,
               p.organization_id, p.updated_at
        FROM projects p
        LEFT JOIN project_collaborators pc ON pc.project_id = p.id
        WHERE p.created_by_id = $1 OR pc.collaborator_id = $1
        ORDER BY p.updated_at DESC
        LIMIT $2
        """,
        user_id,
        limit,
    )
    return [dict(r) for r in rows]


async def list_project_members(project_id: int) -> list[dict]:
    """Owner plus collaborators of a project, owner first, de-duplicated."""
    pool = await get_pool()
    rows = await pool.fetch(
        """
        SELECT u.id, u.name, 0 AS rank
        FROM projects p
        JOIN users u ON u.id = p.created_by_id
        WHERE p.id = $1
        UNION
        SELECT u.id, u.name, 1 AS rank
        FROM project_collaborators pc
        JOIN users u ON u.id = pc.collaborator_id
        WHERE pc.project_id = $1
        ORDER BY rank, name
        """,
        project_id,
    )
    seen: set[str] = set()
    members: list[dict] = []
    for r in rows:
        if r["id"] in seen:
            continue
        seen.add(r["id"])
        members.append({"id": r["id"], "name": r["name"]})
    return members
