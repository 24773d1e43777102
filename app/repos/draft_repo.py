"""Agent draft repository -- reads and writes for the agent_drafts table.

Status changes are compare-and-set: ``transition_status`` only updates a
row that is still in the expected status, so when two requests race on
the same draft exactly one of them gets the row back.
"""

import json
from datetime import datetime

from app.repos.db import get_pool

_DRAFT_COLUMNS = """
    id, agent_id, user_id, scope, plan, plan_hash, status, failure_reason,
    results, created_at, confirmed_at, applied_at, expires_at
"""


async def create_draft(
    draft_id: str,
    agent_id: str,
    user_id: str,
    scope: dict,
    plan: dict,
    plan_hash: str,
    expires_at: datetime,
) -> dict:
    """Insert a new draft in status ``draft``. Returns the created row as a dict."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"""
        INSERT INTO agent_drafts (id, agent_id, user_id, scope, plan, plan_hash,
                                  status, expires_at)
        VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, 'draft', $7)
        RETURNING {_DRAFT_COLUMNS}
        """,
        draft_id,
        agent_id,
        user_id,
        json.dumps(scope),
        json.dumps(plan),
        plan_hash,
        expires_at,
    )
    return _draft_to_dict(row)


async def get_draft(draft_id: str) -> dict | None:
    """Fetch a draft by id. Returns None if not found."""
    pool = await get_pool()
    row = await pool.fetchrow(
        f"SELECT {_DRAFT_COLUMNS} FROM agent_drafts WHERE id = $1",
        draft_id,
    )
    return _draft_to_dict(row) if row else None


async def transition_status(
    draft_id: str,
    from_status: str,
    to_status: str,
    *,
    conn=None,
    failure_reason: str | None = None,
    results: dict | None = None,
) -> dict | None:
    """Move a draft from *from_status* to *to_status*.

    Returns the updated row, or None when the draft was not in
    *from_status* any more (another request won the race).
    Pass *conn* to take part in an open transaction.
    """
    executor = conn if conn is not None else await get_pool()
    row = await executor.fetchrow(
        f"""
        UPDATE agent_drafts
           SET status         = $3,
               confirmed_at   = CASE WHEN $3 = 'confirmed' THEN now() ELSE confirmed_at END,
               applied_at     = CASE WHEN $3 = 'applied' THEN now() ELSE applied_at END,
               failure_reason = COALESCE($4, failure_reason),
               results        = COALESCE($5::jsonb, results)
         WHERE id = $1 AND status = $2
        RETURNING {_DRAFT_COLUMNS}
        """,
        draft_id,
        from_status,
        to_status,
        failure_reason,
        json.dumps(results) if results is not None else None,
    )
    return _draft_to_dict(row) if row else None


async def expire_stale_drafts() -> int:
    """Mark every unapplied draft past its expiry as ``expired``.

    Returns the number of drafts expired.
    """
    pool = await get_pool()
    result = await pool.execute(
        """
        UPDATE agent_drafts
           SET status = 'expired'
         WHERE status IN ('draft', 'confirmed') AND expires_at < now()
        """
    )
    return int(result.split()[-1])


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _draft_to_dict(row) -> dict:
    """Convert a draft row to a dict, parsing JSONB columns."""
    d = dict(row)
    for key in ("scope", "plan", "results"):
        if isinstance(d.get(key), str):
            d[key] = json.loads(d[key])
    return d
