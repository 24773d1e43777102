"""Agent drafts table and idempotency keys for agent-created rows.

Revision ID: 0001_agent_drafts
Revises: None
Create Date: 2026-10-18

The workspace tables (users, projects, tasks, events, ...) are owned by
the host application; this revision only adds what the agent core needs.
Idempotent (IF NOT EXISTS) so it can run against an existing workspace DB.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_agent_drafts"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS agent_drafts (
            id              TEXT PRIMARY KEY,
            agent_id        VARCHAR(64) NOT NULL,
            user_id         TEXT NOT NULL,
            scope           JSONB NOT NULL DEFAULT '{}'::jsonb,
            plan            JSONB NOT NULL,
            plan_hash       CHAR(64) NOT NULL,
            status          VARCHAR(16) NOT NULL DEFAULT 'draft'
                            CHECK (status IN ('draft', 'confirmed', 'applied', 'expired', 'failed')),
            failure_reason  TEXT,
            results         JSONB,
            created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
            confirmed_at    TIMESTAMPTZ,
            applied_at      TIMESTAMPTZ,
            expires_at      TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_agent_drafts_user_id ON agent_drafts(user_id)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_agent_drafts_open_expiry "
        "ON agent_drafts(expires_at) WHERE status IN ('draft', 'confirmed')"
    )

    # -- idempotent creates ---------------------------------------------------
    op.execute("ALTER TABLE tasks ADD COLUMN IF NOT EXISTS client_request_id VARCHAR(128)")
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_client_request "
        "ON tasks(project_id, client_request_id) WHERE client_request_id IS NOT NULL"
    )
    op.execute("ALTER TABLE events ADD COLUMN IF NOT EXISTS client_request_id VARCHAR(128)")
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_client_request "
        "ON events(created_by_id, client_request_id) WHERE client_request_id IS NOT NULL"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_events_client_request")
    op.execute("ALTER TABLE events DROP COLUMN IF EXISTS client_request_id")
    op.execute("DROP INDEX IF EXISTS idx_tasks_client_request")
    op.execute("ALTER TABLE tasks DROP COLUMN IF EXISTS client_request_id")
    op.execute("DROP TABLE IF EXISTS agent_drafts")
