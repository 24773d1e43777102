"""Tests for the agent draft repository, with the asyncpg pool mocked."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from app.repos import draft_repo

EXPIRES = datetime(2026, 10, 18, 12, 15, tzinfo=timezone.utc)


def _row(**overrides) -> dict:
    row = {
        "id": "draft_1", "agent_id": "task_planner", "user_id": "user_1",
        "scope": '{"projectId": 7}', "plan": '{"agentId": "task_planner"}',
        "plan_hash": "h" * 64, "status": "draft", "failure_reason": None, "results": None,
        "created_at": EXPIRES, "confirmed_at": None, "applied_at": None, "expires_at": EXPIRES,
    }
    row.update(overrides)
    return row


@pytest.fixture
def pool():
    mock_pool = AsyncMock()
    with patch("app.repos.draft_repo.get_pool", new_callable=AsyncMock, return_value=mock_pool):
        yield mock_pool


@pytest.mark.asyncio
async def test_create_draft_serialises_jsonb(pool):
    pool.fetchrow.return_value = _row()
    draft = await draft_repo.create_draft(
        "draft_1", "task_planner", "user_1", {"projectId": 7}, {"agentId": "task_planner"},
        "h" * 64, EXPIRES,
    )
    args = pool.fetchrow.call_args.args
    assert "INSERT INTO agent_drafts" in args[0]
    assert args[4] == json.dumps({"projectId": 7})
    assert draft["scope"] == {"projectId": 7}
    assert draft["plan"] == {"agentId": "task_planner"}


@pytest.mark.asyncio
async def test_get_draft_missing(pool):
    pool.fetchrow.return_value = None
    assert await draft_repo.get_draft("draft_x") is None


@pytest.mark.asyncio
async def test_transition_uses_given_connection(pool):
    conn = AsyncMock()
    conn.fetchrow.return_value = _row(status="applied", results='{"createdTaskIds": [1]}')

    draft = await draft_repo.transition_status(
        "draft_1", "confirmed", "applied", conn=conn, results={"createdTaskIds": [1]}
    )

    assert draft["results"] == {"createdTaskIds": [1]}
    pool.fetchrow.assert_not_awaited()
    args = conn.fetchrow.call_args.args
    assert "WHERE id = $1 AND status = $2" in args[0]
    assert args[1:4] == ("draft_1", "confirmed", "applied")


@pytest.mark.asyncio
async def test_transition_lost_race_returns_none(pool):
    pool.fetchrow.return_value = None
    assert await draft_repo.transition_status("draft_1", "draft", "confirmed") is None


@pytest.mark.asyncio
async def test_expire_stale_drafts_counts_rows(pool):
    pool.execute.return_value = "UPDATE 3"
    assert await draft_repo.expire_stale_drafts() == 3
