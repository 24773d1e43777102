"""Tests for the Draft → Confirm → Apply orchestrator.

The draft repository is replaced by an in-memory store, the transaction by
a recording fake, and the tool registry by one holding fake read and write
tools, so these run without Postgres or a model provider.
"""

import copy
import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from app.errors import (
    AgentForbiddenError,
    AgentNotFoundError,
    AgentUnauthorizedError,
    ApplyFailedError,
    DraftExpiredError,
    InvalidInputError,
    InvalidStateError,
    TokenMismatchError,
    ValidationFailedError,
)
from app.repos import draft_repo
from app.services.agents.orchestrator import AgentOrchestrator
from app.services.agents.registry import Registry
from app.services.agents.tools import (
    CreateTaskInput,
    DeleteTaskInput,
    LimitInput,
    ListTasksInput,
    NoInput,
    ProjectInput,
    UpdateTaskInput,
    UpdateTaskStatusInput,
)
from app.services.agents.schemas.notes_vault import NoteCreate, NoteDelete, NoteUpdate
from app.services.agents.types import SessionContext
from tests.conftest import OTHER_USER_ID, PROJECT_ID, USER_ID

SESSION = SessionContext(user_id=USER_ID, active_organization_id=3)
OTHER_SESSION = SessionContext(user_id=OTHER_USER_ID)

TASK_PLAN = {
    "agentId": "task_planner",
    "scope": {"projectId": PROJECT_ID},
    "creates": [
        {
            "title": "Write release notes",
            "priority": "high",
            "acceptanceCriteria": ["Covers every merged PR"],
            "clientRequestId": "req-release-notes-1",
        }
    ],
    "updates": [],
    "statusChanges": [],
    "deletes": [],
    "risks": [],
    "questionsForUser": [],
    "diffPreview": {"creates": ["Write release notes"]},
}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class _DraftStore:
    """In-memory stand-in for ``app.repos.draft_repo``."""

    def __init__(self) -> None:
        self.rows: dict[str, dict] = {}

    async def create_draft(self, draft_id, agent_id, user_id, scope, plan, plan_hash, expires_at):
        row = {
            "id": draft_id,
            "agent_id": agent_id,
            "user_id": user_id,
            # stored as JSON text, the way JSONB round-trips
            "scope": json.loads(json.dumps(scope)),
            "plan": json.loads(json.dumps(plan)),
            "plan_hash": plan_hash,
            "status": "draft",
            "failure_reason": None,
            "results": None,
            "created_at": datetime.now(timezone.utc),
            "confirmed_at": None,
            "applied_at": None,
            "expires_at": expires_at,
        }
        self.rows[draft_id] = row
        return copy.deepcopy(row)

    async def get_draft(self, draft_id):
        row = self.rows.get(draft_id)
        return copy.deepcopy(row) if row else None

    async def transition_status(
        self, draft_id, from_status, to_status, *, conn=None, failure_reason=None, results=None
    ):
        row = self.rows.get(draft_id)
        if row is None or row["status"] != from_status:
            return None
        row["status"] = to_status
        if failure_reason is not None:
            row["failure_reason"] = failure_reason
        if results is not None:
            row["results"] = copy.deepcopy(results)
        return copy.deepcopy(row)


class _FakeTransaction:
    """Records commits and rollbacks of the apply transaction."""

    def __init__(self) -> None:
        self.conn = object()
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def __call__(self):
        try:
            yield self.conn
        except BaseException:
            self.rollbacks += 1
            raise
        else:
            self.commits += 1


class ScriptedTransport:
    """Returns canned model responses in order and records every call."""

    def __init__(self, *responses: str) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(self, system_prompt, user_prompt, *, model=None, temperature=None,
                       json_mode=False):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "model": model,
            "temperature": temperature,
            "json_mode": json_mode,
        })
        return self.responses.pop(0)


def _fake_registry(writes: list) -> Registry:
    """Registry with canned read tools and write tools that log to *writes*."""
    reg = Registry()

    async def session_context(params, ctx):
        return {"userId": ctx.session.user_id, "activeOrganizationId": 3, "name": "Ada"}

    async def project_detail(params, ctx):
        return {
            "project": {"id": params.projectId, "title": "Launch", "description": "",
                        "status": "active", "created_by_id": USER_ID},
            "members": [{"id": USER_ID, "name": "Ada", "role": "owner"}],
        }

    async def tasks(params, ctx):
        return [{"id": 11, "title": "Draft agenda", "status": "pending", "priority": "medium"}]

    async def empty(params, ctx):
        return []

    async def notes(params, ctx):
        return [
            {"id": 5, "content": "pin 1234", "created_at": datetime(2026, 1, 2, tzinfo=timezone.utc),
             "share_status": "private", "is_locked": True},
            {"id": 6, "content": "buy milk", "created_at": datetime(2026, 1, 3, tzinfo=timezone.utc),
             "share_status": "private", "is_locked": False},
        ]

    reg.register("get_session_context", session_context, NoInput, "me", "read")
    reg.register("get_project_detail", project_detail, ProjectInput, "project", "read")
    reg.register("list_tasks", tasks, ListTasksInput, "tasks", "read")
    reg.register("list_projects", empty, LimitInput, "projects", "read")
    reg.register("list_notifications", empty, LimitInput, "notifications", "read")
    reg.register("list_notes", notes, LimitInput, "notes", "read")

    next_id = iter(range(101, 200))

    def writer(name, id_key):
        async def handler(params, ctx):
            writes.append((name, params, ctx.conn))
            if name in ("create_task", "create_note"):
                return {id_key: next(next_id), "created": True}
            return {id_key: getattr(params, id_key)}
        return handler

    reg.register("create_task", writer("create_task", "taskId"), CreateTaskInput, "c", "write")
    reg.register("update_task", writer("update_task", "taskId"), UpdateTaskInput, "u", "write")
    reg.register("update_task_status", writer("update_task_status", "taskId"),
                 UpdateTaskStatusInput, "s", "write")
    reg.register("delete_task", writer("delete_task", "taskId"), DeleteTaskInput, "d", "write")
    reg.register("create_note", writer("create_note", "noteId"), NoteCreate, "c", "write")
    reg.register("update_note", writer("update_note", "noteId"), NoteUpdate, "u", "write")
    reg.register("delete_note", writer("delete_note", "noteId"), NoteDelete, "d", "write")
    return reg


@pytest.fixture
def store(monkeypatch) -> _DraftStore:
    s = _DraftStore()
    monkeypatch.setattr(draft_repo, "create_draft", s.create_draft)
    monkeypatch.setattr(draft_repo, "get_draft", s.get_draft)
    monkeypatch.setattr(draft_repo, "transition_status", s.transition_status)
    return s


@pytest.fixture
def writes() -> list:
    return []


@pytest.fixture
def tx() -> _FakeTransaction:
    return _FakeTransaction()


@pytest.fixture
def project_access():
    with patch(
        "app.services.agents.orchestrator.require_project_access", new_callable=AsyncMock
    ) as mock_access:
        yield mock_access


def _make(transport, writes, tx, **kwargs) -> AgentOrchestrator:
    return AgentOrchestrator(
        transport, registry=_fake_registry(writes), transaction=tx, max_repairs=2, **kwargs
    )


async def _drafted_and_confirmed(orch) -> tuple[str, str]:
    drafted = await orch.draft(SESSION, "task_planner", "Plan the launch",
                               {"projectId": str(PROJECT_ID)})
    confirmed = await orch.confirm(SESSION, "task_planner", drafted["draftId"])
    return drafted["draftId"], confirmed["confirmationToken"]


# ---------------------------------------------------------------------------
# Full flow
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_task_planner_draft_confirm_apply(store, writes, tx, project_access):
    """Draft → Confirm → Apply creates the planned task in one transaction."""
    transport = ScriptedTransport(json.dumps(TASK_PLAN))
    orch = _make(transport, writes, tx)

    drafted = await orch.draft(SESSION, "task_planner", "Plan the launch", {"projectId": "7"})
    assert drafted["draftId"].startswith("draft_")
    assert len(drafted["plan"]["planHash"]) == 64
    assert drafted["plan"]["scope"]["projectId"] == PROJECT_ID
    assert writes == []
    assert store.rows[drafted["draftId"]]["status"] == "draft"

    confirmed = await orch.confirm(SESSION, "task_planner", drafted["draftId"])
    assert confirmed["summary"] == {"creates": 1, "updates": 0, "statusChanges": 0, "deletes": 0}
    assert confirmed["confirmationToken"]
    assert store.rows[drafted["draftId"]]["status"] == "confirmed"

    applied = await orch.apply(
        SESSION, "task_planner", drafted["draftId"], confirmed["confirmationToken"]
    )
    assert applied == {
        "applied": True,
        "results": {
            "createdTaskIds": [101],
            "updatedTaskIds": [],
            "statusChangedTaskIds": [],
            "deletedTaskIds": [],
        },
    }
    assert store.rows[drafted["draftId"]]["status"] == "applied"
    assert tx.commits == 1
    name, params, conn = writes[0]
    assert name == "create_task"
    assert params.projectId == PROJECT_ID
    assert conn is tx.conn
    project_access.assert_awaited_once_with(PROJECT_ID, USER_ID, write=True, conn=tx.conn)


@pytest.mark.asyncio
async def test_draft_prompt_carries_context_and_json_mode(store, writes, tx):
    transport = ScriptedTransport(json.dumps(TASK_PLAN))
    orch = _make(transport, writes, tx)

    await orch.draft(SESSION, "task_planner", "Plan the launch", {"projectId": PROJECT_ID})

    call = transport.calls[0]
    assert call["json_mode"] is True
    assert call["model"] == "test-model"
    assert "Draft agenda" in call["system"]
    assert call["user"].endswith("Plan the launch")


@pytest.mark.asyncio
async def test_draft_fills_project_from_request_scope(store, writes, tx):
    plan = {**TASK_PLAN, "scope": {}}
    orch = _make(ScriptedTransport(json.dumps(plan)), writes, tx)

    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    assert drafted["plan"]["scope"]["projectId"] == PROJECT_ID


@pytest.mark.asyncio
async def test_draft_rejects_plan_for_other_project(store, writes, tx):
    plan = {**TASK_PLAN, "scope": {"projectId": 99}}
    orch = _make(ScriptedTransport(json.dumps(plan)), writes, tx)

    with pytest.raises(ValidationFailedError):
        await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})
    assert store.rows == {}


@pytest.mark.asyncio
async def test_draft_repairs_fenced_broken_output(store, writes, tx):
    """One repair round turns broken output into a valid draft."""
    broken = "Here you go:\n```json\n{\"agentId\": \"task_planner\",\n```"
    transport = ScriptedTransport(broken, json.dumps(TASK_PLAN))
    orch = _make(transport, writes, tx)

    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    assert drafted["plan"]["creates"][0]["title"] == "Write release notes"
    assert len(transport.calls) == 2
    assert transport.calls[1]["temperature"] == 0


@pytest.mark.asyncio
async def test_duplicate_client_request_id_never_persists(store, writes, tx):
    """Schema-invalid output after every repair fails without writing a draft."""
    dup = copy.deepcopy(TASK_PLAN)
    dup["creates"].append(dict(dup["creates"][0], title="Again"))
    transport = ScriptedTransport(*[json.dumps(dup)] * 3)
    orch = _make(transport, writes, tx)

    with pytest.raises(ValidationFailedError):
        await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    assert store.rows == {}
    assert len(transport.calls) == 3  # initial + 2 repairs


@pytest.mark.asyncio
async def test_model_supplied_plan_hash_is_ignored(store, writes, tx):
    plan = {**TASK_PLAN, "planHash": "0" * 64}
    orch = _make(ScriptedTransport(json.dumps(plan)), writes, tx)

    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    assert drafted["plan"]["planHash"] != "0" * 64
    assert "planHash" not in store.rows[drafted["draftId"]]["plan"]


@pytest.mark.asyncio
async def test_draft_without_session_is_unauthorized(store, writes, tx):
    orch = _make(ScriptedTransport(), writes, tx)
    with pytest.raises(AgentUnauthorizedError):
        await orch.draft(None, "task_planner", "Plan")


@pytest.mark.asyncio
async def test_draft_unknown_agent_is_not_found(store, writes, tx):
    orch = _make(ScriptedTransport(), writes, tx)
    with pytest.raises(AgentNotFoundError):
        await orch.draft(SESSION, "budget_wizard", "Plan")


@pytest.mark.asyncio
async def test_draft_bad_project_scope_is_invalid_input(store, writes, tx):
    orch = _make(ScriptedTransport(), writes, tx)
    with pytest.raises(InvalidInputError):
        await orch.draft(SESSION, "task_planner", "Plan", {"projectId": "seven"})


# ---------------------------------------------------------------------------
# Apply guards
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_second_apply_is_invalid_state(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)

    await orch.apply(SESSION, "task_planner", draft_id, token)
    with pytest.raises(InvalidStateError):
        await orch.apply(SESSION, "task_planner", draft_id, token)

    assert len(writes) == 1


@pytest.mark.asyncio
async def test_tampered_plan_is_token_mismatch(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)

    store.rows[draft_id]["plan"]["creates"][0]["title"] = "Drop the database"

    with pytest.raises(TokenMismatchError):
        await orch.apply(SESSION, "task_planner", draft_id, token)
    assert writes == []
    assert store.rows[draft_id]["status"] == "confirmed"


@pytest.mark.asyncio
async def test_token_for_other_draft_is_token_mismatch(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN), json.dumps(TASK_PLAN)), writes, tx)
    first_id, first_token = await _drafted_and_confirmed(orch)
    second_id, _ = await _drafted_and_confirmed(orch)

    with pytest.raises(TokenMismatchError):
        await orch.apply(SESSION, "task_planner", second_id, first_token)
    assert writes == []


@pytest.mark.asyncio
async def test_garbage_token_is_token_mismatch(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, _ = await _drafted_and_confirmed(orch)

    with pytest.raises(TokenMismatchError):
        await orch.apply(SESSION, "task_planner", draft_id, "not-a-token")


@pytest.mark.asyncio
async def test_expired_draft_applies_nothing(store, writes, tx, project_access):
    now = [datetime.now(timezone.utc)]
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx, clock=lambda: now[0])
    draft_id, token = await _drafted_and_confirmed(orch)

    now[0] += timedelta(minutes=16)

    with pytest.raises(DraftExpiredError):
        await orch.apply(SESSION, "task_planner", draft_id, token)
    assert writes == []
    assert store.rows[draft_id]["status"] == "expired"

    with pytest.raises(DraftExpiredError):
        await orch.apply(SESSION, "task_planner", draft_id, token)


@pytest.mark.asyncio
async def test_confirm_after_expiry_is_expired(store, writes, tx):
    now = [datetime.now(timezone.utc)]
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx, clock=lambda: now[0])
    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    now[0] += timedelta(minutes=15)

    with pytest.raises(DraftExpiredError):
        await orch.confirm(SESSION, "task_planner", drafted["draftId"])


@pytest.mark.asyncio
async def test_apply_unconfirmed_draft_is_invalid_state(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    with pytest.raises(InvalidStateError):
        await orch.apply(SESSION, "task_planner", drafted["draftId"], "whatever")
    assert writes == []


@pytest.mark.asyncio
async def test_confirm_twice_is_invalid_state(store, writes, tx):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, _ = await _drafted_and_confirmed(orch)

    with pytest.raises(InvalidStateError):
        await orch.confirm(SESSION, "task_planner", draft_id)


@pytest.mark.asyncio
async def test_other_users_draft_is_not_found(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)

    with pytest.raises(AgentNotFoundError):
        await orch.get_draft(OTHER_SESSION, draft_id)
    with pytest.raises(AgentNotFoundError):
        await orch.apply(OTHER_SESSION, "task_planner", draft_id, token)
    assert writes == []


@pytest.mark.asyncio
async def test_draft_of_other_agent_is_not_found(store, writes, tx):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    with pytest.raises(AgentNotFoundError):
        await orch.confirm(SESSION, "notes_vault", drafted["draftId"])


# ---------------------------------------------------------------------------
# Apply failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_refusal_marks_draft_failed(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)
    project_access.side_effect = AgentForbiddenError("You do not have access to this project")

    with pytest.raises(AgentForbiddenError):
        await orch.apply(SESSION, "task_planner", draft_id, token)

    assert store.rows[draft_id]["status"] == "failed"
    assert store.rows[draft_id]["failure_reason"].startswith("FORBIDDEN")
    assert tx.rollbacks == 1
    assert writes == []


@pytest.mark.asyncio
async def test_infra_error_leaves_draft_confirmed_for_retry(store, writes, tx, project_access):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)
    project_access.side_effect = ConnectionResetError("connection lost")

    with pytest.raises(ApplyFailedError) as exc_info:
        await orch.apply(SESSION, "task_planner", draft_id, token)

    assert exc_info.value.retriable is True
    assert exc_info.value.status_code == 500
    assert store.rows[draft_id]["status"] == "confirmed"
    assert tx.rollbacks == 1

    project_access.side_effect = None
    applied = await orch.apply(SESSION, "task_planner", draft_id, token)
    assert applied["results"]["createdTaskIds"] == [101]
    assert store.rows[draft_id]["status"] == "applied"


@pytest.mark.asyncio
async def test_constraint_violation_marks_draft_failed(store, writes, tx, project_access):
    """A constraint violation repeats on every retry, so the draft is failed."""
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)
    project_access.side_effect = asyncpg.NotNullViolationError(
        'null value in column "title" violates not-null constraint'
    )

    with pytest.raises(ApplyFailedError) as exc_info:
        await orch.apply(SESSION, "task_planner", draft_id, token)

    assert exc_info.value.retriable is False
    assert store.rows[draft_id]["status"] == "failed"
    assert store.rows[draft_id]["failure_reason"].startswith("APPLY_FAILED")
    assert tx.rollbacks == 1

    with pytest.raises(InvalidStateError):
        await orch.apply(SESSION, "task_planner", draft_id, token)


@pytest.mark.asyncio
async def test_lost_race_does_not_mark_failed(store, writes, tx, project_access):
    """A concurrent apply that claimed the draft first wins; this one rolls back."""
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    draft_id, token = await _drafted_and_confirmed(orch)

    async def claim_first(*args, **kwargs):
        store.rows[draft_id]["status"] = "applied"

    project_access.side_effect = claim_first

    with pytest.raises(InvalidStateError):
        await orch.apply(SESSION, "task_planner", draft_id, token)
    assert store.rows[draft_id]["status"] == "applied"
    assert tx.rollbacks == 1


# ---------------------------------------------------------------------------
# Other agent families
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concierge_draft_cannot_be_confirmed(store, writes, tx):
    output = {
        "agentId": "workspace_concierge",
        "intent": {"type": "handoff"},
        "handoff": {"targetAgent": "task_planner", "userIntent": "Create launch tasks"},
    }
    orch = _make(ScriptedTransport(json.dumps(output)), writes, tx)

    drafted = await orch.draft(SESSION, "workspace_concierge", "Make tasks for the launch")
    assert drafted["plan"]["handoff"]["targetAgent"] == "task_planner"

    with pytest.raises(InvalidStateError):
        await orch.confirm(SESSION, "workspace_concierge", drafted["draftId"])
    assert store.rows[drafted["draftId"]]["status"] == "draft"


@pytest.mark.asyncio
async def test_notes_update_of_locked_note_needs_unlock_flag(store, writes, tx):
    plan = {
        "agentId": "notes_vault",
        "operations": [
            {"type": "update", "noteId": 5, "nextContent": "pin 9999", "requiresUnlocked": False}
        ],
        "summary": "Change the pin note",
    }
    orch = _make(ScriptedTransport(json.dumps(plan)), writes, tx)

    with pytest.raises(ValidationFailedError):
        await orch.draft(SESSION, "notes_vault", "Update my pin")
    assert store.rows == {}


@pytest.mark.asyncio
async def test_notes_vault_flow(store, writes, tx):
    plan = {
        "agentId": "notes_vault",
        "operations": [
            {"type": "create", "content": "call the venue"},
            {"type": "delete", "noteId": 6, "reason": "done", "dangerous": True},
        ],
        "blocked": [{"noteId": 5, "reason": "locked"}],
        "summary": "Add a reminder, remove the shopping note",
    }
    orch = _make(ScriptedTransport(json.dumps(plan)), writes, tx)

    drafted = await orch.draft(SESSION, "notes_vault", "Tidy my notes")
    confirmed = await orch.confirm(SESSION, "notes_vault", drafted["draftId"])
    assert confirmed["summary"] == {"creates": 1, "updates": 0, "deletes": 1, "blocked": 1}

    applied = await orch.apply(
        SESSION, "notes_vault", drafted["draftId"], confirmed["confirmationToken"]
    )
    assert applied["results"] == {
        "createdNoteIds": [101],
        "updatedNoteIds": [],
        "deletedNoteIds": [6],
        "blockedNoteIds": [5],
    }
    assert [w[0] for w in writes] == ["create_note", "delete_note"]


@pytest.mark.asyncio
async def test_get_draft_returns_plan_with_hash(store, writes, tx):
    orch = _make(ScriptedTransport(json.dumps(TASK_PLAN)), writes, tx)
    drafted = await orch.draft(SESSION, "task_planner", "Plan", {"projectId": PROJECT_ID})

    view = await orch.get_draft(SESSION, drafted["draftId"])

    assert view["status"] == "draft"
    assert view["agentId"] == "task_planner"
    assert view["plan"]["planHash"] == drafted["plan"]["planHash"]
    assert view["scope"] == {"projectId": PROJECT_ID}
