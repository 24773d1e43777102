"""Tests for agent profiles."""

import pytest

from app.errors import AgentNotFoundError
from app.services.agents.profiles import PROFILES, AgentProfile, get_profile
from app.services.agents.schemas import TaskPlanDraft
from app.services.agents.tools import build_registry


def test_four_agent_families():
    assert set(PROFILES) == {
        "workspace_concierge", "task_planner", "notes_vault", "events_publisher",
    }


def test_unknown_agent_is_not_found():
    with pytest.raises(AgentNotFoundError):
        get_profile("budget_wizard")


def test_concierge_has_no_apply_phase():
    assert get_profile("workspace_concierge").has_apply_phase is False
    assert get_profile("task_planner").has_apply_phase is True


def test_overlapping_tool_sets_rejected():
    with pytest.raises(ValueError, match="both phases"):
        AgentProfile(
            id="bad", name="Bad", description="", output_schema=TaskPlanDraft,
            draft_tools=frozenset({"list_tasks"}), apply_tools=frozenset({"list_tasks"}),
        )


@pytest.mark.parametrize("agent_id", sorted(PROFILES))
def test_profile_tools_exist_with_matching_kind(agent_id):
    reg = build_registry()
    profile = PROFILES[agent_id]
    for name in profile.draft_tools:
        assert reg.kind_of(name) == "read", name
    for name in profile.apply_tools:
        assert reg.kind_of(name) == "write", name


def test_build_registry_rejects_unregistered_allowlisted_tool(monkeypatch):
    rogue = AgentProfile(
        id="rogue", name="Rogue", description="", output_schema=TaskPlanDraft,
        draft_tools=frozenset({"list_tasks"}), apply_tools=frozenset({"drop_database"}),
    )
    monkeypatch.setitem(PROFILES, "rogue", rogue)
    with pytest.raises(ValueError, match="drop_database"):
        build_registry()
