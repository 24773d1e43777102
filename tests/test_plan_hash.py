"""Tests for canonical plan serialisation and hashing."""

import pytest

from app.services.agents.plan_hash import canonical_json, compute_plan_hash


def test_key_order_does_not_change_hash():
    a = {"agentId": "task_planner", "scope": {"projectId": 7, "orgId": 1}, "creates": []}
    b = {"creates": [], "scope": {"orgId": 1, "projectId": 7}, "agentId": "task_planner"}
    assert compute_plan_hash(a) == compute_plan_hash(b)


def test_integral_floats_hash_like_ints():
    assert compute_plan_hash({"n": 1}) == compute_plan_hash({"n": 1.0})
    assert compute_plan_hash({"n": 1}) != compute_plan_hash({"n": 1.5})


def test_plan_hash_key_is_ignored():
    plan = {"agentId": "notes_vault", "summary": "x"}
    assert compute_plan_hash({**plan, "planHash": "abc"}) == compute_plan_hash(plan)


def test_any_value_change_changes_hash():
    plan = {"creates": [{"title": "Write release notes"}]}
    changed = {"creates": [{"title": "Write release notes!"}]}
    assert compute_plan_hash(plan) != compute_plan_hash(changed)


def test_hash_is_sha256_hex():
    digest = compute_plan_hash({})
    assert len(digest) == 64
    int(digest, 16)


def test_canonical_json_is_compact_and_sorted():
    assert canonical_json({"b": [1, 2.0], "a": "é"}) == '{"a":"é","b":[1,2]}'


def test_non_finite_numbers_rejected():
    with pytest.raises(ValueError):
        compute_plan_hash({"n": float("nan")})
