"""Tests for the transition table and ledger replay."""

from types import SimpleNamespace

import pytest

from core.constants import InstanceStatus
from workflow.graph import DefinitionGraph
from workflow.state_machine import TRANSITIONS, can_fire, replay


GRAPH = DefinitionGraph.parse({
    "nodes": [
        {"id": "start", "type": "start"},
        {"id": "manager", "type": "approval", "name": "Manager"},
        {"id": "check", "type": "condition",
         "branches": [{"when": {"field": "days", "op": "gt", "value": 3}, "next": "hr"}],
         "default": "end"},
        {"id": "hr", "type": "parallel", "name": "HR",
         "assignees": [{"type": "role", "id": "hr"}, {"type": "role", "id": "admin"}]},
        {"id": "end", "type": "end"},
    ]
})


def _rows(*pairs):
    return [SimpleNamespace(node_id=node_id, status=status) for node_id, status in pairs]


@pytest.mark.unit
class TestTransitions:

    def test_submit_only_from_draft(self):
        assert can_fire("submit", InstanceStatus.DRAFT)
        assert not can_fire("submit", InstanceStatus.PROCESSING)

    def test_decisions_only_while_processing(self):
        for event in ("approve", "reject", "terminate"):
            assert TRANSITIONS[event] == (InstanceStatus.PROCESSING,)

    def test_cancel_from_draft_or_processing(self):
        assert can_fire("cancel", InstanceStatus.DRAFT)
        assert can_fire("cancel", InstanceStatus.PROCESSING)
        assert not can_fire("cancel", InstanceStatus.APPROVED)

    def test_terminal_statuses_are_absorbing(self):
        terminal = [s for s in InstanceStatus if s.is_terminal]
        assert set(terminal) == {
            InstanceStatus.APPROVED,
            InstanceStatus.REJECTED,
            InstanceStatus.CANCELED,
            InstanceStatus.TERMINATED,
        }
        for status in terminal:
            assert not any(can_fire(event, status) for event in TRANSITIONS)

    def test_unknown_event(self):
        assert not can_fire("escalate", InstanceStatus.PROCESSING)


@pytest.mark.unit
class TestReplay:

    def test_empty_history_is_draft(self):
        assert replay(GRAPH, [], {}) == (InstanceStatus.DRAFT, "start")

    def test_empty_history_keeps_terminal_overlay(self):
        assert replay(GRAPH, [], {}, overlay=InstanceStatus.CANCELED) == (InstanceStatus.CANCELED, None)
        assert replay(GRAPH, [], {}, overlay=InstanceStatus.APPROVED) == (InstanceStatus.APPROVED, None)

    def test_open_row_is_current(self):
        history = _rows(("manager", "pending"))
        assert replay(GRAPH, history, {"days": 1}) == (InstanceStatus.PROCESSING, "manager")

    def test_short_leave_skips_hr(self):
        history = _rows(("manager", "approved"))
        assert replay(GRAPH, history, {"days": 2}) == (InstanceStatus.APPROVED, None)

    def test_long_leave_waits_for_hr(self):
        history = _rows(("manager", "approved"), ("hr", "approved"), ("hr", "pending"))
        assert replay(GRAPH, history, {"days": 5}) == (InstanceStatus.PROCESSING, "hr")

    def test_all_parallel_rows_approved(self):
        history = _rows(("manager", "approved"), ("hr", "approved"), ("hr", "approved"))
        assert replay(GRAPH, history, {"days": 5}) == (InstanceStatus.APPROVED, None)

    def test_rejection_ends(self):
        history = _rows(("manager", "approved"), ("hr", "rejected"), ("hr", "terminated"))
        assert replay(GRAPH, history, {"days": 5}) == (InstanceStatus.REJECTED, None)

    def test_terminated_rows_follow_overlay(self):
        history = _rows(("manager", "terminated"))
        assert replay(GRAPH, history, {}, overlay=InstanceStatus.CANCELED) == (InstanceStatus.CANCELED, None)
        assert replay(GRAPH, history, {}) == (InstanceStatus.TERMINATED, None)

    def test_approved_step_without_successor_row(self):
        history = _rows(("manager", "approved"))
        assert replay(GRAPH, history, {"days": 9}) == (InstanceStatus.PROCESSING, "hr")
