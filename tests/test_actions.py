"""Tests for the KT Intake action store and conversion bridge."""

from datetime import datetime, timezone

import pytest


FIXED_NOW = datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path):
    """An action store backed by a temporary file with a fixed clock."""
    from kt_intake.actions import LocalActionStore
    from kt_intake.storage import LocalStorage

    return LocalActionStore(LocalStorage(tmp_path / "store.json"), clock=lambda: FIXED_NOW)


def conditional_cause(**fields):
    from kt_intake.schema import Cause, NextTest

    values = {
        "id": "c1",
        "suspect": "Pump 7",
        "accusation": "is leaking",
        "decision": "conditional",
        "assumptions": "seal failed",
        "next_test": NextTest(text="Inspect seal", owner="Dana", eta="2024-05-02T12:00:00+02:00"),
    }
    values.update(fields)
    return Cause(**values)


def board_with(*causes):
    from kt_intake.decision import CauseBoard
    from kt_intake.notify import RecordingNotifier

    return CauseBoard(causes=list(causes), notifier=RecordingNotifier())


class TestLocalActionStore:
    """Test action creation and guardrails."""

    def test_create_defaults(self, store):
        """Test a new action gets the stock fields."""
        action = store.create_action("an-1", {"summary": "  Replace seal  "})

        assert action["summary"] == "Replace seal"
        assert action["analysisId"] == "an-1"
        assert action["status"] == "Planned"
        assert action["priority"] == "P2"
        assert action["risk"] == "None"
        assert action["createdAt"] == "2024-05-01T10:30:00.000Z"
        assert action["changeControl"] == {"required": False}
        assert action["verification"] == {"required": False}
        assert action["dependencies"] == []
        assert store.list_actions("an-1") == [action]

    def test_empty_summary_rejected(self, store):
        """Test a blank summary creates nothing."""
        assert store.create_action("an-1", {"summary": "   "}) is None
        assert store.list_actions("an-1") == []

    def test_newest_first(self, store):
        """Test new actions are prepended."""
        store.create_action("an-1", {"summary": "first"})
        store.create_action("an-1", {"summary": "second"})
        assert [action["summary"] for action in store.list_actions("an-1")] == ["second", "first"]

    def test_analyses_are_separate(self, store):
        """Test actions are grouped by analysis id."""
        store.create_action("an-1", {"summary": "first"})
        assert store.list_actions("an-2") == []

    def test_rollback_required_for_high_risk(self, store):
        """Test a high-risk action cannot start without a rollback plan."""
        action = store.create_action("an-1", {"summary": "Swap pump", "risk": "High"})

        result = store.patch_action("an-1", action["id"], {"status": "In-Progress"})
        assert result.success is False
        assert result.message == "Rollback plan required before starting."

        result = store.patch_action("an-1", action["id"], {
            "status": "In-Progress",
            "changeControl": {"required": True, "rollbackPlan": "Reinstall old pump"},
        })
        assert result.success is True
        assert result.action["startedAt"] == "2024-05-01T10:30:00.000Z"

    def test_verification_required_for_done(self, store):
        """Test Done needs a verification result when verification is required."""
        action = store.create_action("an-1", {"summary": "Swap pump", "verification": {"required": True}})

        result = store.patch_action("an-1", action["id"], {"status": "Done"})
        assert result.message == "Record verification result before marking Done."

        result = store.patch_action("an-1", action["id"], {
            "status": "Done",
            "verification": {"required": True, "result": "No leak after 24h"},
        })
        assert result.success is True
        assert result.action["completedAt"] == "2024-05-01T10:30:00.000Z"

    def test_patch_missing_action(self, store):
        """Test patching an unknown id fails without raising."""
        result = store.patch_action("an-1", "nope", {"status": "Done"})
        assert result.success is False
        assert result.message == "Action not found."

    def test_replace_and_remove(self, store):
        """Test bulk replace drops non-objects and remove deletes by id."""
        store.replace_actions("an-1", [{"id": "a"}, {"id": "b"}, "junk"])
        store.remove_action("an-1", "a")
        assert store.list_actions("an-1") == [{"id": "b"}]

    def test_hand_edited_store_tolerated(self, store):
        """Test non-object actions and non-object sub-records do not break patch or remove."""
        import json

        store.storage.set_item(store.key, json.dumps({
            "an-1": ["junk", 7, {"id": "a", "summary": "Swap pump", "changeControl": "yes", "verification": "no"}],
        }))
        assert store.list_actions("an-1") == [
            {"id": "a", "summary": "Swap pump", "changeControl": "yes", "verification": "no"}
        ]

        result = store.patch_action("an-1", "a", {"status": "In-Progress"})
        assert result.success is True
        result = store.patch_action("an-1", "a", {"status": "Done"})
        assert result.success is True

        store.remove_action("an-1", "a")
        assert store.list_actions("an-1") == []


class TestActionConversionBridge:
    """Test converting conditional causes into actions."""

    def test_build_request(self, store):
        """Test the request carries the test plan and the hypothesis link."""
        from kt_intake.actions import ActionConversionBridge

        cause = conditional_cause()
        bridge = ActionConversionBridge(board_with(cause), store, "an-1")
        request = bridge.build_request(cause)

        assert request["summary"] == "Test: Inspect seal"
        assert request["owner"] == "Dana"
        assert request["dueAt"] == "2024-05-02T10:00:00.000Z"
        assert request["links"] == {"hypothesisId": "c1"}
        assert request["detail"].startswith("We suspect Pump 7 is leaking.\n\n")
        assert "only if seal failed" in request["detail"]

    def test_convert_success(self, store):
        """Test a conditional cause becomes a linked action and counts refresh."""
        from kt_intake.actions import ActionConversionBridge

        board = board_with(conditional_cause())
        result = ActionConversionBridge(board, store, "an-1").convert("c1")

        assert result.success is True
        assert result.reason is None
        assert result.action["links"]["hypothesisId"] == "c1"
        assert board.action_count("c1") == 1
        assert board.notifier.last == "Action created for Pump 7."

    def test_convert_not_conditional(self, store):
        """Test causes without a complete test plan are refused."""
        from kt_intake.actions import ActionConversionBridge
        from kt_intake.schema import NextTest

        cause = conditional_cause(next_test=NextTest(text="Inspect seal", owner="Dana"))
        board = board_with(cause, conditional_cause(id="c2", decision="explains"))
        bridge = ActionConversionBridge(board, store, "an-1")

        for target in ("c1", "c2", "missing"):
            result = bridge.convert(target)
            assert result.success is False, target
            assert result.reason == "not_conditional"
        assert store.list_actions("an-1") == []
        assert board.notifier.last == "Only conditional causes with a complete test plan can be converted."

    def test_convert_rechecks_stale_cause(self, store):
        """Test the board's current cause is checked, not the caller's copy."""
        from kt_intake.actions import ActionConversionBridge

        cause = conditional_cause()
        board = board_with(cause.model_copy(update={"decision": "does_not_explain"}))
        result = ActionConversionBridge(board, store, "an-1").convert(cause)
        assert result.reason == "not_conditional"

    def test_store_rejected(self):
        """Test a store returning nothing is reported as rejected."""
        from kt_intake.actions import ActionConversionBridge

        class RejectingStore:
            def list_actions(self, analysis_id):
                return []

            def create_action(self, analysis_id, patch):
                return None

        board = board_with(conditional_cause())
        result = ActionConversionBridge(board, RejectingStore(), "an-1").convert("c1")
        assert result.success is False
        assert result.reason == "store_rejected"
        assert board.notifier.last == "Unable to create an action for this cause."

    def test_store_error(self):
        """Test a raising store is caught and leaves the board unchanged."""
        from kt_intake.actions import ActionConversionBridge

        class BrokenStore:
            def list_actions(self, analysis_id):
                return []

            def create_action(self, analysis_id, patch):
                raise RuntimeError("disk full")

        board = board_with(conditional_cause())
        result = ActionConversionBridge(board, BrokenStore(), "an-1").convert("c1")
        assert result.success is False
        assert result.reason == "store_error"
        assert board.action_count("c1") == 0
        assert board.get("c1").decision == "conditional"
