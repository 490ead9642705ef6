"""Tests for KT Intake snapshot migration."""

import copy

import pytest


def legacy_payload():
    """A version-0 snapshot as the first browser release wrote it."""
    return {
        "meta": {"version": 0, "savedAt": "2024-03-01T09:00:00.000Z"},
        "pre": {"oneLine": "Paint defects on line 3", "proof": "QA photos"},
        "impactNow": "Line stopped",
        "ops": {"icName": "Dana", "containmentStatus": "mitigation", "evLogs": "yes"},
        "commCadence": "hourly",
        "commLog": ["09:00 update sent", 1030, {"ts": "x"}, None],
        "ktTable": [{"band": "WHAT"}, {"q": "What is the deviation?", "is": "gaps", "no": "streaks"}, "junk"],
        "possibleCauses": [
            {
                "id": "cause-a",
                "suspect": "Employees",
                "accusation": "Using incorrect hand cream",
                "findings": {"What is the deviation?": {"mode": "fail", "note": "no"}},
            },
            {
                "id": "cause-b",
                "suspect": "Primer",
                "accusation": "contaminated batch",
                "findings": {"Where?": {"mode": "assumption", "note": "Batch reached line 3"}},
            },
            "not a cause",
        ],
        "likelyCauseId": "cause-a",
    }


class TestMigrateAppState:
    """Test the migration entry point."""

    def test_garbage_returns_none(self):
        """Test non-object input yields None."""
        from kt_intake.migration import migrate_app_state

        assert migrate_app_state(None) is None
        assert migrate_app_state("snapshot") is None
        assert migrate_app_state(42) is None
        assert migrate_app_state([{"meta": {}}]) is None

    def test_empty_object_gets_defaults(self):
        """Test {} becomes a complete current snapshot."""
        from kt_intake.migration import migrate_app_state
        from kt_intake.schema import APP_STATE_VERSION

        snapshot = migrate_app_state({})
        assert snapshot.meta.version == APP_STATE_VERSION
        assert snapshot.meta.saved_at is None
        assert snapshot.causes == []
        assert snapshot.likely_cause_id is None
        assert snapshot.ops.contain_status == ""
        assert snapshot.steps.drawer_open is False
        assert snapshot.actions.analysis_id == ""

    def test_version_zero_scenario(self):
        """Test containment remap and cadence move for a version-0 payload."""
        from kt_intake.migration import migrate_app_state
        from kt_intake.schema import APP_STATE_VERSION

        snapshot = migrate_app_state({
            "meta": {"version": 0},
            "ops": {"containmentStatus": "mitigation"},
            "commCadence": "hourly",
        })
        assert snapshot.ops.contain_status == "stabilized"
        assert snapshot.ops.comm_cadence == "hourly"
        assert snapshot.meta.version == APP_STATE_VERSION

    def test_root_containment_status(self):
        """Test a root-level containmentStatus is also picked up."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({"containmentStatus": "restore"})
        assert snapshot.ops.contain_status == "restoring"

    def test_unknown_containment_becomes_empty(self):
        """Test unrecognized containment values are not guessed."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({"meta": {"version": 2}, "ops": {"containStatus": "on-fire"}})
        assert snapshot.ops.contain_status == ""

    def test_current_containment_kept(self):
        """Test current containment values pass through."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({"meta": {"version": 2}, "ops": {"containStatus": "fixInProgress"}})
        assert snapshot.ops.contain_status == "fixInProgress"

    def test_full_legacy_payload(self):
        """Test a realistic legacy payload lands in the current shape."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state(legacy_payload())

        assert snapshot.meta.saved_at == "2024-03-01T09:00:00.000Z"
        assert snapshot.pre.one_line == "Paint defects on line 3"
        assert snapshot.impact.now == "Line stopped"
        assert snapshot.ops.ic_name == "Dana"
        assert snapshot.ops.ev_logs is True
        assert snapshot.ops.comm_cadence == "hourly"
        assert snapshot.ops.comm_log == ["09:00 update sent", "1030", {"ts": "x"}]
        assert snapshot.table == [{"band": "WHAT"}, {"q": "What is the deviation?", "is": "gaps", "no": "streaks"}]
        assert [cause.id for cause in snapshot.causes] == ["cause-a", "cause-b"]

    def test_findings_fold_into_decisions(self):
        """Test legacy findings become a single decision per cause."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state(legacy_payload())
        failed, conditional = snapshot.causes

        assert failed.decision == "does_not_explain"
        assert conditional.decision == "conditional"
        assert conditional.assumptions == "Batch reached line 3"

    def test_yes_findings_become_explanations(self):
        """Test yes findings fill the IS / IS NOT explanations."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({
            "meta": {"version": 1},
            "causes": [{
                "id": "c1",
                "findings": {
                    "q1": {"explainIs": "valve open", "explainNot": "seal intact"},
                    "q2": "legacy note",
                },
            }],
        })
        cause = snapshot.causes[0]
        assert cause.decision == "explains"
        assert cause.explanation_is == "valve open"
        assert cause.explanation_is_not == "seal intact"

    def test_existing_decision_wins_over_findings(self):
        """Test findings never overwrite a recorded decision."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({
            "meta": {"version": 1},
            "causes": [{"id": "c1", "decision": "explains", "findings": {"q": {"mode": "fail"}}}],
        })
        assert snapshot.causes[0].decision == "explains"

    def test_ruled_out_likely_cause_cleared(self):
        """Test likelyCauseId pointing at a failed cause is cleared."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state(legacy_payload())
        assert snapshot.likely_cause_id is None

    def test_dangling_likely_cause_kept(self):
        """Test an id with no matching cause is kept as-is."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({"likelyCauseId": "cause-gone"})
        assert snapshot.likely_cause_id == "cause-gone"

    def test_likely_cause_coercion(self):
        """Test blank ids become None and numbers are stringified."""
        from kt_intake.migration import migrate_app_state

        assert migrate_app_state({"likelyCauseId": "   "}).likely_cause_id is None
        assert migrate_app_state({"likelyCauseId": 7}).likely_cause_id == "7"
        assert migrate_app_state({"likelyCause": "legacy"}).likely_cause_id == "legacy"

    def test_steps_normalization(self):
        """Test steps accept a bare list and legacy aliases."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({
            "steps": [
                {"stepId": "s1", "title": "Frame the problem", "checked": "yes"},
                {"label": "no id"},
                "junk",
            ],
        })
        assert len(snapshot.steps.items) == 1
        item = snapshot.steps.items[0]
        assert (item.id, item.label, item.checked) == ("s1", "Frame the problem", True)

    def test_steps_drawer_aliases(self):
        """Test drawerOpen falls back to open."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({"steps": {"items": [], "open": True}})
        assert snapshot.steps.drawer_open is True

    def test_actions_normalization(self):
        """Test analysisId is trimmed and non-object items dropped."""
        from kt_intake.migration import migrate_app_state

        snapshot = migrate_app_state({"actions": {"analysisId": "  an-1 ", "items": [{"id": "a"}, 3]}})
        assert snapshot.actions.analysis_id == "an-1"
        assert snapshot.actions.items == [{"id": "a"}]

    def test_does_not_mutate_input(self):
        """Test the caller's payload is left untouched."""
        from kt_intake.migration import migrate_app_state

        payload = legacy_payload()
        original = copy.deepcopy(payload)
        migrate_app_state(payload)
        assert payload == original


class TestMigrationProperties:
    """Test idempotence and version monotonicity."""

    def test_idempotence(self):
        """Test migrating a migrated snapshot changes nothing."""
        from kt_intake.migration import migrate_app_state

        for payload in ({}, legacy_payload(), {"causes": [{"suspect": "no id yet"}]}):
            once = migrate_app_state(payload)
            twice = migrate_app_state(once.to_dict())
            assert twice.to_dict() == once.to_dict()

    def test_duplicate_cause_ids_idempotent(self):
        """Test duplicate cause ids are split once and then left alone."""
        from kt_intake.migration import migrate_app_state

        payload = {
            "meta": {"version": 2},
            "causes": [{"id": "dup", "suspect": "Pump 7"}, {"id": "dup", "suspect": "Valve 3"}],
        }
        once = migrate_app_state(payload)
        ids = [cause.id for cause in once.causes]
        assert ids[0] == "dup"
        assert len(set(ids)) == 2
        assert migrate_app_state(once.to_dict()).to_dict() == once.to_dict()

    def test_snapshot_input_accepted(self):
        """Test a Snapshot instance migrates to an equal snapshot."""
        from kt_intake.migration import migrate_app_state

        once = migrate_app_state(legacy_payload())
        assert migrate_app_state(once).to_dict() == once.to_dict()

    def test_version_always_current(self):
        """Test every input ends at the current version."""
        from kt_intake.migration import migrate_app_state
        from kt_intake.schema import APP_STATE_VERSION

        payloads = [
            {},
            {"meta": {"version": "1"}},
            {"meta": {"version": "garbage"}},
            {"meta": {"version": 99}},
            {"meta": {"version": -3}},
            {"meta": "broken"},
            legacy_payload(),
        ]
        for payload in payloads:
            assert migrate_app_state(payload).meta.version == APP_STATE_VERSION


class TestVersionResolution:
    """Test meta.version parsing."""

    def test_resolve_version(self):
        """Test numbers, numeric strings and fallbacks."""
        from kt_intake.migration import resolve_version

        assert resolve_version({"meta": {"version": 1}}) == 1
        assert resolve_version({"meta": {"version": "2"}}) == 2
        assert resolve_version({"meta": {"version": " 1 "}}) == 1
        assert resolve_version({"meta": {"version": "abc"}}) == 0
        assert resolve_version({"meta": {"version": True}}) == 0
        assert resolve_version({"meta": {}}) == 0
        assert resolve_version({}) == 0


class TestMigrationRegistry:
    """Test the registry walk."""

    def test_registry_is_read_only(self):
        """Test the exported registry cannot be modified."""
        from kt_intake.migration import MIGRATION_REGISTRY

        assert set(MIGRATION_REGISTRY) == {0, 1}
        with pytest.raises(TypeError):
            MIGRATION_REGISTRY[5] = lambda state: state

    def test_non_advancing_migration_stops(self, monkeypatch):
        """Test a migration that does not bump the version cannot loop forever."""
        from kt_intake import migration

        calls = []

        def stuck(state):
            calls.append(1)
            return state

        monkeypatch.setitem(migration.MIGRATIONS, 0, stuck)
        snapshot = migration.migrate_app_state({"commCadence": "daily"})
        assert calls == [1]
        assert snapshot.ops.comm_cadence == "daily"

    def test_failing_migration_degrades(self, monkeypatch):
        """Test a raising migration still yields a normalized snapshot."""
        from kt_intake import migration

        def broken(state):
            raise KeyError("boom")

        monkeypatch.setitem(migration.MIGRATIONS, 0, broken)
        snapshot = migration.migrate_app_state({"pre": {"oneLine": "still here"}})
        assert snapshot.pre.one_line == "still here"

    def test_legacy_migration_keeps_existing_ops(self):
        """Test values already under ops win over root-level legacy ones."""
        from kt_intake.migration import migrate_legacy_state

        state = migrate_legacy_state({"ops": {"commCadence": "daily"}, "commCadence": "hourly"})
        assert state["ops"]["commCadence"] == "daily"
        assert "commCadence" not in state
        assert state["meta"]["version"] == 1
