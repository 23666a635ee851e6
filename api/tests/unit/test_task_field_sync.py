"""
Tests del merge engine (TaskFieldSync) contra dobles en memoria.

Cubre: placeholder, sanitización de nombres, fields no mapeados, COALESCE,
idempotencia, coerciones inválidas, refresh de types no fatal y filas
que desaparecen antes del UPDATE.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from clickup_sync.infrastructure.external.clickup.clickup_client import ClickUpTransientError
from clickup_sync.infrastructure.external.clickup.sync_service import (
    TASK_NOT_CREATED,
    TASK_NOT_FOUND,
    TaskFieldSync,
    keep_unchanged_timestamps,
    stage_custom_fields,
)
from clickup_sync.infrastructure.external.clickup.types import (
    CustomTypeRef,
    FieldValue,
    TaskSummary,
    TypeDef,
)

START_JOB_MS = 1709294400000  # 2024-03-01T12:00:00Z


def _field(name: str, value=None, *, field_id: str = "cf", field_type: str = "short_text") -> dict:
    return {"id": field_id, "name": name, "type": field_type, "type_config": {}, "value": value}


def test_task_not_found_leaves_storage_untouched(task_sync, clickup, repo, engine) -> None:
    outcome = task_sync.sync_task_fields("missing")

    assert outcome.ok is False
    assert outcome.reason == TASK_NOT_FOUND
    assert repo.tasks == {}
    assert engine.transactions == 0


def test_creates_placeholder_when_importer_has_not_run(task_sync, clickup, repo, make_detail) -> None:
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client 🎯", "ACME", field_id="cf-client")])

    outcome = task_sync.sync_task_fields("t1")

    assert outcome.ok is True
    row = repo.tasks["t1"]
    assert row["_airbyte_raw_id"] == "manual_t1"
    assert row["name"] == "Task t1"
    assert row["field_values"]["client"]["value"] == "ACME"
    assert row["client"] == "ACME"


def test_placeholder_failure_reports_not_created(task_sync, clickup, repo, make_detail, monkeypatch) -> None:
    clickup.details["t1"] = make_detail("t1")
    monkeypatch.setattr(repo, "insert_placeholder", lambda conn, detail, extracted_at: False)

    outcome = task_sync.sync_task_fields("t1")

    assert outcome.ok is False
    assert outcome.reason == TASK_NOT_CREATED


def test_provenance_columns_are_never_overwritten(task_sync, clickup, repo, make_detail) -> None:
    extracted_at = datetime(2023, 5, 5, tzinfo=timezone.utc)
    repo.seed_task("t1", _airbyte_raw_id="raw-123", _airbyte_extracted_at=extracted_at)
    clickup.details["t1"] = make_detail("t1")

    assert task_sync.sync_task_fields("t1").ok is True

    row = repo.tasks["t1"]
    assert row["_airbyte_raw_id"] == "raw-123"
    assert row["_airbyte_extracted_at"] == extracted_at


def test_sanitized_name_maps_to_dedicated_column(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail(
        "t1",
        custom_fields=[
            _field("Client 🎯", "ACME", field_id="cf-client"),
            _field("🚀 Start Job!", START_JOB_MS, field_id="cf-start", field_type="date"),
            _field("Est. Revenue", 1500.5, field_id="cf-rev", field_type="currency"),
            _field("Hours per Day", "8", field_id="cf-hours", field_type="number"),
        ],
    )

    outcome = task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert outcome.ok is True
    assert set(row["custom_fields"]) == {"Client", "Start Job!", "Est. Revenue", "Hours per Day"}
    assert row["custom_fields"]["Client"]["original_name"] == "Client 🎯"
    assert row["field_values"]["client"] == {
        "value": "ACME",
        "updated_at": row["field_values"]["client"]["updated_at"],
        "field_id": "cf-client",
        "original_name": "Client 🎯",
    }
    assert row["start_job"] == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert row["field_values"]["start_job"]["value"] == "2024-03-01T12:00:00+00:00"
    assert row["est_revenue"] == 1500.5
    assert row["hours_per_day"] == 8


def test_unmapped_field_is_kept_but_not_valued(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Random Field", "x", field_id="cf-r")])

    task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert "Random Field" in row["custom_fields"]
    assert row["field_values"] == {}


def test_bag_only_field_has_no_dedicated_column(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Job Budget", 9000, field_id="cf-b")])

    task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert row["field_values"]["Job Budget"]["value"] == 9000
    assert "Job Budget" not in row


def test_null_descriptive_fields_do_not_clobber_importer_values(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1", name="Importer name", status="in progress", description="desc")
    clickup.details["t1"] = make_detail("t1", name=None, status=None, description=None)

    task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert row["name"] == "Importer name"
    assert row["status"] == "in progress"
    assert row["description"] == "desc"


def test_upstream_descriptive_fields_replace_stored_values(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1", name="Old", status="open", description="old desc")
    clickup.details["t1"] = make_detail("t1", name="New", status="done", description="new desc")

    task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert row["name"] == "New"
    assert row["status"] == "done"
    assert row["description"] == "new desc"


def test_resync_with_unchanged_upstream_is_idempotent(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail(
        "t1",
        custom_fields=[_field("Client", "ACME", field_id="cf-client"), _field("Fee", 10.5, field_id="cf-fee")],
    )

    task_sync.sync_task_fields("t1")
    first = {k: repo.tasks["t1"][k] for k in ("custom_fields", "relationships", "field_values")}
    changes_after_first = len(repo.field_changes)

    task_sync.sync_task_fields("t1")
    second = {k: repo.tasks["t1"][k] for k in ("custom_fields", "relationships", "field_values")}

    assert second == first
    assert len(repo.field_changes) == changes_after_first


def test_changed_value_gets_new_timestamp_and_one_ledger_record(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "A", field_id="cf-client")])
    task_sync.sync_task_fields("t1")

    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "B", field_id="cf-client")])
    task_sync.sync_task_fields("t1")
    task_sync.sync_task_fields("t1")

    a_to_b = [c for c in repo.changes_for("client") if c["old_value"] == "A" and c["new_value"] == "B"]
    assert len(a_to_b) == 1
    assert repo.tasks["t1"]["field_values"]["client"]["value"] == "B"


def test_removed_value_is_recorded_and_column_cleared(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "A", field_id="cf-client")])
    task_sync.sync_task_fields("t1")

    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", None, field_id="cf-client")])
    task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert "client" not in row["field_values"]
    assert row["client"] is None
    assert repo.changes_for("client")[-1]["new_value"] is None


def test_malformed_value_is_skipped_and_sync_continues(task_sync, clickup, repo, make_detail) -> None:
    start_job = datetime(2024, 3, 1, tzinfo=timezone.utc)
    repo.seed_task("t1", start_job=start_job)
    clickup.details["t1"] = make_detail(
        "t1",
        custom_fields=[
            _field("Start Job!", "not-a-date", field_id="cf-start"),
            _field("Client", "ACME", field_id="cf-client"),
            {"id": "cf-anon", "type": "short_text", "value": "x"},
        ],
    )

    outcome = task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert outcome.ok is True
    assert "start_job" not in row["field_values"]
    assert row["start_job"] == start_job
    assert "Start Job!" in row["custom_fields"]
    assert row["field_values"]["client"]["value"] == "ACME"
    assert len(row["custom_fields"]) == 2


def test_non_mapping_field_entry_is_skipped(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail(
        "t1", custom_fields=[None, "garbage", _field("Client", "ACME", field_id="cf-client")]
    )

    outcome = task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert outcome.ok is True
    assert set(row["custom_fields"]) == {"Client"}
    assert row["client"] == "ACME"


def test_absent_field_keeps_dedicated_column(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1", client="Importer client", est_cost=250.0)
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Est. Cost", None, field_id="cf-cost")])

    assert task_sync.sync_task_fields("t1").ok is True

    row = repo.tasks["t1"]
    assert row["client"] == "Importer client"
    assert row["est_cost"] is None


def test_type_refresh_failure_is_not_fatal(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    repo.seed_task_type("old", "Old type")
    clickup.types_error = ClickUpTransientError("rate limited", status_code=429)
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "ACME")])

    outcome = task_sync.sync_task_fields("t1")

    assert outcome.ok is True
    assert set(repo.task_types) == {"old"}


def test_custom_type_is_linked_and_recorded_in_relationships(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    clickup.types = [TypeDef(id="1001", name="Job")]
    clickup.details["t1"] = make_detail(
        "t1", parent="p1", custom_type=CustomTypeRef(id="1001", name="Job", color="#000")
    )

    task_sync.sync_task_fields("t1")

    row = repo.tasks["t1"]
    assert row["task_type_id"] == "1001"
    assert row["task_type_name"] == "Job"
    assert row["relationships"] == {"parent_id": "p1", "custom_type": "Job"}


def test_row_vanishing_before_update_rolls_back(task_sync, clickup, repo, make_detail, monkeypatch) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "ACME")])
    monkeypatch.setattr(repo, "update_task_fields", lambda *args, **kwargs: None)

    outcome = task_sync.sync_task_fields("t1")

    assert outcome.ok is False
    assert repo.field_changes == []


def test_storage_error_is_reported_not_raised(task_sync, clickup, repo, make_detail, monkeypatch) -> None:
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "ACME")])

    def _boom(*args, **kwargs):
        raise OperationalError("UPDATE clickup_task", {}, Exception("connection lost"))

    monkeypatch.setattr(repo, "update_task_fields", _boom)

    outcome = task_sync.sync_task_fields("t1")

    assert outcome.ok is False
    assert "connection lost" in outcome.reason
    assert repo.tasks["t1"]["field_values"] == {}


def test_unexpected_errors_propagate(task_sync, clickup, monkeypatch) -> None:
    def _broken(task_id):
        raise KeyError("id")

    monkeypatch.setattr(clickup, "get_task_detail", _broken)

    with pytest.raises(KeyError):
        task_sync.sync_task_fields("t1")


def test_promoted_columns_can_be_disabled(engine, clickup, repo, type_sync, ledger, make_detail) -> None:
    sync = TaskFieldSync(
        engine=engine,
        clickup=clickup,
        repo=repo,
        type_sync=type_sync,
        ledger=ledger,
        workspace_id=None,
        write_promoted_columns=False,
    )
    repo.seed_task("t1")
    clickup.details["t1"] = make_detail("t1", custom_fields=[_field("Client", "ACME")])

    assert sync.sync_task_fields("t1").ok is True
    assert repo.tasks["t1"]["field_values"]["client"]["value"] == "ACME"
    assert "client" not in repo.tasks["t1"]


def test_sync_space_reports_failed_tasks(task_sync, clickup, repo, make_detail) -> None:
    clickup.details["t1"] = make_detail("t1")
    clickup.space_tasks["s1"] = [
        TaskSummary(id="t1", name="a", status=None, parent=None, date_updated=None),
        TaskSummary(id="gone", name="b", status=None, parent=None, date_updated=None),
    ]

    result = task_sync.sync_space("s1")

    assert result.total == 2
    assert result.synced == 1
    assert result.failed == ["gone"]


def test_sync_task_relationships_uses_detail(task_sync, clickup, repo, make_detail) -> None:
    repo.seed_task("t1")
    repo.seed_task("p1")
    repo.seed_task_type("1001", "Job")
    clickup.details["t1"] = make_detail("t1", parent="p1", custom_type=CustomTypeRef(id="1001", name="Job"))

    row = task_sync.sync_task_relationships("t1")

    assert row is not None
    assert row["parent_id"] == "p1"
    assert row["task_type_id"] == "1001"
    assert task_sync.sync_task_relationships("missing") is None


def test_stage_custom_fields_keeps_last_duplicate() -> None:
    staged = stage_custom_fields(
        [_field("Client", "A", field_id="1"), _field("Client 🎯", "B", field_id="2")],
        task_id="t1",
        staged_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    assert staged.field_values["client"].value == "B"
    assert staged.promoted_columns["client"] == "B"
    assert "est_cost" not in staged.promoted_columns


def test_keep_unchanged_timestamps_preserves_only_equal_values() -> None:
    staged = {
        "client": FieldValue(value="A", updated_at="new", field_id="1", original_name="Client"),
        "Fee": FieldValue(value=20, updated_at="new", field_id="2", original_name="Fee"),
    }
    stored = {
        "client": {"value": "A", "updated_at": "old"},
        "Fee": {"value": 10, "updated_at": "old"},
    }

    result = keep_unchanged_timestamps(staged, stored)

    assert result["client"].updated_at == "old"
    assert result["Fee"].updated_at == "new"
