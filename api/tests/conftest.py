"""
Configuración de fixtures para pytest.

El core de sync recibe engine, cliente y repositorio por constructor, así que
los tests usan dobles en memoria:
- FakeEngine: begin() revierte el estado del repositorio si hay excepción
- FakeTaskRepository: misma interfaz que PostgresTaskRepository
- FakeClickUp: detalles / catálogo / listados configurables
"""
from __future__ import annotations

import copy
import json
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import psycopg
import pytest
from sqlalchemy.exc import IntegrityError

from clickup_sync.infrastructure.external.clickup.change_ledger import FieldChangeLedger
from clickup_sync.infrastructure.external.clickup.context import SyncContext
from clickup_sync.infrastructure.external.clickup.field_catalog import PROMOTED_COLUMNS
from clickup_sync.infrastructure.external.clickup.pg_repository import placeholder_raw_id
from clickup_sync.infrastructure.external.clickup.sync_service import TaskFieldSync
from clickup_sync.infrastructure.external.clickup.task_type_sync import TaskTypeSync
from clickup_sync.infrastructure.external.clickup.types import (
    CustomTypeRef,
    TaskDetail,
    to_jsonable,
    utc_now,
)

WORKSPACE_ID = "ws-1"


def _roundtrip(value: Any) -> Any:
    """Simula el paso por una columna JSONB."""
    return json.loads(json.dumps(to_jsonable(value)))


def _fk_violation(message: str) -> IntegrityError:
    return IntegrityError("UPDATE ...", {}, psycopg.errors.ForeignKeyViolation(message))


class FakeConnection:
    """Marcador: el repositorio fake no usa la conexión."""


class FakeTaskRepository:
    def __init__(self) -> None:
        self.tasks: dict[str, dict[str, Any]] = {}
        self.task_types: dict[str, dict[str, Any]] = {}
        self.field_changes: list[dict[str, Any]] = []

    # Estado transaccional -------------------------------------------------

    def snapshot(self):
        return copy.deepcopy((self.tasks, self.task_types, self.field_changes))

    def restore(self, snapshot) -> None:
        self.tasks, self.task_types, self.field_changes = snapshot

    # Helpers de test ------------------------------------------------------

    def seed_task(self, task_id: str, **columns: Any) -> dict[str, Any]:
        row = {
            "id": task_id,
            "_airbyte_raw_id": f"airbyte-{task_id}",
            "_airbyte_extracted_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "name": None,
            "status": None,
            "description": None,
            "custom_fields": {},
            "relationships": {},
            "field_values": {},
            "task_type_id": None,
            "task_type_name": None,
            "parent_id": None,
            "updated_at": None,
        }
        row.update(columns)
        self.tasks[task_id] = row
        return row

    def seed_task_type(self, type_id: str, name: str) -> None:
        self.task_types[type_id] = {"id": type_id, "name": name, "color": None, "status": "active", "orderindex": 0}

    def changes_for(self, field_name: str) -> list[dict[str, Any]]:
        return [c for c in self.field_changes if c["field_name"] == field_name]

    # clickup_task ---------------------------------------------------------

    def task_exists(self, conn, task_id: str) -> bool:
        return task_id in self.tasks

    def get_task(self, conn, task_id: str) -> Optional[dict[str, Any]]:
        row = self.tasks.get(task_id)
        return dict(row) if row else None

    def get_task_for_update(self, conn, task_id: str) -> Optional[dict[str, Any]]:
        return self.get_task(conn, task_id)

    def insert_placeholder(self, conn, detail: TaskDetail, *, extracted_at: datetime) -> bool:
        if detail.id in self.tasks:
            return False
        self.seed_task(
            detail.id,
            _airbyte_raw_id=placeholder_raw_id(detail.id),
            _airbyte_extracted_at=extracted_at,
            name=detail.name,
            status=detail.status,
            description=detail.description,
            updated_at=utc_now(),
        )
        return True

    def update_task_fields(self, conn, task_id, update, *, write_promoted_columns=True):
        row = self.tasks.get(task_id)
        if row is None:
            return None
        row["custom_fields"] = _roundtrip(update.custom_fields_json())
        row["relationships"] = _roundtrip(update.relationships.to_json())
        row["field_values"] = _roundtrip(update.field_values_json())
        for column in ("status", "name", "description"):
            value = getattr(update, column)
            if value is not None:
                row[column] = value
        if write_promoted_columns:
            for column in PROMOTED_COLUMNS:
                if column in update.promoted_columns:
                    row[column] = update.promoted_columns[column]
        now = utc_now()
        row["updated_at"] = now
        row["date_updated"] = now
        return dict(row)

    def update_relationships(self, conn, task_id, *, parent_id, custom_type_name):
        row = self.tasks.get(task_id)
        if row is None:
            return None
        row["parent_id"] = parent_id
        row["task_type_id"] = next(
            (t["id"] for t in self.task_types.values() if t["name"] == custom_type_name),
            None,
        )
        row["updated_at"] = utc_now()
        return dict(row)

    def get_field_values(self, conn, task_id: str):
        row = self.tasks.get(task_id)
        if row is None:
            return None
        return row.get("field_values") or {}

    # task_types -----------------------------------------------------------

    def upsert_task_types(self, conn, types, *, workspace_id: str) -> int:
        count = 0
        for t in types:
            self.task_types[t.id] = {
                "id": t.id,
                "name": t.name,
                "color": t.color,
                "status": t.status,
                "orderindex": t.orderindex,
                "workspace_id": workspace_id,
            }
            count += 1
        return count

    def detach_tasks_from_types_not_in(self, conn, type_ids) -> int:
        detached = 0
        for row in self.tasks.values():
            if row.get("task_type_id") and row["task_type_id"] not in type_ids:
                row["task_type_id"] = None
                detached += 1
        return detached

    def delete_task_types_not_in(self, conn, type_ids) -> int:
        doomed = [type_id for type_id in self.task_types if type_id not in type_ids]
        for type_id in doomed:
            if any(row.get("task_type_id") == type_id for row in self.tasks.values()):
                raise _fk_violation(f"task_types {type_id} referenciado")
            del self.task_types[type_id]
        return len(doomed)

    def link_task_type(self, conn, task_id: str, type_id: str):
        if type_id not in self.task_types:
            raise _fk_violation(f"task_types {type_id} no existe")
        row = self.tasks.get(task_id)
        if row is None:
            return None
        row["task_type_id"] = type_id
        row["task_type_name"] = self.task_types[type_id]["name"]
        return dict(row)

    def list_task_types(self, conn):
        return sorted(self.task_types.values(), key=lambda t: t["orderindex"])

    def get_task_type(self, conn, type_id: str):
        return self.task_types.get(type_id)

    # field_changes --------------------------------------------------------

    def insert_field_change(self, conn, *, task_id, field_name, old_value, new_value) -> None:
        self.field_changes.append(
            {
                "task_id": task_id,
                "field_name": field_name,
                "old_value": _roundtrip(old_value),
                "new_value": _roundtrip(new_value),
                "changed_at": utc_now(),
            }
        )


class FakeEngine:
    """Transacciones serializadas con un lock (el sync manual corre en dos threads)."""

    def __init__(self, repo: FakeTaskRepository) -> None:
        self._repo = repo
        self._lock = threading.RLock()
        self.transactions = 0

    @contextmanager
    def begin(self):
        with self._lock:
            snapshot = self._repo.snapshot()
            self.transactions += 1
            try:
                yield FakeConnection()
            except BaseException:
                self._repo.restore(snapshot)
                raise

    @contextmanager
    def connect(self):
        with self._lock:
            yield FakeConnection()


class FakeClickUp:
    def __init__(self) -> None:
        self.details: dict[str, TaskDetail] = {}
        self.types: list = []
        self.types_error: Optional[Exception] = None
        self.space_tasks: dict[str, list] = {}
        self.list_tasks: dict[str, list] = {}
        self.detail_calls: list[str] = []

    def get_task_detail(self, task_id: str) -> Optional[TaskDetail]:
        self.detail_calls.append(task_id)
        return self.details.get(task_id)

    def get_custom_types(self, workspace_id: str):
        if self.types_error is not None:
            raise self.types_error
        return list(self.types)

    def list_tasks_in_space(self, space_id: str):
        return list(self.space_tasks.get(space_id, []))

    def list_tasks_in_list(self, list_id: str):
        return list(self.list_tasks.get(list_id, []))


@pytest.fixture
def repo() -> FakeTaskRepository:
    return FakeTaskRepository()


@pytest.fixture
def engine(repo: FakeTaskRepository) -> FakeEngine:
    return FakeEngine(repo)


@pytest.fixture
def clickup() -> FakeClickUp:
    return FakeClickUp()


@pytest.fixture
def type_sync(engine, clickup, repo) -> TaskTypeSync:
    return TaskTypeSync(engine=engine, clickup=clickup, repo=repo)


@pytest.fixture
def ledger(engine, repo) -> FieldChangeLedger:
    return FieldChangeLedger(engine=engine, repo=repo)


@pytest.fixture
def task_sync(engine, clickup, repo, type_sync, ledger) -> TaskFieldSync:
    return TaskFieldSync(
        engine=engine,
        clickup=clickup,
        repo=repo,
        type_sync=type_sync,
        ledger=ledger,
        workspace_id=WORKSPACE_ID,
    )


@pytest.fixture
def sync_context(task_sync, type_sync, ledger) -> SyncContext:
    return SyncContext(task_sync=task_sync, type_sync=type_sync, ledger=ledger, workspace_id=WORKSPACE_ID)


@pytest.fixture
def make_detail():
    """Factory de TaskDetail con defaults razonables."""

    def _make(
        task_id: str = "t1",
        *,
        custom_fields: Optional[list[dict[str, Any]]] = None,
        custom_type: Optional[CustomTypeRef] = None,
        **overrides: Any,
    ) -> TaskDetail:
        values: dict[str, Any] = {
            "id": task_id,
            "name": f"Task {task_id}",
            "text_content": None,
            "description": None,
            "status": "open",
            "date_created": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "date_updated": datetime(2024, 1, 2, tzinfo=timezone.utc),
            "creator": {"id": 1, "username": "ana"},
            "parent": None,
            "custom_type": custom_type,
            "custom_fields": custom_fields or [],
        }
        values.update(overrides)
        return TaskDetail(**values)

    return _make
