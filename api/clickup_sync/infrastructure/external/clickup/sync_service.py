"""
Merge engine: ClickUp -> fila compartida de clickup_task.

Diseño (resumen):
- Trae el detalle de la tarea desde ClickUp (custom fields incluidos)
- Si el importador aún no creó la fila, inserta un placeholder
- Refresca el catálogo de task types (best effort) y vincula el type
- Normaliza los custom fields vía el catálogo (clean name, coerción)
- Un UPDATE bajo row lock: reemplaza los mapas, escribe columnas dedicadas,
  COALESCE en status/name/description y registra los cambios en field_changes

Estrategia de idempotencia:
- Un valor igual al guardado conserva su updated_at previo, por lo que
  re-sincronizar sin cambios upstream reproduce los mismos mapas.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .change_ledger import FieldChangeLedger, values_differ
from .clickup_client import ClickUpApiError, ClickUpClient
from .field_catalog import classify, clean_field_name
from .pg_repository import PostgresTaskRepository
from .task_type_sync import TaskTypeSync
from .types import (
    BulkSyncResult,
    CleanupResult,
    FieldDefinition,
    FieldValue,
    Relationships,
    SyncOutcome,
    TaskDetail,
    TaskFieldUpdate,
    TaskSummary,
    ensure_utc,
    to_jsonable,
    utc_now,
)

TASK_NOT_FOUND = "Task not found in ClickUp"
TASK_NOT_CREATED = "Failed to create/find task"


class TaskRowMissingError(RuntimeError):
    """El UPDATE final no encontró la fila (borrada entre el placeholder y el merge)."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Tarea {task_id} no encontrada al actualizar fields")
        self.task_id = task_id


@dataclass(frozen=True)
class StagedFields:
    custom_fields: dict[str, FieldDefinition]
    field_values: dict[str, FieldValue]
    promoted_columns: dict[str, Any]


def stage_custom_fields(
    custom_fields: Iterable[Mapping[str, Any]],
    *,
    task_id: str,
    staged_at: datetime,
) -> StagedFields:
    """
    Normaliza los custom fields crudos de ClickUp.

    Reglas:
    - field sin nombre: se omite (warning)
    - todo field con nombre queda en custom_fields bajo su clean name
    - solo los fields del catálogo con valor no nulo llegan a field_values
    - una coerción que falla se loguea y el field queda sin valor
    - promoted_columns solo trae columnas con valor coercionado o null explícito;
      las ausentes o fallidas no se tocan en el UPDATE
    """
    definitions: dict[str, FieldDefinition] = {}
    values: dict[str, FieldValue] = {}
    promoted: dict[str, Any] = {}
    stamp = ensure_utc(staged_at).isoformat()

    for raw in custom_fields:
        if not isinstance(raw, Mapping):
            logger.warning(f"[Sync] Tarea {task_id}: custom field malformado ({raw!r}), se omite")
            continue

        raw_name = raw.get("name")
        clean_name = clean_field_name(raw_name) if isinstance(raw_name, str) else ""
        if not clean_name:
            logger.warning(f"[Sync] Tarea {task_id}: custom field sin nombre (id={raw.get('id')}), se omite")
            continue

        definitions[clean_name] = FieldDefinition(
            id=raw.get("id"),
            type=raw.get("type"),
            config=raw.get("type_config") or {},
            original_name=raw_name,
        )

        mapping = classify(raw_name)
        if mapping is None:
            continue

        raw_value = raw.get("value")
        if raw_value is None:
            # null explícito upstream: limpia la columna dedicada
            if mapping.column:
                promoted[mapping.column] = None
            continue

        try:
            coerced = mapping.coerce(raw_value)
        except (TypeError, ValueError, OverflowError, OSError) as e:
            logger.warning(
                f"[Sync] Tarea {task_id}: valor inválido para '{clean_name}' "
                f"({mapping.kind.value}): {raw_value!r} ({e})"
            )
            continue

        if coerced is None:
            continue

        values[mapping.storage_key] = FieldValue(
            value=to_jsonable(coerced),
            updated_at=stamp,
            field_id=raw.get("id"),
            original_name=raw_name,
        )
        if mapping.column:
            promoted[mapping.column] = coerced

    return StagedFields(custom_fields=definitions, field_values=values, promoted_columns=promoted)


def keep_unchanged_timestamps(
    staged: Mapping[str, FieldValue],
    stored: Mapping[str, Any],
) -> dict[str, FieldValue]:
    """Un valor staged igual al guardado conserva el updated_at guardado."""
    result: dict[str, FieldValue] = {}
    for key, value in staged.items():
        previous = stored.get(key)
        if (
            isinstance(previous, Mapping)
            and previous.get("updated_at")
            and not values_differ(previous.get("value"), value.value)
        ):
            value = replace(value, updated_at=previous["updated_at"])
        result[key] = value
    return result


def _relationships_for(detail: TaskDetail) -> Relationships:
    return Relationships(
        parent_id=detail.parent,
        custom_type=detail.custom_type.name if detail.custom_type else None,
    )


class TaskFieldSync:
    """
    Orquestador del merge de una tarea (y helpers bulk por space/list).
    """

    def __init__(
        self,
        *,
        engine: Engine,
        clickup: ClickUpClient,
        repo: PostgresTaskRepository,
        type_sync: TaskTypeSync,
        ledger: FieldChangeLedger,
        workspace_id: Optional[str],
        write_promoted_columns: bool = True,
    ) -> None:
        self._engine = engine
        self._clickup = clickup
        self._repo = repo
        self._type_sync = type_sync
        self._ledger = ledger
        self._workspace_id = workspace_id
        self._write_promoted_columns = write_promoted_columns

    def sync_task_fields(self, task_id: str) -> SyncOutcome:
        """
        Sincroniza custom fields, relaciones y descriptivos de una tarea.

        Errores de ClickUp o de base de datos se traducen a ok=False;
        cualquier otra excepción se propaga.
        """
        logger.info(f"[Sync] Sincronizando fields de tarea {task_id}")
        try:
            return self._sync_task_fields(task_id)
        except (ClickUpApiError, SQLAlchemyError, TaskRowMissingError) as e:
            logger.error(f"[Sync] Error sincronizando tarea {task_id}: {e}")
            return SyncOutcome(ok=False, reason=str(e))

    def _sync_task_fields(self, task_id: str) -> SyncOutcome:
        detail = self._clickup.get_task_detail(task_id)
        if detail is None:
            return SyncOutcome(ok=False, reason=TASK_NOT_FOUND)

        if not self._ensure_row(detail):
            return SyncOutcome(ok=False, reason=TASK_NOT_CREATED)

        self._refresh_types()

        if detail.custom_type is not None:
            self._type_sync.link_task_type(task_id, detail.custom_type.id)

        staged = stage_custom_fields(detail.custom_fields, task_id=task_id, staged_at=utc_now())

        with self._engine.begin() as conn:
            current = self._repo.get_task_for_update(conn, task_id)
            if current is None:
                raise TaskRowMissingError(task_id)

            stored_values = current.get("field_values") or {}
            update = TaskFieldUpdate(
                custom_fields=staged.custom_fields,
                relationships=_relationships_for(detail),
                field_values=keep_unchanged_timestamps(staged.field_values, stored_values),
                promoted_columns=staged.promoted_columns,
                status=detail.status,
                name=detail.name,
                description=detail.description,
            )

            row = self._repo.update_task_fields(
                conn,
                task_id,
                update,
                write_promoted_columns=self._write_promoted_columns,
            )
            if row is None:
                raise TaskRowMissingError(task_id)

            changes = self._ledger.record_changes(
                conn,
                task_id,
                old_values=stored_values,
                new_values=update.field_values_json(),
            )

        logger.info(
            f"[Sync] Tarea {task_id} sincronizada: custom_fields={len(update.custom_fields)}, "
            f"field_values={len(update.field_values)}, cambios={changes}"
        )
        return SyncOutcome(ok=True, task=row)

    def _ensure_row(self, detail: TaskDetail) -> bool:
        """Crea un placeholder si la fila no existe. Retorna True si la fila existe al final."""
        with self._engine.connect() as conn:
            if self._repo.task_exists(conn, detail.id):
                return True

        with self._engine.begin() as conn:
            created = self._repo.insert_placeholder(conn, detail, extracted_at=utc_now())

        if created:
            logger.info(f"[Sync] Placeholder creado para tarea {detail.id}")
        else:
            logger.info(f"[Sync] Tarea {detail.id} creada en paralelo; se usa la fila existente")

        with self._engine.connect() as conn:
            return self._repo.task_exists(conn, detail.id)

    def _refresh_types(self) -> None:
        if not self._workspace_id:
            logger.debug("[Sync] Sin workspace configurado; se omite refresh de task types")
            return
        try:
            self._type_sync.refresh_catalog(self._workspace_id)
        except (ClickUpApiError, SQLAlchemyError) as e:
            logger.warning(f"[Sync] No se pudo refrescar task types (se continúa): {e}")

    def sync_task_relationships(self, task_id: str) -> Optional[dict[str, Any]]:
        """Actualiza parent_id / task_type_id desde el detalle de ClickUp."""
        detail = self._clickup.get_task_detail(task_id)
        if detail is None:
            logger.warning(f"[Relaciones] Tarea {task_id} no existe en ClickUp")
            return None

        relationships = _relationships_for(detail)
        return self._type_sync.update_relationships(
            task_id,
            parent_id=relationships.parent_id,
            custom_type_name=relationships.custom_type,
        )

    def sync_space(self, space_id: str) -> BulkSyncResult:
        logger.info(f"[Sync] Sync de space {space_id}")
        return self._sync_many(self._clickup.list_tasks_in_space(space_id))

    def sync_list(self, list_id: str) -> BulkSyncResult:
        logger.info(f"[Sync] Sync de list {list_id}")
        return self._sync_many(self._clickup.list_tasks_in_list(list_id))

    def _sync_many(self, tasks: list[TaskSummary]) -> BulkSyncResult:
        failed: list[str] = []
        for summary in tasks:
            outcome = self.sync_task_fields(summary.id)
            if not outcome.ok:
                failed.append(summary.id)

        result = BulkSyncResult(total=len(tasks), synced=len(tasks) - len(failed), failed=failed)
        logger.info(f"[Sync] Bulk completado: total={result.total}, ok={result.synced}, fallidas={len(failed)}")
        return result

    def get_task(self, task_id: str) -> Optional[dict[str, Any]]:
        with self._engine.connect() as conn:
            return self._repo.get_task(conn, task_id)

    def recent_changes(self, minutes: int = 60) -> list[dict[str, Any]]:
        with self._engine.connect() as conn:
            return self._repo.recent_changes(conn, minutes)

    def clean_old_data(self, days: int) -> CleanupResult:
        """Barrido de retención en una sola transacción."""
        with self._engine.begin() as conn:
            result = self._repo.clean_old_data(conn, days)
        logger.info(
            f"[Retención] Eliminados: tareas={result.deleted_tasks}, "
            f"task_types={result.deleted_task_types}, field_changes={result.deleted_field_changes}"
        )
        return result
