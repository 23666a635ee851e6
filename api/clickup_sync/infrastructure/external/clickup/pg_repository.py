"""
Repositorio Postgres (SQLAlchemy Core + psycopg) para:
- clickup_task (placeholder, merge de fields, relaciones, consultas)
- task_types (upsert + poda)
- field_changes (ledger append-only y consultas de historial)

Todos los métodos reciben la conexión: el caller controla la transacción
(`with engine.begin() as conn`). Nunca se escriben las columnas de
procedencia del importador (_airbyte_*) salvo al crear un placeholder.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

import psycopg
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from .field_catalog import PROMOTED_COLUMNS
from .types import (
    CleanupResult,
    FieldChangeStats,
    TaskDetail,
    TaskFieldUpdate,
    TypeDef,
    to_jsonable,
)

PLACEHOLDER_RAW_ID_PREFIX = "manual_"


def placeholder_raw_id(task_id: str) -> str:
    """Marca de procedencia sintetizada para filas creadas por este servicio."""
    return f"{PLACEHOLDER_RAW_ID_PREFIX}{task_id}"


def is_foreign_key_violation(error: IntegrityError) -> bool:
    """True si el IntegrityError viene de una violación de FK (SQLSTATE 23503)."""
    orig = getattr(error, "orig", None)
    if isinstance(orig, psycopg.errors.ForeignKeyViolation):
        return True
    return getattr(orig, "sqlstate", None) == "23503"


def _json_param(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(to_jsonable(value), sort_keys=True)


def _row(result) -> Optional[dict[str, Any]]:
    row = result.mappings().first()
    return dict(row) if row else None


class PostgresTaskRepository:
    # ------------------------------------------------------------------
    # clickup_task
    # ------------------------------------------------------------------

    def task_exists(self, conn: Connection, task_id: str) -> bool:
        result = conn.execute(
            text("SELECT EXISTS(SELECT 1 FROM clickup_task WHERE id = :task_id) AS found"),
            {"task_id": task_id},
        )
        return bool(result.scalar())

    def get_task(self, conn: Connection, task_id: str) -> Optional[dict[str, Any]]:
        return _row(
            conn.execute(
                text("SELECT * FROM clickup_task WHERE id = :task_id"),
                {"task_id": task_id},
            )
        )

    def get_task_for_update(self, conn: Connection, task_id: str) -> Optional[dict[str, Any]]:
        """Lee la fila tomando row lock hasta el fin de la transacción."""
        return _row(
            conn.execute(
                text("SELECT * FROM clickup_task WHERE id = :task_id FOR UPDATE"),
                {"task_id": task_id},
            )
        )

    def insert_placeholder(
        self,
        conn: Connection,
        detail: TaskDetail,
        *,
        extracted_at: datetime,
    ) -> bool:
        """
        Inserta una fila mínima cuando el importador aún no creó la tarea.

        - _airbyte_raw_id = manual_<task_id> (el importador lo sobreescribe en su próxima pasada)
        - ON CONFLICT DO NOTHING: si otra escritura creó la fila en paralelo, se respeta.

        Retorna True si insertó.
        """
        result = conn.execute(
            text(
                """
                INSERT INTO clickup_task (
                    id,
                    _airbyte_raw_id,
                    _airbyte_extracted_at,
                    name,
                    text_content,
                    description,
                    status,
                    date_created,
                    date_updated,
                    creator,
                    custom_fields,
                    relationships,
                    field_values,
                    custom_type,
                    updated_at
                ) VALUES (
                    :id,
                    :raw_id,
                    :extracted_at,
                    :name,
                    :text_content,
                    :description,
                    :status,
                    :date_created,
                    :date_updated,
                    CAST(:creator AS jsonb),
                    CAST('{}' AS jsonb),
                    CAST('{}' AS jsonb),
                    CAST('{}' AS jsonb),
                    CAST(:custom_type AS jsonb),
                    now()
                )
                ON CONFLICT (id) DO NOTHING
                RETURNING id
                """
            ),
            {
                "id": detail.id,
                "raw_id": placeholder_raw_id(detail.id),
                "extracted_at": extracted_at,
                "name": detail.name,
                "text_content": detail.text_content,
                "description": detail.description,
                "status": detail.status,
                "date_created": detail.date_created,
                "date_updated": detail.date_updated,
                "creator": _json_param(detail.creator or {}),
                "custom_type": _json_param(detail.custom_type.to_json() if detail.custom_type else {}),
            },
        )
        return result.first() is not None

    def update_task_fields(
        self,
        conn: Connection,
        task_id: str,
        update: TaskFieldUpdate,
        *,
        write_promoted_columns: bool = True,
    ) -> Optional[dict[str, Any]]:
        """
        Merge de fields en un solo UPDATE.

        - custom_fields / relationships / field_values: reemplazo del documento completo
        - status / name / description: COALESCE (un NULL nunca pisa el valor del importador)
        - columnas dedicadas: solo las presentes en promoted_columns (las demás se conservan)
        - updated_at / date_updated: siempre se refrescan

        Retorna None si no se actualizó ninguna fila.
        """
        set_parts = [
            "custom_fields = CAST(:custom_fields AS jsonb)",
            "relationships = CAST(:relationships AS jsonb)",
            "field_values = CAST(:field_values AS jsonb)",
            "status = COALESCE(:status, status)",
            "name = COALESCE(:name, name)",
            "description = COALESCE(:description, description)",
            "date_updated = now()",
            "updated_at = now()",
        ]
        params: dict[str, Any] = {
            "task_id": task_id,
            "custom_fields": _json_param(update.custom_fields_json()),
            "relationships": _json_param(update.relationships.to_json()),
            "field_values": _json_param(update.field_values_json()),
            "status": update.status,
            "name": update.name,
            "description": update.description,
        }

        if write_promoted_columns:
            # Nombres de columna salen del catálogo estático, nunca del payload.
            for column in PROMOTED_COLUMNS:
                if column not in update.promoted_columns:
                    continue
                set_parts.append(f'"{column}" = :col_{column}')
                params[f"col_{column}"] = update.promoted_columns[column]

        sql = f"""
            UPDATE clickup_task
            SET {", ".join(set_parts)}
            WHERE id = :task_id
            RETURNING *
        """
        return _row(conn.execute(text(sql), params))

    def update_relationships(
        self,
        conn: Connection,
        task_id: str,
        *,
        parent_id: Optional[str],
        custom_type_name: Optional[str],
    ) -> Optional[dict[str, Any]]:
        return _row(
            conn.execute(
                text(
                    """
                    UPDATE clickup_task
                    SET parent_id = :parent_id,
                        task_type_id = (
                            SELECT id FROM task_types
                            WHERE name = :custom_type
                            LIMIT 1
                        ),
                        updated_at = now()
                    WHERE id = :task_id
                    RETURNING *
                    """
                ),
                {"task_id": task_id, "parent_id": parent_id, "custom_type": custom_type_name},
            )
        )

    def get_field_values(self, conn: Connection, task_id: str) -> Optional[dict[str, Any]]:
        """field_values actual de la fila (con row lock). None si la fila no existe."""
        result = conn.execute(
            text("SELECT field_values FROM clickup_task WHERE id = :task_id FOR UPDATE"),
            {"task_id": task_id},
        )
        row = result.mappings().first()
        if row is None:
            return None
        return row["field_values"] or {}

    def recent_changes(self, conn: Connection, minutes: int) -> list[dict[str, Any]]:
        result = conn.execute(
            text(
                """
                SELECT id,
                       name,
                       custom_fields,
                       field_values,
                       relationships,
                       updated_at,
                       _airbyte_extracted_at
                FROM clickup_task
                WHERE updated_at >= now() - make_interval(mins => :minutes)
                ORDER BY updated_at DESC
                """
            ),
            {"minutes": minutes},
        )
        return [dict(r) for r in result.mappings().all()]

    def clean_old_data(self, conn: Connection, days: int) -> CleanupResult:
        """
        Barrido de retención:
        - field_changes más viejos que N días
        - tareas con updated_at más viejo que N días
        - task_types que ya no referencia ninguna tarea
        """
        params = {"days": days}
        changes = conn.execute(
            text("DELETE FROM field_changes WHERE changed_at < now() - make_interval(days => :days)"),
            params,
        )
        tasks = conn.execute(
            text("DELETE FROM clickup_task WHERE updated_at < now() - make_interval(days => :days)"),
            params,
        )
        types = conn.execute(
            text(
                """
                DELETE FROM task_types
                WHERE id NOT IN (
                    SELECT DISTINCT task_type_id
                    FROM clickup_task
                    WHERE task_type_id IS NOT NULL
                )
                """
            )
        )
        return CleanupResult(
            deleted_tasks=tasks.rowcount or 0,
            deleted_task_types=types.rowcount or 0,
            deleted_field_changes=changes.rowcount or 0,
        )

    # ------------------------------------------------------------------
    # task_types
    # ------------------------------------------------------------------

    def upsert_task_types(
        self,
        conn: Connection,
        types: Iterable[TypeDef],
        *,
        workspace_id: str,
    ) -> int:
        rows = [
            {
                "id": t.id,
                "name": t.name,
                "color": t.color,
                "status": t.status or "active",
                "orderindex": t.orderindex or 0,
                "workspace_id": workspace_id,
            }
            for t in types
        ]
        if not rows:
            return 0

        conn.execute(
            text(
                """
                INSERT INTO task_types (id, name, color, status, orderindex, workspace_id, updated_at)
                VALUES (:id, :name, :color, :status, :orderindex, :workspace_id, now())
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    color = EXCLUDED.color,
                    status = EXCLUDED.status,
                    orderindex = EXCLUDED.orderindex,
                    workspace_id = EXCLUDED.workspace_id,
                    updated_at = now()
                """
            ),
            rows,
        )
        return len(rows)

    def detach_tasks_from_types_not_in(self, conn: Connection, type_ids: list[str]) -> int:
        """Desvincula tareas que apuntan a types que ya no existen (evita violar la FK al podar)."""
        result = conn.execute(
            text(
                """
                UPDATE clickup_task
                SET task_type_id = NULL
                WHERE task_type_id IS NOT NULL
                  AND NOT (task_type_id = ANY(:type_ids))
                """
            ),
            {"type_ids": type_ids},
        )
        return result.rowcount or 0

    def delete_task_types_not_in(self, conn: Connection, type_ids: list[str]) -> int:
        result = conn.execute(
            text("DELETE FROM task_types WHERE NOT (id = ANY(:type_ids))"),
            {"type_ids": type_ids},
        )
        return result.rowcount or 0

    def link_task_type(self, conn: Connection, task_id: str, type_id: str) -> Optional[dict[str, Any]]:
        return _row(
            conn.execute(
                text(
                    """
                    UPDATE clickup_task
                    SET task_type_id = :type_id,
                        task_type_name = (SELECT name FROM task_types WHERE id = :type_id)
                    WHERE id = :task_id
                    RETURNING *
                    """
                ),
                {"task_id": task_id, "type_id": type_id},
            )
        )

    def list_task_types(self, conn: Connection) -> list[dict[str, Any]]:
        result = conn.execute(text("SELECT * FROM task_types ORDER BY orderindex ASC"))
        return [dict(r) for r in result.mappings().all()]

    def get_task_type(self, conn: Connection, type_id: str) -> Optional[dict[str, Any]]:
        return _row(
            conn.execute(text("SELECT * FROM task_types WHERE id = :type_id"), {"type_id": type_id})
        )

    # ------------------------------------------------------------------
    # field_changes
    # ------------------------------------------------------------------

    def insert_field_change(
        self,
        conn: Connection,
        *,
        task_id: str,
        field_name: str,
        old_value: Any,
        new_value: Any,
    ) -> None:
        conn.execute(
            text(
                """
                INSERT INTO field_changes (task_id, field_name, old_value, new_value, changed_at)
                VALUES (:task_id, :field_name, CAST(:old_value AS jsonb), CAST(:new_value AS jsonb), now())
                """
            ),
            {
                "task_id": task_id,
                "field_name": field_name,
                "old_value": _json_param(old_value),
                "new_value": _json_param(new_value),
            },
        )

    def field_history(
        self,
        conn: Connection,
        *,
        task_id: str,
        field_name: str,
        limit: int = 100,
        since: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        """
        Historial de cambios de un field, más reciente primero.

        Cada fila incluye previous_value / next_value y duration_seconds
        (tiempo hasta el siguiente cambio; NULL para el último).
        """
        params: dict[str, Any] = {"task_id": task_id, "field_name": field_name, "limit": limit}
        since_sql = ""
        if since is not None:
            since_sql = "AND changed_at >= :since"
            params["since"] = since

        sql = f"""
            WITH changes AS (
                SELECT id,
                       task_id,
                       field_name,
                       old_value,
                       new_value,
                       changed_at,
                       LAG(new_value) OVER w AS previous_value,
                       LEAD(new_value) OVER w AS next_value,
                       LEAD(changed_at) OVER w AS next_changed_at,
                       ROW_NUMBER() OVER (
                           PARTITION BY task_id, field_name
                           ORDER BY changed_at DESC
                       ) AS change_number
                FROM field_changes
                WHERE task_id = :task_id
                  AND field_name = :field_name
                  {since_sql}
                WINDOW w AS (PARTITION BY task_id, field_name ORDER BY changed_at)
            )
            SELECT id,
                   task_id,
                   field_name,
                   old_value,
                   new_value,
                   changed_at,
                   previous_value,
                   next_value,
                   EXTRACT(EPOCH FROM (next_changed_at - changed_at)) AS duration_seconds
            FROM changes
            WHERE change_number <= :limit
            ORDER BY changed_at DESC
        """
        result = conn.execute(text(sql), params)
        rows = []
        for r in result.mappings().all():
            row = dict(r)
            if row.get("duration_seconds") is not None:
                row["duration_seconds"] = float(row["duration_seconds"])
            rows.append(row)
        return rows

    def field_change_stats(self, conn: Connection, field_name: str) -> FieldChangeStats:
        result = conn.execute(
            text(
                """
                WITH per_task AS (
                    SELECT task_id,
                           COUNT(*) AS change_count,
                           MIN(changed_at) AS first_change,
                           MAX(changed_at) AS last_change
                    FROM field_changes
                    WHERE field_name = :field_name
                    GROUP BY task_id
                )
                SELECT COUNT(*) AS tasks_with_changes,
                       ROUND(AVG(change_count), 2) AS avg_changes_per_task,
                       MAX(change_count) AS max_changes_for_task,
                       MIN(first_change) AS earliest_change,
                       MAX(last_change) AS latest_change,
                       (
                           SELECT COUNT(DISTINCT new_value)
                           FROM field_changes
                           WHERE field_name = :field_name
                       ) AS unique_value_count
                FROM per_task
                """
            ),
            {"field_name": field_name},
        )
        row = result.mappings().first() or {}
        avg = row.get("avg_changes_per_task")
        return FieldChangeStats(
            field_name=field_name,
            tasks_with_changes=int(row.get("tasks_with_changes") or 0),
            avg_changes_per_task=float(avg) if avg is not None else None,
            max_changes_for_task=row.get("max_changes_for_task"),
            earliest_change=row.get("earliest_change"),
            latest_change=row.get("latest_change"),
            unique_value_count=int(row.get("unique_value_count") or 0),
        )
