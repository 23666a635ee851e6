"""
Tipos y utilidades puras para el sync ClickUp -> PostgreSQL.

Se mantienen libres de I/O para poder testearlos fácilmente.
Los tres mapas JSONB de `clickup_task` (custom_fields, relationships,
field_values) se modelan aquí con tipos explícitos, de modo que lo que se
persiste siempre es JSON válido y nunca NULL.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

JsonValue = Union[None, bool, int, float, str, list, dict]


def utc_now() -> datetime:
    """Retorna la hora actual en UTC, como datetime aware."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normaliza datetime a UTC (aware).

    ClickUp devuelve epoch en milisegundos (UTC); aun así, normalizamos para
    comparar/almacenar de forma consistente.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_ms_timestamp(raw: Any) -> Optional[datetime]:
    """
    Convierte un epoch en milisegundos (número o string de dígitos) a datetime UTC.

    ClickUp usa este formato para date_created, date_updated, due_date, etc.
    """
    if raw is None or raw == "":
        return None
    return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)


def to_jsonable(value: Any) -> JsonValue:
    """Convierte valores Python a su forma JSON (datetime -> ISO8601)."""
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """
    Serialización canónica para comparar valores estructuralmente.

    - objetos: claves ordenadas
    - arrays: se comparan sin importar el orden (elementos ordenados por su forma canónica)
    """
    return json.dumps(_canonicalize(to_jsonable(value)), sort_keys=True, separators=(",", ":"))


def _canonicalize(value: JsonValue) -> JsonValue:
    if isinstance(value, dict):
        return {k: _canonicalize(v) for k, v in value.items()}
    if isinstance(value, list):
        items = [_canonicalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))
    return value


# ---------------------------------------------------------------------------
# Payloads de ClickUp (ya normalizados por el cliente)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomTypeRef:
    """Proyección del custom_type de una tarea: {id, name, color}."""

    id: str
    name: Optional[str] = None
    color: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass(frozen=True)
class TaskDetail:
    """
    Detalle completo de una tarea ClickUp.

    - custom_fields: siempre lista (vacía si ClickUp no la envía)
    - parent: id de la tarea padre o None
    - custom_type: CustomTypeRef o None
    - status: string plano (ClickUp lo envía como objeto {status, color, ...})
    """

    id: str
    name: Optional[str]
    text_content: Optional[str]
    description: Optional[str]
    status: Optional[str]
    date_created: Optional[datetime]
    date_updated: Optional[datetime]
    creator: dict[str, Any]
    parent: Optional[str]
    custom_type: Optional[CustomTypeRef]
    custom_fields: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class TypeDef:
    """Definición de un custom task type del workspace."""

    id: str
    name: str
    color: Optional[str] = None
    status: str = "active"
    orderindex: int = 0


@dataclass(frozen=True)
class TaskSummary:
    """Resumen de tarea devuelto por los endpoints de listado."""

    id: str
    name: Optional[str]
    status: Optional[str]
    parent: Optional[str]
    date_updated: Optional[datetime]


# ---------------------------------------------------------------------------
# Mapas estructurados persistidos en clickup_task
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDefinition:
    """Entrada de custom_fields (clave: clean name)."""

    id: Optional[str]
    type: Optional[str]
    config: dict[str, Any]
    original_name: str

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "config": to_jsonable(self.config),
            "original_name": self.original_name,
        }


@dataclass(frozen=True)
class FieldValue:
    """
    Entrada de field_values (clave: columna dedicada o clean name).

    value ya está coercionado y en forma JSON.
    updated_at marca cuándo cambió el valor por última vez.
    """

    value: JsonValue
    updated_at: str
    field_id: Optional[str]
    original_name: str

    def to_json(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "updated_at": self.updated_at,
            "field_id": self.field_id,
            "original_name": self.original_name,
        }


@dataclass(frozen=True)
class Relationships:
    """Mapa relationships: padre y nombre del custom type."""

    parent_id: Optional[str]
    custom_type: Optional[str]

    def to_json(self) -> dict[str, Any]:
        return {"parent_id": self.parent_id, "custom_type": self.custom_type}


@dataclass(frozen=True)
class TaskFieldUpdate:
    """
    Todo lo que el merge engine escribe en una fila en un solo UPDATE.

    - custom_fields / relationships / field_values: documentos completos (reemplazo total)
    - promoted_columns: columnas dedicadas a escribir (None = NULL; ausente = no tocar)
    - status / name / description: se aplican con COALESCE (None = no tocar)
    """

    custom_fields: dict[str, FieldDefinition]
    relationships: Relationships
    field_values: dict[str, FieldValue]
    promoted_columns: dict[str, Any]
    status: Optional[str]
    name: Optional[str]
    description: Optional[str]

    def custom_fields_json(self) -> dict[str, Any]:
        return {k: v.to_json() for k, v in self.custom_fields.items()}

    def field_values_json(self) -> dict[str, Any]:
        return {k: v.to_json() for k, v in self.field_values.items()}


@dataclass(frozen=True)
class SyncOutcome:
    """Resultado de sync_task_fields: ok + fila, o ok=False + motivo."""

    ok: bool
    task: Optional[dict[str, Any]] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class BulkSyncResult:
    total: int
    synced: int
    failed: list[str]


@dataclass(frozen=True)
class CleanupResult:
    deleted_tasks: int
    deleted_task_types: int
    deleted_field_changes: int


@dataclass(frozen=True)
class FieldChangeStats:
    """Estadísticas agregadas de cambios para un field."""

    field_name: str
    tasks_with_changes: int
    avg_changes_per_task: Optional[float]
    max_changes_for_task: Optional[int]
    earliest_change: Optional[datetime]
    latest_change: Optional[datetime]
    unique_value_count: int
