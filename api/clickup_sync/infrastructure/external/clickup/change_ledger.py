"""
Ledger append-only de cambios de valores de custom fields (tabla field_changes).

Un registro por transición real de valor: re-sincronizar con el mismo valor
no agrega filas. La comparación es estructural (ver values_differ).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from loguru import logger
from sqlalchemy.engine import Connection, Engine

from .pg_repository import PostgresTaskRepository
from .types import FieldChangeStats, canonical_json


def values_differ(old: Any, new: Any) -> bool:
    """
    True si dos valores JSON difieren estructuralmente.

    Claves de objetos sin orden; arrays comparados sin importar el orden.
    """
    return canonical_json(old) != canonical_json(new)


def _entry_value(entry: Any) -> Any:
    """Extrae `value` de una entrada de field_values (o None si no existe)."""
    if isinstance(entry, Mapping):
        return entry.get("value")
    return None


class FieldChangeLedger:
    def __init__(self, *, engine: Engine, repo: PostgresTaskRepository) -> None:
        self._engine = engine
        self._repo = repo

    def record_if_changed(
        self,
        conn: Connection,
        task_id: str,
        field_name: str,
        new_value: Any,
    ) -> bool:
        """
        Registra un cambio de un solo field si difiere del valor guardado.

        Corre en la transacción del caller. Retorna True si escribió registro.
        """
        current = self._repo.get_field_values(conn, task_id)
        if current is None:
            logger.warning(f"[Ledger] Tarea {task_id} no existe, no se registra cambio de '{field_name}'")
            return False

        old_value = _entry_value(current.get(field_name))
        if not values_differ(old_value, new_value):
            return False

        self._repo.insert_field_change(
            conn,
            task_id=task_id,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
        )
        return True

    def record_changes(
        self,
        conn: Connection,
        task_id: str,
        old_values: Mapping[str, Any],
        new_values: Mapping[str, Any],
    ) -> int:
        """
        Variante batch usada por el merge engine: compara cada clave de
        old_values ∪ new_values y registra las que cambiaron.
        """
        recorded = 0
        for field_name in sorted(set(old_values) | set(new_values)):
            old_value = _entry_value(old_values.get(field_name))
            new_value = _entry_value(new_values.get(field_name))
            if not values_differ(old_value, new_value):
                continue
            self._repo.insert_field_change(
                conn,
                task_id=task_id,
                field_name=field_name,
                old_value=old_value,
                new_value=new_value,
            )
            recorded += 1

        if recorded:
            logger.info(f"[Ledger] {recorded} cambio(s) registrados para tarea {task_id}")
        return recorded

    def history(
        self,
        task_id: str,
        field_name: str,
        *,
        limit: int = 100,
        since: Optional[datetime] = None,
    ) -> list[dict[str, Any]]:
        with self._engine.connect() as conn:
            return self._repo.field_history(
                conn,
                task_id=task_id,
                field_name=field_name,
                limit=limit,
                since=since,
            )

    def change_stats(self, field_name: str) -> FieldChangeStats:
        with self._engine.connect() as conn:
            return self._repo.field_change_stats(conn, field_name)
