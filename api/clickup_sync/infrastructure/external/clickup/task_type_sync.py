"""
Sync lateral de custom task types y relaciones (padre / tipo) de una tarea.

- refresh_catalog: task_types queda igual al catálogo remoto (todo o nada)
- link_task_type / update_relationships: una violación de FK no es fatal
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .clickup_client import ClickUpClient
from .pg_repository import PostgresTaskRepository, is_foreign_key_violation
from .types import TypeDef


class TaskTypeSync:
    def __init__(
        self,
        *,
        engine: Engine,
        clickup: ClickUpClient,
        repo: PostgresTaskRepository,
    ) -> None:
        self._engine = engine
        self._clickup = clickup
        self._repo = repo

    def refresh_catalog(self, workspace_id: str) -> list[TypeDef]:
        """
        Refresca task_types desde ClickUp.

        1) fetch remoto (si falla, no se toca la base)
        2) una transacción: upsert + desvincular tareas de types eliminados + borrar sobrantes

        Un catálogo remoto vacío no poda nada.
        """
        types = self._clickup.get_custom_types(workspace_id)

        with self._engine.begin() as conn:
            upserted = self._repo.upsert_task_types(conn, types, workspace_id=workspace_id)

            if not types:
                logger.warning(
                    f"[TaskTypes] Catálogo remoto vacío para workspace {workspace_id}; se omite la poda"
                )
                return types

            type_ids = [t.id for t in types]
            detached = self._repo.detach_tasks_from_types_not_in(conn, type_ids)
            deleted = self._repo.delete_task_types_not_in(conn, type_ids)

        logger.info(
            f"[TaskTypes] Catálogo actualizado: upserts={upserted}, "
            f"tareas desvinculadas={detached}, eliminados={deleted}"
        )
        return types

    def link_task_type(self, task_id: str, type_id: str) -> Optional[dict[str, Any]]:
        """Vincula la tarea con su custom type. FK inexistente -> None (logueado)."""
        try:
            with self._engine.begin() as conn:
                row = self._repo.link_task_type(conn, task_id, type_id)
        except IntegrityError as e:
            if not is_foreign_key_violation(e):
                raise
            logger.warning(f"[TaskTypes] Type {type_id} no existe; tarea {task_id} queda sin vincular")
            return None

        if row is None:
            logger.warning(f"[TaskTypes] Tarea {task_id} no encontrada al vincular type {type_id}")
        return row

    def update_relationships(
        self,
        task_id: str,
        *,
        parent_id: Optional[str],
        custom_type_name: Optional[str],
    ) -> Optional[dict[str, Any]]:
        """
        Actualiza parent_id y task_type_id (resuelto por nombre).

        - tarea inexistente -> None
        - padre inexistente -> parent_id NULL
        - violación de FK -> None (logueado, no se relanza)
        """
        parent_id = parent_id or None
        try:
            with self._engine.begin() as conn:
                if not self._repo.task_exists(conn, task_id):
                    logger.warning(f"[Relaciones] Tarea {task_id} no existe en la base")
                    return None

                if parent_id and not self._repo.task_exists(conn, parent_id):
                    logger.warning(
                        f"[Relaciones] Padre {parent_id} de tarea {task_id} no existe; se guarda NULL"
                    )
                    parent_id = None

                row = self._repo.update_relationships(
                    conn,
                    task_id,
                    parent_id=parent_id,
                    custom_type_name=custom_type_name,
                )
        except IntegrityError as e:
            if not is_foreign_key_violation(e):
                raise
            logger.warning(f"[Relaciones] Violación de FK actualizando tarea {task_id}: {e.orig}")
            return None

        logger.info(
            f"[Relaciones] Tarea {task_id}: parent_id={parent_id}, custom_type={custom_type_name!r}"
        )
        return row

    def list_task_types(self) -> list[dict[str, Any]]:
        with self._engine.connect() as conn:
            return self._repo.list_task_types(conn)

    def get_task_type(self, type_id: str) -> Optional[dict[str, Any]]:
        with self._engine.connect() as conn:
            return self._repo.get_task_type(conn, type_id)
