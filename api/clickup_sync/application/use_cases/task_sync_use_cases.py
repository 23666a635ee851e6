"""
Casos de uso del sync de tareas ClickUp.

El core de sync es sincrono (requests + psycopg); aqui se ejecuta en threads
separados para no bloquear el event loop.
"""
import asyncio
import dataclasses
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from clickup_sync.application.dto import (
    FieldChangeDTO,
    FieldChangeStatsDTO,
    RecentChangesResponseDTO,
    TaskSyncResponseDTO,
    TaskTypeDTO,
    WebhookEventDTO,
    WebhookResponseDTO,
)
from clickup_sync.infrastructure.external.clickup.clickup_client import ClickUpApiError
from clickup_sync.infrastructure.external.clickup.context import SyncContext
from clickup_sync.infrastructure.external.clickup.sync_service import TASK_NOT_FOUND
from clickup_sync.shared.exceptions.domain import (
    EntityNotFoundException,
    TaskSyncException,
    ValidationException,
)

# Eventos de webhook que disparan un sync
SYNC_EVENTS = ("taskCreated", "taskUpdated")


class TaskSyncUseCases:
    """Casos de uso sobre tareas: webhook, sync manual y consultas."""

    def __init__(self, context: SyncContext):
        self.context = context

    async def handle_webhook(self, dto: WebhookEventDTO) -> WebhookResponseDTO:
        """
        Procesa un evento de webhook.

        Solo taskCreated / taskUpdated disparan sync; el resto se ignora.
        """
        if dto.event not in SYNC_EVENTS:
            logger.info(f"Webhook: evento '{dto.event}' ignorado (tarea {dto.task_id})")
            return WebhookResponseDTO(
                success=True,
                task_id=dto.task_id,
                message=f"Evento '{dto.event}' ignorado",
            )

        outcome = await asyncio.to_thread(self.context.task_sync.sync_task_fields, dto.task_id)
        if not outcome.ok:
            raise _sync_failure(dto.task_id, outcome.reason)

        return WebhookResponseDTO(
            success=True,
            task_id=dto.task_id,
            message=f"Tarea {dto.task_id} sincronizada",
        )

    async def sync_task(self, task_id: str) -> TaskSyncResponseDTO:
        """
        Sync manual: fields y relaciones en paralelo, luego relee la fila.
        """
        logger.info(f"Sync manual de tarea {task_id}")
        outcome, relationships = await asyncio.gather(
            asyncio.to_thread(self.context.task_sync.sync_task_fields, task_id),
            asyncio.to_thread(self.context.task_sync.sync_task_relationships, task_id),
            return_exceptions=True,
        )
        if isinstance(outcome, BaseException):
            raise outcome
        if not outcome.ok:
            raise _sync_failure(task_id, outcome.reason)
        if isinstance(relationships, (ClickUpApiError, SQLAlchemyError)):
            logger.error(f"Sync de relaciones de tarea {task_id} fallido: {relationships}")
            raise _sync_failure(task_id, str(relationships))
        if isinstance(relationships, BaseException):
            raise relationships

        task = await asyncio.to_thread(self.context.task_sync.get_task, task_id)
        return TaskSyncResponseDTO(
            success=True,
            message=f"Tarea {task_id} sincronizada correctamente",
            task=task,
        )

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        task = await asyncio.to_thread(self.context.task_sync.get_task, task_id)
        if task is None:
            raise EntityNotFoundException("Tarea", task_id)
        return task

    async def recent_changes(self, minutes: int) -> RecentChangesResponseDTO:
        tasks = await asyncio.to_thread(self.context.task_sync.recent_changes, minutes)
        return RecentChangesResponseDTO(minutes=minutes, count=len(tasks), tasks=tasks)

    async def field_history(
        self,
        task_id: str,
        field_name: str,
        limit: int = 100,
        since: Optional[datetime] = None,
    ) -> List[FieldChangeDTO]:
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        if since is not None and since > datetime.now(timezone.utc):
            raise ValidationException("since no puede ser una fecha futura", field="since")

        rows = await asyncio.to_thread(
            self.context.ledger.history, task_id, field_name, limit=limit, since=since
        )
        return [FieldChangeDTO(**row) for row in rows]

    async def change_stats(self, field_name: str) -> FieldChangeStatsDTO:
        stats = await asyncio.to_thread(self.context.ledger.change_stats, field_name)
        return FieldChangeStatsDTO(**dataclasses.asdict(stats))


class TaskTypeUseCases:
    """Consultas sobre el catálogo local de task types."""

    def __init__(self, context: SyncContext):
        self.context = context

    async def list_task_types(self) -> List[TaskTypeDTO]:
        rows = await asyncio.to_thread(self.context.type_sync.list_task_types)
        return [TaskTypeDTO(**row) for row in rows]

    async def get_task_type(self, type_id: str) -> TaskTypeDTO:
        row = await asyncio.to_thread(self.context.type_sync.get_task_type, type_id)
        if row is None:
            raise EntityNotFoundException("Task type", type_id)
        return TaskTypeDTO(**row)


def _sync_failure(task_id: str, reason: Optional[str]) -> TaskSyncException:
    status_code = 404 if reason == TASK_NOT_FOUND else 500
    return TaskSyncException(task_id, reason or "Error desconocido", status_code=status_code)
