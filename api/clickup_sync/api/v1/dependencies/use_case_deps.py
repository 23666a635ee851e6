"""
Dependencias para inyeccion de casos de uso.
"""
from fastapi import Depends, Request

from clickup_sync.application.use_cases.task_sync_use_cases import TaskSyncUseCases, TaskTypeUseCases
from clickup_sync.infrastructure.external.clickup.context import SyncContext
from clickup_sync.shared.exceptions.base import AppException


def get_sync_context(request: Request) -> SyncContext:
    """
    Retorna el contexto de sync armado en el startup.

    Raises:
        AppException: 503 si el sync no esta configurado (faltan credenciales ClickUp)
    """
    context = getattr(request.app.state, "sync_context", None)
    if context is None:
        raise AppException(
            message="Sync de ClickUp no configurado",
            status_code=503,
            error_code="SYNC_NOT_CONFIGURED",
        )
    return context


def get_task_sync_use_cases(
    context: SyncContext = Depends(get_sync_context)
) -> TaskSyncUseCases:
    """
    Dependencia para obtener los casos de uso de tareas.

    Returns:
        TaskSyncUseCases: Instancia de casos de uso de tareas
    """
    return TaskSyncUseCases(context)


def get_task_type_use_cases(
    context: SyncContext = Depends(get_sync_context)
) -> TaskTypeUseCases:
    return TaskTypeUseCases(context)
