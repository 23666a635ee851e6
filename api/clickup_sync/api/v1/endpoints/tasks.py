"""
Endpoints de tareas: sync manual, lectura y historial de cambios de fields.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from clickup_sync.application.dto import (
    FieldChangeDTO,
    FieldChangeStatsDTO,
    RecentChangesResponseDTO,
    TaskSyncResponseDTO,
)
from clickup_sync.application.use_cases.task_sync_use_cases import TaskSyncUseCases
from clickup_sync.api.v1.dependencies.use_case_deps import get_task_sync_use_cases


router = APIRouter(prefix="/tasks", tags=["Tasks"])
fields_router = APIRouter(prefix="/fields", tags=["Fields"])


@router.get(
    "/recent-changes",
    response_model=RecentChangesResponseDTO,
    summary="Tareas actualizadas en los ultimos N minutos"
)
async def get_recent_changes(
    minutes: int = Query(60, ge=1, le=10080, description="Ventana en minutos (max 7 dias)"),
    use_cases: TaskSyncUseCases = Depends(get_task_sync_use_cases),
) -> RecentChangesResponseDTO:
    return await use_cases.recent_changes(minutes)


@router.post(
    "/{task_id}/sync",
    response_model=TaskSyncResponseDTO,
    status_code=status.HTTP_200_OK,
    summary="Sincronizar una tarea manualmente"
)
async def sync_task(
    task_id: str,
    use_cases: TaskSyncUseCases = Depends(get_task_sync_use_cases),
) -> TaskSyncResponseDTO:
    """
    Ejecuta en paralelo el sync de custom fields y de relaciones (padre / type)
    y retorna la fila actualizada.
    """
    return await use_cases.sync_task(task_id)


@router.get(
    "/{task_id}",
    summary="Obtener una tarea"
)
async def get_task(
    task_id: str,
    use_cases: TaskSyncUseCases = Depends(get_task_sync_use_cases),
) -> Dict[str, Any]:
    return await use_cases.get_task(task_id)


@router.get(
    "/{task_id}/fields/{field_name}/history",
    response_model=List[FieldChangeDTO],
    summary="Historial de cambios de un field"
)
async def get_field_history(
    task_id: str,
    field_name: str,
    limit: int = Query(100, ge=1, le=1000),
    since: Optional[datetime] = Query(None, description="Solo cambios desde esta fecha (ISO 8601)"),
    use_cases: TaskSyncUseCases = Depends(get_task_sync_use_cases),
) -> List[FieldChangeDTO]:
    """Cambios mas recientes primero, con valores vecinos y duracion de cada valor."""
    return await use_cases.field_history(task_id, field_name, limit=limit, since=since)


@fields_router.get(
    "/{field_name}/change-stats",
    response_model=FieldChangeStatsDTO,
    summary="Estadisticas de cambios de un field"
)
async def get_field_change_stats(
    field_name: str,
    use_cases: TaskSyncUseCases = Depends(get_task_sync_use_cases),
) -> FieldChangeStatsDTO:
    return await use_cases.change_stats(field_name)
