"""
Endpoint de webhook de ClickUp (tiempo real).
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from loguru import logger

from clickup_sync.application.dto import WebhookEventDTO, WebhookResponseDTO
from clickup_sync.application.use_cases.task_sync_use_cases import TaskSyncUseCases
from clickup_sync.api.v1.dependencies.use_case_deps import get_task_sync_use_cases
from clickup_sync.shared.exceptions.domain import TaskSyncException


router = APIRouter(tags=["Webhook"])


@router.post(
    "/webhook",
    response_model=WebhookResponseDTO,
    status_code=status.HTTP_200_OK,
    summary="Recibir evento de ClickUp"
)
async def clickup_webhook(
    dto: WebhookEventDTO,
    use_cases: TaskSyncUseCases = Depends(get_task_sync_use_cases),
):
    """
    Sincroniza la tarea ante taskCreated / taskUpdated.

    Si el sync falla responde 404 (tarea inexistente en ClickUp) o 500,
    siempre con el task_id.
    """
    logger.info(f"Webhook recibido: event={dto.event}, task_id={dto.task_id}")
    try:
        return await use_cases.handle_webhook(dto)
    except TaskSyncException as e:
        body = WebhookResponseDTO(success=False, task_id=e.task_id, error=e.message)
        return JSONResponse(status_code=e.status_code, content=body.model_dump())
