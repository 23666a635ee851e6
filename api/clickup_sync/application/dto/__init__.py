"""
Data Transfer Objects (DTOs) para la capa de aplicacion.
"""
from .sync_dto import (
    FieldChangeDTO,
    FieldChangeStatsDTO,
    RecentChangesResponseDTO,
    TaskSyncResponseDTO,
    WebhookEventDTO,
    WebhookResponseDTO,
)
from .task_type_dto import TaskTypeDTO

__all__ = [
    "FieldChangeDTO",
    "FieldChangeStatsDTO",
    "RecentChangesResponseDTO",
    "TaskSyncResponseDTO",
    "WebhookEventDTO",
    "WebhookResponseDTO",
    "TaskTypeDTO",
]
