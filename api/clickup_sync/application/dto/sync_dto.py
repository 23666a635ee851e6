"""
DTOs del sync de tareas ClickUp (webhook, sync manual, historial de cambios).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class WebhookEventDTO(BaseModel):
    """Payload de webhook de ClickUp (solo los campos que se usan)."""

    task_id: str = Field(..., min_length=1)
    event: str


class WebhookResponseDTO(BaseModel):
    success: bool
    task_id: str
    message: Optional[str] = None
    error: Optional[str] = None


class TaskSyncResponseDTO(BaseModel):
    """Resultado del sync manual de una tarea."""

    success: bool
    message: str
    task: Optional[dict[str, Any]] = None


class RecentChangesResponseDTO(BaseModel):
    minutes: int
    count: int
    tasks: list[dict[str, Any]]


class FieldChangeDTO(BaseModel):
    """
    Un cambio de valor de un field.

    - previous_value / next_value: valores de los cambios vecinos en el tiempo
    - duration_seconds: tiempo hasta el siguiente cambio (None para el último)
    """

    id: int
    task_id: str
    field_name: str
    old_value: Any = None
    new_value: Any = None
    changed_at: datetime
    previous_value: Any = None
    next_value: Any = None
    duration_seconds: Optional[float] = None


class FieldChangeStatsDTO(BaseModel):
    field_name: str
    tasks_with_changes: int
    avg_changes_per_task: Optional[float] = None
    max_changes_for_task: Optional[int] = None
    earliest_change: Optional[datetime] = None
    latest_change: Optional[datetime] = None
    unique_value_count: int
