"""
DTOs de custom task types.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TaskTypeDTO(BaseModel):
    """Fila de task_types (espejo del catálogo del workspace)."""

    id: str
    name: str
    color: Optional[str] = None
    status: Optional[str] = "active"
    orderindex: Optional[int] = 0
    workspace_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
