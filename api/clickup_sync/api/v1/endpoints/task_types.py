"""
Endpoints de lectura del catalogo local de custom task types.
"""
from typing import List

from fastapi import APIRouter, Depends

from clickup_sync.application.dto import TaskTypeDTO
from clickup_sync.application.use_cases.task_sync_use_cases import TaskTypeUseCases
from clickup_sync.api.v1.dependencies.use_case_deps import get_task_type_use_cases


router = APIRouter(prefix="/task-types", tags=["Task Types"])


@router.get("", response_model=List[TaskTypeDTO], summary="Listar task types")
async def list_task_types(
    use_cases: TaskTypeUseCases = Depends(get_task_type_use_cases),
) -> List[TaskTypeDTO]:
    return await use_cases.list_task_types()


@router.get("/{type_id}", response_model=TaskTypeDTO, summary="Obtener un task type")
async def get_task_type(
    type_id: str,
    use_cases: TaskTypeUseCases = Depends(get_task_type_use_cases),
) -> TaskTypeDTO:
    return await use_cases.get_task_type(type_id)
