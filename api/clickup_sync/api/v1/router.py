"""
Router principal de la API v1.
Agrupa todos los endpoints de la version 1.
"""
from fastapi import APIRouter

from clickup_sync.api.v1.endpoints import task_types, tasks


# Router principal de la API v1
api_router = APIRouter(prefix="/v1")

# Incluir routers de endpoints especificos
api_router.include_router(tasks.router)
api_router.include_router(tasks.fields_router)
api_router.include_router(task_types.router)
