"""
Configuración de base de datos.

El esquema (clickup_task, task_types, field_changes) es un contrato externo:
lo aprovisiona el importador masivo y las migraciones de infraestructura.
"""
from clickup_sync.infrastructure.database.session import (
    check_connection,
    close_db,
    get_engine,
)
