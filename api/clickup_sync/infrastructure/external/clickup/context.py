"""
Contexto de sync: arma el grafo de objetos (engine, cliente, repositorio,
servicios) una sola vez y lo comparte entre requests, CLI y tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from .change_ledger import FieldChangeLedger
from .clickup_client import ClickUpClient, ClickUpCredentials
from .pg_repository import PostgresTaskRepository
from .sync_service import TaskFieldSync
from .task_type_sync import TaskTypeSync


class SyncConfigError(RuntimeError):
    """Error de configuración del pipeline."""


@dataclass(frozen=True)
class SyncContext:
    task_sync: TaskFieldSync
    type_sync: TaskTypeSync
    ledger: FieldChangeLedger
    workspace_id: Optional[str] = None


def build_sync_context(
    settings,
    *,
    engine: Engine,
    clickup: Optional[ClickUpClient] = None,
) -> SyncContext:
    """
    Constructor "oficial" del contexto a partir de Settings.

    Requeridos:
    - CLICKUP_API_TOKEN
    - CLICKUP_WORKSPACE_ID
    """
    if not settings.CLICKUP_API_TOKEN:
        raise SyncConfigError("Falta variable de entorno obligatoria: CLICKUP_API_TOKEN")
    if not settings.CLICKUP_WORKSPACE_ID:
        raise SyncConfigError("Falta variable de entorno obligatoria: CLICKUP_WORKSPACE_ID")
    if "postgres" not in engine.url.drivername:
        # El destino es Postgres (JSONB, FOR UPDATE, ON CONFLICT).
        raise SyncConfigError(f"La base de datos debe ser Postgres. Driver actual: {engine.url.drivername}")

    if clickup is None:
        clickup = ClickUpClient(
            ClickUpCredentials(token=settings.CLICKUP_API_TOKEN),
            base_url=settings.CLICKUP_BASE_URL,
            timeout_s=settings.CLICKUP_TIMEOUT_S,
            retry_attempts=settings.CLICKUP_RETRY_ATTEMPTS,
            retry_base_s=settings.CLICKUP_RETRY_BASE_MS / 1000,
            page_delay_s=settings.CLICKUP_PAGE_DELAY_MS / 1000,
        )

    repo = PostgresTaskRepository()
    type_sync = TaskTypeSync(engine=engine, clickup=clickup, repo=repo)
    ledger = FieldChangeLedger(engine=engine, repo=repo)
    task_sync = TaskFieldSync(
        engine=engine,
        clickup=clickup,
        repo=repo,
        type_sync=type_sync,
        ledger=ledger,
        workspace_id=settings.CLICKUP_WORKSPACE_ID,
        write_promoted_columns=settings.SYNC_PROMOTED_COLUMNS,
    )
    return SyncContext(
        task_sync=task_sync,
        type_sync=type_sync,
        ledger=ledger,
        workspace_id=settings.CLICKUP_WORKSPACE_ID,
    )
