"""
Ciclo de vida de la aplicacion (lifespan): inicio y cierre.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from loguru import logger

from clickup_sync.core.config import settings
from clickup_sync.infrastructure.database.session import check_connection, close_db, get_engine
from clickup_sync.infrastructure.external.clickup.context import SyncConfigError, build_sync_context


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan de FastAPI: inicializa recursos antes de servir y los libera al cerrar.

    Args:
        app: Instancia de FastAPI
    """
    await _startup(app)
    try:
        yield
    finally:
        await _shutdown(app)


async def _startup(app: FastAPI) -> None:
    """Inicializa recursos al inicio de la aplicacion."""
    try:
        logger.info(f"Iniciando {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Entorno: {settings.ENVIRONMENT}")

        # Configurar logging adicional
        logger.add(
            settings.LOG_FILE,
            rotation="500 MB",
            retention="10 days",
            level=settings.LOG_LEVEL
        )

        _validate_config()

        # El esquema lo aprovisiona el importador; solo se verifica conectividad
        engine = get_engine()
        if not check_connection(engine):
            raise RuntimeError("No se pudo establecer conexion con la base de datos")

        try:
            app.state.sync_context = build_sync_context(settings, engine=engine)
            logger.info("Contexto de sync ClickUp inicializado")
        except SyncConfigError as e:
            app.state.sync_context = None
            logger.warning(f"CONFIG: sync deshabilitado: {e}")

        logger.success("Aplicacion iniciada correctamente")

        _print_available_urls()

    except Exception as e:
        logger.error(f"Error durante startup: {e}")
        logger.exception("Detalle del error:")
        raise


def _validate_config() -> None:
    """Valida que la configuracion critica este presente."""
    warnings = []

    if not settings.CLICKUP_API_TOKEN:
        warnings.append("CLICKUP_API_TOKEN no configurado - el sync no funcionara")
    if not settings.CLICKUP_WORKSPACE_ID:
        warnings.append("CLICKUP_WORKSPACE_ID no configurado - el sync no funcionara")

    for warning in warnings:
        logger.warning(f"CONFIG: {warning}")


def _print_available_urls() -> None:
    """Imprime las URLs disponibles de la aplicacion."""
    access_host = "localhost" if settings.HOST == "0.0.0.0" else settings.HOST
    base_url = f"http://{access_host}:{settings.PORT}"

    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info("<bold><green>ENDPOINTS DISPONIBLES:</green></bold>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")
    logger.opt(colors=True).info(f"<cyan>  Health:       GET  {base_url}/health</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Webhook:      POST {base_url}/webhook</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Sync manual:  POST {base_url}/api/v1/tasks/{{task_id}}/sync</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Cambios:      GET  {base_url}/api/v1/tasks/recent-changes</cyan>")
    logger.opt(colors=True).info(f"<cyan>  Swagger UI:   {base_url}/docs</cyan>")
    logger.opt(colors=True).info("<bold><green>" + "=" * 80 + "</green></bold>")


async def _shutdown(app: FastAPI) -> None:
    """Libera recursos al cerrar la aplicacion."""
    logger.info("Cerrando aplicacion...")

    app.state.sync_context = None
    close_db()
    logger.info("Conexiones de base de datos cerradas")

    logger.success("Aplicacion cerrada correctamente")
