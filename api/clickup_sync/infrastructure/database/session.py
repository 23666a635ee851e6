"""
Gestión del engine (pool de conexiones) de base de datos.

El core de sync es sincrono (requests + psycopg): cada operacion toma una
conexion del pool con `engine.begin()` / `engine.connect()` y la devuelve al
salir del bloque, haya exito o error.
"""
from typing import Optional

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from clickup_sync.core.config import settings


_engine: Optional[Engine] = None


def _create_engine_args(database_url: str) -> dict:
    """
    Construye los argumentos del engine segun el tipo de base de datos.
    PostgreSQL usa pool de conexiones, SQLite no lo soporta.
    """
    args = {
        "echo": settings.DEBUG,
        "future": True,
    }

    # Configuracion de pool solo para PostgreSQL
    if "postgresql" in database_url:
        args.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_pre_ping": True,  # Verifica conexion antes de usar
        })

    return args


def get_engine() -> Engine:
    """
    Retorna el engine compartido, creandolo en el primer uso.

    Returns:
        Engine: Engine de SQLAlchemy con pool de conexiones
    """
    global _engine
    if _engine is None:
        database_url = settings.effective_database_url
        _engine = create_engine(database_url, **_create_engine_args(database_url))
    return _engine


def check_connection(engine: Engine) -> bool:
    """Verifica conectividad con un SELECT 1."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Conexion a base de datos verificada")
        return True
    except Exception as e:
        logger.error(f"Error de conexion a base de datos: {e}")
        return False


def close_db() -> None:
    """Cierra las conexiones de la base de datos."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
