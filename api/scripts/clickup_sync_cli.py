"""
CLI: ClickUp -> Postgres (sync de custom fields fuera del API).

Uso recomendado:
  - Backfills (space / list completos) y mantenimiento (cleanup) como job.
  - El webhook del API cubre el sync en tiempo real.

Variables de entorno requeridas:
  - CLICKUP_API_TOKEN
  - CLICKUP_WORKSPACE_ID
  - DATABASE_URL (o DATABASE_HOST / DATABASE_USER / ...)

Ejecución:
  python scripts/clickup_sync_cli.py task <task_id>
  python scripts/clickup_sync_cli.py space <space_id>
  python scripts/clickup_sync_cli.py list <list_id>
  python scripts/clickup_sync_cli.py types
  python scripts/clickup_sync_cli.py cleanup --days 90
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger
from dotenv import load_dotenv

# Permite ejecutar este script desde cualquier cwd sin configurar PYTHONPATH.
# La carpeta "api" contiene el paquete raíz `clickup_sync/`.
_API_ROOT = Path(__file__).resolve().parents[1]
if str(_API_ROOT) not in sys.path:
    sys.path.insert(0, str(_API_ROOT))

# Cargar variables desde .env si existe (api/.env o raíz del repo).
_REPO_ROOT = _API_ROOT.parent
load_dotenv(_API_ROOT / ".env", override=False)
load_dotenv(_REPO_ROOT / ".env", override=False)

from clickup_sync.core.config import settings
from clickup_sync.infrastructure.database.session import close_db, get_engine
from clickup_sync.infrastructure.external.clickup.context import SyncConfigError, build_sync_context


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync de custom fields ClickUp -> Postgres")
    sub = parser.add_subparsers(dest="command", required=True)

    task = sub.add_parser("task", help="Sincroniza una tarea (fields + relaciones).")
    task.add_argument("task_id")

    space = sub.add_parser("space", help="Sincroniza todas las tareas de un space.")
    space.add_argument("space_id")

    lst = sub.add_parser("list", help="Sincroniza las tareas de una list.")
    lst.add_argument("list_id")

    sub.add_parser("types", help="Refresca el catálogo de custom task types.")

    cleanup = sub.add_parser("cleanup", help="Borra datos más viejos que N días.")
    cleanup.add_argument("--days", type=int, default=settings.RETENTION_DAYS)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        context = build_sync_context(settings, engine=get_engine())
    except SyncConfigError as e:
        logger.error(str(e))
        return 2

    task_sync = context.task_sync
    try:
        if args.command == "task":
            outcome = task_sync.sync_task_fields(args.task_id)
            if not outcome.ok:
                logger.error(f"Sync falló para {args.task_id}: {outcome.reason}")
                return 1
            task_sync.sync_task_relationships(args.task_id)
            logger.info(f"Tarea {args.task_id} sincronizada")

        elif args.command in ("space", "list"):
            if args.command == "space":
                result = task_sync.sync_space(args.space_id)
            else:
                result = task_sync.sync_list(args.list_id)
            logger.info(f"Sync OK: total={result.total}, synced={result.synced}, failed={len(result.failed)}")
            if result.failed:
                logger.warning(f"Tareas con error: {', '.join(result.failed)}")
                return 1

        elif args.command == "types":
            types = context.type_sync.refresh_catalog(context.workspace_id)
            logger.info(f"Catálogo de task types actualizado: {len(types)} types")

        elif args.command == "cleanup":
            if args.days < 1:
                logger.error("--days debe ser >= 1")
                return 2
            result = task_sync.clean_old_data(args.days)
            logger.info(
                f"Cleanup OK: tasks={result.deleted_tasks}, task_types={result.deleted_task_types}, "
                f"field_changes={result.deleted_field_changes}"
            )
    finally:
        close_db()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
