"""
Cliente mínimo de ClickUp REST API v2 (sin SDKs externos).

Requisitos cubiertos:
- requests
- detalle de tarea con custom fields expandidos
- catálogo de custom task types del workspace
- listados de tareas por space (paginado) y por list
- reintentos lineales ante 502/429
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

import requests
from loguru import logger

from .types import CustomTypeRef, TaskDetail, TaskSummary, TypeDef, parse_ms_timestamp

# Tamaño fijo de página de ClickUp en /space/{id}/task
PAGE_SIZE = 100

RETRYABLE_STATUS = (429, 502)


@dataclass(frozen=True)
class ClickUpCredentials:
    token: str


class ClickUpApiError(RuntimeError):
    """Error de integración con ClickUp."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClickUpTransientError(ClickUpApiError):
    """502/429 persistente tras agotar los reintentos."""


def _status_name(raw_status: Any) -> Optional[str]:
    if isinstance(raw_status, dict):
        return raw_status.get("status")
    return raw_status


def _parent_id(raw_parent: Any) -> Optional[str]:
    if isinstance(raw_parent, dict):
        return raw_parent.get("id")
    return raw_parent or None


def normalize_task_detail(payload: dict[str, Any]) -> TaskDetail:
    """
    Normaliza el payload crudo de GET /task/{id}.

    - custom_fields ausente -> []
    - parent ausente -> None
    - custom_type -> {id, name, color} o None
    """
    raw_type = payload.get("custom_type")
    custom_type: Optional[CustomTypeRef] = None
    if isinstance(raw_type, dict) and raw_type.get("id") is not None:
        custom_type = CustomTypeRef(
            id=str(raw_type["id"]),
            name=raw_type.get("name"),
            color=raw_type.get("color"),
        )

    return TaskDetail(
        id=str(payload["id"]),
        name=payload.get("name"),
        text_content=payload.get("text_content"),
        description=payload.get("description"),
        status=_status_name(payload.get("status")),
        date_created=parse_ms_timestamp(payload.get("date_created")),
        date_updated=parse_ms_timestamp(payload.get("date_updated")),
        creator=payload.get("creator") or {},
        parent=_parent_id(payload.get("parent")),
        custom_type=custom_type,
        custom_fields=list(payload.get("custom_fields") or []),
    )


def _task_summary(raw: dict[str, Any]) -> TaskSummary:
    return TaskSummary(
        id=str(raw["id"]),
        name=raw.get("name"),
        status=_status_name(raw.get("status")),
        parent=_parent_id(raw.get("parent")),
        date_updated=parse_ms_timestamp(raw.get("date_updated")),
    )


class ClickUpClient:
    """
    Cliente HTTP de ClickUp. Instancia compartida y sin estado (salvo credenciales).

    Importante:
    - No coerciona valores de custom fields: eso lo decide el catálogo de fields.
    - Nunca toca almacenamiento.
    """

    def __init__(
        self,
        credentials: ClickUpCredentials,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = "https://api.clickup.com/api/v2",
        timeout_s: int = 30,
        retry_attempts: int = 3,
        retry_base_s: float = 2.0,
        page_delay_s: float = 0.2,
    ) -> None:
        self._creds = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._retry_attempts = retry_attempts
        self._retry_base_s = retry_base_s
        self._page_delay_s = page_delay_s
        self._session = session or requests.Session()

    def get_task_detail(self, task_id: str) -> Optional[TaskDetail]:
        """
        Detalle de una tarea con custom fields, valores y subtareas.

        Retorna None si ClickUp responde 404. Cualquier otro error se propaga.
        """
        logger.debug(f"[ClickUp] GET task {task_id}")
        try:
            payload = self._request_json(
                "GET",
                f"/task/{task_id}",
                params={
                    "custom_fields": "true",
                    "include_subtasks": "true",
                    "include_field_values": "true",
                },
            )
        except ClickUpApiError as e:
            if e.status_code == 404:
                logger.warning(f"[ClickUp] Tarea {task_id} no encontrada")
                return None
            raise

        detail = normalize_task_detail(payload)
        logger.debug(
            f"[ClickUp] Tarea {task_id}: name={detail.name!r}, "
            f"custom_fields={len(detail.custom_fields)}"
        )
        return detail

    def get_custom_types(self, workspace_id: str) -> list[TypeDef]:
        """
        Catálogo de custom task types del workspace.

        Los errores se propagan: un catálogo vacío por error provocaría borrados.
        """
        payload = self._request_json("GET", f"/workspace/{workspace_id}/task_type")
        types: list[TypeDef] = []
        for raw in payload.get("task_types") or []:
            types.append(
                TypeDef(
                    id=str(raw["id"]),
                    name=raw.get("name") or "",
                    color=raw.get("color"),
                    status=raw.get("status") or "active",
                    orderindex=int(raw.get("orderindex") or 0),
                )
            )
        return types

    def list_tasks_in_space(self, space_id: str) -> list[TaskSummary]:
        """
        Todas las tareas de un space, paginando hasta una página con < 100 tareas.

        Ante 502/429 persistente retorna [] con warning (listado de solo lectura).
        """
        all_tasks: list[TaskSummary] = []
        page = 0
        try:
            while True:
                payload = self._request_json(
                    "GET",
                    f"/space/{space_id}/task",
                    params={
                        "page": page,
                        "subtasks": "true",
                        "archived": "false",
                        "include_closed": "true",
                    },
                )
                tasks = payload.get("tasks") or []
                all_tasks.extend(_task_summary(t) for t in tasks)
                if len(tasks) < PAGE_SIZE:
                    break
                page += 1
                # Pausa fija entre páginas para no gatillar el rate limit
                time.sleep(self._page_delay_s)
        except ClickUpTransientError as e:
            logger.warning(f"[ClickUp] Listado de space {space_id} no disponible: {e}")
            return []
        return all_tasks

    def list_tasks_in_list(self, list_id: str) -> list[TaskSummary]:
        """Tareas de una list (primera página). Transitorios -> [] con warning."""
        try:
            payload = self._request_json(
                "GET",
                f"/list/{list_id}/task",
                params={
                    "page": 0,
                    "subtasks": "true",
                    "archived": "false",
                    "include_closed": "true",
                },
            )
        except ClickUpTransientError as e:
            logger.warning(f"[ClickUp] Listado de list {list_id} no disponible: {e}")
            return []
        return [_task_summary(t) for t in payload.get("tasks") or []]

    def _request_json(
        self, method: str, path: str, *, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        Request HTTP con reintentos para 502/429.

        Estrategia:
        - hasta retry_attempts intentos en total
        - espera lineal: retry_base_s * número de intento
        - cualquier otro status: error inmediato
        """
        headers = {
            "Authorization": self._creds.token,
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}{path}"

        for attempt in range(1, self._retry_attempts + 1):
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                    timeout=self._timeout_s,
                )
            except requests.RequestException as e:
                raise ClickUpApiError(f"ClickUp request falló ({method} {path}): {e}") from e

            if 200 <= resp.status_code < 300:
                return resp.json()

            if resp.status_code in RETRYABLE_STATUS:
                if attempt >= self._retry_attempts:
                    raise ClickUpTransientError(
                        f"ClickUp error {resp.status_code} tras {attempt} intentos: {resp.text}",
                        status_code=resp.status_code,
                    )
                sleep_s = self._retry_base_s * attempt
                logger.warning(
                    f"[ClickUp] Intento {attempt} falló ({resp.status_code}), "
                    f"reintentando en {sleep_s:.1f}s..."
                )
                time.sleep(sleep_s)
                continue

            raise ClickUpApiError(
                f"ClickUp request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        # retry_attempts < 1
        raise ClickUpApiError("ClickUp client configurado sin intentos")
