"""
Catálogo de custom fields de ClickUp -> almacenamiento en Postgres.

Aquí se define, en un solo lugar:
- cómo se limpia el nombre de un field (sin emojis/símbolos decorativos)
- qué fields se guardan y dónde (columna dedicada o solo field_values)
- cómo se coerciona el valor según su tipo declarado

Este módulo no realiza I/O: solo define el mapeo. Agregar un field es una línea
en FIELD_CATALOG.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from .types import ensure_utc, parse_ms_timestamp

# Bloques pictográficos/simbólicos que ClickUp permite en nombres de fields.
_DECORATIVE_SYMBOLS = re.compile(
    "["
    "\U0001F300-\U0001F9FF"
    "\U0001F600-\U0001F64F"
    "\U0001F680-\U0001F6FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\U0001F900-\U0001F9FF"
    "\U0001F1E0-\U0001F1FF"
    "]"
)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def clean_field_name(raw_name: str) -> str:
    """
    Elimina símbolos decorativos y espacios sobrantes.

    "Client 🎯" -> "Client"
    """
    return _DECORATIVE_SYMBOLS.sub("", raw_name).strip()


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    return str(value)


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Timestamp inválido: {value!r}")
    if isinstance(value, (int, float)):
        return parse_ms_timestamp(int(value))
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_ms_timestamp(text)
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise ValueError(f"Timestamp inválido: {value!r}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_decimal(value: Any) -> Optional[float]:
    if _is_number(value) and not (isinstance(value, float) and math.isnan(value)):
        return value
    return None


def _coerce_integer(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        return int(match.group(1), 10) if match else None
    return None


class FieldKind(str, Enum):
    """Tipo semántico declarado de un field. Cada variante trae su coerción."""

    TEXT = "text"
    TIMESTAMP = "timestamp"
    DECIMAL = "decimal"
    INTEGER = "integer"

    def coerce(self, value: Any) -> Any:
        return _COERCERS[self](value)


_COERCERS: Mapping[FieldKind, Callable[[Any], Any]] = MappingProxyType(
    {
        FieldKind.TEXT: _coerce_text,
        FieldKind.TIMESTAMP: _coerce_timestamp,
        FieldKind.DECIMAL: _coerce_decimal,
        FieldKind.INTEGER: _coerce_integer,
    }
)


@dataclass(frozen=True)
class FieldRule:
    """
    Regla de un field conocido.

    - column: columna dedicada en clickup_task (None = solo field_values)
    """

    kind: FieldKind
    column: Optional[str] = None


@dataclass(frozen=True)
class MappingResult:
    """Resultado de classify()."""

    clean_name: str
    storage_key: str
    kind: FieldKind
    column: Optional[str]

    def coerce(self, value: Any) -> Any:
        return self.kind.coerce(value)


FIELD_CATALOG: Mapping[str, FieldRule] = MappingProxyType(
    {
        # Columnas dedicadas
        "Status Updates": FieldRule(FieldKind.TEXT, "status_updates"),
        "Client": FieldRule(FieldKind.TEXT, "client"),
        "Start Job!": FieldRule(FieldKind.TIMESTAMP, "start_job"),
        "Est. Revenue": FieldRule(FieldKind.DECIMAL, "est_revenue"),
        "Est. Cost": FieldRule(FieldKind.DECIMAL, "est_cost"),
        "Reason for Closed": FieldRule(FieldKind.TEXT, "reason_for_closed"),
        "Job Name": FieldRule(FieldKind.TEXT, "job_name"),
        "Milestone Date": FieldRule(FieldKind.TIMESTAMP, "milestone_date"),
        "Hours per Day": FieldRule(FieldKind.INTEGER, "hours_per_day"),
        # Solo field_values
        "Expected Revenue": FieldRule(FieldKind.DECIMAL),
        "Current Fee": FieldRule(FieldKind.DECIMAL),
        "Fee": FieldRule(FieldKind.DECIMAL),
        "Time Left": FieldRule(FieldKind.TEXT),
        "Estimated Fee": FieldRule(FieldKind.DECIMAL),
        "Update Email": FieldRule(FieldKind.TEXT),
        "Job Budget": FieldRule(FieldKind.DECIMAL),
    }
)

PROMOTED_COLUMNS: tuple[str, ...] = tuple(
    rule.column for rule in FIELD_CATALOG.values() if rule.column
)


def classify(raw_name: str) -> Optional[MappingResult]:
    """
    Clasifica un nombre crudo de field.

    Retorna None si el clean name no está en el catálogo: el field se conserva
    en custom_fields pero su valor no se guarda.
    """
    clean_name = clean_field_name(raw_name)
    rule = FIELD_CATALOG.get(clean_name)
    if rule is None:
        return None
    return MappingResult(
        clean_name=clean_name,
        storage_key=rule.column or clean_name,
        kind=rule.kind,
        column=rule.column,
    )
