"""
Row normalisation for ingested spreadsheet data.

Turns header/row dictionaries (already mapped to canonical field names) into
typed entities. Values that cannot be coerced are kept as-is so the
validator can report them instead of the import failing.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.models.entities import Client, EntityType, Task, Worker

logger = logging.getLogger(__name__)

# Legacy headers accepted in place of the canonical ones.
FIELD_ALIASES: Dict[str, str] = {
    "Availability": "AvailableSlots",
    "EstimatedDuration": "Duration",
}


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_text(value: Any) -> str:
    if _blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_number(value: Any, default: Any = None) -> Any:
    """Coerce numeric strings to int/float; return the raw value when that fails."""
    if _blank(value):
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) if isinstance(value, float) and value.is_integer() else value
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        return value
    return int(number) if number.is_integer() else number


def parse_list(value: Any) -> Tuple[str, ...]:
    """Accept a list, a JSON array string, or a comma separated string."""
    if _blank(value):
        return ()
    if isinstance(value, (list, tuple)):
        items = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        items = parsed if isinstance(parsed, list) else text.split(",")
    else:
        items = [value]
    return tuple(parse_text(item) for item in items if parse_text(item))


def parse_slots(value: Any) -> Tuple[Any, ...]:
    return tuple(parse_number(item) for item in parse_list(value))


def _canonical(row: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in row.items():
        name = FIELD_ALIASES.get(key, key)
        if name not in out or _blank(out[name]):
            out[name] = value
    return out


def client_from_row(row: Dict[str, Any]) -> Client:
    row = _canonical(row)
    attributes = row.get("AttributesJSON")
    if attributes is not None and not isinstance(attributes, str):
        attributes = json.dumps(attributes)
    return Client(
        client_id=parse_text(row.get("ClientID")),
        client_name=parse_text(row.get("ClientName")),
        priority_level=parse_number(row.get("PriorityLevel")),
        requested_task_ids=parse_list(row.get("RequestedTaskIDs")),
        group_tag=parse_text(row.get("GroupTag")) or None,
        attributes_json=attributes if not _blank(attributes) else None,
    )


def worker_from_row(row: Dict[str, Any]) -> Worker:
    row = _canonical(row)
    rate = parse_number(row.get("HourlyRate"))
    return Worker(
        worker_id=parse_text(row.get("WorkerID")),
        worker_name=parse_text(row.get("WorkerName")),
        skills=parse_list(row.get("Skills")),
        worker_group=parse_text(row.get("WorkerGroup")),
        available_slots=parse_slots(row.get("AvailableSlots")),
        max_load_per_phase=parse_number(row.get("MaxLoadPerPhase"), default=0),
        qualification_level=parse_number(row.get("QualificationLevel"), default=1),
        hourly_rate=float(rate) if isinstance(rate, (int, float)) and not isinstance(rate, bool) else None,
    )


def task_from_row(row: Dict[str, Any]) -> Task:
    row = _canonical(row)
    preferred = row.get("PreferredPhases")
    if isinstance(preferred, list):
        preferred = tuple(parse_number(p) for p in preferred)
    return Task(
        task_id=parse_text(row.get("TaskID")),
        task_name=parse_text(row.get("TaskName")),
        required_skills=parse_list(row.get("RequiredSkills")),
        duration=parse_number(row.get("Duration"), default=1),
        category=parse_text(row.get("Category")),
        preferred_phases=None if _blank(preferred) else preferred,
        max_concurrent=parse_number(row.get("MaxConcurrent"), default=1),
        dependencies=parse_list(row.get("Dependencies")),
    )


ROW_PARSERS: Dict[EntityType, Callable[[Dict[str, Any]], Any]] = {
    EntityType.CLIENTS: client_from_row,
    EntityType.WORKERS: worker_from_row,
    EntityType.TASKS: task_from_row,
}


def apply_column_mapping(row: Dict[str, Any], mapping: Optional[Dict[str, str]]) -> Dict[str, Any]:
    if not mapping:
        return dict(row)
    mapped: Dict[str, Any] = {}
    for header, value in row.items():
        target = mapping.get(header, header)
        if target not in mapped or _blank(mapped[target]):
            mapped[target] = value
    return mapped


def normalize_rows(
    entity: EntityType,
    rows: List[Dict[str, Any]],
    mapping: Optional[Dict[str, str]] = None,
) -> List[Any]:
    parse = ROW_PARSERS[EntityType(entity)]
    entities = [parse(apply_column_mapping(row, mapping)) for row in rows]
    logger.debug(f"Normalised {len(entities)} {EntityType(entity).value} rows")
    return entities
