from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Sequence

from app.models.entities import Client, Task, Worker


class FilterOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    HAS_TASKS_WITH_SKILL = "hasTasksWithSkill"


@dataclass(frozen=True)
class FilterCondition:
    field: str
    operator: FilterOperator
    value: Any

    def to_record(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


def _number(value: Any):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _lower(value: Any) -> str:
    return str(value).lower()


def _has_skill(record: Any, skill: str, tasks: Dict[str, Task]) -> bool:
    wanted = _lower(skill)
    if isinstance(record, Client):
        return any(
            wanted in (_lower(s) for s in tasks[tid].required_skills)
            for tid in record.requested_task_ids if tid in tasks
        )
    if isinstance(record, Worker):
        return wanted in (_lower(s) for s in record.skills)
    if isinstance(record, Task):
        return wanted in (_lower(s) for s in record.required_skills)
    return False


def matches(record: Any, condition: FilterCondition, tasks: Dict[str, Task]) -> bool:
    op = condition.operator
    if op is FilterOperator.HAS_TASKS_WITH_SKILL:
        return _has_skill(record, condition.value, tasks)

    attr = record.FIELDS.get(condition.field)
    if attr is None:
        return False
    value = getattr(record, attr)

    if op is FilterOperator.EQUALS:
        if isinstance(value, tuple):
            return condition.value in value
        return value == condition.value or _lower(value) == _lower(condition.value)
    if op is FilterOperator.CONTAINS:
        needle = _lower(condition.value)
        if isinstance(value, tuple):
            return any(needle in _lower(v) for v in value)
        return value is not None and needle in _lower(value)
    if op in (FilterOperator.GREATER_THAN, FilterOperator.LESS_THAN):
        left, right = _number(value), _number(condition.value)
        if left is None or right is None:
            return False
        return left > right if op is FilterOperator.GREATER_THAN else left < right
    if op is FilterOperator.IN:
        if not isinstance(condition.value, (list, tuple)):
            return False
        return value in condition.value or str(value) in [str(v) for v in condition.value]
    return False


def apply_filters(
    records: Sequence[Any],
    filters: Sequence[FilterCondition],
    tasks: Sequence[Task] = (),
) -> List[Any]:
    """Records that satisfy every condition; tasks resolve hasTasksWithSkill for clients."""
    task_index = {t.task_id: t for t in tasks}
    return [r for r in records if all(matches(r, f, task_index) for f in filters)]
