from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple


class EntityType(str, Enum):
    CLIENTS = "clients"
    WORKERS = "workers"
    TASKS = "tasks"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


def as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Return value as an int when it is integral, otherwise default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


@dataclass(frozen=True)
class Client:
    # Fields keep the raw ingested value when it could not be coerced,
    # so the validator can report it.
    client_id: str
    client_name: str = ""
    priority_level: Any = None
    requested_task_ids: Tuple[str, ...] = ()
    group_tag: Optional[str] = None
    attributes_json: Optional[str] = None

    FIELDS: ClassVar[Dict[str, str]] = {
        "ClientID": "client_id",
        "ClientName": "client_name",
        "PriorityLevel": "priority_level",
        "RequestedTaskIDs": "requested_task_ids",
        "GroupTag": "group_tag",
        "AttributesJSON": "attributes_json",
    }

    def priority(self, default: int = 3) -> int:
        return as_int(self.priority_level, default)

    def to_record(self) -> Dict[str, Any]:
        return _to_record(self)


@dataclass(frozen=True)
class Worker:
    worker_id: str
    worker_name: str = ""
    skills: Tuple[str, ...] = ()
    worker_group: str = ""
    available_slots: Tuple[Any, ...] = ()
    max_load_per_phase: Any = 0
    qualification_level: Any = 1
    hourly_rate: Optional[float] = None

    FIELDS: ClassVar[Dict[str, str]] = {
        "WorkerID": "worker_id",
        "WorkerName": "worker_name",
        "Skills": "skills",
        "WorkerGroup": "worker_group",
        "AvailableSlots": "available_slots",
        "MaxLoadPerPhase": "max_load_per_phase",
        "QualificationLevel": "qualification_level",
        "HourlyRate": "hourly_rate",
    }

    @property
    def phases(self) -> Tuple[int, ...]:
        """Valid, de-duplicated phase numbers in ascending order."""
        valid = {as_int(s) for s in self.available_slots}
        return tuple(sorted(p for p in valid if p is not None and p >= 1))

    @property
    def max_load(self) -> int:
        return max(as_int(self.max_load_per_phase, 0), 0)

    def has_skills(self, required: Tuple[str, ...]) -> bool:
        return set(required) <= set(self.skills)

    def to_record(self) -> Dict[str, Any]:
        return _to_record(self)


@dataclass(frozen=True)
class Task:
    task_id: str
    task_name: str = ""
    required_skills: Tuple[str, ...] = ()
    duration: Any = 1
    category: str = ""
    preferred_phases: Any = None  # list of phases or a range expression
    max_concurrent: Any = 1
    dependencies: Tuple[str, ...] = ()

    FIELDS: ClassVar[Dict[str, str]] = {
        "TaskID": "task_id",
        "TaskName": "task_name",
        "RequiredSkills": "required_skills",
        "Duration": "duration",
        "Category": "category",
        "PreferredPhases": "preferred_phases",
        "MaxConcurrent": "max_concurrent",
        "Dependencies": "dependencies",
    }

    @property
    def load(self) -> int:
        return max(as_int(self.duration, 1), 1)

    def to_record(self) -> Dict[str, Any]:
        return _to_record(self)


@dataclass(frozen=True)
class PriorityWeights:
    client_priority_fulfillment: float = 50.0
    worker_work_life_balance: float = 50.0
    cost_efficiency: float = 50.0

    def to_record(self) -> Dict[str, float]:
        return {
            "clientPriorityFulfillment": self.client_priority_fulfillment,
            "workerWorkLifeBalance": self.worker_work_life_balance,
            "costEfficiency": self.cost_efficiency,
        }


@dataclass(frozen=True)
class ValidationError:
    id: str
    entity: EntityType
    row_id: str
    field: str
    message: str
    severity: Severity
    value: Any = None
    suggestion: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity": self.entity.value,
            "rowId": self.row_id,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "value": _plain(self.value),
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class Assignment:
    task_id: str
    worker_id: str
    phase: int  # 1-indexed
    confidence: float = 1.0

    def to_record(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "workerId": self.worker_id,
            "phase": self.phase,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class AllocationMetrics:
    total_assignments: int = 0
    client_priority_fulfillment: float = 0.0
    worker_utilization_balance: float = 0.0
    cost_efficiency: float = 0.0

    def to_record(self) -> Dict[str, float]:
        return {
            "totalAssignments": self.total_assignments,
            "clientPriorityFulfillment": self.client_priority_fulfillment,
            "workerUtilizationBalance": self.worker_utilization_balance,
            "costEfficiency": self.cost_efficiency,
        }


def _plain(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def _to_record(entity: Any) -> Dict[str, Any]:
    return {name: _plain(getattr(entity, attr)) for name, attr in entity.FIELDS.items()}


ENTITY_CLASSES: Dict[EntityType, type] = {
    EntityType.CLIENTS: Client,
    EntityType.WORKERS: Worker,
    EntityType.TASKS: Task,
}


def records(entities: List[Any]) -> List[Dict[str, Any]]:
    return [e.to_record() for e in entities]
