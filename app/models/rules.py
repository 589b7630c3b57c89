from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Tuple, Type, Union

from pydantic import BaseModel, Field, field_validator


class RuleType(str, Enum):
    CO_RUN = "coRun"
    SLOT_RESTRICTION = "slotRestriction"
    LOAD_LIMIT = "loadLimit"
    PHASE_WINDOW = "phaseWindow"
    SKILL_REQUIREMENT = "skillRequirement"


class GroupType(str, Enum):
    CLIENT = "client"
    WORKER = "worker"


@dataclass(frozen=True)
class CoRun:
    tasks: Tuple[str, ...]
    required: bool = True

    rule_type: ClassVar[RuleType] = RuleType.CO_RUN

    def to_record(self) -> Dict[str, Any]:
        return {"tasks": list(self.tasks), "required": self.required}


@dataclass(frozen=True)
class SlotRestriction:
    group_type: GroupType
    group_name: str
    min_slots: int

    rule_type: ClassVar[RuleType] = RuleType.SLOT_RESTRICTION

    def to_record(self) -> Dict[str, Any]:
        return {"groupType": self.group_type.value, "groupName": self.group_name, "minSlots": self.min_slots}


@dataclass(frozen=True)
class LoadLimit:
    worker_group: str
    max_slots_per_phase: int

    rule_type: ClassVar[RuleType] = RuleType.LOAD_LIMIT

    def to_record(self) -> Dict[str, Any]:
        return {"workerGroup": self.worker_group, "maxSlotsPerPhase": self.max_slots_per_phase}


@dataclass(frozen=True)
class PhaseWindow:
    task_id: str
    allowed_phases: Tuple[int, ...]

    rule_type: ClassVar[RuleType] = RuleType.PHASE_WINDOW

    def to_record(self) -> Dict[str, Any]:
        return {"taskId": self.task_id, "allowedPhases": list(self.allowed_phases)}


@dataclass(frozen=True)
class SkillRequirement:
    """Reserved: carried through storage and the API but not enforced."""

    required_skills: Tuple[str, ...]

    rule_type: ClassVar[RuleType] = RuleType.SKILL_REQUIREMENT

    def to_record(self) -> Dict[str, Any]:
        return {"requiredSkills": list(self.required_skills)}


RuleParameters = Union[CoRun, SlotRestriction, LoadLimit, PhaseWindow, SkillRequirement]

PARAMETER_TYPES: Dict[RuleType, Type] = {
    RuleType.CO_RUN: CoRun,
    RuleType.SLOT_RESTRICTION: SlotRestriction,
    RuleType.LOAD_LIMIT: LoadLimit,
    RuleType.PHASE_WINDOW: PhaseWindow,
    RuleType.SKILL_REQUIREMENT: SkillRequirement,
}


# Wire shapes of the parameter payloads, checked wherever a rule enters the
# system (HTTP requests, generated rules, the rule store).


class CoRunParams(BaseModel):
    tasks: List[str] = Field(..., min_length=1)
    required: bool = True


class SlotRestrictionParams(BaseModel):
    groupType: GroupType
    groupName: str
    minSlots: int = Field(..., ge=0)


class LoadLimitParams(BaseModel):
    workerGroup: str
    maxSlotsPerPhase: int = Field(..., ge=0)


class PhaseWindowParams(BaseModel):
    taskId: str
    allowedPhases: List[int]

    @field_validator("allowedPhases")
    def validate_phases(cls, v: List[int]):
        """Phases are 1-indexed."""
        if any(p < 1 for p in v):
            raise ValueError("allowedPhases must be positive phase numbers")
        return v


class SkillRequirementParams(BaseModel):
    requiredSkills: List[str]


PARAMETER_MODELS: Dict[RuleType, Type[BaseModel]] = {
    RuleType.CO_RUN: CoRunParams,
    RuleType.SLOT_RESTRICTION: SlotRestrictionParams,
    RuleType.LOAD_LIMIT: LoadLimitParams,
    RuleType.PHASE_WINDOW: PhaseWindowParams,
    RuleType.SKILL_REQUIREMENT: SkillRequirementParams,
}


def validate_parameters(rule_type: RuleType, params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check params against the shape required by rule_type.

    Returns the normalised camelCase parameters. Raises pydantic's
    ValidationError (a ValueError) when they do not fit.
    """
    return PARAMETER_MODELS[RuleType(rule_type)].model_validate(params).model_dump(mode="json")


def parameters_from_record(rule_type: RuleType, params: Dict[str, Any]) -> RuleParameters:
    """Build the payload for rule_type from its canonical camelCase parameters."""
    rule_type = RuleType(rule_type)
    params = validate_parameters(rule_type, params)
    if rule_type is RuleType.CO_RUN:
        return CoRun(tasks=tuple(params["tasks"]), required=params["required"])
    if rule_type is RuleType.SLOT_RESTRICTION:
        return SlotRestriction(
            group_type=GroupType(params["groupType"]),
            group_name=params["groupName"],
            min_slots=params["minSlots"],
        )
    if rule_type is RuleType.LOAD_LIMIT:
        return LoadLimit(worker_group=params["workerGroup"], max_slots_per_phase=params["maxSlotsPerPhase"])
    if rule_type is RuleType.PHASE_WINDOW:
        return PhaseWindow(task_id=params["taskId"], allowed_phases=tuple(params["allowedPhases"]))
    return SkillRequirement(required_skills=tuple(params["requiredSkills"]))


@dataclass(frozen=True)
class BusinessRule:
    id: str
    parameters: RuleParameters
    name: str = ""
    description: str = ""
    priority: int = 1
    enabled: bool = True

    @property
    def type(self) -> RuleType:
        return self.parameters.rule_type

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_record(),
            "priority": self.priority,
            "enabled": self.enabled,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "BusinessRule":
        return cls(
            id=record["id"],
            parameters=parameters_from_record(RuleType(record["type"]), record.get("parameters") or {}),
            name=record.get("name") or "",
            description=record.get("description") or "",
            priority=int(record.get("priority", 1)),
            enabled=bool(record.get("enabled", True)),
        )


@dataclass(frozen=True)
class RuleViolation:
    rule: BusinessRule
    description: str

    def to_record(self) -> Dict[str, Any]:
        return {"rule": self.rule.to_record(), "description": self.description}
