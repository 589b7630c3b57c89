import hashlib
import json
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.config.settings import get_settings
from app.engine.filters import FilterCondition, FilterOperator
from app.ingest.normalize import client_from_row, task_from_row, worker_from_row
from app.models.entities import Client, EntityType, PriorityWeights, Task, Worker
from app.models.rules import BusinessRule, RuleType, validate_parameters
from app.services.rule_generation import new_rule_id

settings = get_settings()


# Entity DTOs take spreadsheet values as they come (strings, numbers, lists)
# and leave coercion to the ingest parsers so the validator sees raw values.


class ClientDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    client_id: Any = Field(None, alias="ClientID")
    client_name: Any = Field(None, alias="ClientName")
    priority_level: Any = Field(None, alias="PriorityLevel")
    requested_task_ids: Any = Field(None, alias="RequestedTaskIDs")
    group_tag: Any = Field(None, alias="GroupTag")
    attributes_json: Any = Field(None, alias="AttributesJSON")

    def to_domain(self) -> Client:
        return client_from_row(self.model_dump(by_alias=True))


class WorkerDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    worker_id: Any = Field(None, alias="WorkerID")
    worker_name: Any = Field(None, alias="WorkerName")
    skills: Any = Field(None, alias="Skills")
    worker_group: Any = Field(None, alias="WorkerGroup")
    available_slots: Any = Field(None, alias="AvailableSlots")
    max_load_per_phase: Any = Field(None, alias="MaxLoadPerPhase")
    qualification_level: Any = Field(None, alias="QualificationLevel")
    hourly_rate: Any = Field(None, alias="HourlyRate")

    def to_domain(self) -> Worker:
        return worker_from_row(self.model_dump(by_alias=True))


class TaskDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    task_id: Any = Field(None, alias="TaskID")
    task_name: Any = Field(None, alias="TaskName")
    required_skills: Any = Field(None, alias="RequiredSkills")
    duration: Any = Field(None, alias="Duration")
    category: Any = Field(None, alias="Category")
    preferred_phases: Any = Field(None, alias="PreferredPhases")
    max_concurrent: Any = Field(None, alias="MaxConcurrent")
    dependencies: Any = Field(None, alias="Dependencies")

    def to_domain(self) -> Task:
        return task_from_row(self.model_dump(by_alias=True))


class BusinessRuleDTO(BaseModel):
    id: Optional[str] = None
    type: RuleType
    name: str = ""
    description: str = ""
    parameters: Dict[str, Any]
    priority: int = 1
    enabled: bool = True

    @model_validator(mode="after")
    def validate_parameters(self):
        """Check parameters against the shape required by the rule type."""
        self.parameters = validate_parameters(self.type, self.parameters)
        return self

    def content_id(self) -> str:
        """Id derived from everything but the id, identical for identical rules."""
        record = self.model_dump(mode="json", exclude={"id"})
        digest = hashlib.sha256(json.dumps(record, sort_keys=True).encode()).hexdigest()
        return f"rule-{digest[:8]}"

    def to_domain(self, rule_id: Optional[str] = None) -> BusinessRule:
        record = self.model_dump(mode="json")
        record["id"] = self.id or rule_id or new_rule_id()
        return BusinessRule.from_record(record)


def rules_to_domain(rules: List[BusinessRuleDTO]) -> List[BusinessRule]:
    """
    Domain rules for one request.

    Rules sent without an id get a content-derived one, so repeated requests
    produce the same rules (and the same allocation cache key). Identical
    id-less rules within a request are told apart by a numeric suffix.
    """
    used: Set[str] = {r.id for r in rules if r.id}
    domain: List[BusinessRule] = []
    for rule in rules:
        rule_id = rule.id
        if not rule_id:
            base = rule_id = rule.content_id()
            suffix = 2
            while rule_id in used:
                rule_id = f"{base}-{suffix}"
                suffix += 1
            used.add(rule_id)
        domain.append(rule.to_domain(rule_id))
    return domain


class RulePatchDTO(BaseModel):
    type: Optional[RuleType] = None
    name: Optional[str] = None
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None
    priority: Optional[int] = None
    enabled: Optional[bool] = None


class PriorityWeightsDTO(BaseModel):
    clientPriorityFulfillment: float = Field(settings.default_client_priority_weight, ge=0)
    workerWorkLifeBalance: float = Field(settings.default_work_life_balance_weight, ge=0)
    costEfficiency: float = Field(settings.default_cost_efficiency_weight, ge=0)

    def to_domain(self) -> PriorityWeights:
        return PriorityWeights(
            client_priority_fulfillment=self.clientPriorityFulfillment,
            worker_work_life_balance=self.workerWorkLifeBalance,
            cost_efficiency=self.costEfficiency,
        )


class DataSet(BaseModel):
    clients: List[ClientDTO] = []
    workers: List[WorkerDTO] = []
    tasks: List[TaskDTO] = []

    def entities(self):
        return (
            [c.to_domain() for c in self.clients],
            [w.to_domain() for w in self.workers],
            [t.to_domain() for t in self.tasks],
        )


class ValidateRequest(DataSet):
    rules: Optional[List[BusinessRuleDTO]] = None


class AllocateRequest(DataSet):
    rules: List[BusinessRuleDTO]
    priorities: PriorityWeightsDTO = Field(default_factory=PriorityWeightsDTO)
    cost_model: Optional[str] = Field(None, alias="costModel", pattern="^(placeholder|hourly_rate)$")

    model_config = ConfigDict(populate_by_name=True)


class GenerateRuleRequest(BaseModel):
    description: str = Field(..., min_length=1)
    save: bool = False


class FilterDTO(BaseModel):
    field: str = ""
    operator: FilterOperator
    value: Any = None

    def to_domain(self) -> FilterCondition:
        return FilterCondition(self.field, self.operator, self.value)


class SearchRequest(DataSet):
    query: Optional[str] = None
    entity: Optional[EntityType] = None
    filters: Optional[List[FilterDTO]] = None

    @model_validator(mode="after")
    def validate_criteria(self):
        """Either a free-text query or an entity with explicit filters."""
        if self.filters is not None:
            if self.entity is None:
                raise ValueError("entity is required when filters are given")
        elif not (self.query and self.query.strip()):
            raise ValueError("query or filters must be provided")
        return self


class IngestRequest(BaseModel):
    rows: List[Dict[str, Any]]
    mapping: Optional[Dict[str, str]] = None
    auto_map: bool = True


class ExportRequest(DataSet):
    rules: List[BusinessRuleDTO] = []
    priorities: PriorityWeightsDTO = Field(default_factory=PriorityWeightsDTO)
    allocation: Optional[Dict[str, Any]] = None
