import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from app.exceptions.custom_errors import TextGenerationError
from app.models.entities import ENTITY_CLASSES, EntityType
from app.services.text_generation import TextGenerator

logger = logging.getLogger(__name__)

# (keywords that must all appear in the lower-cased header, canonical field)
KEYWORD_RULES: Dict[EntityType, List[Tuple[Tuple[str, ...], str]]] = {
    EntityType.CLIENTS: [
        (("client", "id"), "ClientID"),
        (("client", "name"), "ClientName"),
        (("priority",), "PriorityLevel"),
        (("task",), "RequestedTaskIDs"),
        (("request",), "RequestedTaskIDs"),
        (("group",), "GroupTag"),
        (("attribute",), "AttributesJSON"),
        (("json",), "AttributesJSON"),
    ],
    EntityType.WORKERS: [
        (("worker", "id"), "WorkerID"),
        (("worker", "name"), "WorkerName"),
        (("skill",), "Skills"),
        (("avail",), "AvailableSlots"),
        (("slot",), "AvailableSlots"),
        (("max", "load"), "MaxLoadPerPhase"),
        (("group",), "WorkerGroup"),
        (("qualification",), "QualificationLevel"),
        (("rate",), "HourlyRate"),
    ],
    EntityType.TASKS: [
        (("task", "id"), "TaskID"),
        (("task", "name"), "TaskName"),
        (("category",), "Category"),
        (("duration",), "Duration"),
        (("skill",), "RequiredSkills"),
        (("phase",), "PreferredPhases"),
        (("concurrent",), "MaxConcurrent"),
        (("depend",), "Dependencies"),
    ],
}


def _normalise(header: str) -> str:
    return "".join(ch for ch in header.lower() if ch.isalnum())


class ColumnMapper(ABC):
    @abstractmethod
    def map_columns(self, headers: Sequence[str], entity: EntityType) -> Dict[str, str]:
        """Map source headers to canonical field names; unmapped headers are omitted."""
        pass


class HeuristicColumnMapper(ColumnMapper):
    def map_columns(self, headers: Sequence[str], entity: EntityType) -> Dict[str, str]:
        entity = EntityType(entity)
        canonical = {_normalise(name): name for name in ENTITY_CLASSES[entity].FIELDS}
        mapping: Dict[str, str] = {}
        for header in headers:
            exact = canonical.get(_normalise(header))
            if exact:
                mapping[header] = exact
                continue
            lower = header.lower()
            for keywords, target in KEYWORD_RULES[entity]:
                if all(k in lower for k in keywords):
                    mapping[header] = target
                    break
        return mapping


class RemoteColumnMapper(ColumnMapper):
    """Asks the generation service first; the fallback fills whatever it leaves out."""

    def __init__(self, generator: TextGenerator, fallback: Optional[ColumnMapper] = None):
        self.generator = generator
        self.fallback = fallback or HeuristicColumnMapper()

    def map_columns(self, headers: Sequence[str], entity: EntityType) -> Dict[str, str]:
        entity = EntityType(entity)
        fields = list(ENTITY_CLASSES[entity].FIELDS)
        prompt = (
            f"Map these spreadsheet headers for {entity.value} to the canonical fields {fields}.\n"
            f"Headers: {list(headers)}\n"
            'Return only JSON: {"mapping": {"<header>": "<canonical field>"}}'
        )
        try:
            data = self.generator.generate_json(prompt)
        except TextGenerationError as e:
            logger.warning(f"Remote column mapping failed, using heuristics: {e}")
            return self.fallback.map_columns(headers, entity)

        remote = data.get("mapping", {}) if isinstance(data, dict) else {}
        mapping = {h: remote[h] for h in headers if remote.get(h) in fields}
        for header, target in self.fallback.map_columns(headers, entity).items():
            mapping.setdefault(header, target)
        return mapping


def select_column_mapper(generator: Optional[TextGenerator]) -> ColumnMapper:
    if generator is None:
        return HeuristicColumnMapper()
    return RemoteColumnMapper(generator)
