import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from app.engine.filters import FilterCondition, FilterOperator, apply_filters
from app.exceptions.custom_errors import TextGenerationError
from app.models.entities import Client, EntityType, Task, Worker, records
from app.services.text_generation import TextGenerator

logger = logging.getLogger(__name__)

ENTITY_KEYWORDS = {
    EntityType.CLIENTS: ("client", "customer"),
    EntityType.WORKERS: ("worker", "employee", "staff"),
    EntityType.TASKS: ("task", "job"),
}

STOPWORDS = {
    "a", "an", "the", "all", "any", "show", "find", "list", "me", "with", "who", "that",
    "have", "has", "for", "of", "in", "and", "or", "to", "are", "is", "which", "get",
}


@dataclass
class SearchResult:
    entity: EntityType
    results: List[Any]
    filters: List[FilterCondition] = field(default_factory=list)
    explanation: str = ""
    strategy: str = "keyword"

    def to_record(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.value,
            "results": records(self.results),
            "filters": [f.to_record() for f in self.filters],
            "explanation": self.explanation,
            "strategy": self.strategy,
        }


def _collection(entity: EntityType, clients, workers, tasks) -> Sequence[Any]:
    return {EntityType.CLIENTS: clients, EntityType.WORKERS: workers, EntityType.TASKS: tasks}[entity]


def run_filters(
    entity: EntityType,
    filters: Sequence[FilterCondition],
    clients: Sequence[Client],
    workers: Sequence[Worker],
    tasks: Sequence[Task],
    explanation: str = "",
    strategy: str = "filters",
) -> SearchResult:
    entity = EntityType(entity)
    found = apply_filters(_collection(entity, clients, workers, tasks), filters, tasks)
    return SearchResult(entity, found, list(filters), explanation, strategy)


class SearchStrategy(ABC):
    @abstractmethod
    def search(
        self,
        query: str,
        clients: Sequence[Client],
        workers: Sequence[Worker],
        tasks: Sequence[Task],
    ) -> SearchResult:
        pass


class KeywordSearch(SearchStrategy):
    """Picks the entity from keywords and matches remaining words against ids and names."""

    def detect_entity(self, query: str) -> EntityType:
        lower = query.lower()
        for entity, words in ENTITY_KEYWORDS.items():
            if any(w in lower for w in words):
                return entity
        return EntityType.CLIENTS

    def search(self, query, clients, workers, tasks) -> SearchResult:
        entity = self.detect_entity(query)
        entity_words = set(ENTITY_KEYWORDS[entity])
        tokens = [
            t for t in re.findall(r"[\w-]+", query.lower())
            if t not in STOPWORDS and t.rstrip("s") not in entity_words
        ]
        collection = _collection(entity, clients, workers, tasks)
        if not tokens:
            return SearchResult(entity, list(collection), explanation=f"All {entity.value}")

        id_field, name_field = list(collection[0].FIELDS.values())[:2] if collection else ("", "")
        found = []
        for record in collection:
            haystack = f"{getattr(record, id_field, '')} {getattr(record, name_field, '')}".lower()
            if any(t in haystack for t in tokens):
                found.append(record)
        return SearchResult(entity, found, explanation=f"{entity.value} matching {', '.join(tokens)}")


class RemoteSearch(SearchStrategy):
    def __init__(self, generator: TextGenerator, fallback: Optional[SearchStrategy] = None):
        self.generator = generator
        self.fallback = fallback or KeywordSearch()

    def _prompt(self, query: str) -> str:
        operators = [op.value for op in FilterOperator]
        return (
            "Translate this search over clients, workers and tasks into filter criteria.\n"
            f"Query: {query}\n"
            f"Operators: {operators}. Use canonical field names such as PriorityLevel, Skills, Duration.\n"
            'Return only JSON: {"entity": "clients|workers|tasks", '
            '"filters": [{"field": "...", "operator": "...", "value": ...}], "explanation": "..."}'
        )

    @staticmethod
    def parse_criteria(data: Any) -> tuple:
        try:
            entity = EntityType(data["entity"])
            filters = [
                FilterCondition(f.get("field", ""), FilterOperator(f["operator"]), f.get("value"))
                for f in data.get("filters", [])
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise TextGenerationError(f"Unusable search criteria: {e}") from e
        return entity, filters, str(data.get("explanation", ""))

    def search(self, query, clients, workers, tasks) -> SearchResult:
        try:
            entity, filters, explanation = self.parse_criteria(self.generator.generate_json(self._prompt(query)))
        except TextGenerationError as e:
            logger.warning(f"Remote search failed, using keyword search: {e}")
            return self.fallback.search(query, clients, workers, tasks)
        return run_filters(entity, filters, clients, workers, tasks, explanation, strategy="remote")


def select_search(generator: Optional[TextGenerator]) -> SearchStrategy:
    if generator is None:
        return KeywordSearch()
    return RemoteSearch(generator)
