"""
Natural-language to BusinessRule translation.

HeuristicRuleGenerator recognises a handful of phrasings per rule kind
("T1 and T2 must run together", "Sales workers max 2 slots per phase",
"T3 only in phases 1-3", "Premium clients need at least 2 common slots",
"requires skills python, sql"). RemoteRuleGenerator asks the generation
service for a rule record and falls back to the heuristics when the
service fails or returns something that does not validate.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import ValidationError

from app.exceptions.custom_errors import TextGenerationError
from app.models.rules import (
    BusinessRule,
    CoRun,
    GroupType,
    LoadLimit,
    PhaseWindow,
    RuleType,
    SkillRequirement,
    SlotRestriction,
)
from app.services.text_generation import TextGenerator
from app.utils.phases import parse_phase_expression

logger = logging.getLogger(__name__)

TASK_ID = re.compile(r"\b[A-Z]{1,3}\d+\b")
CO_RUN_WORDS = re.compile(r"\b(together|co-?run|same worker|alongside)\b", re.IGNORECASE)
LOAD_LIMIT = re.compile(
    r"\b([A-Za-z][\w-]*)\s+workers?\b.*?\b(\d+)\s+slots?\s+per\s+phase", re.IGNORECASE
)
SLOT_RESTRICTION = re.compile(
    r"\b([A-Za-z][\w-]*)\s+(client|worker)s?\b.*?\bat\s+least\s+(\d+)\b.*?\bslots?", re.IGNORECASE
)
PHASES = re.compile(r"\bphases?\s+(\d+(?:\s*(?:-|,|and|to)\s*\d+)*)", re.IGNORECASE)
SKILLS = re.compile(r"\b(?:requires?|needs?)\s+(?:the\s+)?skills?\s+(.+)$", re.IGNORECASE)


def new_rule_id() -> str:
    return f"rule-{uuid.uuid4().hex[:8]}"


class RuleGenerator(ABC):
    @abstractmethod
    def generate(self, description: str) -> Optional[BusinessRule]:
        """Return a rule for the description, or None when it is not understood."""
        pass


class HeuristicRuleGenerator(RuleGenerator):
    def generate(self, description: str) -> Optional[BusinessRule]:
        text = description.strip()
        if not text:
            return None
        parameters = self._parameters(text)
        if parameters is None:
            logger.info(f"No rule pattern matched: {text!r}")
            return None
        return BusinessRule(
            id=new_rule_id(),
            parameters=parameters,
            name=f"{parameters.rule_type.value} rule",
            description=text,
        )

    def _parameters(self, text: str):
        task_ids = list(dict.fromkeys(TASK_ID.findall(text)))

        if CO_RUN_WORDS.search(text) and len(task_ids) >= 2:
            return CoRun(tasks=tuple(task_ids), required=True)

        match = LOAD_LIMIT.search(text)
        if match:
            return LoadLimit(worker_group=match.group(1), max_slots_per_phase=int(match.group(2)))

        match = SLOT_RESTRICTION.search(text)
        if match:
            return SlotRestriction(
                group_type=GroupType(match.group(2).lower()),
                group_name=match.group(1),
                min_slots=int(match.group(3)),
            )

        match = PHASES.search(text)
        if match and task_ids:
            expression = re.sub(r"\s*(?:and|,)\s*", ",", match.group(1))
            expression = re.sub(r"\s*(?:to|-)\s*", "-", expression)
            try:
                phases = parse_phase_expression(expression)
            except ValueError:
                return None
            if phases:
                return PhaseWindow(task_id=task_ids[0], allowed_phases=phases)

        match = SKILLS.search(text)
        if match:
            skills = [s.strip(" .") for s in re.split(r",|\band\b", match.group(1))]
            skills = [s for s in skills if s]
            if skills:
                return SkillRequirement(required_skills=tuple(skills))
        return None


class RemoteRuleGenerator(RuleGenerator):
    def __init__(self, generator: TextGenerator, fallback: Optional[RuleGenerator] = None):
        self.generator = generator
        self.fallback = fallback or HeuristicRuleGenerator()

    def _prompt(self, description: str) -> str:
        kinds = [t.value for t in RuleType]
        return (
            "Convert this business rule for a task allocation system into JSON.\n"
            f"Rule: {description}\n"
            f"Allowed types: {kinds}.\n"
            "Parameters: coRun {tasks, required}; slotRestriction {groupType, groupName, minSlots}; "
            "loadLimit {workerGroup, maxSlotsPerPhase}; phaseWindow {taskId, allowedPhases}; "
            "skillRequirement {requiredSkills}.\n"
            'Return only JSON: {"type": "...", "name": "...", "parameters": {...}, "priority": 1}'
        )

    @staticmethod
    def parse_rule(data: Any, description: str) -> BusinessRule:
        if not isinstance(data, dict):
            raise TextGenerationError("Generated rule is not an object")
        try:
            record = dict(data.get("rule", data))
            record["id"] = new_rule_id()
            record.setdefault("description", description)
            return BusinessRule.from_record(record)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            raise TextGenerationError(f"Generated rule is invalid: {e}") from e

    def generate(self, description: str) -> Optional[BusinessRule]:
        if not description.strip():
            return None
        try:
            return self.parse_rule(self.generator.generate_json(self._prompt(description)), description)
        except TextGenerationError as e:
            logger.warning(f"Remote rule generation failed, using heuristics: {e}")
            return self.fallback.generate(description)


def select_rule_generator(generator: Optional[TextGenerator]) -> RuleGenerator:
    if generator is None:
        return HeuristicRuleGenerator()
    return RemoteRuleGenerator(generator)


def generate_rule(description: str, generator: Optional[TextGenerator] = None) -> Optional[BusinessRule]:
    return select_rule_generator(generator).generate(description)
