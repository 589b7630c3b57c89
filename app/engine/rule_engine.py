"""
Business rule evaluation for the allocator.

Rules are consulted as predicates while the allocator walks candidate
(task, worker, phase) triples; nothing here mutates state. Only enabled rules
take part, ordered by ascending priority and then insertion order.

Rule kinds:
- phaseWindow: domain filter. Phases outside the union of a task's windows
  are never tried, and skipping them is not a violation.
- loadLimit: hard constraint. A breach rejects the candidate phase and is
  reported as a RuleViolation.
- coRun: grouping. Required co-run rules are merged into connected groups
  that the allocator places all-or-nothing on a single worker.
- slotRestriction: advisory, checked after allocation for reporting.
- skillRequirement: reserved, accepted but not enforced.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from app.graph.task_graph import build_co_run_graph, connected_components
from app.models.entities import Client, Task, Worker
from app.models.rules import BusinessRule, GroupType, RuleType, RuleViolation

logger = logging.getLogger(__name__)


def ordered_rules(rules: Sequence[BusinessRule]) -> List[BusinessRule]:
    """Enabled rules by ascending priority; sorted() is stable so ties keep insertion order."""
    return sorted((r for r in rules if r.enabled), key=lambda r: r.priority)


class RuleConstraint(ABC):
    """Hard constraint derived from one business rule."""

    def __init__(self, rule: BusinessRule):
        self.rule = rule

    @abstractmethod
    def applies(self, task: Task, worker: Worker) -> bool:
        pass

    @abstractmethod
    def evaluate(self, task: Task, worker: Worker, phase: int, phase_load: int) -> Optional[str]:
        """
        Check a candidate placement.
        Returns None if satisfied, otherwise a human-readable description.
        """
        pass


class LoadLimitConstraint(RuleConstraint):
    """Caps the load a worker of the rule's group may carry in any one phase."""

    def applies(self, task: Task, worker: Worker) -> bool:
        return worker.worker_group == self.rule.parameters.worker_group

    def evaluate(self, task: Task, worker: Worker, phase: int, phase_load: int) -> Optional[str]:
        cap = self.rule.parameters.max_slots_per_phase
        group = self.rule.parameters.worker_group
        if task.load > cap:
            return (
                f"Task {task.task_id} (duration {task.load}) exceeds load limit of "
                f"{cap} per phase for worker group {group}"
            )
        if phase_load + task.load > cap:
            return (
                f"Task {task.task_id} would raise worker {worker.worker_id} to "
                f"{phase_load + task.load} load units in phase {phase}, above the limit "
                f"of {cap} for worker group {group}"
            )
        return None


class RuleEngine:
    """Indexes the enabled rules of one allocation run for fast lookups."""

    def __init__(self, rules: Sequence[BusinessRule]):
        self.rules = ordered_rules(rules)
        self._windows: Dict[str, Set[int]] = {}
        self._constraints: List[RuleConstraint] = []
        self._co_run: List[BusinessRule] = []
        self._slot_restrictions: List[BusinessRule] = []

        for rule in self.rules:
            if rule.type is RuleType.PHASE_WINDOW:
                window = self._windows.setdefault(rule.parameters.task_id, set())
                window.update(rule.parameters.allowed_phases)
            elif rule.type is RuleType.LOAD_LIMIT:
                self._constraints.append(LoadLimitConstraint(rule))
            elif rule.type is RuleType.CO_RUN:
                if rule.parameters.required:
                    self._co_run.append(rule)
            elif rule.type is RuleType.SLOT_RESTRICTION:
                self._slot_restrictions.append(rule)
            else:
                logger.debug(f"Rule {rule.id} ({rule.type.value}) is reserved and not enforced")

    def allowed_phases(self, task_id: str) -> Optional[FrozenSet[int]]:
        """Union of the task's phase windows, or None when the task is unrestricted."""
        window = self._windows.get(task_id)
        return frozenset(window) if window is not None else None

    def phase_allowed(self, task_id: str, phase: int) -> bool:
        window = self._windows.get(task_id)
        return window is None or phase in window

    def check(self, task: Task, worker: Worker, phase: int, phase_load: int) -> Optional[RuleViolation]:
        """First constraint (in rule order) the placement breaches, as a violation."""
        for constraint in self._constraints:
            if not constraint.applies(task, worker):
                continue
            description = constraint.evaluate(task, worker, phase, phase_load)
            if description:
                return RuleViolation(rule=constraint.rule, description=description)
        return None

    def co_run_groups(self, order: Sequence[str]) -> Dict[str, Tuple[str, ...]]:
        """
        Map each task in a required co-run group to its whole group.

        Overlapping rules are merged (connected components), members are
        listed in the given scheduling order, and unknown task ids are dropped.
        """
        graph = build_co_run_graph((r.parameters.tasks for r in self._co_run), set(order))
        groups: Dict[str, Tuple[str, ...]] = {}
        for component in connected_components(graph, order):
            for tid in component:
                groups[tid] = tuple(component)
        return groups

    def slot_restriction_violations(
        self,
        clients: Sequence[Client],
        workers: Sequence[Worker],
        tasks: Sequence[Task],
    ) -> List[RuleViolation]:
        violations: List[RuleViolation] = []
        for rule in self._slot_restrictions:
            params = rule.parameters
            if params.group_type is GroupType.WORKER:
                members = [w.worker_id for w in workers if w.worker_group == params.group_name]
                phase_sets = [set(w.phases) for w in workers if w.worker_group == params.group_name]
            else:
                group = [c for c in clients if c.group_tag == params.group_name]
                members = [c.client_id for c in group]
                phase_sets = [_client_phases(c, workers, tasks) for c in group]

            if not members:
                violations.append(RuleViolation(
                    rule=rule,
                    description=f"No {params.group_type.value}s belong to group {params.group_name}",
                ))
                continue

            common = set.intersection(*phase_sets)
            if len(common) < params.min_slots:
                violations.append(RuleViolation(
                    rule=rule,
                    description=(
                        f"{params.group_type.value.capitalize()} group {params.group_name} has "
                        f"{len(common)} common available slots, at least {params.min_slots} required"
                    ),
                ))
        return violations


def _client_phases(client: Client, workers: Sequence[Worker], tasks: Sequence[Task]) -> Set[int]:
    """Phases in which some worker qualified for one of the client's tasks is available."""
    by_id = {t.task_id: t for t in tasks}
    phases: Set[int] = set()
    for tid in client.requested_task_ids:
        task = by_id.get(tid)
        if task is None:
            continue
        for worker in workers:
            if worker.has_skills(task.required_skills):
                phases.update(worker.phases)
    return phases
