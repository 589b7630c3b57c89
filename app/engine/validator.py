"""
Cross-entity validation for clients, workers and tasks.

Every check runs independently and appends ValidationError records; nothing
is raised for bad data, so one call reports the full error set. Error ids
are derived from row positions and keys, so re-running on the same input
yields the same errors.
"""

import json
import logging
from collections import Counter
from typing import Any, Dict, List, Sequence

from app.graph.task_graph import find_dependency_cycles
from app.models.entities import Client, EntityType, Severity, Task, ValidationError, Worker, as_int
from app.models.rules import BusinessRule, GroupType, RuleType
from app.utils.phases import parse_phase_expression

logger = logging.getLogger(__name__)

# entity, key field, key attribute, name field, name attribute, short label
_IDENTITY = (
    (EntityType.CLIENTS, "ClientID", "client_id", "ClientName", "client_name", "client"),
    (EntityType.WORKERS, "WorkerID", "worker_id", "WorkerName", "worker_name", "worker"),
    (EntityType.TASKS, "TaskID", "task_id", "TaskName", "task_name", "task"),
)


def _row_id(key: str, index: int) -> str:
    return key or f"row-{index}"


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _qualified(task: Task, workers: Sequence[Worker]) -> List[Worker]:
    return [w for w in workers if w.has_skills(task.required_skills)]


def check_required_fields(collections: Dict[EntityType, Sequence], errors: List[ValidationError]) -> None:
    for entity, key_field, key_attr, name_field, name_attr, label in _IDENTITY:
        for index, row in enumerate(collections[entity]):
            key = getattr(row, key_attr)
            for field, attr, kind in ((key_field, key_attr, "id"), (name_field, name_attr, "name")):
                if not _blank(getattr(row, attr)):
                    continue
                errors.append(ValidationError(
                    id=f"missing-{label}-{kind}-{index}",
                    entity=entity,
                    row_id=_row_id(key, index),
                    field=field,
                    message=f"{field} is required",
                    severity=Severity.CRITICAL,
                    value=getattr(row, attr),
                    suggestion=f"Generate a unique {field} for this {label}" if kind == "id"
                    else f"Provide a name for this {label}",
                ))


def check_duplicate_ids(collections: Dict[EntityType, Sequence], errors: List[ValidationError]) -> None:
    for entity, key_field, key_attr, _, _, label in _IDENTITY:
        keys = [getattr(row, key_attr) for row in collections[entity]]
        counts = Counter(k for k in keys if k)
        for index, key in enumerate(keys):
            if key and counts[key] > 1:
                errors.append(ValidationError(
                    id=f"duplicate-{label}-id-{key}-{index}",
                    entity=entity,
                    row_id=key,
                    field=key_field,
                    message=f"Duplicate {key_field}: {key} (row {index}, {counts[key]} occurrences)",
                    severity=Severity.CRITICAL,
                    value=key,
                    suggestion=f"Ensure each {key_field} is unique",
                ))


def check_malformed_lists(workers: Sequence[Worker], tasks: Sequence[Task], errors: List[ValidationError]) -> None:
    for index, worker in enumerate(workers):
        invalid = [s for s in worker.available_slots if as_int(s) is None or as_int(s) < 1]
        if invalid:
            errors.append(ValidationError(
                id=f"malformed-available-slots-{index}",
                entity=EntityType.WORKERS,
                row_id=_row_id(worker.worker_id, index),
                field="AvailableSlots",
                message=f"Invalid available slots: {', '.join(str(s) for s in invalid)}. Must be positive integers.",
                severity=Severity.WARNING,
                value=worker.available_slots,
                suggestion="Convert all slots to positive integers",
            ))

    for index, task in enumerate(tasks):
        try:
            parse_phase_expression(task.preferred_phases)
        except ValueError as exc:
            errors.append(ValidationError(
                id=f"malformed-preferred-phases-{index}",
                entity=EntityType.TASKS,
                row_id=_row_id(task.task_id, index),
                field="PreferredPhases",
                message=f"Unparsable PreferredPhases ({exc}); treated as no preference",
                severity=Severity.WARNING,
                value=task.preferred_phases,
                suggestion='Use a list like [1, 2] or a range like "1-3"',
            ))


def check_out_of_range(
    clients: Sequence[Client],
    workers: Sequence[Worker],
    tasks: Sequence[Task],
    errors: List[ValidationError],
) -> None:
    for index, client in enumerate(clients):
        level = client.priority_level
        if level is not None and (as_int(level) is None or not 1 <= as_int(level) <= 5):
            errors.append(ValidationError(
                id=f"invalid-priority-level-{index}",
                entity=EntityType.CLIENTS,
                row_id=_row_id(client.client_id, index),
                field="PriorityLevel",
                message=f"PriorityLevel must be between 1 and 5, got: {level}",
                severity=Severity.WARNING,
                value=level,
                suggestion="Set PriorityLevel to a value between 1 and 5",
            ))

    for index, worker in enumerate(workers):
        load = as_int(worker.max_load_per_phase)
        if load is None or load < 0:
            errors.append(ValidationError(
                id=f"invalid-max-load-{index}",
                entity=EntityType.WORKERS,
                row_id=_row_id(worker.worker_id, index),
                field="MaxLoadPerPhase",
                message=f"MaxLoadPerPhase must be a non-negative integer, got: {worker.max_load_per_phase}",
                severity=Severity.WARNING,
                value=worker.max_load_per_phase,
                suggestion="Set MaxLoadPerPhase to 0 or greater",
            ))

    for index, task in enumerate(tasks):
        duration = as_int(task.duration)
        if duration is None or duration < 1:
            errors.append(ValidationError(
                id=f"invalid-duration-{index}",
                entity=EntityType.TASKS,
                row_id=_row_id(task.task_id, index),
                field="Duration",
                message=f"Duration must be at least 1, got: {task.duration}",
                severity=Severity.WARNING,
                value=task.duration,
                suggestion="Set Duration to a value of 1 or greater",
            ))
        concurrent = as_int(task.max_concurrent)
        if concurrent is None or concurrent < 1:
            errors.append(ValidationError(
                id=f"invalid-max-concurrent-{index}",
                entity=EntityType.TASKS,
                row_id=_row_id(task.task_id, index),
                field="MaxConcurrent",
                message=f"MaxConcurrent must be at least 1, got: {task.max_concurrent}",
                severity=Severity.WARNING,
                value=task.max_concurrent,
                suggestion="Set MaxConcurrent to a value of 1 or greater",
            ))


def check_broken_json(clients: Sequence[Client], errors: List[ValidationError]) -> None:
    for index, client in enumerate(clients):
        if not client.attributes_json:
            continue
        try:
            json.loads(client.attributes_json)
        except json.JSONDecodeError:
            errors.append(ValidationError(
                id=f"broken-json-{index}",
                entity=EntityType.CLIENTS,
                row_id=_row_id(client.client_id, index),
                field="AttributesJSON",
                message="Invalid JSON format in AttributesJSON",
                severity=Severity.WARNING,
                value=client.attributes_json,
                suggestion="Fix the JSON syntax or remove invalid characters",
            ))


def check_unknown_references(clients: Sequence[Client], tasks: Sequence[Task], errors: List[ValidationError]) -> None:
    task_ids = {t.task_id for t in tasks if t.task_id}

    for index, client in enumerate(clients):
        unknown = [tid for tid in client.requested_task_ids if tid not in task_ids]
        if unknown:
            errors.append(ValidationError(
                id=f"unknown-requested-tasks-{index}",
                entity=EntityType.CLIENTS,
                row_id=_row_id(client.client_id, index),
                field="RequestedTaskIDs",
                message=f"Unknown task IDs: {', '.join(unknown)}",
                severity=Severity.CRITICAL,
                value=client.requested_task_ids,
                suggestion="Remove or correct the unknown task IDs",
            ))

    for index, task in enumerate(tasks):
        unknown = [tid for tid in task.dependencies if tid not in task_ids]
        if unknown:
            errors.append(ValidationError(
                id=f"unknown-dependencies-{index}",
                entity=EntityType.TASKS,
                row_id=_row_id(task.task_id, index),
                field="Dependencies",
                message=f"Unknown dependency task IDs: {', '.join(unknown)}",
                severity=Severity.CRITICAL,
                value=task.dependencies,
                suggestion="Remove or correct the unknown dependencies",
            ))


def check_dependency_cycles(tasks: Sequence[Task], errors: List[ValidationError]) -> None:
    # cycle groups are disjoint, so each task is reported at most once
    for cycle in find_dependency_cycles(tasks):
        members = ", ".join(cycle)
        for tid in cycle:
            errors.append(ValidationError(
                id=f"circular-dependency-{tid}",
                entity=EntityType.TASKS,
                row_id=tid,
                field="Dependencies",
                message=f"Circular dependency among tasks: {members}",
                severity=Severity.WARNING,
                value=cycle,
                suggestion="Break the cycle by removing one of the dependencies",
            ))


def check_overloaded_workers(workers: Sequence[Worker], errors: List[ValidationError]) -> None:
    for index, worker in enumerate(workers):
        load = as_int(worker.max_load_per_phase)
        if load is None or len(worker.available_slots) >= load:
            continue
        errors.append(ValidationError(
            id=f"overloaded-worker-{index}",
            entity=EntityType.WORKERS,
            row_id=_row_id(worker.worker_id, index),
            field="MaxLoadPerPhase",
            message=f"Worker has {len(worker.available_slots)} available slots but MaxLoadPerPhase is {load}",
            severity=Severity.WARNING,
            value=load,
            suggestion="Increase available slots or decrease MaxLoadPerPhase",
        ))


def check_phase_saturation(workers: Sequence[Worker], tasks: Sequence[Task], errors: List[ValidationError]) -> None:
    """Preferred-phase demand above worker supply; a task's load is spread over its preferred phases."""
    demand: Dict[int, float] = {}
    for task in tasks:
        try:
            phases = parse_phase_expression(task.preferred_phases)
        except ValueError:
            continue
        for phase in phases:
            demand[phase] = demand.get(phase, 0.0) + task.load / len(phases)

    for phase in sorted(demand):
        supply = sum(w.max_load for w in workers if phase in w.phases)
        if demand[phase] > supply:
            errors.append(ValidationError(
                id=f"phase-saturation-{phase}",
                entity=EntityType.TASKS,
                row_id=f"phase-{phase}",
                field="PreferredPhases",
                message=f"Phase {phase} is oversubscribed: {demand[phase]:.1f} load units preferred, {supply} available",
                severity=Severity.WARNING,
                value=phase,
                suggestion="Spread preferred phases or add worker availability in this phase",
            ))


def check_skill_coverage(workers: Sequence[Worker], tasks: Sequence[Task], errors: List[ValidationError]) -> None:
    skills = set()
    for worker in workers:
        skills.update(worker.skills)

    for index, task in enumerate(tasks):
        uncovered = [s for s in task.required_skills if s not in skills]
        if uncovered:
            errors.append(ValidationError(
                id=f"uncovered-skills-{index}",
                entity=EntityType.TASKS,
                row_id=_row_id(task.task_id, index),
                field="RequiredSkills",
                message=f"No workers have these skills: {', '.join(uncovered)}",
                severity=Severity.CRITICAL,
                value=task.required_skills,
                suggestion="Add workers with these skills or modify task requirements",
            ))


def check_max_concurrency(workers: Sequence[Worker], tasks: Sequence[Task], errors: List[ValidationError]) -> None:
    for index, task in enumerate(tasks):
        concurrent = as_int(task.max_concurrent)
        if concurrent is None:
            continue
        qualified = len(_qualified(task, workers))
        if concurrent > qualified:
            errors.append(ValidationError(
                id=f"infeasible-max-concurrent-{index}",
                entity=EntityType.TASKS,
                row_id=_row_id(task.task_id, index),
                field="MaxConcurrent",
                message=f"MaxConcurrent is {concurrent} but only {qualified} workers are qualified",
                severity=Severity.WARNING,
                value=concurrent,
                suggestion=f"Lower MaxConcurrent to {qualified} or add qualified workers",
            ))


def validate(clients: Sequence[Client], workers: Sequence[Worker], tasks: Sequence[Task]) -> List[ValidationError]:
    """Run every integrity check and return the combined error list."""
    errors: List[ValidationError] = []
    collections = {EntityType.CLIENTS: clients, EntityType.WORKERS: workers, EntityType.TASKS: tasks}

    check_required_fields(collections, errors)
    check_duplicate_ids(collections, errors)
    check_malformed_lists(workers, tasks, errors)
    check_out_of_range(clients, workers, tasks, errors)
    check_broken_json(clients, errors)
    check_unknown_references(clients, tasks, errors)
    check_dependency_cycles(tasks, errors)
    check_overloaded_workers(workers, errors)
    check_phase_saturation(workers, tasks, errors)
    check_skill_coverage(workers, tasks, errors)
    check_max_concurrency(workers, tasks, errors)

    logger.info(f"Validation found {len(errors)} issues in {len(clients)} clients, {len(workers)} workers, {len(tasks)} tasks")
    return errors


def validate_rules(
    rules: Sequence[BusinessRule],
    clients: Sequence[Client],
    workers: Sequence[Worker],
    tasks: Sequence[Task],
) -> List[ValidationError]:
    """Conflicts between enabled business rules and the data they refer to."""
    errors: List[ValidationError] = []
    by_id = {t.task_id: t for t in tasks if t.task_id}

    def unknown_task(rule: BusinessRule, tid: str) -> None:
        errors.append(ValidationError(
            id=f"rule-unknown-task-{rule.id}-{tid}",
            entity=EntityType.TASKS,
            row_id=tid,
            field="TaskID",
            message=f"Rule {rule.name or rule.id} ({rule.type.value}) references unknown task {tid}",
            severity=Severity.CRITICAL,
            value=tid,
            suggestion="Correct the task id in the rule or remove the rule",
        ))

    for rule in rules:
        if not rule.enabled:
            continue
        params = rule.parameters

        if rule.type is RuleType.CO_RUN:
            for tid in params.tasks:
                if tid not in by_id:
                    unknown_task(rule, tid)
            members = [by_id[tid] for tid in params.tasks if tid in by_id]
            required = set()
            for task in members:
                required.update(task.required_skills)
            if len(members) > 1 and not any(set(required) <= set(w.skills) for w in workers):
                errors.append(ValidationError(
                    id=f"co-run-uncoverable-{rule.id}",
                    entity=EntityType.TASKS,
                    row_id=members[0].task_id,
                    field="RequiredSkills",
                    message=(
                        f"No single worker has every skill needed by co-run tasks "
                        f"{', '.join(t.task_id for t in members)}: {', '.join(sorted(required))}"
                    ),
                    severity=Severity.WARNING,
                    value=sorted(required),
                    suggestion="Add a worker covering all skills or split the co-run group",
                ))

        elif rule.type is RuleType.PHASE_WINDOW:
            task = by_id.get(params.task_id)
            if task is None:
                unknown_task(rule, params.task_id)
                continue
            allowed = set(params.allowed_phases)
            try:
                preferred = set(parse_phase_expression(task.preferred_phases))
            except ValueError:
                preferred = set()
            if preferred and not preferred & allowed:
                errors.append(ValidationError(
                    id=f"phase-window-conflict-{rule.id}",
                    entity=EntityType.TASKS,
                    row_id=task.task_id,
                    field="PreferredPhases",
                    message=(
                        f"Phase window {sorted(allowed)} does not overlap preferred phases {sorted(preferred)}"
                    ),
                    severity=Severity.WARNING,
                    value=sorted(preferred),
                    suggestion="Align the phase window with the task's preferred phases",
                ))
            reachable = set()
            for worker in _qualified(task, workers):
                reachable.update(worker.phases)
            if not reachable & allowed:
                errors.append(ValidationError(
                    id=f"phase-window-unstaffed-{rule.id}",
                    entity=EntityType.TASKS,
                    row_id=task.task_id,
                    field="RequiredSkills",
                    message=f"No qualified worker is available in any allowed phase {sorted(allowed)}",
                    severity=Severity.WARNING,
                    value=sorted(allowed),
                    suggestion="Widen the phase window or add qualified availability",
                ))

        elif rule.type is RuleType.LOAD_LIMIT:
            if not any(w.worker_group == params.worker_group for w in workers):
                errors.append(ValidationError(
                    id=f"load-limit-empty-group-{rule.id}",
                    entity=EntityType.WORKERS,
                    row_id=params.worker_group,
                    field="WorkerGroup",
                    message=f"Load limit rule {rule.name or rule.id} targets worker group {params.worker_group} with no members",
                    severity=Severity.INFO,
                    value=params.worker_group,
                ))

        elif rule.type is RuleType.SLOT_RESTRICTION:
            if params.group_type is GroupType.WORKER:
                entity, exists = EntityType.WORKERS, any(w.worker_group == params.group_name for w in workers)
            else:
                entity, exists = EntityType.CLIENTS, any(c.group_tag == params.group_name for c in clients)
            if not exists:
                errors.append(ValidationError(
                    id=f"slot-restriction-empty-group-{rule.id}",
                    entity=entity,
                    row_id=params.group_name,
                    field="WorkerGroup" if entity is EntityType.WORKERS else "GroupTag",
                    message=f"Slot restriction rule {rule.name or rule.id} targets group {params.group_name} with no members",
                    severity=Severity.INFO,
                    value=params.group_name,
                ))

    return errors


def summarize(errors: Sequence[ValidationError]) -> Dict[str, Any]:
    by_entity = Counter(e.entity for e in errors)
    by_severity = Counter(e.severity for e in errors)
    return {
        "totalErrors": len(errors),
        "errorsByEntity": {e.value: by_entity[e] for e in EntityType},
        "errorsBySeverity": {s.value: by_severity[s] for s in Severity},
    }
