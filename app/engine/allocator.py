"""
Greedy Priority-Driven Allocator

Assigns Tasks to Workers across discrete Phases in a single deterministic
pass. There is no backtracking: a task that cannot be placed when its turn
comes is reported as unassigned and never retried.

Algorithm:
1. Order tasks by requesting-client PriorityLevel (descending), then by
   Duration (ascending); remaining ties keep input order
2. Give every worker a capacity map: phase -> remaining load units,
   starting at MaxLoadPerPhase for each of its AvailableSlots
3. For each task (or required co-run group, placed all-or-nothing):
   - candidates: skills cover the task, enough still-available phases,
     MaxLoadPerPhase >= Duration
   - rank candidates by weighted score (client priority, utilization,
     inverse qualification level)
   - walk candidates by score and their phases ascending; the first phase
     with room that passes phase-window and load-limit rules wins
4. Report slot-restriction shortfalls and compute metrics

Complexity: O(t * w * (log w + p)) where:
    t = tasks, w = workers, p = phases per worker

The capacity maps are the only mutable state and live for one run, so
concurrent calls with their own inputs never interfere.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from app.engine.metrics import compute_metrics
from app.engine.rule_engine import RuleEngine
from app.exceptions.custom_errors import AllocationInputError
from app.models.entities import AllocationMetrics, Assignment, Client, PriorityWeights, Task, Worker
from app.models.rules import BusinessRule, RuleViolation
from app.utils.scoring import candidate_score

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_PRIORITY = 3


@dataclass
class AllocationResult:
    assignments: List[Assignment]
    unassigned_tasks: List[str]
    violations: List[RuleViolation]
    metrics: AllocationMetrics

    def to_record(self) -> dict:
        return {
            "assignments": [a.to_record() for a in self.assignments],
            "unassignedTasks": list(self.unassigned_tasks),
            "violations": [v.to_record() for v in self.violations],
            "metrics": self.metrics.to_record(),
        }


class WorkerCapacity:
    """Remaining load units per available phase for one worker."""

    def __init__(self, max_load: int, remaining: Dict[int, int]):
        self.max_load = max_load
        self.remaining = remaining

    @classmethod
    def for_worker(cls, worker: Worker) -> "WorkerCapacity":
        return cls(worker.max_load, {phase: worker.max_load for phase in worker.phases})

    def available_phases(self) -> int:
        return sum(1 for units in self.remaining.values() if units > 0)

    def load(self, phase: int) -> int:
        return self.max_load - self.remaining[phase]

    def fits(self, phase: int, units: int) -> bool:
        return self.remaining.get(phase, 0) >= units

    def consume(self, phase: int, units: int) -> None:
        self.remaining[phase] -= units

    def copy(self) -> "WorkerCapacity":
        return WorkerCapacity(self.max_load, dict(self.remaining))


def _unique(items, key) -> list:
    seen = set()
    out = []
    for item in items:
        k = key(item)
        if not k:
            logger.warning(f"Skipping {type(item).__name__} without an id")
            continue
        if k in seen:
            logger.warning(f"Skipping duplicate {type(item).__name__} {k}")
            continue
        seen.add(k)
        out.append(item)
    return out


def client_priorities(clients: Sequence[Client], default: int = DEFAULT_CLIENT_PRIORITY) -> Dict[str, int]:
    """Task id -> PriorityLevel of the first client (in input order) requesting it."""
    priorities: Dict[str, int] = {}
    for client in clients:
        for tid in client.requested_task_ids:
            priorities.setdefault(tid, client.priority(default))
    return priorities


def order_tasks(tasks: Sequence[Task], priorities: Dict[str, int], default: int = DEFAULT_CLIENT_PRIORITY) -> List[Task]:
    """Higher client priority first, then shorter tasks; sorted() keeps input order for ties."""
    return sorted(tasks, key=lambda t: (-priorities.get(t.task_id, default), t.load))


class Allocator:
    def __init__(
        self,
        clients: Sequence[Client],
        workers: Sequence[Worker],
        tasks: Sequence[Task],
        rules: Sequence[BusinessRule],
        priorities: PriorityWeights,
        default_client_priority: int = DEFAULT_CLIENT_PRIORITY,
        cost_model: str = "placeholder",
    ):
        self.clients = list(clients)
        self.workers = _unique(workers, lambda w: w.worker_id)
        self.tasks = _unique(tasks, lambda t: t.task_id)
        self.priorities = priorities
        self.engine = RuleEngine(rules)
        self.default_client_priority = default_client_priority
        self.cost_model = cost_model

        self._client_priority = client_priorities(self.clients, default_client_priority)
        self._capacity: Dict[str, WorkerCapacity] = {}
        self._counts: Counter = Counter()
        self._violations: List[RuleViolation] = []

    def run(self) -> AllocationResult:
        self._capacity = {w.worker_id: WorkerCapacity.for_worker(w) for w in self.workers}
        self._counts = Counter()
        self._violations = []

        ordered = order_tasks(self.tasks, self._client_priority, self.default_client_priority)
        by_id = {t.task_id: t for t in ordered}
        groups = self.engine.co_run_groups([t.task_id for t in ordered])

        assignments: List[Assignment] = []
        unassigned: List[str] = []
        decided = set()

        for task in ordered:
            if task.task_id in decided:
                continue
            members = [by_id[tid] for tid in groups.get(task.task_id, (task.task_id,))]
            decided.update(m.task_id for m in members)

            placed = self._place(members)
            if placed is None:
                unassigned.extend(m.task_id for m in members)
                logger.debug(f"Unassigned: {', '.join(m.task_id for m in members)}")
            else:
                assignments.extend(placed)

        self._violations.extend(self.engine.slot_restriction_violations(self.clients, self.workers, self.tasks))

        metrics = compute_metrics(
            assignments, self.clients, self.workers, self.tasks, self.priorities, cost_model=self.cost_model
        )
        logger.info(
            f"Allocation finished: {len(assignments)} assigned, {len(unassigned)} unassigned, "
            f"{len(self._violations)} violations"
        )
        return AllocationResult(assignments, unassigned, list(self._violations), metrics)

    def _candidates(self, members: List[Task]) -> List[Worker]:
        longest = max(m.load for m in members)
        return [
            w for w in self.workers
            if all(w.has_skills(m.required_skills) for m in members)
            and self._capacity[w.worker_id].available_phases() >= longest
            and w.max_load >= longest
        ]

    def _rank(self, candidates: List[Worker], task: Task) -> List[Worker]:
        priority = self._client_priority.get(task.task_id, self.default_client_priority)
        scores = {
            w.worker_id: candidate_score(w, priority, self._counts[w.worker_id], self.priorities)
            for w in candidates
        }
        return sorted(candidates, key=lambda w: -scores[w.worker_id])

    def _find_phase(self, task: Task, worker: Worker, capacity: WorkerCapacity) -> Optional[int]:
        for phase in sorted(capacity.remaining):
            if not capacity.fits(phase, task.load):
                continue
            if not self.engine.phase_allowed(task.task_id, phase):
                continue
            violation = self.engine.check(task, worker, phase, capacity.load(phase))
            if violation is not None:
                self._violations.append(violation)
                continue
            return phase
        return None

    def _place(self, members: List[Task]) -> Optional[List[Assignment]]:
        """Place all members on one worker, or none of them."""
        candidates = self._candidates(members)
        if not candidates:
            return None

        for worker in self._rank(candidates, members[0]):
            trial = self._capacity[worker.worker_id].copy()
            placed: List[Assignment] = []
            for task in members:
                phase = self._find_phase(task, worker, trial)
                if phase is None:
                    break
                trial.consume(phase, task.load)
                placed.append(Assignment(task_id=task.task_id, worker_id=worker.worker_id, phase=phase))
            else:
                self._capacity[worker.worker_id] = trial
                self._counts[worker.worker_id] += len(placed)
                return placed
        return None


def allocate(
    clients: Sequence[Client],
    workers: Sequence[Worker],
    tasks: Sequence[Task],
    rules: Sequence[BusinessRule],
    priorities: PriorityWeights,
    default_client_priority: int = DEFAULT_CLIENT_PRIORITY,
    cost_model: str = "placeholder",
) -> AllocationResult:
    """
    Allocate tasks to workers and phases.

    Args:
        clients: Clients whose PriorityLevel orders the tasks they request
        workers: Workers with skills, available phases and per-phase capacity
        tasks: Tasks to place
        rules: Business rules; disabled rules are ignored
        priorities: Relative weights for candidate scoring and metrics
        default_client_priority: Priority for tasks no client requests
        cost_model: "placeholder" or "hourly_rate"

    Returns:
        AllocationResult. Every task id ends up in exactly one of
        assignments / unassigned_tasks.

    Raises:
        AllocationInputError: If a required input collection is None.
        Infeasibility is never an error.
    """
    missing = [
        name for name, value in (
            ("clients", clients), ("workers", workers), ("tasks", tasks),
            ("rules", rules), ("priorities", priorities),
        )
        if value is None
    ]
    if missing:
        raise AllocationInputError(f"Missing required allocation inputs: {', '.join(missing)}")

    logger.info(
        f"Allocating {len(tasks)} tasks across {len(workers)} workers "
        f"({len(clients)} clients, {len(rules)} rules)"
    )
    return Allocator(
        clients, workers, tasks, rules, priorities,
        default_client_priority=default_client_priority,
        cost_model=cost_model,
    ).run()
