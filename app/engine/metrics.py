"""
Summary scores for an allocation.

All scores are pure functions of the final assignment set and the inputs.
Each raw score is multiplied by its configured priority weight, so the
numbers are only comparable between runs that use the same weights.
"""

from collections import Counter
from typing import Dict, Sequence

from app.models.entities import AllocationMetrics, Assignment, Client, PriorityWeights, Task, Worker
from app.utils.scoring import utilization

COST_MODELS = ("placeholder", "hourly_rate")
TARGET_UTILIZATION = 0.8


def client_priority_fulfillment(assignments: Sequence[Assignment], clients: Sequence[Client]) -> float:
    """Mean over clients of (fraction of requested tasks assigned) * PriorityLevel/5."""
    if not clients:
        return 0.0
    assigned = {a.task_id for a in assignments}
    total = 0.0
    for client in clients:
        requested = set(client.requested_task_ids)
        # A client with nothing requested has nothing left unfulfilled.
        fulfillment = len(requested & assigned) / len(requested) if requested else 1.0
        total += fulfillment * (client.priority() / 5)
    return total / len(clients)


def worker_utilization_balance(assignments: Sequence[Assignment], workers: Sequence[Worker]) -> float:
    """Mean over workers of 1 - |utilization - 0.8|."""
    if not workers:
        return 0.0
    counts = Counter(a.worker_id for a in assignments)
    total = sum(1 - abs(utilization(counts[w.worker_id], w) - TARGET_UTILIZATION) for w in workers)
    return total / len(workers)


def hourly_rate_efficiency(assignments: Sequence[Assignment], workers: Sequence[Worker], tasks: Sequence[Task]) -> float:
    """
    Cheapest possible spend over actual spend for assignments with known rates.

    The cheapest spend for a task uses the lowest rate among workers whose
    skills cover it. Returns 1.0 when nothing can be measured.
    """
    worker_by_id: Dict[str, Worker] = {w.worker_id: w for w in workers}
    task_by_id: Dict[str, Task] = {t.task_id: t for t in tasks}
    actual = 0.0
    cheapest = 0.0
    for a in assignments:
        worker = worker_by_id.get(a.worker_id)
        task = task_by_id.get(a.task_id)
        if worker is None or task is None or worker.hourly_rate is None:
            continue
        rates = [w.hourly_rate for w in workers if w.hourly_rate is not None and w.has_skills(task.required_skills)]
        if not rates:
            continue
        actual += worker.hourly_rate * task.load
        cheapest += min(rates) * task.load
    if actual <= 0:
        return 1.0
    return cheapest / actual


def compute_metrics(
    assignments: Sequence[Assignment],
    clients: Sequence[Client],
    workers: Sequence[Worker],
    tasks: Sequence[Task],
    priorities: PriorityWeights,
    cost_model: str = "placeholder",
) -> AllocationMetrics:
    if cost_model not in COST_MODELS:
        raise ValueError(f"unknown cost model: {cost_model}")

    if cost_model == "hourly_rate":
        cost = hourly_rate_efficiency(assignments, workers, tasks)
    else:
        cost = 1.0  # placeholder until real cost data is required

    return AllocationMetrics(
        total_assignments=len(assignments),
        client_priority_fulfillment=client_priority_fulfillment(assignments, clients) * priorities.client_priority_fulfillment,
        worker_utilization_balance=worker_utilization_balance(assignments, workers) * priorities.worker_work_life_balance,
        cost_efficiency=cost * priorities.cost_efficiency,
    )
