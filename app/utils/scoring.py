from app.models.entities import PriorityWeights, Worker


def utilization(assignment_count: int, worker: Worker) -> float:
    if worker.max_load <= 0:
        return 0.0
    return assignment_count / worker.max_load


def inverse_cost(worker: Worker) -> float:
    # Missing or non-positive levels count as level 1.
    level = worker.qualification_level
    if isinstance(level, bool) or not isinstance(level, (int, float)) or level <= 0:
        return 1.0
    return 1.0 / level


def candidate_score(worker: Worker, client_priority: int, assignment_count: int, priorities: PriorityWeights) -> float:
    """Higher is better; weights act as relative multipliers."""
    return (
        priorities.client_priority_fulfillment * (client_priority / 5)
        + priorities.worker_work_life_balance * (1 - utilization(assignment_count, worker))
        + priorities.cost_efficiency * inverse_cost(worker)
    )
