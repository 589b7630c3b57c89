import pytest

from app.engine.metrics import (
    client_priority_fulfillment,
    compute_metrics,
    hourly_rate_efficiency,
    worker_utilization_balance,
)
from app.models.entities import Assignment, Client, PriorityWeights, Task, Worker
from app.utils.scoring import candidate_score, inverse_cost, utilization


class TestMetrics:
    def test_basic_scenario_scores(self, basic_scenario, weights):
        clients, workers, tasks = basic_scenario
        assignments = [Assignment("T1", "W1", 1)]
        metrics = compute_metrics(assignments, clients, workers, tasks, weights)

        assert metrics.total_assignments == 1
        # 1.0 fulfilled * (1/5) * 50
        assert metrics.client_priority_fulfillment == pytest.approx(10.0)
        # utilization 1/2 -> 1 - |0.5 - 0.8| = 0.7, * 50
        assert metrics.worker_utilization_balance == pytest.approx(35.0)
        assert metrics.cost_efficiency == pytest.approx(50.0)

    def test_partial_fulfillment_is_averaged_over_clients(self):
        clients = [
            Client("C1", "Half", 5, ("T1", "T2")),
            Client("C2", "None", 5, ("T3",)),
        ]
        score = client_priority_fulfillment([Assignment("T1", "W1", 1)], clients)
        assert score == pytest.approx((0.5 + 0.0) / 2)

    def test_client_without_requests_counts_as_fulfilled(self):
        clients = [Client("C1", "Idle", 5, ())]
        assert client_priority_fulfillment([], clients) == pytest.approx(1.0)

    def test_missing_priority_counts_as_three(self):
        clients = [Client("C1", "Unranked", None, ("T1",))]
        assert client_priority_fulfillment([Assignment("T1", "W1", 1)], clients) == pytest.approx(0.6)

    def test_duplicate_requests_count_once(self):
        clients = [Client("C1", "Repeat", 5, ("T1", "T1", "T2"))]
        assert client_priority_fulfillment([Assignment("T1", "W1", 1)], clients) == pytest.approx(0.5)

    def test_zero_max_load_means_zero_utilization(self):
        workers = [Worker("W1", "Idle", max_load_per_phase=0)]
        assert worker_utilization_balance([], workers) == pytest.approx(0.2)

    def test_empty_collections_score_zero(self, weights):
        metrics = compute_metrics([], [], [], [], weights)
        assert metrics.client_priority_fulfillment == 0.0
        assert metrics.worker_utilization_balance == 0.0

    def test_weights_scale_linearly(self, basic_scenario):
        clients, workers, tasks = basic_scenario
        assignments = [Assignment("T1", "W1", 1)]
        metrics = compute_metrics(assignments, clients, workers, tasks, PriorityWeights(100, 0, 10))

        assert metrics.client_priority_fulfillment == pytest.approx(20.0)
        assert metrics.worker_utilization_balance == 0.0
        assert metrics.cost_efficiency == pytest.approx(10.0)

    def test_unknown_cost_model_rejected(self, weights):
        with pytest.raises(ValueError):
            compute_metrics([], [], [], [], weights, cost_model="magic")


class TestHourlyRate:
    @pytest.fixture
    def rated(self):
        workers = [
            Worker("W1", "Pricey", ("python",), "", (1, 2), 2, hourly_rate=20.0),
            Worker("W2", "Cheap", ("python",), "", (1, 2), 2, hourly_rate=10.0),
            Worker("W3", "Unrated", ("python",), "", (1, 2), 2),
        ]
        tasks = [Task("T1", duration=2, required_skills=("python",))]
        return workers, tasks

    def test_expensive_assignment_scores_below_one(self, rated):
        workers, tasks = rated
        assert hourly_rate_efficiency([Assignment("T1", "W1", 1)], workers, tasks) == pytest.approx(0.5)

    def test_cheapest_assignment_scores_one(self, rated):
        workers, tasks = rated
        assert hourly_rate_efficiency([Assignment("T1", "W2", 1)], workers, tasks) == pytest.approx(1.0)

    def test_unrated_assignments_are_not_measured(self, rated):
        workers, tasks = rated
        assert hourly_rate_efficiency([Assignment("T1", "W3", 1)], workers, tasks) == pytest.approx(1.0)

    def test_cost_model_is_weighted(self, rated, weights):
        workers, tasks = rated
        metrics = compute_metrics([Assignment("T1", "W1", 1)], [], workers, tasks, weights, cost_model="hourly_rate")
        assert metrics.cost_efficiency == pytest.approx(25.0)


class TestScoring:
    def test_utilization(self):
        assert utilization(1, Worker("W1", max_load_per_phase=4)) == pytest.approx(0.25)
        assert utilization(3, Worker("W1", max_load_per_phase="lots")) == 0.0

    def test_inverse_cost(self):
        assert inverse_cost(Worker("W1", qualification_level=4)) == pytest.approx(0.25)
        assert inverse_cost(Worker("W1", qualification_level=0)) == 1.0
        assert inverse_cost(Worker("W1", qualification_level="senior")) == 1.0

    def test_candidate_score(self):
        worker = Worker("W1", max_load_per_phase=2, qualification_level=2)
        score = candidate_score(worker, 5, 1, PriorityWeights(50, 50, 50))
        assert score == pytest.approx(50 * 1.0 + 50 * 0.5 + 50 * 0.5)
