import pytest

from app.engine.rule_engine import RuleEngine, ordered_rules
from app.graph.task_graph import build_co_run_graph, connected_components, find_dependency_cycles
from app.models.entities import Client, Task, Worker
from app.models.rules import (
    BusinessRule,
    CoRun,
    GroupType,
    LoadLimit,
    PhaseWindow,
    RuleType,
    SkillRequirement,
    SlotRestriction,
    parameters_from_record,
    validate_parameters,
)


class TestBusinessRule:
    def test_type_follows_parameters(self):
        rule = BusinessRule(id="r1", parameters=LoadLimit("Ops", 2))
        assert rule.type is RuleType.LOAD_LIMIT

    def test_record_round_trip_uses_canonical_keys(self):
        record = {
            "id": "r1",
            "type": "phaseWindow",
            "name": "Early",
            "description": "",
            "parameters": {"taskId": "T1", "allowedPhases": [1, 2]},
            "priority": 2,
            "enabled": True,
        }
        rule = BusinessRule.from_record(record)
        assert rule.parameters == PhaseWindow("T1", (1, 2))
        assert rule.to_record() == record

    def test_parameters_must_match_type(self):
        with pytest.raises(ValueError):
            parameters_from_record(RuleType.LOAD_LIMIT, {"tasks": ["T1"]})
        with pytest.raises(ValueError):
            parameters_from_record("unknown", {})

    def test_slot_restriction_group_type_is_checked(self):
        with pytest.raises(ValueError):
            parameters_from_record(RuleType.SLOT_RESTRICTION, {"groupType": "team", "groupName": "A", "minSlots": 1})

    @pytest.mark.parametrize(
        "rule_type, params",
        [
            (RuleType.CO_RUN, {"tasks": "T12"}),
            (RuleType.CO_RUN, {"tasks": []}),
            (RuleType.PHASE_WINDOW, {"taskId": "T1", "allowedPhases": [-3, 0]}),
            (RuleType.LOAD_LIMIT, {"workerGroup": "Ops", "maxSlotsPerPhase": -1}),
        ],
    )
    def test_malformed_parameters_rejected(self, rule_type, params):
        with pytest.raises(ValueError):
            parameters_from_record(rule_type, params)

    def test_parameters_are_normalised(self):
        assert validate_parameters(RuleType.CO_RUN, {"tasks": ["T1", "T2"]}) == {"tasks": ["T1", "T2"], "required": True}
        assert parameters_from_record("phaseWindow", {"taskId": "T1", "allowedPhases": ["2"]}) == PhaseWindow("T1", (2,))


class TestRuleEngine:
    def test_ordering_by_priority_then_insertion(self):
        rules = [
            BusinessRule(id="c", parameters=LoadLimit("A", 1), priority=2),
            BusinessRule(id="a", parameters=LoadLimit("A", 1), priority=1),
            BusinessRule(id="off", parameters=LoadLimit("A", 1), priority=0, enabled=False),
            BusinessRule(id="b", parameters=LoadLimit("A", 1), priority=1),
        ]
        assert [r.id for r in ordered_rules(rules)] == ["a", "b", "c"]

    def test_phase_windows_union(self):
        engine = RuleEngine([
            BusinessRule(id="w1", parameters=PhaseWindow("T1", (1,))),
            BusinessRule(id="w2", parameters=PhaseWindow("T1", (3,))),
        ])
        assert engine.allowed_phases("T1") == frozenset({1, 3})
        assert engine.allowed_phases("T2") is None
        assert engine.phase_allowed("T1", 3)
        assert not engine.phase_allowed("T1", 2)
        assert engine.phase_allowed("T2", 2)

    def test_load_limit_only_applies_to_its_group(self):
        engine = RuleEngine([BusinessRule(id="cap", parameters=LoadLimit("Sales", 1))])
        task = Task("T1", duration=2)

        assert engine.check(task, Worker("W1", worker_group="Ops"), 1, 0) is None
        violation = engine.check(task, Worker("W2", worker_group="Sales"), 1, 0)
        assert violation.rule.id == "cap"
        assert "exceeds load limit" in violation.description

    def test_load_limit_counts_existing_phase_load(self):
        engine = RuleEngine([BusinessRule(id="cap", parameters=LoadLimit("Sales", 2))])
        worker = Worker("W1", worker_group="Sales")
        task = Task("T1", duration=1)

        assert engine.check(task, worker, 1, 1) is None
        assert engine.check(task, worker, 1, 2) is not None

    def test_co_run_groups_merge_overlaps_and_drop_unknown(self):
        engine = RuleEngine([
            BusinessRule(id="a", parameters=CoRun(("T1", "T2"))),
            BusinessRule(id="b", parameters=CoRun(("T2", "T3", "T9"))),
            BusinessRule(id="c", parameters=CoRun(("T4", "T5"), required=False)),
            BusinessRule(id="d", parameters=CoRun(("T6", "T99"))),
        ])
        groups = engine.co_run_groups(["T3", "T1", "T2", "T4", "T5", "T6"])

        assert groups["T1"] == ("T3", "T1", "T2")
        assert groups["T2"] == groups["T3"] == ("T3", "T1", "T2")
        assert "T4" not in groups
        assert "T6" not in groups

    def test_skill_requirement_is_not_enforced(self):
        engine = RuleEngine([BusinessRule(id="s", parameters=SkillRequirement(("rust",)))])
        assert engine.check(Task("T1"), Worker("W1"), 1, 0) is None

    def test_client_group_slot_restriction(self):
        clients = [
            Client("C1", "A", 3, ("T1",), group_tag="Premium"),
            Client("C2", "B", 3, ("T2",), group_tag="Premium"),
        ]
        workers = [
            Worker("W1", skills=("python",), available_slots=(1, 2, 3)),
            Worker("W2", skills=("sql",), available_slots=(3, 4)),
        ]
        tasks = [Task("T1", required_skills=("python",)), Task("T2", required_skills=("sql",))]
        rule = BusinessRule(id="slots", parameters=SlotRestriction(GroupType.CLIENT, "Premium", 2))
        violations = RuleEngine([rule]).slot_restriction_violations(clients, workers, tasks)

        assert len(violations) == 1
        assert "1 common available slots" in violations[0].description

    def test_slot_restriction_satisfied(self):
        workers = [Worker("W1", worker_group="Ops", available_slots=(1, 2)), Worker("W2", worker_group="Ops", available_slots=(1, 2, 3))]
        rule = BusinessRule(id="slots", parameters=SlotRestriction(GroupType.WORKER, "Ops", 2))
        assert RuleEngine([rule]).slot_restriction_violations([], workers, []) == []

    def test_slot_restriction_on_empty_group(self):
        rule = BusinessRule(id="slots", parameters=SlotRestriction(GroupType.WORKER, "Ghosts", 1))
        violations = RuleEngine([rule]).slot_restriction_violations([], [], [])
        assert [v.description for v in violations] == ["No workers belong to group Ghosts"]


class TestTaskGraph:
    def test_components_follow_given_order(self):
        graph = build_co_run_graph([("A", "B"), ("C", "B"), ("D", "E")], {"A", "B", "C", "D", "E"})
        assert connected_components(graph, ["E", "C", "B", "A", "D"]) == [["E", "D"], ["C", "B", "A"]]

    def test_singleton_after_filtering_is_dropped(self):
        graph = build_co_run_graph([("A", "Z")], {"A"})
        assert connected_components(graph, ["A"]) == []

    def test_dependency_cycles(self):
        tasks = [
            Task("A", dependencies=("B",)),
            Task("B", dependencies=("C",)),
            Task("C", dependencies=("A",)),
            Task("D", dependencies=("A", "missing")),
        ]
        assert find_dependency_cycles(tasks) == [["A", "B", "C"]]

    def test_self_dependency(self):
        assert find_dependency_cycles([Task("A", dependencies=("A",))]) == [["A"]]

    def test_acyclic(self):
        tasks = [Task("A", dependencies=("B",)), Task("B"), Task("C", dependencies=("A", "B"))]
        assert find_dependency_cycles(tasks) == []
