import pytest

from app.ingest.normalize import (
    apply_column_mapping,
    client_from_row,
    normalize_rows,
    parse_list,
    parse_number,
    task_from_row,
    worker_from_row,
)
from app.models.entities import EntityType
from app.utils.phases import parse_phase_expression


class TestParsers:
    def test_parse_list_variants(self):
        assert parse_list("T1, T2,,T3") == ("T1", "T2", "T3")
        assert parse_list('["a", "b"]') == ("a", "b")
        assert parse_list(["x", " y "]) == ("x", "y")
        assert parse_list(None) == ()
        assert parse_list("") == ()

    def test_parse_number_keeps_raw_on_failure(self):
        assert parse_number("3") == 3
        assert parse_number(" 2.5 ") == 2.5
        assert parse_number(4.0) == 4
        assert parse_number("high") == "high"
        assert parse_number("", default=1) == 1


class TestRowBuilders:
    def test_client_row(self):
        client = client_from_row({
            "ClientID": "C1",
            "ClientName": "Acme",
            "PriorityLevel": "4",
            "RequestedTaskIDs": "T1,T2",
            "GroupTag": "",
            "AttributesJSON": {"tier": "gold"},
        })
        assert client.priority_level == 4
        assert client.requested_task_ids == ("T1", "T2")
        assert client.group_tag is None
        assert client.attributes_json == '{"tier": "gold"}'

    def test_worker_row_accepts_availability_alias(self):
        worker = worker_from_row({
            "WorkerID": "W1",
            "WorkerName": "Ada",
            "Skills": "python, sql",
            "Availability": "[1, 3, 5]",
            "MaxLoadPerPhase": "2",
            "HourlyRate": "45.5",
        })
        assert worker.available_slots == (1, 3, 5)
        assert worker.phases == (1, 3, 5)
        assert worker.max_load == 2
        assert worker.hourly_rate == 45.5

    def test_worker_row_keeps_bad_slots_for_validation(self):
        worker = worker_from_row({"WorkerID": "W1", "AvailableSlots": "1, mon"})
        assert worker.available_slots == (1, "mon")
        assert worker.phases == (1,)

    def test_task_row_accepts_estimated_duration_alias(self):
        task = task_from_row({
            "TaskID": "T1",
            "TaskName": "Build",
            "RequiredSkills": "python",
            "EstimatedDuration": "3",
            "PreferredPhases": "1-3",
        })
        assert task.duration == 3
        assert task.load == 3
        assert task.preferred_phases == "1-3"
        assert task.max_concurrent == 1

    def test_canonical_header_wins_over_alias(self):
        task = task_from_row({"TaskID": "T1", "Duration": 2, "EstimatedDuration": 5})
        assert task.duration == 2

    def test_non_numeric_duration_falls_back_to_unit_load(self):
        task = task_from_row({"TaskID": "T1", "Duration": "long"})
        assert task.duration == "long"
        assert task.load == 1


class TestMapping:
    def test_apply_column_mapping(self):
        row = {"Client Ref": "C1", "Name": "Acme", "Notes": "x"}
        mapped = apply_column_mapping(row, {"Client Ref": "ClientID", "Name": "ClientName"})
        assert mapped == {"ClientID": "C1", "ClientName": "Acme", "Notes": "x"}

    def test_normalize_rows(self):
        rows = [{"Worker": "W1", "Skillset": "python"}, {"Worker": "W2", "Skillset": "sql"}]
        workers = normalize_rows(EntityType.WORKERS, rows, {"Worker": "WorkerID", "Skillset": "Skills"})
        assert [(w.worker_id, w.skills) for w in workers] == [("W1", ("python",)), ("W2", ("sql",))]


class TestPhaseExpressions:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("1-3", (1, 2, 3)),
            ("1-2,5", (1, 2, 5)),
            ("[3, 1]", (1, 3)),
            ("2, 2, 4", (2, 4)),
            ([4, "2"], (2, 4)),
            (3, (3,)),
            ("", ()),
            (None, ()),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_phase_expression(value) == expected

    @pytest.mark.parametrize("value", ["3-1", "soon", "0", "[1, \"x\"]", '{"a": 1}', True])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_phase_expression(value)
