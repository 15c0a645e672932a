"""
Tests for wardround.services.problem_history.
"""

from wardround.models.patient import Patient
from wardround.models.records import ProblemEntry
from wardround.services.problem_history import ProblemListHistory


def problems(*names):
    return [ProblemEntry(id=name, problem=name) for name in names]


def names(entries):
    return [entry.problem for entry in entries]


class TestProblemListHistory:

    def test_empty_history(self):
        history = ProblemListHistory()
        assert history.current() == []
        assert history.index == -1
        assert not history.can_undo()
        assert not history.can_redo()

    def test_push_undo_redo(self):
        history = ProblemListHistory().push(problems("CAP")).push(problems("CAP", "AKI"))
        assert names(history.current()) == ["CAP", "AKI"]

        undone = history.undo()
        assert names(undone.current()) == ["CAP"]
        assert undone.can_redo()

        redone = undone.redo()
        assert names(redone.current()) == ["CAP", "AKI"]
        assert not redone.can_redo()

    def test_push_after_undo_discards_redo_branch(self):
        history = ProblemListHistory().push(problems("A")).push(problems("A", "B")).undo()
        branched = history.push(problems("A", "C"))
        assert len(branched) == 2
        assert names(branched.current()) == ["A", "C"]
        assert not branched.can_redo()

    def test_history_objects_are_immutable(self):
        first = ProblemListHistory().push(problems("A"))
        second = first.push(problems("A", "B"))
        assert len(first) == 1
        assert len(second) == 2

    def test_snapshots_cannot_be_changed_through_returned_lists(self):
        history = ProblemListHistory().push(problems("A"))
        history.current()[0].problem = "changed"
        history.snapshots[0][0].problem = "changed"
        assert names(history.current()) == ["A"]

    def test_undo_at_start_is_a_no_op(self):
        history = ProblemListHistory().push(problems("A"))
        assert history.undo() is history

    def test_from_patient_seeds_with_problem_list(self):
        patient = Patient(name="X", problem_list=problems("HTN"))
        history = ProblemListHistory.from_patient(patient)
        assert len(history) == 1
        assert names(history.current()) == ["HTN"]

    def test_apply_to_patient(self):
        patient = Patient(name="X")
        ProblemListHistory().push(problems("A")).push(problems("B")).undo().apply_to(patient)
        assert names(patient.problem_list) == ["A"]
        assert patient.problem_history_index == 0
        assert len(patient.problem_history) == 2

        restored = ProblemListHistory.from_patient(patient)
        assert restored.can_redo()
        assert names(restored.redo().current()) == ["B"]
