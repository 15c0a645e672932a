# /backend/wardround/services/problem_history.py

from typing import List, Optional, Tuple

from wardround.models.records import ProblemEntry

ProblemSnapshot = Tuple[ProblemEntry, ...]


class ProblemListHistory:
    """
    Versioned problem list with undo/redo.

    Every mutation produces a new history object. Snapshots are tuples of
    deep copies and are only ever handed out as copies, so nothing already
    recorded can change. Pushing after an undo discards the redo branch.
    """

    __slots__ = ("_snapshots", "_index")

    def __init__(self, snapshots=(), index: Optional[int] = None):
        self._snapshots: Tuple[ProblemSnapshot, ...] = tuple(
            tuple(entry.model_copy(deep=True) for entry in snapshot) for snapshot in snapshots
        )
        if index is None:
            index = len(self._snapshots) - 1
        self._index = max(-1, min(index, len(self._snapshots) - 1))

    @classmethod
    def from_patient(cls, patient) -> "ProblemListHistory":
        if not patient.problem_history:
            # Seed from the list on record so the first undo returns to it
            snapshots = [patient.problem_list] if patient.problem_list else []
            return cls(snapshots)
        return cls(patient.problem_history, patient.problem_history_index)

    def current(self) -> List[ProblemEntry]:
        if self._index < 0:
            return []
        return [entry.model_copy(deep=True) for entry in self._snapshots[self._index]]

    @property
    def index(self) -> int:
        return self._index

    @property
    def snapshots(self) -> List[List[ProblemEntry]]:
        return [[entry.model_copy(deep=True) for entry in snapshot] for snapshot in self._snapshots]

    def can_undo(self) -> bool:
        return self._index > 0

    def can_redo(self) -> bool:
        return self._index < len(self._snapshots) - 1

    def push(self, problems: List[ProblemEntry]) -> "ProblemListHistory":
        kept = self._snapshots[: self._index + 1]
        return ProblemListHistory(kept + (tuple(problems),), len(kept))

    def undo(self) -> "ProblemListHistory":
        if not self.can_undo():
            return self
        return ProblemListHistory(self._snapshots, self._index - 1)

    def redo(self) -> "ProblemListHistory":
        if not self.can_redo():
            return self
        return ProblemListHistory(self._snapshots, self._index + 1)

    def apply_to(self, patient) -> None:
        """Write this history and its current snapshot onto a patient copy."""
        patient.problem_history = self.snapshots
        patient.problem_history_index = self._index
        patient.problem_list = self.current()

    def __len__(self):
        return len(self._snapshots)
