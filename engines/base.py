"""Read contracts the impact engines depend on.

The engines never open a database themselves. They receive an object that
implements :class:`ImpactDataSource` (the SQLite ``db.ImpactRepository`` in
production, small in-memory fakes in tests) and only ever read from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

STATUS_NOT_STARTED = "not_started"
STATUS_STARTED = "started"
STATUS_COMPLETED = "completed"

ASSIGNMENT_STATUSES = (STATUS_NOT_STARTED, STATUS_STARTED, STATUS_COMPLETED)

ScoreMap = Dict[int, float]


@dataclass(frozen=True)
class AssignmentMeta:
    id: int
    name: str
    platform: str
    group_id: int
    created_after_test_id: int
    impacted_test_id: Optional[int]
    rc_name: str = ""


@dataclass(frozen=True)
class StandardRef:
    id: int
    code: str
    description: str = ""


@dataclass(frozen=True)
class AssignedStudent:
    student_id: int
    roster_id: int
    status: str


class ImpactDataSource(Protocol):
    def get_assignment(self, assignment_id: int) -> Optional[AssignmentMeta]:
        ...

    def get_aligned_standards(self, assignment_id: int) -> List[StandardRef]:
        ...

    def get_assignment_students(
        self, assignment_id: int, status: Optional[str] = None
    ) -> List[AssignedStudent]:
        ...

    def get_roster_students(self, roster_ids: Iterable[int]) -> List[int]:
        ...

    def get_score_maps(self, student_ids: Sequence[int], test_id: int) -> Dict[int, ScoreMap]:
        ...

    def get_test_name(self, test_id: int) -> Optional[str]:
        ...

    def list_group_assignment_ids(self, group_id: int) -> List[int]:
        ...
