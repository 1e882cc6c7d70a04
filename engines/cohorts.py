"""Treated/control cohort selection for a single assignment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from engines.base import STATUS_COMPLETED, ImpactDataSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cohorts:
    treated_ids: List[int] = field(default_factory=list)
    control_ids: List[int] = field(default_factory=list)
    roster_ids: List[int] = field(default_factory=list)

    @property
    def has_treated(self) -> bool:
        return bool(self.treated_ids)


def select_cohorts(source: ImpactDataSource, assignment_id: int) -> Cohorts:
    """Split students into treated and control groups for ``assignment_id``.

    Treated students completed the assignment. Control students sit in one of
    the treated students' rosters but have no link to the assignment at all:
    anyone assigned, including those who have not started, is left out of
    control.
    """

    treated = source.get_assignment_students(assignment_id, status=STATUS_COMPLETED)
    if not treated:
        logger.debug("Assignment %s has no completed students", assignment_id)
        return Cohorts()

    treated_ids = [row.student_id for row in treated]
    roster_ids = sorted({row.roster_id for row in treated})

    assigned_ids = {row.student_id for row in source.get_assignment_students(assignment_id)}
    control_ids = [
        student_id
        for student_id in source.get_roster_students(roster_ids)
        if student_id not in assigned_ids
    ]

    logger.debug(
        "Assignment %s cohorts: %d treated, %d control across %d roster(s)",
        assignment_id,
        len(treated_ids),
        len(control_ids),
        len(roster_ids),
    )
    return Cohorts(treated_ids=treated_ids, control_ids=control_ids, roster_ids=roster_ids)
