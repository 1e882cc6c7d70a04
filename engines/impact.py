"""Difference-in-differences impact of assignments on test-score growth.

For one assignment the engine compares how much the students who completed it
grew between the pre-test (the test the assignment was created after) and the
post-test (the test it is expected to impact) against how much their untouched
classmates grew over the same window::

    did_impact = (treated_post - treated_pre) - (control_post - control_pre)

Scores are averaged over the standards the assignment is aligned to. Averages
are rounded to whole scale-score points before any subtraction so the reported
deltas always add up exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from engines.aggregation import aligned_average, mean, round_half_up, standard_score
from engines.base import AssignmentMeta, ImpactDataSource, ScoreMap, StandardRef
from engines.cohorts import Cohorts, select_cohorts
from engines.significance import MIN_SAMPLE_SIZE, two_tailed_p_value
from schemas import (
    ImpactResult,
    StandardDiDResult,
    StandardDiDSummary,
    StandardImpactResult,
    StudentPoint,
)

logger = logging.getLogger(__name__)

SIGNIFICANCE_LEVEL = 0.05
OVERALL_CODE = "Overall"

ScoreFn = Callable[[ScoreMap], Optional[float]]


@dataclass
class GroupStats:
    points: List[StudentPoint] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.points)

    @property
    def pre_avg(self) -> int:
        return round_half_up(mean(point.pre for point in self.points))

    @property
    def post_avg(self) -> int:
        return round_half_up(mean(point.post for point in self.points))

    @property
    def delta(self) -> int:
        return self.post_avg - self.pre_avg

    @property
    def gains(self) -> List[int]:
        return [point.post - point.pre for point in self.points]


@dataclass
class DiDStats:
    treated: GroupStats
    control: GroupStats
    did_impact: int
    did_impact_percent: float
    p_value: Optional[float]
    is_significant: bool


@dataclass
class _AssignmentContext:
    meta: AssignmentMeta
    standards: List[StandardRef]
    pre_test_name: str
    post_test_name: str
    cohorts: Cohorts
    pre_maps: Dict[int, ScoreMap] = field(default_factory=dict)
    post_maps: Dict[int, ScoreMap] = field(default_factory=dict)

    @property
    def standard_ids(self) -> List[int]:
        return [standard.id for standard in self.standards]


def collect_points(
    student_ids: Sequence[int],
    pre_maps: Dict[int, ScoreMap],
    post_maps: Dict[int, ScoreMap],
    score_fn: ScoreFn,
) -> List[StudentPoint]:
    """Build rounded (pre, post) points for students with data on both tests."""

    points: List[StudentPoint] = []
    dropped = 0
    for student_id in student_ids:
        pre_map = pre_maps.get(student_id)
        post_map = post_maps.get(student_id)
        if pre_map is None or post_map is None:
            dropped += 1
            continue
        pre = score_fn(pre_map)
        post = score_fn(post_map)
        if pre is None or post is None:
            dropped += 1
            continue
        points.append(StudentPoint(student_id=student_id, pre=round_half_up(pre), post=round_half_up(post)))
    if dropped:
        logger.debug("Dropped %d of %d students without comparable scores", dropped, len(student_ids))
    return points


def _round_p_value(p_value: float) -> float:
    return round_half_up(p_value * 1000) / 1000


def difference_in_differences(
    treated_points: List[StudentPoint], control_points: List[StudentPoint]
) -> DiDStats:
    treated = GroupStats(treated_points)
    control = GroupStats(control_points)

    did_impact = treated.delta - control.delta
    did_impact_percent = 0.0
    if treated.pre_avg > 0:
        did_impact_percent = round_half_up(did_impact / treated.pre_avg * 1000) / 10

    p_value: Optional[float] = None
    if treated.count >= MIN_SAMPLE_SIZE and control.count >= MIN_SAMPLE_SIZE:
        raw = two_tailed_p_value(treated.gains, control.gains)
        if raw is not None:
            p_value = _round_p_value(raw)

    return DiDStats(
        treated=treated,
        control=control,
        did_impact=did_impact,
        did_impact_percent=did_impact_percent,
        p_value=p_value,
        is_significant=p_value is not None and p_value < SIGNIFICANCE_LEVEL,
    )


class ImpactEngine:
    """Computes assignment impacts from an injected :class:`ImpactDataSource`."""

    def __init__(self, source: ImpactDataSource):
        self.source = source

    def _load_context(self, assignment_id: int) -> Optional[_AssignmentContext]:
        meta = self.source.get_assignment(assignment_id)
        if meta is None or meta.impacted_test_id is None:
            return None

        standards = self.source.get_aligned_standards(assignment_id)
        if not standards:
            logger.debug("Assignment %s has no aligned standards", assignment_id)
            return None

        context = _AssignmentContext(
            meta=meta,
            standards=standards,
            pre_test_name=self._test_name(meta.created_after_test_id),
            post_test_name=self._test_name(meta.impacted_test_id),
            cohorts=select_cohorts(self.source, assignment_id),
        )
        if context.cohorts.has_treated:
            student_ids = context.cohorts.treated_ids + context.cohorts.control_ids
            context.pre_maps = self.source.get_score_maps(student_ids, meta.created_after_test_id)
            context.post_maps = self.source.get_score_maps(student_ids, meta.impacted_test_id)
        return context

    def _test_name(self, test_id: int) -> str:
        return self.source.get_test_name(test_id) or f"Test {test_id}"

    @staticmethod
    def _stats(context: _AssignmentContext, score_fn: ScoreFn) -> DiDStats:
        cohorts = context.cohorts
        treated_points = collect_points(cohorts.treated_ids, context.pre_maps, context.post_maps, score_fn)
        control_points = collect_points(cohorts.control_ids, context.pre_maps, context.post_maps, score_fn)
        return difference_in_differences(treated_points, control_points)

    def _overall_stats(self, context: _AssignmentContext) -> DiDStats:
        standard_ids = context.standard_ids
        return self._stats(context, lambda score_map: aligned_average(score_map, standard_ids))

    def _standard_rows(self, context: _AssignmentContext) -> List[StandardDiDResult]:
        rows = []
        for standard in context.standards:
            stats = self._stats(context, lambda score_map, sid=standard.id: standard_score(score_map, sid))
            rows.append(_standard_row(stats, standard.code, standard.description, standard.id))
        return rows

    def compute_assignment_impact(self, assignment_id: int, include_points: bool = False) -> Optional[ImpactResult]:
        """DiD impact for one assignment, or ``None`` when it cannot be measured yet."""

        context = self._load_context(assignment_id)
        if context is None:
            return None
        return self._impact_result(context, self._overall_stats(context), include_points)

    def compute_standard_level_impact(self, assignment_id: int) -> Optional[StandardImpactResult]:
        """DiD impact per aligned standard plus an overall row over the aligned average."""

        context = self._load_context(assignment_id)
        if context is None:
            return None
        overall = _standard_row(self._overall_stats(context), OVERALL_CODE, "All aligned standards")
        meta = context.meta
        return StandardImpactResult(
            assignment_id=meta.id,
            assignment_name=meta.name,
            platform=meta.platform,
            rc_name=meta.rc_name,
            pre_test_name=context.pre_test_name,
            post_test_name=context.post_test_name,
            overall_did_impact=overall.did_impact,
            overall=overall,
            standards=self._standard_rows(context),
        )

    def compute_portfolio_impacts(
        self, group_id: int, *, include_standard_breakdown: bool = False
    ) -> List[ImpactResult]:
        """Impacts for every measurable assignment in ``group_id``, largest effect first."""

        results: List[ImpactResult] = []
        skipped = 0
        for assignment_id in self.source.list_group_assignment_ids(group_id):
            context = self._load_context(assignment_id)
            if context is None:
                skipped += 1
                continue
            result = self._impact_result(context, self._overall_stats(context), include_points=False)
            if include_standard_breakdown:
                result.standard_impacts = [
                    StandardDiDSummary(
                        code=row.code,
                        treated_delta=row.treated_delta,
                        control_delta=row.control_delta,
                        did_impact=row.did_impact,
                    )
                    for row in self._standard_rows(context)
                ]
            results.append(result)

        # list.sort is stable, so ties keep assignment id order
        results.sort(key=lambda result: result.did_impact, reverse=True)
        logger.info(
            "Computed %d impact(s) for group %s (%d not yet measurable)", len(results), group_id, skipped
        )
        return results

    @staticmethod
    def _impact_result(context: _AssignmentContext, stats: DiDStats, include_points: bool) -> ImpactResult:
        meta = context.meta
        result = ImpactResult(
            assignment_id=meta.id,
            assignment_name=meta.name,
            platform=meta.platform,
            standards=[standard.code for standard in context.standards],
            rc_name=meta.rc_name,
            created_after_test_id=meta.created_after_test_id,
            roster_ids=list(context.cohorts.roster_ids),
            pre_test_name=context.pre_test_name,
            post_test_name=context.post_test_name,
            treated_count=stats.treated.count,
            treated_pre_avg=stats.treated.pre_avg,
            treated_post_avg=stats.treated.post_avg,
            treated_delta=stats.treated.delta,
            control_count=stats.control.count,
            control_pre_avg=stats.control.pre_avg,
            control_post_avg=stats.control.post_avg,
            control_delta=stats.control.delta,
            did_impact=stats.did_impact,
            did_impact_percent=stats.did_impact_percent,
            p_value=stats.p_value,
            is_significant=stats.is_significant,
        )
        if include_points:
            result.treated_points = list(stats.treated.points)
            result.control_points = list(stats.control.points)
        return result


def _standard_row(
    stats: DiDStats, code: str, description: str, standard_id: Optional[int] = None
) -> StandardDiDResult:
    return StandardDiDResult(
        standard_id=standard_id,
        code=code,
        description=description,
        treated_count=stats.treated.count,
        treated_pre_avg=stats.treated.pre_avg,
        treated_post_avg=stats.treated.post_avg,
        treated_delta=stats.treated.delta,
        control_count=stats.control.count,
        control_pre_avg=stats.control.pre_avg,
        control_post_avg=stats.control.post_avg,
        control_delta=stats.control.delta,
        did_impact=stats.did_impact,
        p_value=stats.p_value,
        is_significant=stats.is_significant,
    )


def compute_assignment_impact(
    source: ImpactDataSource, assignment_id: int, include_points: bool = False
) -> Optional[ImpactResult]:
    return ImpactEngine(source).compute_assignment_impact(assignment_id, include_points)


def compute_standard_level_impact(source: ImpactDataSource, assignment_id: int) -> Optional[StandardImpactResult]:
    return ImpactEngine(source).compute_standard_level_impact(assignment_id)


def compute_portfolio_impacts(
    source: ImpactDataSource, group_id: int, *, include_standard_breakdown: bool = False
) -> List[ImpactResult]:
    return ImpactEngine(source).compute_portfolio_impacts(
        group_id, include_standard_breakdown=include_standard_breakdown
    )
