"""Pydantic schemas for impact results and status updates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal

from pydantic import BaseModel, Field

__all__ = [
    "StudentPoint",
    "StandardDiDSummary",
    "ImpactResult",
    "StandardDiDResult",
    "StandardImpactResult",
    "ImpactSummary",
    "StatusUpdate",
]


class StudentPoint(BaseModel):
    student_id: int
    pre: int
    post: int


class StandardDiDSummary(BaseModel):
    code: str
    treated_delta: int
    control_delta: int
    did_impact: int


class ImpactResult(BaseModel):
    assignment_id: int
    assignment_name: str
    platform: str
    standards: List[str] = Field(default_factory=list, description="Codes of the aligned standards.")
    rc_name: str = ""

    created_after_test_id: int
    roster_ids: List[int] = Field(
        default_factory=list,
        description="Rosters holding at least one student who completed the assignment.",
    )

    pre_test_name: str
    post_test_name: str

    treated_count: int = 0
    treated_pre_avg: int = 0
    treated_post_avg: int = 0
    treated_delta: int = 0

    control_count: int = 0
    control_pre_avg: int = 0
    control_post_avg: int = 0
    control_delta: int = 0

    did_impact: int = 0
    did_impact_percent: float = 0.0

    p_value: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Two-tailed p-value; None when either group has fewer than two students.",
    )
    is_significant: bool = False

    standard_impacts: List[StandardDiDSummary] | None = None
    treated_points: List[StudentPoint] | None = None
    control_points: List[StudentPoint] | None = None


class StandardDiDResult(BaseModel):
    standard_id: int | None = Field(
        default=None,
        description="None for the overall row built from the aligned average.",
    )
    code: str
    description: str = ""
    treated_count: int = 0
    treated_pre_avg: int = 0
    treated_post_avg: int = 0
    treated_delta: int = 0
    control_count: int = 0
    control_pre_avg: int = 0
    control_post_avg: int = 0
    control_delta: int = 0
    did_impact: int = 0
    p_value: float | None = Field(default=None, ge=0.0, le=1.0)
    is_significant: bool = False


class StandardImpactResult(BaseModel):
    assignment_id: int
    assignment_name: str
    platform: str
    rc_name: str = ""
    pre_test_name: str
    post_test_name: str
    overall_did_impact: int = 0
    overall: StandardDiDResult
    standards: List[StandardDiDResult] = Field(default_factory=list)


class ImpactSummary(BaseModel):
    impacts: List[ImpactResult] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StatusUpdate(BaseModel):
    student_id: int
    status: Literal["not_started", "started", "completed"]
    timestamp: datetime | None = Field(
        default=None,
        description="When the transition happened; defaults to now for started/completed.",
    )
