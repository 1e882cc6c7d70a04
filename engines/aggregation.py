"""Per-student score aggregation over an assignment's aligned standards."""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional, Sequence


def aligned_average(score_map: Mapping[int, float], standard_ids: Sequence[int]) -> Optional[float]:
    """Return the mean score over ``standard_ids`` present in ``score_map``.

    Ids missing from the map are skipped. When none of them is present the
    result is ``None`` rather than zero, so a student without data on the
    targeted standards can be told apart from one who scored nothing.
    """

    values = [score_map[standard_id] for standard_id in standard_ids if score_map.get(standard_id) is not None]
    if not values:
        return None
    return sum(values) / len(values)


def standard_score(score_map: Mapping[int, float], standard_id: int) -> Optional[float]:
    value = score_map.get(standard_id)
    return float(value) if value is not None else None


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (2.5 -> 3, -2.5 -> -2)."""

    return int(math.floor(value + 0.5))


def mean(values: Iterable[float]) -> float:
    # An empty group averages to 0; callers only report it alongside a count of 0.
    items = list(values)
    if not items:
        return 0.0
    return sum(items) / len(items)
