"""Handicap calculator.
Turns a handicap index and tee-set ratings into course handicaps and
per-hole stroke tables."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

logger = logging.getLogger(__name__)

HOLES = 18
NEUTRAL_SLOPE = 113.0

# Format allowances applied to course handicaps before strokes are given.
SINGLES_ALLOWANCE = 1.0
FOURBALL_ALLOWANCE = 0.9
FOURSOMES_ALLOWANCE = 0.5
GREENSOMES_LOW_WEIGHT = 0.6
GREENSOMES_HIGH_WEIGHT = 0.4


class InvalidCourseData(ValueError):
    """Raised when course rating, par or index cannot produce a handicap."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidHoleHandicapData(ValueError):
    """Raised when hole handicap ranks are not a permutation of 1..18."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


@dataclass(frozen=True)
class CourseHandicap:
    value: int
    slope_used: float
    slope_fallback: bool


@dataclass(frozen=True)
class StrokeAllocation:
    strokes: List[int]
    valid: bool = True
    error: str | None = None


def round_half_away_from_zero(value: float) -> int:
    rounded = math.floor(abs(value) + 0.5)
    return int(-rounded if value < 0 else rounded)


def _is_finite_number(value: object) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False


def compute_course_handicap(
    index: float, slope: float | None, rating: float, par: float
) -> CourseHandicap:
    """Compute a course handicap and report whether the slope was replaced.

    A missing, non-finite or non-positive slope falls back to the neutral
    slope of 113. Rating, par and index must be finite.
    """

    if not _is_finite_number(index):
        raise InvalidCourseData(f"handicap index must be a finite number (got {index!r})")
    if not _is_finite_number(rating):
        raise InvalidCourseData(f"course rating must be a finite number (got {rating!r})")
    if not _is_finite_number(par):
        raise InvalidCourseData(f"par must be a finite number (got {par!r})")

    fallback = not _is_finite_number(slope) or float(slope) <= 0  # type: ignore[arg-type]
    slope_used = NEUTRAL_SLOPE if fallback else float(slope)  # type: ignore[arg-type]
    if fallback:
        logger.warning(
            "Invalid slope rating %r; using neutral slope %.0f", slope, NEUTRAL_SLOPE
        )

    raw = float(index) * (slope_used / NEUTRAL_SLOPE) + (float(rating) - float(par))
    return CourseHandicap(
        value=round_half_away_from_zero(raw),
        slope_used=slope_used,
        slope_fallback=fallback,
    )


def course_handicap(index: float, slope: float | None, rating: float, par: float) -> int:
    return compute_course_handicap(index, slope, rating, par).value


def validate_hole_ranks(ranks: Sequence[int] | None) -> List[int]:
    if ranks is None or isinstance(ranks, (str, bytes)):
        raise InvalidHoleHandicapData("hole handicap ranks are missing")
    ranks = list(ranks)
    if len(ranks) != HOLES:
        raise InvalidHoleHandicapData(
            f"expected {HOLES} hole handicap ranks, got {len(ranks)}"
        )
    if any(isinstance(r, bool) or not isinstance(r, int) for r in ranks):
        raise InvalidHoleHandicapData("hole handicap ranks must be integers")
    if sorted(ranks) != list(range(1, HOLES + 1)):
        raise InvalidHoleHandicapData(
            f"hole handicap ranks must be a permutation of 1..{HOLES}"
        )
    return ranks


def allocate_strokes(course_handicap: int, hole_ranks: Sequence[int]) -> List[int]:
    """Spread a course handicap over the 18 holes.

    Every hole gets ``|ch| // 18`` strokes and the remainder goes to the
    hardest holes first. Plus handicaps give strokes back, starting from the
    easiest hole.
    """

    ranks = validate_hole_ranks(hole_ranks)
    total = int(course_handicap)
    base, extra = divmod(abs(total), HOLES)

    if total >= 0:
        return [base + (1 if rank <= extra else 0) for rank in ranks]
    return [-(base + (1 if rank > HOLES - extra else 0)) for rank in ranks]


def allocate_strokes_for_display(
    course_handicap: int, hole_ranks: Sequence[int] | None
) -> StrokeAllocation:
    try:
        return StrokeAllocation(strokes=allocate_strokes(course_handicap, hole_ranks))
    except InvalidHoleHandicapData as exc:
        logger.warning("Hole handicap ranks rejected (%s); using hole order", exc.detail)
        default_ranks = list(range(1, HOLES + 1))
        return StrokeAllocation(
            strokes=allocate_strokes(course_handicap, default_ranks),
            valid=False,
            error=exc.detail,
        )


def singles_strokes(
    handicap_a: int, handicap_b: int, allowance: float = SINGLES_ALLOWANCE
) -> tuple[int, int]:
    diff = handicap_a - handicap_b
    given = int(abs(diff) * allowance)
    if diff > 0:
        return given, 0
    if diff < 0:
        return 0, given
    return 0, 0


def fourball_strokes(
    handicaps_a: Sequence[int],
    handicaps_b: Sequence[int],
    allowance: float = FOURBALL_ALLOWANCE,
) -> tuple[List[int], List[int]]:
    everyone = list(handicaps_a) + list(handicaps_b)
    if not everyone:
        return [], []
    lowest = min(everyone)
    return (
        [int((h - lowest) * allowance) for h in handicaps_a],
        [int((h - lowest) * allowance) for h in handicaps_b],
    )


def _team_difference(combined_a: float, combined_b: float) -> tuple[int, int]:
    diff = int(combined_a) - int(combined_b)
    if diff > 0:
        return diff, 0
    if diff < 0:
        return 0, -diff
    return 0, 0


def foursomes_strokes(
    handicaps_a: Sequence[int],
    handicaps_b: Sequence[int],
    allowance: float = FOURSOMES_ALLOWANCE,
) -> tuple[int, int]:
    return _team_difference(sum(handicaps_a) * allowance, sum(handicaps_b) * allowance)


def _greensomes_combined(handicaps: Sequence[int]) -> float:
    if not handicaps:
        return 0.0
    low, high = min(handicaps), max(handicaps)
    return low * GREENSOMES_LOW_WEIGHT + high * GREENSOMES_HIGH_WEIGHT


def greensomes_strokes(
    handicaps_a: Sequence[int], handicaps_b: Sequence[int]
) -> tuple[int, int]:
    return _team_difference(
        _greensomes_combined(handicaps_a), _greensomes_combined(handicaps_b)
    )


def playing_strokes(
    match_format: str,
    side_a: Dict[str, int],
    side_b: Dict[str, int],
) -> Dict[str, int]:
    """Return strokes received per player id for a match format.

    Team formats that play one ball (foursomes, greensomes) give the team's
    strokes to every player on the side so the stroke table can be built per
    player.
    """

    ids_a, ids_b = list(side_a), list(side_b)
    hcps_a, hcps_b = [side_a[p] for p in ids_a], [side_b[p] for p in ids_b]

    if match_format == "singles":
        if len(ids_a) != 1 or len(ids_b) != 1:
            raise ValueError("singles requires one player per side")
        a, b = singles_strokes(hcps_a[0], hcps_b[0])
        return {ids_a[0]: a, ids_b[0]: b}
    if match_format == "fourball":
        a_list, b_list = fourball_strokes(hcps_a, hcps_b)
        return {**dict(zip(ids_a, a_list)), **dict(zip(ids_b, b_list))}
    if match_format in ("foursomes", "greensomes"):
        if match_format == "foursomes":
            a, b = foursomes_strokes(hcps_a, hcps_b)
        else:
            a, b = greensomes_strokes(hcps_a, hcps_b)
        return {**{p: a for p in ids_a}, **{p: b for p in ids_b}}
    if match_format == "stroke_play":
        return {**side_a, **side_b}
    raise ValueError(f"unsupported match format: {match_format!r}")


def stroke_table(
    strokes_by_player: Dict[str, int], hole_ranks: Sequence[int] | None
) -> tuple[Dict[str, List[int]], str | None]:
    """Allocate every player's strokes over the holes.

    Returns the per-player tables and the rank validation error, if any. On
    invalid ranks the tables use hole order so scoring can continue.
    """

    tables: Dict[str, List[int]] = {}
    error: str | None = None
    for player_id, strokes in strokes_by_player.items():
        allocation = allocate_strokes_for_display(strokes, hole_ranks)
        tables[player_id] = allocation.strokes
        if not allocation.valid:
            error = allocation.error
    return tables, error
