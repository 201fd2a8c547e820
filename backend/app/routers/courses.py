import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import InvalidCourse, InvalidHoleHandicaps, http_problem
from ..models import Course, TeeSet
from ..schemas import CourseCreate, CourseOut, StrokesOut, TeeSetOut
from ..scoring import handicap
from ..services.validation import ValidationError, validate_hole_pars

router = APIRouter(tags=["courses"])


def _tee_set_out(tee: TeeSet) -> TeeSetOut:
    return TeeSetOut(
        id=tee.id,
        courseId=tee.course_id,
        name=tee.name,
        slopeRating=tee.slope_rating,
        courseRating=tee.course_rating,
        par=tee.par,
        holeHandicaps=tee.hole_handicaps,
        holePars=tee.hole_pars,
    )


@router.post("/courses", response_model=CourseOut, status_code=201)
async def create_course(body: CourseCreate, session: AsyncSession = Depends(get_session)):
    course = Course(id=uuid.uuid4().hex, name=body.name)
    tees: list[TeeSet] = []
    for tee in body.teeSets:
        try:
            # scratch index: checks rating and par are usable
            handicap.compute_course_handicap(0.0, tee.slopeRating, tee.courseRating, tee.par)
            ranks = (
                handicap.validate_hole_ranks(tee.holeHandicaps)
                if tee.holeHandicaps is not None
                else None
            )
            pars = validate_hole_pars(tee.holePars)
        except handicap.InvalidCourseData as exc:
            raise InvalidCourse(f"{tee.name}: {exc.detail}")
        except handicap.InvalidHoleHandicapData as exc:
            raise InvalidHoleHandicaps(f"{tee.name}: {exc.detail}")
        except ValidationError as exc:
            raise InvalidCourse(f"{tee.name}: {exc.detail}")

        if pars is not None and sum(pars) != tee.par:
            raise InvalidCourse(f"{tee.name}: hole pars add up to {sum(pars)}, not {tee.par}")

        tees.append(
            TeeSet(
                id=uuid.uuid4().hex,
                course_id=course.id,
                name=tee.name,
                slope_rating=tee.slopeRating,
                course_rating=tee.courseRating,
                par=tee.par,
                hole_handicaps=ranks,
                hole_pars=pars,
            )
        )

    session.add(course)
    await session.flush()
    session.add_all(tees)
    await session.commit()
    return CourseOut(id=course.id, name=course.name, teeSets=[_tee_set_out(t) for t in tees])


@router.get("/courses/{course_id}", response_model=CourseOut)
async def get_course(course_id: str, session: AsyncSession = Depends(get_session)):
    course = await session.get(Course, course_id)
    if not course:
        raise http_problem(
            status_code=404,
            detail="course not found",
            code="course_not_found",
        )
    tees = (
        await session.execute(
            select(TeeSet).where(TeeSet.course_id == course_id).order_by(TeeSet.name)
        )
    ).scalars().all()
    return CourseOut(id=course.id, name=course.name, teeSets=[_tee_set_out(t) for t in tees])


@router.get("/tee-sets/{tee_set_id}/strokes", response_model=StrokesOut)
async def get_stroke_allocation(
    tee_set_id: str,
    index: float = Query(..., ge=-10, le=54),
    session: AsyncSession = Depends(get_session),
):
    tee = await session.get(TeeSet, tee_set_id)
    if not tee:
        raise http_problem(
            status_code=404,
            detail="tee set not found",
            code="tee_set_not_found",
        )

    try:
        ch = handicap.compute_course_handicap(index, tee.slope_rating, tee.course_rating, tee.par)
    except handicap.InvalidCourseData as exc:
        raise InvalidCourse(exc.detail)

    allocation = handicap.allocate_strokes_for_display(ch.value, tee.hole_handicaps)
    return StrokesOut(
        teeSetId=tee.id,
        handicapIndex=index,
        courseHandicap=ch.value,
        slopeUsed=ch.slope_used,
        slopeFallback=ch.slope_fallback,
        strokes=allocation.strokes,
        valid=allocation.valid,
        error=allocation.error,
    )
