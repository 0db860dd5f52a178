import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from contest.auth.dependencies import require_admin
from contest.core import clock
from contest.database import get_db
from contest.models.rating import Rating
from contest.models.user import Role, User
from contest.models.work import InvalidTransition, Nomination, Work, WorkStatus
from contest.routes.common import MessageResponse, database_unavailable
from contest.services.export import XLSX_MEDIA_TYPE, build_results_workbook, build_works_workbook
from contest.services.mail import Mailer, NotificationKind, get_mailer

router = APIRouter(tags=['admin'])

logger = logging.getLogger(__name__)

MISSING_SCHOOL_LABEL = 'Не указана'
TOP_SCHOOLS_LIMIT = 10


class UserStatistics(BaseModel):
    students: int
    experts: int


class WorkStatistics(BaseModel):
    total: int
    unassigned: int
    by_status: dict[str, int]
    by_nomination: dict[str, int]


class SchoolCount(BaseModel):
    school: str
    count: int


class RatingStatistics(BaseModel):
    total: int
    average_score: float | None = None


class StatisticsResponse(BaseModel):
    users: UserStatistics
    works: WorkStatistics
    top_schools: list[SchoolCount]
    ratings: RatingStatistics


class AssignRequest(BaseModel):
    work_ids: list[int] = Field(min_length=1)
    expert_id: int


class AssignResponse(BaseModel):
    assigned: int
    expert_id: int
    expert_name: str
    skipped_work_ids: list[int]


class DistributionDetail(BaseModel):
    expert_id: int
    expert_name: str
    assigned: int


class DistributionResponse(BaseModel):
    total_distributed: int
    experts_count: int
    details: list[DistributionDetail]


def plan_distribution(work_ids: list[int], expert_loads: list[tuple[int, int]]) -> dict[int, list[int]]:
    """Deal ``work_ids`` round-robin over experts, least loaded first.

    ``expert_loads`` holds ``(expert_id, load)`` pairs. The sort is stable, so
    experts with equal load keep their given order.
    """
    ordered = sorted(expert_loads, key=lambda item: item[1])
    plan = {expert_id: [] for expert_id, _ in ordered}
    if not ordered:
        return plan

    for index, work_id in enumerate(work_ids):
        expert_id = ordered[index % len(ordered)][0]
        plan[expert_id].append(work_id)
    return plan


def xlsx_response(content: bytes, prefix: str) -> Response:
    file_name = f'{prefix}_{clock.utcnow().strftime("%Y-%m-%d")}.xlsx'
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={'Content-Disposition': f'attachment; filename="{file_name}"'},
    )


@router.get('/statistics', response_model=StatisticsResponse)
def get_statistics(current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        role_counts = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
        status_counts = dict(db.query(Work.status, func.count(Work.id)).group_by(Work.status).all())
        nomination_counts = dict(db.query(Work.nomination, func.count(Work.id)).group_by(Work.nomination).all())
        unassigned = db.query(func.count(Work.id)).filter(Work.expert_id.is_(None)).scalar()

        school = func.coalesce(func.nullif(User.school, ''), MISSING_SCHOOL_LABEL).label('school')
        work_count = func.count(Work.id).label('work_count')
        top_schools = (
            db.query(school, work_count)
            .join(Work, Work.student_id == User.id)
            .group_by(school)
            .order_by(work_count.desc(), school.asc())
            .limit(TOP_SCHOOLS_LIMIT)
            .all()
        )

        rating_total, average_score = db.query(func.count(Rating.id), func.avg(Rating.score)).one()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    by_status = {work_status.value: status_counts.get(work_status, 0) for work_status in WorkStatus}
    by_nomination = {nomination.value: nomination_counts.get(nomination, 0) for nomination in Nomination}

    return StatisticsResponse(
        users=UserStatistics(
            students=role_counts.get(Role.STUDENT, 0),
            experts=role_counts.get(Role.EXPERT, 0),
        ),
        works=WorkStatistics(
            total=sum(by_status.values()),
            unassigned=unassigned or 0,
            by_status=by_status,
            by_nomination=by_nomination,
        ),
        top_schools=[SchoolCount(school=name, count=count) for name, count in top_schools],
        ratings=RatingStatistics(
            total=rating_total or 0,
            average_score=round(float(average_score), 2) if average_score is not None else None,
        ),
    )


@router.post('/assign', response_model=AssignResponse)
def assign_works(
    data: AssignRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        expert = db.get(User, data.expert_id)
        if expert is None or Role(expert.role) is not Role.EXPERT:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Expert not found.')

        if expert.is_blocked:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Cannot assign works to a blocked expert.',
            )

        works = {work.id: work for work in db.query(Work).filter(Work.id.in_(data.work_ids)).all()}

        assigned = 0
        skipped = []
        for work_id in dict.fromkeys(data.work_ids):
            work = works.get(work_id)
            if work is None or work.current_status is not WorkStatus.MODERATION:
                skipped.append(work_id)
                continue
            work.assign_expert(expert.id)
            assigned += 1

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s assigned %s works to expert %s', current_user.id, assigned, expert.id)

    if assigned:
        background_tasks.add_task(
            mailer.notify,
            NotificationKind.WORKS_ASSIGNED,
            expert.email,
            {'expert_name': expert.full_name, 'works_count': assigned},
        )

    return AssignResponse(
        assigned=assigned,
        expert_id=expert.id,
        expert_name=expert.full_name,
        skipped_work_ids=skipped,
    )


@router.post('/unassign/{work_id}', response_model=MessageResponse)
def unassign_work(work_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        work = db.get(Work, work_id)
        if work is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Work not found.')

        if work.current_status is WorkStatus.RATED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Cannot unassign an expert from a rated work. Delete the rating first.',
            )

        try:
            work.unassign_expert()
        except InvalidTransition as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s unassigned work %s', current_user.id, work_id)

    return MessageResponse(message='Expert unassigned. The work is back in moderation.')


@router.post('/distribute', response_model=DistributionResponse)
def distribute_works(
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    try:
        works = (
            db.query(Work)
            .filter(Work.status == WorkStatus.MODERATION, Work.expert_id.is_(None))
            .order_by(Work.created_at.asc(), Work.id.asc())
            .all()
        )
        if not works:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='There are no unassigned works to distribute.',
            )

        experts = (
            db.query(User)
            .filter(User.role == Role.EXPERT, User.is_blocked.is_(False))
            .order_by(User.id.asc())
            .all()
        )
        if not experts:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='There are no active experts to distribute works to.',
            )

        loads = dict(
            db.query(Work.expert_id, func.count(Work.id))
            .filter(Work.status == WorkStatus.REVIEW, Work.expert_id.is_not(None))
            .group_by(Work.expert_id)
            .all()
        )

        plan = plan_distribution(
            [work.id for work in works],
            [(expert.id, loads.get(expert.id, 0)) for expert in experts],
        )

        works_by_id = {work.id: work for work in works}
        for expert_id, work_ids in plan.items():
            for work_id in work_ids:
                works_by_id[work_id].assign_expert(expert_id)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    experts_by_id = {expert.id: expert for expert in experts}
    details = []
    for expert_id, work_ids in plan.items():
        if not work_ids:
            continue
        expert = experts_by_id[expert_id]
        details.append(DistributionDetail(expert_id=expert.id, expert_name=expert.full_name, assigned=len(work_ids)))
        background_tasks.add_task(
            mailer.notify,
            NotificationKind.WORKS_ASSIGNED,
            expert.email,
            {'expert_name': expert.full_name, 'works_count': len(work_ids)},
        )

    logger.info('Admin %s distributed %s works across %s experts', current_user.id, len(works), len(experts))

    return DistributionResponse(total_distributed=len(works), experts_count=len(experts), details=details)


@router.get('/export/works')
def export_works(current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        works = (
            db.query(Work)
            .options(joinedload(Work.student), joinedload(Work.expert), joinedload(Work.rating))
            .order_by(Work.nomination.asc(), Work.created_at.asc(), Work.id.asc())
            .all()
        )
        content = build_works_workbook(works)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return xlsx_response(content, 'works')


@router.get('/export/results')
def export_results(current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        works = (
            db.query(Work)
            .options(joinedload(Work.student), joinedload(Work.rating))
            .filter(Work.status == WorkStatus.RATED)
            .order_by(Work.nomination.asc(), Work.id.asc())
            .all()
        )
        content = build_results_workbook(works)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return xlsx_response(content, 'results')
