import logging
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from contest.auth.dependencies import get_current_user, require_admin, require_expert
from contest.auth.permissions import ensure_can_view_work
from contest.database import get_db
from contest.models.rating import Rating
from contest.models.user import User
from contest.models.work import InvalidTransition, Nomination, Work, WorkStatus
from contest.routes.common import MessageResponse, database_unavailable
from contest.services.mail import Mailer, NotificationKind, get_mailer
from contest.services.settings import ContestSettings, get_contest_settings

router = APIRouter(tags=['ratings'])

logger = logging.getLogger(__name__)


class RateWorkRequest(BaseModel):
    work_id: int
    score: int
    comment: str | None = Field(default=None, max_length=2000)


class RatingResponse(BaseModel):
    id: int
    work_id: int
    expert_id: int
    score: int
    comment: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class RatedWorkSummary(BaseModel):
    id: int
    title: str
    nomination: Nomination
    status: WorkStatus

    class Config:
        from_attributes = True


class MyRatingItem(RatingResponse):
    work: RatedWorkSummary


@router.post('', response_model=RatingResponse)
def rate_work(
    data: RateWorkRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_expert),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    contest_settings: ContestSettings = Depends(get_contest_settings),
):
    """Record the assigned expert's score, or overwrite it if one exists.

    The first score moves the work to ``rated`` in the same commit and
    notifies the student. Later calls only change score and comment.
    """
    try:
        work = db.get(Work, data.work_id)
        if work is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Work not found.')

        if work.expert_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='This work is not assigned to you.',
            )

        if work.current_status is WorkStatus.MODERATION:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='The work has not been sent for review yet.',
            )

        scale = contest_settings.rating_scale
        if not scale.contains(data.score):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'Score must be between {scale.min} and {scale.max}.',
            )

        rating = work.rating
        created = rating is None
        if created:
            rating = Rating(expert_id=current_user.id, score=data.score, comment=data.comment)
            work.rating = rating
            work.mark_rated()
        else:
            rating.score = data.score
            rating.comment = data.comment

        db.commit()
        db.refresh(rating)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    if created:
        logger.info('Expert %s rated work %s', current_user.id, work.id)
        student = work.student
        background_tasks.add_task(
            mailer.notify,
            NotificationKind.WORK_RATED,
            student.email,
            {
                'full_name': student.full_name,
                'work_title': work.title,
                'score': rating.score,
                'comment': rating.comment,
            },
        )

    return rating


@router.get('/my', response_model=list[MyRatingItem])
def list_my_ratings(current_user: User = Depends(require_expert), db: Session = Depends(get_db)):
    try:
        return (
            db.query(Rating)
            .options(joinedload(Rating.work))
            .filter(Rating.expert_id == current_user.id)
            .order_by(Rating.created_at.desc(), Rating.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/work/{work_id}', response_model=RatingResponse | None)
def get_work_rating(
    work_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        work = db.get(Work, work_id)
        if work is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Work not found.')
        ensure_can_view_work(current_user, work)
        return work.rating
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.delete('/{rating_id}', response_model=MessageResponse)
def delete_rating(
    rating_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        rating = db.get(Rating, rating_id)
        if rating is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Rating not found.')

        work = rating.work
        try:
            work.reopen_review()
        except InvalidTransition as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        work.rating = None
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s deleted rating %s of work %s', current_user.id, rating_id, work.id)

    return MessageResponse(message='Rating deleted. The work is back in review.')
