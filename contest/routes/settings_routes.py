import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contest.auth.dependencies import require_admin
from contest.core import clock
from contest.database import get_db
from contest.models.user import User
from contest.routes.common import database_unavailable
from contest.services.settings import (
    DEFAULT_SCALE_MIN,
    RATING_SCALE_KEY,
    SUBMISSION_DEADLINE_KEY,
    ContestSettings,
    get_contest_settings,
    load_contest_settings,
    parse_deadline,
    upsert_setting,
)

router = APIRouter(tags=['settings'])

logger = logging.getLogger(__name__)


class SettingsResponse(BaseModel):
    submission_deadline: datetime | None = None
    max_score: int
    min_score: int


class SubmissionStatusResponse(BaseModel):
    is_open: bool
    deadline: datetime | None = None


class UpdateSettingsRequest(BaseModel):
    submission_deadline: datetime | None = None
    max_score: int | None = Field(default=None, ge=1, le=100)


def settings_response(contest_settings: ContestSettings) -> SettingsResponse:
    return SettingsResponse(
        submission_deadline=contest_settings.submission_deadline,
        max_score=contest_settings.rating_scale.max,
        min_score=contest_settings.rating_scale.min,
    )


@router.get('', response_model=SettingsResponse)
def get_settings(contest_settings: ContestSettings = Depends(get_contest_settings)):
    return settings_response(contest_settings)


@router.get('/submission-status', response_model=SubmissionStatusResponse)
def get_submission_status(contest_settings: ContestSettings = Depends(get_contest_settings)):
    return SubmissionStatusResponse(
        is_open=contest_settings.is_submission_open(clock.utcnow()),
        deadline=contest_settings.submission_deadline,
    )


@router.patch('', response_model=SettingsResponse)
def update_settings(
    data: UpdateSettingsRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        if data.submission_deadline is not None:
            deadline = parse_deadline(data.submission_deadline)
            upsert_setting(db, SUBMISSION_DEADLINE_KEY, deadline.isoformat())
        if data.max_score is not None:
            upsert_setting(db, RATING_SCALE_KEY, {'min': DEFAULT_SCALE_MIN, 'max': data.max_score})
        db.commit()
        contest_settings = load_contest_settings(db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s updated contest settings', current_user.id)

    return settings_response(contest_settings)
