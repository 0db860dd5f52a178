import logging
from datetime import datetime
from pathlib import PurePosixPath

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from contest.auth.dependencies import get_current_user, require_admin, require_expert, require_student
from contest.auth.permissions import ensure_can_view_work, ensure_work_owner
from contest.core import clock
from contest.database import get_db
from contest.models.user import User
from contest.models.work import NOMINATION_LABELS, Nomination, Work, WorkStatus, WorkType
from contest.routes.common import (
    MessageResponse,
    PageMeta,
    database_unavailable,
    page_meta,
    storage_unavailable,
)
from contest.services.mail import Mailer, NotificationKind, get_mailer
from contest.services.settings import ContestSettings, get_contest_settings
from contest.services.storage import S3Storage, StorageError, get_storage

router = APIRouter(tags=['works'])

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 15 * 1024 * 1024
MAX_TITLE_LENGTH = 300
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

ALLOWED_MIME_TYPES = {
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'image/jpeg',
    'image/png',
    'image/gif',
}

DUPLICATE_NOMINATION_DETAIL = 'You have already submitted a work in this nomination.'
NOT_EDITABLE_DETAIL = 'Only works awaiting moderation can be changed.'


class RatingSummary(BaseModel):
    id: int
    score: int
    comment: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class StudentSummary(BaseModel):
    id: int
    full_name: str
    email: str
    school: str | None = None
    grade: str | None = None

    class Config:
        from_attributes = True


class ExpertSummary(BaseModel):
    id: int
    full_name: str
    email: str

    class Config:
        from_attributes = True


class WorkResponse(BaseModel):
    id: int
    title: str
    nomination: Nomination
    work_type: WorkType
    file_name: str
    file_mime: str
    file_size: int
    status: WorkStatus
    student_id: int
    expert_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class MyWorkItem(WorkResponse):
    rating: RatingSummary | None = None


class AssignedWorkItem(WorkResponse):
    student: StudentSummary
    rating: RatingSummary | None = None


class WorkDetail(WorkResponse):
    student: StudentSummary
    expert: ExpertSummary | None = None
    rating: RatingSummary | None = None


class WorkListResponse(BaseModel):
    data: list[WorkDetail]
    meta: PageMeta


class UpdateWorkRequest(BaseModel):
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)

    @field_validator('title')
    @classmethod
    def strip_title(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Title is required.')
        return normalized


class DownloadResponse(BaseModel):
    url: str
    file_name: str
    mime_type: str


def repair_filename(file_name: str | None) -> str:
    """Undo the latin-1 mangling some browsers apply to UTF-8 multipart filenames."""
    name = PurePosixPath((file_name or '').replace('\\', '/')).name or 'file'
    try:
        return name.encode('latin-1').decode('utf-8')
    except (UnicodeEncodeError, UnicodeDecodeError):
        return name


def normalize_title(title: str) -> str:
    normalized = (title or '').strip()
    if not normalized:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Title is required.')
    if len(normalized) > MAX_TITLE_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Title must be at most {MAX_TITLE_LENGTH} characters.',
        )
    return normalized


def read_upload(file: UploadFile | None) -> tuple[bytes, str, str]:
    """Validate an uploaded file and return its content, repaired name and MIME type."""
    if file is None or not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='File is required.')

    mime_type = (file.content_type or '').split(';')[0].strip().lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Unsupported file type. Allowed: PDF, DOC, DOCX, JPEG, PNG, GIF.',
        )

    content = file.file.read(MAX_FILE_SIZE + 1)
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='File is too large. The maximum size is 15 MB.',
        )
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='File is empty.')

    return content, repair_filename(file.filename), mime_type


def get_work_or_404(db: Session, work_id: int) -> Work:
    work = db.get(Work, work_id)
    if work is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Work not found.')
    return work


def ensure_editable(work: Work) -> None:
    if not work.is_editable:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NOT_EDITABLE_DETAIL)


@router.post('', response_model=WorkResponse, status_code=status.HTTP_201_CREATED)
def create_work(
    background_tasks: BackgroundTasks,
    title: str = Form(...),
    nomination: Nomination = Form(...),
    work_type: WorkType = Form(...),
    file: UploadFile | None = File(default=None),
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
    storage: S3Storage = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
    contest_settings: ContestSettings = Depends(get_contest_settings),
):
    content, file_name, mime_type = read_upload(file)
    title = normalize_title(title)

    try:
        duplicate = (
            db.query(Work)
            .filter(Work.student_id == current_user.id, Work.nomination == nomination)
            .first()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if duplicate is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_NOMINATION_DETAIL)

    if not contest_settings.is_submission_open(clock.utcnow()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='The submission deadline has passed. Submissions are closed.',
        )

    try:
        stored = storage.put(content, file_name, mime_type)
    except StorageError as exc:
        raise storage_unavailable(exc) from exc

    work = Work(
        title=title,
        nomination=nomination,
        work_type=work_type,
        file_key=stored.key,
        file_name=file_name,
        file_mime=mime_type,
        file_size=stored.size,
        status=WorkStatus.MODERATION,
        student_id=current_user.id,
    )

    try:
        db.add(work)
        db.commit()
        db.refresh(work)
    except IntegrityError as exc:
        db.rollback()
        storage.delete(stored.key)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_NOMINATION_DETAIL) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        storage.delete(stored.key)
        raise database_unavailable(exc) from exc

    logger.info('Student %s submitted work %s', current_user.id, work.id)

    background_tasks.add_task(
        mailer.notify,
        NotificationKind.WORK_SUBMITTED,
        current_user.email,
        {
            'full_name': current_user.full_name,
            'work_title': work.title,
            'nomination': NOMINATION_LABELS[Nomination(work.nomination)],
        },
    )

    return work


@router.get('/my', response_model=list[MyWorkItem])
def list_my_works(current_user: User = Depends(require_student), db: Session = Depends(get_db)):
    try:
        return (
            db.query(Work)
            .options(joinedload(Work.rating))
            .filter(Work.student_id == current_user.id)
            .order_by(Work.created_at.desc(), Work.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/assigned', response_model=list[AssignedWorkItem])
def list_assigned_works(current_user: User = Depends(require_expert), db: Session = Depends(get_db)):
    try:
        return (
            db.query(Work)
            .options(joinedload(Work.student), joinedload(Work.rating))
            .filter(Work.expert_id == current_user.id)
            .order_by(Work.created_at.desc(), Work.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('', response_model=WorkListResponse)
def list_works(
    nomination: Nomination | None = Query(default=None),
    work_status: WorkStatus | None = Query(default=None, alias='status'),
    expert_id: int | None = Query(default=None),
    has_expert: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Work).join(Work.student)
        if nomination is not None:
            query = query.filter(Work.nomination == nomination)
        if work_status is not None:
            query = query.filter(Work.status == work_status)
        if expert_id is not None:
            query = query.filter(Work.expert_id == expert_id)
        if has_expert is True:
            query = query.filter(Work.expert_id.is_not(None))
        elif has_expert is False:
            query = query.filter(Work.expert_id.is_(None))
        if search and search.strip():
            pattern = f'%{search.strip()}%'
            query = query.filter(
                or_(Work.title.ilike(pattern), User.full_name.ilike(pattern), User.school.ilike(pattern))
            )

        total = query.count()
        works = (
            query.options(joinedload(Work.expert), joinedload(Work.rating))
            .order_by(Work.created_at.desc(), Work.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return WorkListResponse(
        data=[WorkDetail.model_validate(work) for work in works],
        meta=page_meta(total, page, limit),
    )


@router.get('/{work_id}', response_model=WorkDetail)
def get_work(work_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        work = get_work_or_404(db, work_id)
        ensure_can_view_work(current_user, work)
        return WorkDetail.model_validate(work)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.patch('/{work_id}', response_model=WorkResponse)
def update_work(
    work_id: int,
    data: UpdateWorkRequest,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    try:
        work = get_work_or_404(db, work_id)
        ensure_work_owner(current_user, work, 'edit')
        ensure_editable(work)

        work.title = data.title
        db.commit()
        db.refresh(work)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return work


@router.post('/{work_id}/file', response_model=WorkResponse)
def replace_work_file(
    work_id: int,
    file: UploadFile | None = File(default=None),
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
    storage: S3Storage = Depends(get_storage),
):
    try:
        work = get_work_or_404(db, work_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    ensure_work_owner(current_user, work, 'replace the file of')
    ensure_editable(work)
    content, file_name, mime_type = read_upload(file)

    try:
        stored = storage.put(content, file_name, mime_type)
    except StorageError as exc:
        raise storage_unavailable(exc) from exc

    previous_key = work.file_key

    try:
        work.file_key = stored.key
        work.file_name = file_name
        work.file_mime = mime_type
        work.file_size = stored.size
        db.commit()
        db.refresh(work)
    except SQLAlchemyError as exc:
        db.rollback()
        storage.delete(stored.key)
        raise database_unavailable(exc) from exc

    # The old object goes only after the row points at the new one
    storage.delete(previous_key)

    return work


@router.delete('/{work_id}', response_model=MessageResponse)
def delete_work(
    work_id: int,
    current_user: User = Depends(require_student),
    db: Session = Depends(get_db),
    storage: S3Storage = Depends(get_storage),
):
    try:
        work = get_work_or_404(db, work_id)
        ensure_work_owner(current_user, work, 'delete')
        ensure_editable(work)

        file_key = work.file_key
        db.delete(work)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    storage.delete(file_key)

    logger.info('Student %s deleted work %s', current_user.id, work_id)

    return MessageResponse(message='Work deleted.')


@router.get('/{work_id}/download', response_model=DownloadResponse)
def download_work(
    work_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: S3Storage = Depends(get_storage),
):
    try:
        work = get_work_or_404(db, work_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    ensure_can_view_work(current_user, work)

    try:
        url = storage.signed_url(work.file_key)
    except StorageError as exc:
        raise storage_unavailable(exc) from exc

    return DownloadResponse(url=url, file_name=work.file_name, mime_type=work.file_mime)
